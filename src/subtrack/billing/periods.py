"""
Billing period resolver.

Turns a payment's selected display-calendar periods into the amount due and
the new subscription end instant. Pure: no clock, no storage.
"""

import calendar as gregorian_calendar
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import NamedTuple

from subtrack.billing.models import SubscriptionFrequency
from subtrack.calendar.adapter import from_display, next_month
from subtrack.calendar.constants import MONTHS_PER_YEAR, NEPALI_MONTHS
from subtrack.exceptions import InvalidCalendarDate, ValidationError


class BillingPeriod(NamedTuple):
    """A display-calendar (year, month) pair; month is 0-indexed.

    Field order makes tuple comparison chronological.
    """

    year: int
    month: int

    @property
    def label(self) -> str:
        return f"{NEPALI_MONTHS[self.month]} {self.year}"


@dataclass(frozen=True)
class PeriodResolution:
    """Outcome of resolving a payment against its selected periods."""

    amount_due: Decimal
    new_end_instant: datetime
    anchor: BillingPeriod
    periods: tuple[BillingPeriod, ...]


def normalize_periods(periods: Iterable[BillingPeriod | tuple[int, int]]) -> tuple[BillingPeriod, ...]:
    """Validate and sort selected periods.

    Raises:
        ValidationError: empty selection or a repeated period
        InvalidCalendarDate: month index outside 0-11
    """
    selected = [BillingPeriod(*p) for p in periods]
    if not selected:
        raise ValidationError("At least one billing period must be selected")

    for period in selected:
        if not 0 <= period.month < MONTHS_PER_YEAR:
            raise InvalidCalendarDate(period.year, period.month, 1)

    unique = sorted(set(selected))
    if len(unique) != len(selected):
        raise ValidationError(
            "Billing periods must be distinct",
            context={"periods": [list(p) for p in selected]},
        )
    return tuple(unique)


def resolve_payment(
    frequency: SubscriptionFrequency | str,
    rate: Decimal | int | str,
    current_end_instant: datetime | None,
    periods: Iterable[BillingPeriod | tuple[int, int]],
) -> PeriodResolution:
    """
    Compute ``(amount_due, new_end_instant)`` for a payment.

    Monthly: ``rate * len(periods)``; the subscription runs through the whole
    latest selected month, so the new end is the first of the following month.
    Annual: a flat ``rate``; the new end is the first of the anchor month one
    year later.

    ``current_end_instant`` is accepted for callers' convenience but does not
    influence the result: past or non-contiguous selections resolve the same way.
    """
    frequency = SubscriptionFrequency(frequency)
    rate = Decimal(str(rate))
    if rate <= 0:
        raise ValidationError("Rate must be positive", context={"rate": str(rate)})

    selected = normalize_periods(periods)
    anchor = selected[-1]

    if frequency is SubscriptionFrequency.MONTHLY:
        amount_due = rate * len(selected)
        end_year, end_month = next_month(anchor.year, anchor.month)
    else:
        amount_due = rate
        end_year, end_month = anchor.year + 1, anchor.month

    return PeriodResolution(
        amount_due=amount_due,
        new_end_instant=from_display(end_year, end_month, 1),
        anchor=anchor,
        periods=selected,
    )


def add_billing_unit(instant: datetime, frequency: SubscriptionFrequency | str) -> datetime:
    """Advance an instant by one Gregorian month or year, clamping to month end."""
    frequency = SubscriptionFrequency(frequency)
    months = 1 if frequency is SubscriptionFrequency.MONTHLY else 12

    month_index = instant.month - 1 + months
    year = instant.year + month_index // 12
    month = month_index % 12 + 1
    day = min(instant.day, gregorian_calendar.monthrange(year, month)[1])
    return instant.replace(year=year, month=month, day=day)


__all__ = [
    "BillingPeriod",
    "PeriodResolution",
    "normalize_periods",
    "resolve_payment",
    "add_billing_unit",
]
