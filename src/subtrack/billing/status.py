"""
Subscriber status rules.

The stored ``status`` is what operators and the scheduler wrote. The
``expired`` label is never stored; ``display_status`` derives it on read from
the end instant so every caller computes it the same way.
"""

from datetime import datetime

from subtrack.billing.models import SubscriberStatus
from subtrack.calendar.adapter import days_between, format_display
from subtrack.calendar.constants import DisplayStyle
from subtrack.db import ensure_aware
from subtrack.exceptions import InconsistentState

# Statuses an operator may set by hand.
MANUAL_STATUSES = frozenset({SubscriberStatus.ACTIVE, SubscriberStatus.INACTIVE})


def display_status(status: SubscriberStatus | str, end_instant: datetime, now: datetime) -> SubscriberStatus:
    """``expired`` once the end instant has passed, else the stored status."""
    if ensure_aware(end_instant) < ensure_aware(now):
        return SubscriberStatus.EXPIRED
    return SubscriberStatus(status)


def days_until_expiry(end_instant: datetime, now: datetime) -> int:
    """Signed calendar days from today to the end date; negative when overdue."""
    return days_between(now, ensure_aware(end_instant))


def is_expiring_soon(end_instant: datetime, reminder_days_before: int, now: datetime) -> bool:
    return 0 <= days_until_expiry(end_instant, now) <= reminder_days_before


def check_manual_toggle(current: SubscriberStatus | str, desired: SubscriberStatus | str) -> SubscriberStatus:
    """Validate an operator override and return the target status."""
    desired = SubscriberStatus(desired)
    current = SubscriberStatus(current)
    if desired not in MANUAL_STATUSES:
        raise InconsistentState(
            f"Status can only be toggled to active or inactive, not {desired.value}",
            current_status=current.value,
            context={"desired_status": desired.value},
        )
    if current is SubscriberStatus.CANCELLED:
        raise InconsistentState(
            "Cancelled subscribers cannot be toggled", current_status=current.value
        )
    return desired


def check_grace_expire(current: SubscriberStatus | str) -> bool:
    """
    Whether a grace-period expiry should be applied.

    Returns False for an already inactive subscriber, which makes repeated
    expiry a no-op. Raises for cancelled subscribers.
    """
    current = SubscriberStatus(current)
    if current is SubscriberStatus.CANCELLED:
        raise InconsistentState(
            "Grace-period expiry is not legal for a cancelled subscriber",
            current_status=current.value,
        )
    return current is SubscriberStatus.ACTIVE


def grace_expiry_note(now: datetime, grace_period_days: int) -> str:
    """Generated ``status_notes`` text written when the grace period fires."""
    return (
        f"Marked inactive on {format_display(now, DisplayStyle.LONG)} due to subscription "
        f"expiry without payment ({grace_period_days}-day grace period exceeded)"
    )


__all__ = [
    "MANUAL_STATUSES",
    "display_status",
    "days_until_expiry",
    "is_expiring_soon",
    "check_manual_toggle",
    "check_grace_expire",
    "grace_expiry_note",
]
