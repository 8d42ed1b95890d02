"""
Calendar adapter between storage instants and the Bikram Sambat display calendar.

Storage uses timezone-aware Gregorian instants. Operators pick dates and
billing periods in Bikram Sambat, whose month lengths (29-32 days) vary by
year and are read from the ``nepali_datetime`` table rather than computed.

Months are 0-indexed (0 = Baisakh) everywhere except the ``YYYY-MM-DD``
form-input strings, which use 1-indexed months.
"""

from datetime import UTC, date, datetime, time
from functools import lru_cache
from typing import NamedTuple
from zoneinfo import ZoneInfo

import nepali_datetime
import structlog

from subtrack.calendar.constants import (
    MAX_MONTH_LENGTH,
    MIN_MONTH_LENGTH,
    MONTHS_PER_YEAR,
    NEPALI_MONTHS,
    NEPALI_MONTHS_SHORT,
    DisplayStyle,
)
from subtrack.clock import Clock, system_clock
from subtrack.exceptions import InvalidCalendarDate, ValidationError
from subtrack.settings import get_settings

logger = structlog.get_logger(__name__)


class DisplayDate(NamedTuple):
    """A Bikram Sambat date with a 0-indexed month."""

    year: int
    month: int
    day: int

    @property
    def month_name(self) -> str:
        return NEPALI_MONTHS[self.month]


def display_zone() -> ZoneInfo:
    """Timezone whose midnight starts a calendar day."""
    return ZoneInfo(get_settings().calendar.timezone)


def local_date(instant: datetime) -> date:
    """Truncate an instant to its calendar day in the display timezone."""
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=UTC)
    return instant.astimezone(display_zone()).date()


def day_start(day: date) -> datetime:
    """Local midnight of a Gregorian calendar day, normalised to UTC."""
    return datetime.combine(day, time.min, tzinfo=display_zone()).astimezone(UTC)


def start_of_day(instant: datetime) -> datetime:
    """Local midnight of the day containing ``instant``, normalised to UTC."""
    return day_start(local_date(instant))


def days_between(start: datetime, end: datetime) -> int:
    """Signed whole calendar days from ``start`` to ``end``."""
    return (local_date(end) - local_date(start)).days


@lru_cache(maxsize=None)
def month_length(year: int, month: int) -> int:
    """Number of days in a display month.

    Raises:
        InvalidCalendarDate: month index or year outside the table
    """
    if not 0 <= month < MONTHS_PER_YEAR:
        raise InvalidCalendarDate(year, month, 1)

    for day in range(MAX_MONTH_LENGTH, MIN_MONTH_LENGTH - 1, -1):
        try:
            nepali_datetime.date(year, month + 1, day)
        except ValueError:
            continue
        return day

    raise InvalidCalendarDate(year, month, 1)


def next_month(year: int, month: int) -> tuple[int, int]:
    """The (year, month) after the given one, rolling Chaitra into Baisakh."""
    if month == MONTHS_PER_YEAR - 1:
        return year + 1, 0
    return year, month + 1


def to_display(instant: datetime) -> DisplayDate:
    """Convert a storage instant to the display date of its local calendar day."""
    bs = nepali_datetime.date.from_datetime_date(local_date(instant))
    return DisplayDate(bs.year, bs.month - 1, bs.day)


def from_display(year: int, month: int, day: int) -> datetime:
    """Convert a display date to the UTC instant of its local midnight.

    Raises:
        InvalidCalendarDate: day outside the resolved month length, or the
            month/year outside the table. Days are never clamped.
    """
    max_day = month_length(year, month)
    if not 1 <= day <= max_day:
        raise InvalidCalendarDate(year, month, day, max_day=max_day)

    gregorian = nepali_datetime.date(year, month + 1, day).to_datetime_date()
    return day_start(gregorian)


def today_display(clock: Clock = system_clock) -> DisplayDate:
    return to_display(clock.now())


def format_display(instant: datetime, style: DisplayStyle | str = DisplayStyle.SHORT) -> str:
    """Render an instant as e.g. ``Pou 15, 2082`` or ``Poush 15, 2082 B.S.``."""
    style = DisplayStyle(style)
    year, month, day = to_display(instant)

    if style is DisplayStyle.SHORT:
        return f"{NEPALI_MONTHS_SHORT[month]} {day}, {year}"
    if style is DisplayStyle.LONG:
        return f"{NEPALI_MONTHS[month]} {day}, {year}"
    if style is DisplayStyle.FULL:
        return f"{NEPALI_MONTHS[month]} {day}, {year} B.S."

    local = instant if instant.tzinfo else instant.replace(tzinfo=UTC)
    local = local.astimezone(display_zone())
    hour12 = local.hour % 12 or 12
    meridiem = "PM" if local.hour >= 12 else "AM"
    return f"{NEPALI_MONTHS_SHORT[month]} {day}, {year} {hour12}:{local.minute:02d} {meridiem}"


def to_display_string(instant: datetime) -> str:
    """Form-input string ``YYYY-MM-DD`` with a 1-indexed month."""
    year, month, day = to_display(instant)
    return f"{year}-{month + 1:02d}-{day:02d}"


def from_display_string(value: str) -> datetime:
    """Parse a ``YYYY-MM-DD`` form-input string (1-indexed month)."""
    try:
        year, month, day = (int(part) for part in value.strip().split("-"))
    except ValueError as e:
        logger.warning("calendar.parse_failed", value=value)
        raise ValidationError(
            f"Expected a date in YYYY-MM-DD form, got {value!r}", context={"value": value}
        ) from e
    return from_display(year, month - 1, day)


__all__ = [
    "DisplayDate",
    "display_zone",
    "local_date",
    "day_start",
    "start_of_day",
    "days_between",
    "month_length",
    "next_month",
    "to_display",
    "from_display",
    "today_display",
    "format_display",
    "to_display_string",
    "from_display_string",
]
