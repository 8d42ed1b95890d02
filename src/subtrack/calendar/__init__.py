"""Bikram Sambat display calendar."""

from subtrack.calendar.adapter import (
    DisplayDate,
    days_between,
    format_display,
    from_display,
    day_start,
    from_display_string,
    local_date,
    month_length,
    next_month,
    start_of_day,
    to_display,
    to_display_string,
    today_display,
)
from subtrack.calendar.constants import NEPALI_MONTHS, NEPALI_MONTHS_SHORT, DisplayStyle

__all__ = [
    "DisplayDate",
    "DisplayStyle",
    "NEPALI_MONTHS",
    "NEPALI_MONTHS_SHORT",
    "days_between",
    "format_display",
    "from_display",
    "day_start",
    "from_display_string",
    "local_date",
    "month_length",
    "next_month",
    "start_of_day",
    "to_display",
    "to_display_string",
    "today_display",
]
