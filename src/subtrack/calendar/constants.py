"""Bikram Sambat month names and display formats."""

from enum import Enum

# Index 0 is Baisakh; months are 0-indexed throughout the core API.
MONTHS_PER_YEAR = 12

NEPALI_MONTHS: tuple[str, ...] = (
    "Baisakh",
    "Jeth",
    "Ashadh",
    "Shrawan",
    "Bhadra",
    "Ashwin",
    "Kartik",
    "Mangsir",
    "Poush",
    "Magh",
    "Falgun",
    "Chaitra",
)

NEPALI_MONTHS_SHORT: tuple[str, ...] = (
    "Bai",
    "Jet",
    "Ash",
    "Shr",
    "Bhd",
    "Asw",
    "Kar",
    "Man",
    "Pou",
    "Mag",
    "Fal",
    "Cha",
)

# Longest month observed in the Bikram Sambat table.
MAX_MONTH_LENGTH = 32
MIN_MONTH_LENGTH = 29


class DisplayStyle(str, Enum):
    """Output styles for ``format_display``."""

    SHORT = "short"
    LONG = "long"
    FULL = "full"
    DATETIME = "datetime"
