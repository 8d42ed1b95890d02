"""
SubTrack - subscription tracking for a small business.

Tracks subscribers billed monthly or annually against the Bikram Sambat
calendar, records payments for explicit billing periods, sends admin
reminders before expiry and deactivates subscribers once a grace period
after expiry has passed.
"""

__version__ = "1.0.0"


def get_version() -> str:
    """Get SubTrack version."""
    return __version__
