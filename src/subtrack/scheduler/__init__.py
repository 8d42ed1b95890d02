"""Daily reminder and grace-period scheduler."""

from subtrack.scheduler.models import PassPlan, RunError, RunSummary
from subtrack.scheduler.service import ReminderScheduler, evaluate_subscribers

__all__ = [
    "PassPlan",
    "RunError",
    "RunSummary",
    "ReminderScheduler",
    "evaluate_subscribers",
]
