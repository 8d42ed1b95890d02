"""Scheduler pass plans and run summaries."""

from dataclasses import dataclass, field
from datetime import date, datetime

from pydantic import BaseModel, Field

from subtrack.communications.models import DispatchResult, NotificationBatch, NotificationEntry


@dataclass
class PassPlan:
    """Read-only decision for one day: who is reminded, who is deactivated.

    A subscriber may be in both lists when its own reminder threshold and the
    grace threshold fire on the same day.
    """

    today: date
    reminders: list[NotificationEntry] = field(default_factory=list)
    deactivations: list[NotificationEntry] = field(default_factory=list)


class RunError(BaseModel):
    """One per-subscriber or per-stage failure collected during a run."""

    stage: str
    message: str
    error_code: str | None = None
    subscriber_id: str | None = None


class RunSummary(BaseModel):
    """The only externally visible artifact of a scheduler run."""

    reminders_sent: int = 0
    deactivated_count: int = 0
    errors: list[RunError] = Field(default_factory=list)
    reminder_batch: NotificationBatch | None = None
    deactivation_batch: NotificationBatch | None = None
    dispatch_results: list[DispatchResult] = Field(default_factory=list)
    skipped: bool = False
    ran_at: datetime

    @property
    def ok(self) -> bool:
        return not self.errors and all(r.success for r in self.dispatch_results)


__all__ = ["PassPlan", "RunError", "RunSummary"]
