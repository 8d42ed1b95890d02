"""
Notification models.

A batch aggregates every subscriber picked by one scheduler pass so each
channel receives a single message per run.
"""

import re
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class NotificationChannel(str, Enum):
    EMAIL = "email"
    SMS = "sms"


class BatchKind(str, Enum):
    """What a batch announces."""

    REMINDER = "reminder"
    DEACTIVATION = "deactivation"
    TEST = "test"


class NotificationEntry(BaseModel):
    """One subscriber line in a batch.

    ``days`` is the days until expiry for reminders and days overdue for
    deactivation notices.
    """

    model_config = ConfigDict(frozen=True)

    subscriber_id: str | None = None
    name: str
    contact: str
    days: int
    end_date: datetime


class NotificationBatch(BaseModel):
    kind: BatchKind
    entries: list[NotificationEntry] = Field(default_factory=list)

    def __len__(self) -> int:
        return len(self.entries)

    @property
    def is_empty(self) -> bool:
        return not self.entries


class DispatchResult(BaseModel):
    """Outcome of one channel send. Failures are data, never raised."""

    channel: NotificationChannel
    success: bool
    recipient: str | None = None
    error: str | None = None


class EmailMessage(BaseModel):
    """Outbound e-mail."""

    model_config = ConfigDict(str_strip_whitespace=True)

    to: list[str]
    subject: str = Field(min_length=1)
    text_body: str
    html_body: str | None = None

    @field_validator("to", mode="before")
    @classmethod
    def coerce_recipients(cls, v):
        if isinstance(v, str):
            return [v]
        return v


class SMSMessage(BaseModel):
    """Outbound SMS."""

    model_config = ConfigDict(str_strip_whitespace=True)

    to: str
    body: str = Field(min_length=1)

    @field_validator("to")
    @classmethod
    def normalize_phone(cls, v: str) -> str:
        digits = re.sub(r"[^\d+]", "", v)
        if len(digits.lstrip("+")) < 7:
            raise ValueError(f"Invalid phone number: {v}")
        return digits


__all__ = [
    "NotificationChannel",
    "BatchKind",
    "NotificationEntry",
    "NotificationBatch",
    "DispatchResult",
    "EmailMessage",
    "SMSMessage",
]
