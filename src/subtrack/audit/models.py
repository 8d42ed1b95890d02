"""
Activity log models.

Rows are append-only: the core inserts them and never updates or deletes them.
"""

from datetime import UTC, date, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import JSON, DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from subtrack.db import Base


class ActivityType(str, Enum):
    """Closed set of audited actions."""

    # Subscribers
    SUBSCRIBER_CREATED = "SUBSCRIBER_CREATED"
    SUBSCRIBER_UPDATED = "SUBSCRIBER_UPDATED"
    SUBSCRIBER_DELETED = "SUBSCRIBER_DELETED"
    SUBSCRIBER_DEACTIVATED = "SUBSCRIBER_DEACTIVATED"

    # Payments
    PAYMENT_CREATED = "PAYMENT_CREATED"
    PAYMENT_UPDATED = "PAYMENT_UPDATED"
    PAYMENT_DELETED = "PAYMENT_DELETED"

    # Operator accounts
    USER_CREATED = "USER_CREATED"
    USER_UPDATED = "USER_UPDATED"
    USER_DELETED = "USER_DELETED"
    USER_LOGIN = "USER_LOGIN"
    USER_LOGOUT = "USER_LOGOUT"

    # Communications
    EMAIL_SENT = "EMAIL_SENT"
    SMS_SENT = "SMS_SENT"

    # System
    DATA_EXPORTED = "DATA_EXPORTED"
    CRON_TRIGGERED = "CRON_TRIGGERED"


COMMUNICATION_ACTIVITIES = frozenset({ActivityType.EMAIL_SENT, ActivityType.SMS_SENT})


class ActivityLog(Base):
    """Activity log table."""

    __tablename__ = "activity_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))

    # Who; NULL means the system or the cron trigger
    user_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)

    # What
    activity_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    details: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSON, nullable=True)

    # Where
    target_table: Mapped[str | None] = mapped_column(String(50), nullable=True)
    target_id: Mapped[str | None] = mapped_column(String(36), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC), index=True
    )

    __table_args__ = (
        Index("ix_activity_logs_user_created", "user_id", "created_at"),
        Index("ix_activity_logs_type_created", "activity_type", "created_at"),
    )


# Pydantic models for API


class AuditActivityResponse(BaseModel):
    """Model for audit activity responses."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str | None
    activity_type: str
    description: str
    details: dict[str, Any] | None
    target_table: str | None
    target_id: str | None
    created_at: datetime


class AuditActivityList(BaseModel):
    """Model for paginated audit activity lists."""

    activities: list[AuditActivityResponse]
    total: int
    page: int = 1
    per_page: int = 20
    total_pages: int = 0
    has_next: bool = False
    has_prev: bool = False


class AuditFilterParams(BaseModel):
    """Model for audit activity filtering parameters."""

    model_config = ConfigDict(str_strip_whitespace=True, validate_assignment=True, extra="forbid")

    user_id: str | None = None
    activity_type: ActivityType | None = None
    start_date: datetime | date | None = None
    # Inclusive: every row created on this calendar day matches
    end_date: datetime | date | None = None
    page: int = Field(default=1, ge=1)
    per_page: int = Field(default=20, ge=1, le=1000)


class LogUser(BaseModel):
    """An actor that appears in the activity log."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    full_name: str | None
    role: str
