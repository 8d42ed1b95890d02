"""Append-only activity log."""

from subtrack.audit.models import (
    ActivityLog,
    ActivityType,
    AuditActivityList,
    AuditActivityResponse,
    AuditFilterParams,
    LogUser,
)
from subtrack.audit.service import AuditService

__all__ = [
    "ActivityLog",
    "ActivityType",
    "AuditActivityList",
    "AuditActivityResponse",
    "AuditFilterParams",
    "AuditService",
    "LogUser",
]
