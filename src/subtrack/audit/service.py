"""
Audit service for recording and reading back activity logs.

Reads are role-scoped inside the SQL query: an admin only ever receives rows
originated by staff or by the system, and staff receive nothing.
"""

import math
from datetime import date, datetime, timedelta
from typing import Any

import structlog
from sqlalchemy import and_, desc, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from subtrack.audit.models import (
    COMMUNICATION_ACTIVITIES,
    ActivityLog,
    ActivityType,
    AuditActivityList,
    AuditActivityResponse,
    AuditFilterParams,
    LogUser,
)
from subtrack.auth.context import ActorContext
from subtrack.auth.models import User
from subtrack.auth.permissions import Permission, Role
from subtrack.calendar.adapter import day_start, local_date
from subtrack.clock import Clock, system_clock
from subtrack.db import get_session_factory, to_storage
from subtrack.exceptions import PersistenceFailure

logger = structlog.get_logger(__name__)


class AuditService:
    """Service for activity log writes and role-scoped reads."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        clock: Clock = system_clock,
    ) -> None:
        self._session_factory = session_factory
        self.clock = clock

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory or get_session_factory()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def add_activity(
        self,
        session: AsyncSession,
        activity_type: ActivityType,
        description: str,
        *,
        user_id: str | None = None,
        target_table: str | None = None,
        target_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> ActivityLog:
        """Stage an activity row in the caller's transaction."""
        activity = ActivityLog(
            user_id=user_id,
            activity_type=activity_type.value,
            description=description,
            details=details,
            target_table=target_table,
            target_id=target_id,
            created_at=to_storage(self.clock.now()),
        )
        session.add(activity)

        logger.info(
            "audit.activity_recorded",
            activity_type=activity_type.value,
            user_id=user_id,
            target_table=target_table,
            target_id=target_id,
        )
        return activity

    async def log_activity(
        self,
        activity_type: ActivityType,
        description: str,
        *,
        user_id: str | None = None,
        target_table: str | None = None,
        target_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> ActivityLog:
        """Record an activity in its own transaction."""
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    activity = self.add_activity(
                        session,
                        activity_type,
                        description,
                        user_id=user_id,
                        target_table=target_table,
                        target_id=target_id,
                        details=details,
                    )
        except SQLAlchemyError as e:
            logger.error("audit.write_failed", activity_type=activity_type.value, error=str(e))
            raise PersistenceFailure(
                "Failed to record activity", context={"activity_type": activity_type.value}
            ) from e
        return activity

    async def log_communication(
        self,
        channel: str,
        recipient: str,
        success: bool,
        *,
        subject: str | None = None,
        error: str | None = None,
        user_id: str | None = None,
    ) -> ActivityLog:
        """Record an e-mail or SMS send attempt."""
        activity_type = ActivityType.EMAIL_SENT if channel == "email" else ActivityType.SMS_SENT
        status = "sent" if success else "failed"
        details: dict[str, Any] = {"recipient": recipient, "status": status}
        if subject:
            details["subject"] = subject
        if error:
            details["error"] = error
        return await self.log_activity(
            activity_type,
            f"{channel.upper()} {status} to {recipient}",
            user_id=user_id,
            details=details,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _build_scope_conditions(self, actor: ActorContext) -> list | None:
        """Role scoping. ``None`` means the actor may not read logs at all."""
        if actor.can(Permission.VIEW_ALL_LOGS):
            conditions = []
        elif actor.can(Permission.VIEW_STAFF_LOGS):
            conditions = [or_(ActivityLog.user_id.is_(None), User.role == Role.STAFF.value)]
        else:
            return None

        if not actor.can(Permission.VIEW_COMMUNICATION_LOGS):
            conditions.append(
                ActivityLog.activity_type.not_in([a.value for a in COMMUNICATION_ACTIVITIES])
            )
        return conditions

    def _build_attribute_conditions(self, filters: AuditFilterParams) -> list:
        """Build user and activity-type filter conditions."""
        conditions = []

        if filters.user_id:
            conditions.append(ActivityLog.user_id == filters.user_id)

        if filters.activity_type:
            conditions.append(ActivityLog.activity_type == filters.activity_type.value)

        return conditions

    def _build_date_conditions(self, filters: AuditFilterParams) -> list:
        """Build date range filter conditions; the end day is included whole."""
        conditions = []

        if filters.start_date:
            start = filters.start_date
            if not isinstance(start, datetime):
                start = day_start(start)
            conditions.append(ActivityLog.created_at >= to_storage(start))

        if filters.end_date:
            end_day = _as_day(filters.end_date)
            conditions.append(ActivityLog.created_at < day_start(end_day + timedelta(days=1)))

        return conditions

    async def get_activities(
        self, actor: ActorContext, filters: AuditFilterParams | None = None
    ) -> AuditActivityList:
        """Get filtered, paginated activities visible to ``actor``, newest first."""
        filters = filters or AuditFilterParams()
        scope = self._build_scope_conditions(actor)
        if scope is None:
            logger.debug("audit.read_denied", actor_id=actor.user_id, role=actor.role)
            return AuditActivityList(
                activities=[], total=0, page=1, per_page=filters.per_page, total_pages=0
            )

        conditions = [
            *scope,
            *self._build_attribute_conditions(filters),
            *self._build_date_conditions(filters),
        ]

        query = select(ActivityLog).outerjoin(User, User.id == ActivityLog.user_id)
        if conditions:
            query = query.where(and_(*conditions))
        query = query.order_by(desc(ActivityLog.created_at))

        try:
            async with self.session_factory() as session:
                count_query = select(func.count()).select_from(query.subquery())
                total = (await session.execute(count_query)).scalar() or 0

                offset = (filters.page - 1) * filters.per_page
                result = await session.execute(query.offset(offset).limit(filters.per_page))
                activities = result.scalars().all()
        except SQLAlchemyError as e:
            logger.error("audit.read_failed", actor_id=actor.user_id, error=str(e))
            raise PersistenceFailure("Failed to read activity logs") from e

        return AuditActivityList(
            activities=[AuditActivityResponse.model_validate(a) for a in activities],
            total=total,
            page=filters.page,
            per_page=filters.per_page,
            total_pages=math.ceil(total / filters.per_page),
            has_next=offset + len(activities) < total,
            has_prev=filters.page > 1,
        )

    async def get_log_users(self, actor: ActorContext) -> list[LogUser]:
        """Distinct actors appearing in the log, scoped like ``get_activities``."""
        if actor.can(Permission.VIEW_ALL_LOGS):
            role_filter = None
        elif actor.can(Permission.VIEW_STAFF_LOGS):
            role_filter = Role.STAFF.value
        else:
            return []

        query = (
            select(User)
            .where(User.id.in_(select(ActivityLog.user_id).where(ActivityLog.user_id.is_not(None))))
            .order_by(User.full_name, User.email)
        )
        if role_filter:
            query = query.where(User.role == role_filter)

        async with self.session_factory() as session:
            result = await session.execute(query)
            return [LogUser.model_validate(user) for user in result.scalars().all()]


def _as_day(value: datetime | date) -> date:
    if isinstance(value, datetime):
        return local_date(value)
    return value


__all__ = ["AuditService"]
