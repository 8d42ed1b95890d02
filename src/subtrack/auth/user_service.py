"""Operator account management under the role hierarchy.

An admin may only manage staff accounts; a super_admin manages everyone.
Nobody may delete their own account or an account of equal or higher rank.
"""

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from subtrack.audit.models import ActivityType
from subtrack.audit.service import AuditService
from subtrack.auth.context import ActorContext
from subtrack.auth.models import User
from subtrack.auth.permissions import (
    Permission,
    Role,
    has_min_role,
    require_min_role,
    require_permission,
    role_rank,
)
from subtrack.clock import Clock, system_clock
from subtrack.db import get_session_factory
from subtrack.exceptions import (
    PersistenceFailure,
    Unauthorized,
    UserNotFound,
    ValidationError,
)

logger = structlog.get_logger(__name__)


class UserService:
    """Create, delete and re-role operator accounts."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        audit: AuditService | None = None,
        clock: Clock = system_clock,
    ) -> None:
        self._session_factory = session_factory
        self.audit = audit or AuditService(session_factory, clock=clock)

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory or get_session_factory()

    async def create_user(
        self,
        actor: ActorContext,
        email: str,
        role: Role | str,
        full_name: str | None = None,
    ) -> User:
        require_permission(actor, Permission.CREATE_USER)
        role = Role(role)
        if not actor.is_system and actor.role is Role.ADMIN and role is not Role.STAFF:
            raise Unauthorized(
                "Admins can only create staff accounts",
                required_role=Role.SUPER_ADMIN.value,
                actor_role=actor.role.value,
            )

        email = email.strip().lower()
        if not email:
            raise ValidationError("Email is required")

        try:
            async with self.session_factory() as session:
                async with session.begin():
                    user = User(email=email, full_name=full_name or None, role=role.value)
                    session.add(user)
                    await session.flush()
                    self.audit.add_activity(
                        session,
                        ActivityType.USER_CREATED,
                        f"Created {role.value} user: {email}",
                        user_id=actor.user_id,
                        target_table="users",
                        target_id=user.id,
                        details={"email": email, "role": role.value},
                    )
        except IntegrityError as e:
            raise ValidationError(
                f"A user with email {email} already exists", context={"email": email}
            ) from e
        except SQLAlchemyError as e:
            logger.error("user.create_failed", email=email, error=str(e))
            raise PersistenceFailure("Failed to create user", context={"email": email}) from e

        logger.info("user.created", user_id=user.id, role=role.value, actor_id=actor.user_id)
        return user

    async def delete_user(self, actor: ActorContext, user_id: str) -> None:
        require_permission(actor, Permission.DELETE_USER)
        if actor.user_id == user_id:
            raise Unauthorized("Cannot delete your own account")

        try:
            async with self.session_factory() as session:
                async with session.begin():
                    target = await session.get(User, user_id)
                    if target is None:
                        raise UserNotFound(user_id)
                    if not actor.is_system and role_rank(actor.role) <= role_rank(target.role):
                        raise Unauthorized(
                            "Cannot delete user with equal or higher role",
                            actor_role=actor.role.value,
                        )
                    email, role = target.email, target.role
                    await session.delete(target)
                    self.audit.add_activity(
                        session,
                        ActivityType.USER_DELETED,
                        f"Deleted {role} user: {email}",
                        user_id=actor.user_id,
                        target_table="users",
                        target_id=user_id,
                        details={"email": email, "role": role},
                    )
        except SQLAlchemyError as e:
            logger.error("user.delete_failed", user_id=user_id, error=str(e))
            raise PersistenceFailure("Failed to delete user", context={"user_id": user_id}) from e

        logger.info("user.deleted", user_id=user_id, actor_id=actor.user_id)

    async def update_role(self, actor: ActorContext, user_id: str, role: Role | str) -> User:
        require_min_role(actor, Role.SUPER_ADMIN)
        role = Role(role)

        try:
            async with self.session_factory() as session:
                async with session.begin():
                    user = await session.get(User, user_id)
                    if user is None:
                        raise UserNotFound(user_id)
                    previous = user.role
                    user.role = role.value
                    self.audit.add_activity(
                        session,
                        ActivityType.USER_UPDATED,
                        f"Changed role of {user.email} from {previous} to {role.value}",
                        user_id=actor.user_id,
                        target_table="users",
                        target_id=user.id,
                        details={"previous_role": previous, "role": role.value},
                    )
        except SQLAlchemyError as e:
            logger.error("user.role_update_failed", user_id=user_id, error=str(e))
            raise PersistenceFailure("Failed to update role", context={"user_id": user_id}) from e

        logger.info("user.role_updated", user_id=user_id, role=role.value)
        return user

    async def list_manageable_users(self, actor: ActorContext) -> list[User]:
        """super_admin: everyone; admin: staff only; staff: nobody."""
        if not actor.is_system and not has_min_role(actor.role, Role.ADMIN):
            return []

        query = select(User).order_by(User.created_at.desc())
        if not actor.is_system and actor.role is Role.ADMIN:
            query = query.where(User.role == Role.STAFF.value)

        async with self.session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def get_user(self, user_id: str) -> User:
        async with self.session_factory() as session:
            user = await session.get(User, user_id)
        if user is None:
            raise UserNotFound(user_id)
        return user


__all__ = ["UserService"]
