"""Explicit caller identity passed into every core call."""

from dataclasses import dataclass

from subtrack.auth.permissions import Permission, Role, has_permission


@dataclass(frozen=True)
class ActorContext:
    """
    The authenticated caller.

    ``user_id`` is None only for the system actor (scheduler, cron trigger),
    whose audit rows are recorded without an actor.
    """

    user_id: str | None
    role: Role | None
    email: str | None = None
    is_system: bool = False

    def __post_init__(self) -> None:
        if self.role is not None and not isinstance(self.role, Role):
            object.__setattr__(self, "role", Role(self.role))

    @classmethod
    def system(cls) -> "ActorContext":
        return cls(user_id=None, role=None, email=None, is_system=True)

    @classmethod
    def for_user(cls, user) -> "ActorContext":
        """Build a context from a ``User`` row."""
        return cls(user_id=user.id, role=Role(user.role), email=user.email)

    def can(self, permission: Permission) -> bool:
        return self.is_system or has_permission(self.role, permission)


SYSTEM_ACTOR = ActorContext.system()

__all__ = ["ActorContext", "SYSTEM_ACTOR"]
