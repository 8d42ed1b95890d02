"""
Role permission gate.

A static capability matrix (role -> named permissions) plus a total order on
roles for coarse "at least admin" checks. The two checks are independent;
call sites pick whichever expresses their rule.
"""

from enum import Enum
from typing import TYPE_CHECKING

import structlog

from subtrack.exceptions import Unauthorized

if TYPE_CHECKING:
    from subtrack.auth.context import ActorContext

logger = structlog.get_logger(__name__)


class Role(str, Enum):
    """Operator roles, highest first."""

    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    STAFF = "staff"


class Permission(str, Enum):
    """Named capabilities checked by services."""

    # Subscribers
    VIEW_SUBSCRIBERS = "VIEW_SUBSCRIBERS"
    CREATE_SUBSCRIBER = "CREATE_SUBSCRIBER"
    UPDATE_SUBSCRIBER = "UPDATE_SUBSCRIBER"
    DELETE_SUBSCRIBER = "DELETE_SUBSCRIBER"

    # Payments
    VIEW_PAYMENTS = "VIEW_PAYMENTS"
    CREATE_PAYMENT = "CREATE_PAYMENT"
    UPDATE_PAYMENT = "UPDATE_PAYMENT"
    DELETE_PAYMENT = "DELETE_PAYMENT"

    # Operator accounts
    VIEW_USERS = "VIEW_USERS"
    CREATE_USER = "CREATE_USER"
    DELETE_USER = "DELETE_USER"

    # Activity logs
    VIEW_ALL_LOGS = "VIEW_ALL_LOGS"
    VIEW_STAFF_LOGS = "VIEW_STAFF_LOGS"
    VIEW_COMMUNICATION_LOGS = "VIEW_COMMUNICATION_LOGS"

    # System
    TEST_EMAIL = "TEST_EMAIL"
    TEST_SMS = "TEST_SMS"
    TRIGGER_CRON = "TRIGGER_CRON"
    EXPORT_DATA = "EXPORT_DATA"


ROLE_RANK: dict[Role, int] = {
    Role.SUPER_ADMIN: 3,
    Role.ADMIN: 2,
    Role.STAFF: 1,
}

_ALL = frozenset(Role)
_ADMINS = frozenset({Role.SUPER_ADMIN, Role.ADMIN})
_SUPER = frozenset({Role.SUPER_ADMIN})

PERMISSION_MATRIX: dict[Permission, frozenset[Role]] = {
    Permission.VIEW_SUBSCRIBERS: _ALL,
    Permission.CREATE_SUBSCRIBER: _ALL,
    Permission.UPDATE_SUBSCRIBER: _ADMINS,
    Permission.DELETE_SUBSCRIBER: _ADMINS,
    Permission.VIEW_PAYMENTS: _ALL,
    Permission.CREATE_PAYMENT: _ALL,
    Permission.UPDATE_PAYMENT: _ADMINS,
    Permission.DELETE_PAYMENT: _ADMINS,
    Permission.VIEW_USERS: _ADMINS,
    Permission.CREATE_USER: _ADMINS,
    Permission.DELETE_USER: _ADMINS,
    Permission.VIEW_ALL_LOGS: _SUPER,
    Permission.VIEW_STAFF_LOGS: _ADMINS,
    Permission.VIEW_COMMUNICATION_LOGS: _SUPER,
    Permission.TEST_EMAIL: _SUPER,
    Permission.TEST_SMS: _SUPER,
    Permission.TRIGGER_CRON: _SUPER,
    Permission.EXPORT_DATA: _SUPER,
}


def role_rank(role: Role | str) -> int:
    return ROLE_RANK[Role(role)]


def has_permission(role: Role | str | None, permission: Permission | str) -> bool:
    """Check the capability matrix. Unknown or missing roles have no permissions."""
    if role is None:
        return False
    try:
        role = Role(role)
    except ValueError:
        return False
    return role in PERMISSION_MATRIX[Permission(permission)]


def has_min_role(role: Role | str | None, minimum: Role | str) -> bool:
    """Check ``role_rank(role) >= role_rank(minimum)``."""
    if role is None:
        return False
    try:
        return role_rank(role) >= role_rank(minimum)
    except ValueError:
        return False


def permissions_for(role: Role | str) -> frozenset[Permission]:
    role = Role(role)
    return frozenset(p for p, roles in PERMISSION_MATRIX.items() if role in roles)


def require_permission(actor: "ActorContext", permission: Permission) -> None:
    """
    Raise ``Unauthorized`` unless the actor holds ``permission``.

    System actors hold every permission.
    """
    if actor.is_system or has_permission(actor.role, permission):
        return
    logger.warning(
        "auth.permission_denied",
        actor_id=actor.user_id,
        role=actor.role,
        permission=permission.value,
    )
    raise Unauthorized(
        f"Unauthorized: Missing permission {permission.value}",
        permission=permission.value,
        actor_role=actor.role.value if actor.role else None,
    )


def require_min_role(actor: "ActorContext", minimum: Role) -> None:
    """Raise ``Unauthorized`` unless the actor's rank is at least ``minimum``."""
    if actor.is_system or has_min_role(actor.role, minimum):
        return
    logger.warning(
        "auth.role_denied",
        actor_id=actor.user_id,
        role=actor.role,
        required_role=minimum.value,
    )
    raise Unauthorized(
        f"Unauthorized: Requires {minimum.value} or higher",
        required_role=minimum.value,
        actor_role=actor.role.value if actor.role else None,
    )


__all__ = [
    "Role",
    "Permission",
    "ROLE_RANK",
    "PERMISSION_MATRIX",
    "role_rank",
    "has_permission",
    "has_min_role",
    "permissions_for",
    "require_permission",
    "require_min_role",
]
