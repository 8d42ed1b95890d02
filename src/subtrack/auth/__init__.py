"""Operator identity, roles and the permission gate."""

from subtrack.auth.context import SYSTEM_ACTOR, ActorContext
from subtrack.auth.permissions import (
    PERMISSION_MATRIX,
    Permission,
    Role,
    has_min_role,
    has_permission,
    require_min_role,
    require_permission,
    role_rank,
)

__all__ = [
    "ActorContext",
    "SYSTEM_ACTOR",
    "PERMISSION_MATRIX",
    "Permission",
    "Role",
    "has_min_role",
    "has_permission",
    "require_min_role",
    "require_permission",
    "role_rank",
]
