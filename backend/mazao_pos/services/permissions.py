"""Role hierarchy and permission checks.

admin (3) > manager (2) > cashier (1). A user qualifies for a role when their
level is at least that role's level; a check against several roles passes when
the user qualifies for any one of them.
"""

from collections.abc import Iterable

from mazao_pos.models.role import UserRole
from mazao_pos.schemas.auth import AuthUser

ROLE_HIERARCHY: dict[UserRole, int] = {
    UserRole.ADMIN: 3,
    UserRole.MANAGER: 2,
    UserRole.CASHIER: 1,
}

RoleSpec = UserRole | str | Iterable[UserRole | str]


def _as_roles(required: RoleSpec) -> list[UserRole]:
    if isinstance(required, (UserRole, str)):
        return [UserRole(required)]
    return [UserRole(role) for role in required]


def role_level(role: UserRole | str) -> int:
    return ROLE_HIERARCHY[UserRole(role)]


def has_permission(user: AuthUser | None, required: RoleSpec) -> bool:
    """Raises ValueError for an unknown role name."""
    roles = _as_roles(required)
    if user is None:
        return False
    user_level = role_level(user.role)
    return any(user_level >= ROLE_HIERARCHY[role] for role in roles)
