"""Permission catalog, the single source of truth for permission strings.

The seeder inserts exactly the permissions listed here and every
``require_permissions(...)`` declaration is checked against it when the
route is defined, so a misspelled permission fails at import time instead
of silently denying every request.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

from wasteops.db.models import StaffRole


class PermissionGroup(str, enum.Enum):
    USER = "user"
    ROLE = "role"
    PERMISSION = "permission"
    ROLE_PERMISSION = "role_permission"
    USER_ROLE = "user_role"


class PermissionAction(str, enum.Enum):
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    LIST = "list"


@dataclass(frozen=True, order=True)
class PermissionKey:
    group: str
    name: str

    def __str__(self) -> str:
        return f"{self.group}:{self.name}"


def perm(group: PermissionGroup, action: PermissionAction) -> PermissionKey:
    return PermissionKey(group.value, action.value)


CATALOG: tuple[PermissionKey, ...] = tuple(
    perm(g, a) for g in PermissionGroup for a in PermissionAction
)

_CATALOG_BY_STRING: dict[str, PermissionKey] = {str(k): k for k in CATALOG}


def parse_permission(value: str | PermissionKey) -> PermissionKey:
    """Return the catalog entry for ``group:name``; ValueError if unknown."""
    if isinstance(value, PermissionKey):
        key = value
    else:
        key = _CATALOG_BY_STRING.get(value.strip())
    if key is None or key not in _CATALOG_BY_STRING.values():
        raise ValueError(f"unknown permission {value!r}")
    return key


# ── Canonical roles ─────────────────────────────────────────────

ADMIN_ROLE = "Admin"
USER_ROLE = "User"

CANONICAL_ROLES: dict[str, tuple[PermissionKey, ...]] = {
    ADMIN_ROLE: CATALOG,
    USER_ROLE: (
        perm(PermissionGroup.USER, PermissionAction.READ),
        perm(PermissionGroup.USER, PermissionAction.LIST),
    ),
}


# ── Privilege levels ────────────────────────────────────────────
# Encoded in the token audience as "<prefix>:<level>".

ROLE_LEVELS: dict[str, int] = {
    StaffRole.CITIZEN.value: 1,
    StaffRole.COLLECTOR.value: 4,
    StaffRole.DRIVER.value: 4,
    StaffRole.ROUTE_MANAGER.value: 6,
    StaffRole.ADMIN.value: 9,
}

DEFAULT_MIN_LEVEL = 4


def level_for_role(role: str) -> int:
    return ROLE_LEVELS.get(role, 0)
