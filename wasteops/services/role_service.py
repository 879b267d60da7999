"""Administration of the RBAC graph: roles, permissions, grants, assignments.

The seeded part of the graph (catalog permissions, the canonical roles and
their catalog grants) is read-only here; ``ensure_canonical_permissions``
owns it.  Everything added on top of it can be edited freely.
"""

from __future__ import annotations

import logging

from sqlalchemy import delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from wasteops.auth.catalog import CANONICAL_ROLES, CATALOG, PermissionKey
from wasteops.db.models import Permission, Role, RolePermission, Staff, UserRole
from wasteops.errors import Conflict, InvalidRequest, NotFound
from wasteops.services.permission_service import get_role_by_name

logger = logging.getLogger("wasteops.rbac")

_CATALOG_KEYS = frozenset(CATALOG)


def _key(permission: Permission) -> PermissionKey:
    return PermissionKey(permission.group, permission.name)


def is_catalog_permission(permission: Permission) -> bool:
    return _key(permission) in _CATALOG_KEYS


def is_seeded_grant(role: Role, permission: Permission) -> bool:
    return _key(permission) in CANONICAL_ROLES.get(role.name, ())


# ── Permissions ───────────────────────────────────────────────


async def list_permissions(
    db: AsyncSession, *, search: str | None = None, limit: int = 200, offset: int = 0
) -> list[Permission]:
    stmt = select(Permission).order_by(Permission.group, Permission.name)
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(or_(Permission.group.ilike(pattern), Permission.name.ilike(pattern)))
    result = await db.execute(stmt.limit(limit).offset(offset))
    return list(result.scalars().all())


async def get_permission(db: AsyncSession, permission_id: int) -> Permission:
    permission = await db.get(Permission, permission_id)
    if permission is None:
        raise NotFound(f"permission {permission_id} not found", source="rbac.permission")
    return permission


async def _ensure_permission_free(
    db: AsyncSession, group: str, name: str, *, exclude_id: int | None = None
) -> None:
    stmt = select(Permission.id).where(Permission.group == group, Permission.name == name)
    if exclude_id is not None:
        stmt = stmt.where(Permission.id != exclude_id)
    if (await db.execute(stmt)).first() is not None:
        raise Conflict(f"permission '{group}:{name}' already exists", source="rbac.permission")


async def create_permission(db: AsyncSession, group: str, name: str) -> Permission:
    await _ensure_permission_free(db, group, name)
    permission = Permission(group=group, name=name)
    db.add(permission)
    await db.flush()
    logger.info("Created permission '%s'", permission.key)
    return permission


async def update_permission(db: AsyncSession, permission_id: int, group: str, name: str) -> Permission:
    permission = await get_permission(db, permission_id)
    if is_catalog_permission(permission):
        raise InvalidRequest(
            f"catalog permission '{permission.key}' is read-only", source="rbac.permission"
        )
    await _ensure_permission_free(db, group, name, exclude_id=permission.id)
    old_key = permission.key
    permission.group = group
    permission.name = name
    await db.flush()
    logger.info("Renamed permission '%s' to '%s'", old_key, permission.key)
    return permission


async def delete_permission(db: AsyncSession, permission_id: int) -> None:
    permission = await get_permission(db, permission_id)
    if is_catalog_permission(permission):
        raise InvalidRequest(
            f"catalog permission '{permission.key}' is read-only", source="rbac.permission"
        )
    await db.delete(permission)
    await db.flush()
    logger.info("Deleted permission '%s'", permission.key)


# ── Roles ─────────────────────────────────────────────────────


def _role_query():
    return select(Role).options(
        selectinload(Role.role_permissions).selectinload(RolePermission.permission)
    )


async def get_role(db: AsyncSession, role_id: int) -> Role:
    result = await db.execute(
        _role_query().where(Role.id == role_id).execution_options(populate_existing=True)
    )
    role = result.scalar_one_or_none()
    if role is None:
        raise NotFound(f"role {role_id} not found", source="rbac.role")
    return role


def _ensure_editable_role(role: Role) -> None:
    if role.name in CANONICAL_ROLES:
        raise InvalidRequest(f"role '{role.name}' is built in", source="rbac.role")


async def create_role(db: AsyncSession, name: str) -> Role:
    if await get_role_by_name(db, name) is not None:
        raise Conflict(f"role '{name}' already exists", source="rbac.role")
    role = Role(name=name, role_permissions=[])
    db.add(role)
    await db.flush()
    logger.info("Created role '%s'", name)
    return role


async def rename_role(db: AsyncSession, role_id: int, name: str) -> Role:
    role = await get_role(db, role_id)
    _ensure_editable_role(role)
    if name in CANONICAL_ROLES:
        raise InvalidRequest(f"role name '{name}' is reserved", source="rbac.role")
    existing = await get_role_by_name(db, name)
    if existing is not None and existing.id != role.id:
        raise Conflict(f"role '{name}' already exists", source="rbac.role")
    old_name, role.name = role.name, name
    await db.flush()
    logger.info("Renamed role '%s' to '%s'", old_name, name)
    return role


async def delete_role(db: AsyncSession, role_id: int) -> None:
    role = await get_role(db, role_id)
    _ensure_editable_role(role)
    await db.delete(role)
    await db.flush()
    logger.info("Deleted role '%s'", role.name)


# ── Role → permission grants ──────────────────────────────────


def _grant_query():
    return select(RolePermission).options(
        selectinload(RolePermission.role), selectinload(RolePermission.permission)
    )


async def list_role_permissions(
    db: AsyncSession, *, role_id: int | None = None, limit: int | None = 200, offset: int = 0
) -> list[RolePermission]:
    stmt = _grant_query().order_by(RolePermission.role_id, RolePermission.permission_id)
    if role_id is not None:
        if await db.get(Role, role_id) is None:
            raise NotFound(f"role {role_id} not found", source="rbac.role_permission")
        stmt = stmt.where(RolePermission.role_id == role_id)
    result = await db.execute(stmt.limit(limit).offset(offset))
    return list(result.scalars().all())


async def get_role_permission(db: AsyncSession, grant_id: int) -> RolePermission:
    result = await db.execute(
        _grant_query().where(RolePermission.id == grant_id).execution_options(populate_existing=True)
    )
    grant = result.scalar_one_or_none()
    if grant is None:
        raise NotFound(f"role permission {grant_id} not found", source="rbac.role_permission")
    return grant


async def _grant_parts(db: AsyncSession, role_id: int, permission_id: int) -> tuple[Role, Permission]:
    role = await db.get(Role, role_id)
    if role is None:
        raise NotFound(f"role {role_id} not found", source="rbac.role_permission")
    permission = await db.get(Permission, permission_id)
    if permission is None:
        raise NotFound(f"permission {permission_id} not found", source="rbac.role_permission")
    return role, permission


async def _find_grant(db: AsyncSession, role_id: int, permission_id: int) -> RolePermission | None:
    result = await db.execute(
        select(RolePermission).where(
            RolePermission.role_id == role_id, RolePermission.permission_id == permission_id
        )
    )
    return result.scalar_one_or_none()


async def grant_permission(db: AsyncSession, role_id: int, permission_id: int) -> RolePermission:
    """Grant a permission to a role.  Re-granting returns the existing row."""
    role, permission = await _grant_parts(db, role_id, permission_id)
    existing = await _find_grant(db, role_id, permission_id)
    if existing is not None:
        return await get_role_permission(db, existing.id)
    grant = RolePermission(role=role, permission=permission)
    db.add(grant)
    await db.flush()
    logger.info("Granted '%s' to role '%s'", permission.key, role.name)
    return grant


def _ensure_editable_grant(grant: RolePermission) -> None:
    if is_seeded_grant(grant.role, grant.permission):
        raise InvalidRequest(
            f"grant of '{grant.permission.key}' to '{grant.role.name}' is built in",
            source="rbac.role_permission",
        )


async def update_role_permission(
    db: AsyncSession, grant_id: int, role_id: int, permission_id: int
) -> RolePermission:
    grant = await get_role_permission(db, grant_id)
    _ensure_editable_grant(grant)
    role, permission = await _grant_parts(db, role_id, permission_id)
    existing = await _find_grant(db, role_id, permission_id)
    if existing is not None and existing.id != grant.id:
        raise Conflict(
            f"role '{role.name}' already has '{permission.key}'", source="rbac.role_permission"
        )
    grant.role = role
    grant.permission = permission
    await db.flush()
    logger.info("Grant %d now gives '%s' to role '%s'", grant.id, permission.key, role.name)
    return grant


async def delete_role_permission(db: AsyncSession, grant_id: int) -> None:
    grant = await get_role_permission(db, grant_id)
    _ensure_editable_grant(grant)
    await db.delete(grant)
    await db.flush()
    logger.info("Revoked '%s' from role '%s'", grant.permission.key, grant.role.name)


async def clear_role_permissions(db: AsyncSession, role_id: int) -> int:
    """Remove every grant of a custom role; returns the number removed."""
    role = await db.get(Role, role_id)
    if role is None:
        raise NotFound(f"role {role_id} not found", source="rbac.role_permission")
    _ensure_editable_role(role)
    result = await db.execute(delete(RolePermission).where(RolePermission.role_id == role_id))
    await db.flush()
    logger.info("Cleared %d grant(s) from role '%s'", result.rowcount, role.name)
    return result.rowcount


# ── Staff → role assignments ──────────────────────────────────


def _assignment_query():
    return select(UserRole).options(selectinload(UserRole.role))


async def _require_staff(db: AsyncSession, staff_id: int) -> Staff:
    staff = await db.get(Staff, staff_id)
    if staff is None or staff.deleted_at is not None:
        raise NotFound(f"staff {staff_id} not found", source="rbac.user_role")
    return staff


async def list_user_roles(
    db: AsyncSession, *, user_id: int | None = None, limit: int | None = 200, offset: int = 0
) -> list[UserRole]:
    stmt = _assignment_query().order_by(UserRole.user_id, UserRole.role_id)
    if user_id is not None:
        await _require_staff(db, user_id)
        stmt = stmt.where(UserRole.user_id == user_id)
    result = await db.execute(stmt.limit(limit).offset(offset))
    return list(result.scalars().all())


async def get_user_role(db: AsyncSession, assignment_id: int) -> UserRole:
    result = await db.execute(
        _assignment_query().where(UserRole.id == assignment_id).execution_options(populate_existing=True)
    )
    assignment = result.scalar_one_or_none()
    if assignment is None:
        raise NotFound(f"user role {assignment_id} not found", source="rbac.user_role")
    return assignment


async def update_user_role(db: AsyncSession, assignment_id: int, role_name: str) -> UserRole:
    """Point an existing assignment at another role."""
    assignment = await get_user_role(db, assignment_id)
    role = await get_role_by_name(db, role_name)
    if role is None:
        raise NotFound(f"role '{role_name}' not found", source="rbac.user_role")
    if role.id == assignment.role_id:
        return assignment
    result = await db.execute(
        select(UserRole.id).where(UserRole.user_id == assignment.user_id, UserRole.role_id == role.id)
    )
    if result.first() is not None:
        raise Conflict(
            f"staff {assignment.user_id} already has role '{role_name}'", source="rbac.user_role"
        )
    old_name = assignment.role.name
    assignment.role = role
    await db.flush()
    logger.info(
        "Assignment %d of staff %d moved from '%s' to '%s'",
        assignment.id, assignment.user_id, old_name, role_name,
    )
    return assignment


async def delete_user_role(db: AsyncSession, assignment_id: int) -> None:
    assignment = await get_user_role(db, assignment_id)
    await db.delete(assignment)
    await db.flush()
    logger.info("Revoked role '%s' from staff %d", assignment.role.name, assignment.user_id)


async def clear_user_roles(db: AsyncSession, user_id: int) -> int:
    """Remove every role of a staff member; returns the number removed."""
    await _require_staff(db, user_id)
    result = await db.execute(delete(UserRole).where(UserRole.user_id == user_id))
    await db.flush()
    logger.info("Cleared %d role(s) from staff %d", result.rowcount, user_id)
    return result.rowcount
