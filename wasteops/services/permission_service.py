"""Permission model: effective-permission resolution, seeding and role grants.

The graph is::

    Staff ──< UserRole >── Role ──< RolePermission >── Permission(group, name)

A staff member's effective permissions are the union over all of their
roles, projected to ``"group:name"`` strings and recomputed per request.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from wasteops.auth.catalog import CANONICAL_ROLES, CATALOG
from wasteops.db.models import Permission, Role, RolePermission, Staff, UserRole
from wasteops.errors import InternalError, NotFound

logger = logging.getLogger("wasteops.rbac")


# ── Resolution ────────────────────────────────────────────────


def _effective_permissions_query(staff_id: int):
    return (
        select(Permission.group, Permission.name)
        .join(RolePermission, RolePermission.permission_id == Permission.id)
        .join(UserRole, UserRole.role_id == RolePermission.role_id)
        .join(Staff, Staff.id == UserRole.user_id)
        .where(UserRole.user_id == staff_id, Staff.deleted_at.is_(None))
        .distinct()
    )


def _is_transient(exc: Exception) -> bool:
    if isinstance(exc, OperationalError):
        return True
    return isinstance(exc, DBAPIError) and bool(exc.connection_invalidated)


async def resolve_effective_permissions(
    db: AsyncSession,
    staff_id: int,
    *,
    timeout_ms: int = 50,
    retries: int = 1,
) -> frozenset[str]:
    """Return every ``group:name`` granted to *staff_id* through its roles.

    An empty set means "no roles", not an error.  The query is bounded by
    *timeout_ms* (0 disables the bound); waiting for a pooled connection is
    not counted against it.  Transient connection failures are retried
    *retries* times.  A timeout or a persistent DB failure raises
    InternalError.
    """
    stmt = _effective_permissions_query(staff_id)
    timeout = timeout_ms / 1000 if timeout_ms and timeout_ms > 0 else None
    attempt = 0
    while True:
        try:
            await db.connection()
            result = await asyncio.wait_for(db.execute(stmt), timeout=timeout)
            return frozenset(f"{group}:{name}" for group, name in result.all())
        except asyncio.TimeoutError as exc:
            logger.error(
                "Permission lookup for staff %d exceeded %d ms", staff_id, timeout_ms
            )
            raise InternalError("permission lookup timed out", source="rbac.resolve") from exc
        except DBAPIError as exc:
            if not _is_transient(exc) or attempt >= retries:
                logger.error("Permission lookup for staff %d failed: %s", staff_id, exc)
                raise InternalError("permission lookup failed", source="rbac.resolve") from exc
            attempt += 1
            logger.warning(
                "Transient DB error resolving permissions for staff %d (attempt %d/%d): %s",
                staff_id, attempt, retries, exc,
            )
            await db.rollback()


# ── Seeding ───────────────────────────────────────────────────


@dataclass
class SeedReport:
    permissions_created: int = 0
    roles_created: int = 0
    grants_created: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.permissions_created or self.roles_created or self.grants_created)


async def ensure_canonical_permissions(db: AsyncSession) -> SeedReport:
    """Idempotently seed the catalog, the canonical roles and their grants."""
    report = SeedReport()

    result = await db.execute(select(Permission))
    by_key = {(p.group, p.name): p for p in result.scalars().all()}
    for key in CATALOG:
        if (key.group, key.name) not in by_key:
            permission = Permission(group=key.group, name=key.name)
            db.add(permission)
            by_key[(key.group, key.name)] = permission
            report.permissions_created += 1
    await db.flush()

    result = await db.execute(select(Role).where(Role.name.in_(list(CANONICAL_ROLES))))
    roles = {r.name: r for r in result.scalars().all()}
    for name in CANONICAL_ROLES:
        if name not in roles:
            role = Role(name=name)
            db.add(role)
            roles[name] = role
            report.roles_created += 1
    await db.flush()

    result = await db.execute(select(RolePermission.role_id, RolePermission.permission_id))
    existing = set(result.all())
    for name, keys in CANONICAL_ROLES.items():
        role_id = roles[name].id
        for key in keys:
            permission_id = by_key[(key.group, key.name)].id
            if (role_id, permission_id) not in existing:
                db.add(RolePermission(role_id=role_id, permission_id=permission_id))
                existing.add((role_id, permission_id))
                report.grants_created += 1
    await db.flush()

    if report.changed:
        logger.info(
            "Seeded permission catalog: %d permission(s), %d role(s), %d grant(s)",
            report.permissions_created, report.roles_created, report.grants_created,
        )
    return report


# ── Roles ─────────────────────────────────────────────────────


async def list_roles(
    db: AsyncSession, *, search: str | None = None, limit: int | None = None, offset: int = 0
) -> list[Role]:
    stmt = (
        select(Role)
        .options(selectinload(Role.role_permissions).selectinload(RolePermission.permission))
        .order_by(Role.name)
    )
    if search:
        stmt = stmt.where(Role.name.ilike(f"%{search}%"))
    result = await db.execute(stmt.limit(limit).offset(offset))
    return list(result.scalars().all())


async def get_role_by_name(db: AsyncSession, name: str) -> Role | None:
    result = await db.execute(select(Role).where(Role.name == name))
    return result.scalar_one_or_none()


async def _require_staff_and_role(db: AsyncSession, staff_id: int, role_name: str) -> Role:
    staff = await db.get(Staff, staff_id)
    if staff is None or staff.deleted_at is not None:
        raise NotFound(f"staff {staff_id} not found", source="rbac.user_role")
    role = await get_role_by_name(db, role_name)
    if role is None:
        raise NotFound(f"role '{role_name}' not found", source="rbac.user_role")
    return role


async def assign_role(db: AsyncSession, staff_id: int, role_name: str) -> UserRole:
    """Grant *role_name* to *staff_id*.  Re-assigning is a no-op."""
    role = await _require_staff_and_role(db, staff_id, role_name)
    result = await db.execute(
        select(UserRole).where(UserRole.user_id == staff_id, UserRole.role_id == role.id)
    )
    user_role = result.scalar_one_or_none()
    if user_role is not None:
        return user_role
    user_role = UserRole(user_id=staff_id, role_id=role.id)
    db.add(user_role)
    await db.flush()
    logger.info("Granted role '%s' to staff %d", role_name, staff_id)
    return user_role


async def revoke_role(db: AsyncSession, staff_id: int, role_name: str) -> bool:
    """Remove *role_name* from *staff_id*; False when it was not held."""
    role = await _require_staff_and_role(db, staff_id, role_name)
    result = await db.execute(
        select(UserRole).where(UserRole.user_id == staff_id, UserRole.role_id == role.id)
    )
    user_role = result.scalar_one_or_none()
    if user_role is None:
        return False
    await db.delete(user_role)
    await db.flush()
    logger.info("Revoked role '%s' from staff %d", role_name, staff_id)
    return True
