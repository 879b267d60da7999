"""Grants of permissions to roles.

``/role/{role_id}`` routes act on every grant of one role; the seeded
grants of the built-in roles cannot be changed.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from wasteops.auth.catalog import PermissionAction, PermissionGroup, perm
from wasteops.auth.deps import require_permissions
from wasteops.db.engine import get_db
from wasteops.schemas.common import ok
from wasteops.schemas.rbac import RemovedOut, RolePermissionIn, RolePermissionOut
from wasteops.services import role_service

router = APIRouter()


def _guard(action: PermissionAction):
    return [Depends(require_permissions(perm(PermissionGroup.ROLE_PERMISSION, action)))]


@router.get("", summary="List grants", dependencies=_guard(PermissionAction.LIST))
async def list_role_permissions(
    limit: int = Query(200, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    grants = await role_service.list_role_permissions(db, limit=limit, offset=offset)
    return ok([RolePermissionOut.from_grant(g) for g in grants])


@router.post(
    "",
    summary="Grant a permission to a role",
    status_code=status.HTTP_201_CREATED,
    dependencies=_guard(PermissionAction.CREATE),
)
async def create_role_permission(body: RolePermissionIn, db: AsyncSession = Depends(get_db)):
    grant = await role_service.grant_permission(db, body.role_id, body.permission_id)
    return ok(RolePermissionOut.from_grant(grant))


@router.get("/role/{role_id}", summary="List the grants of a role", dependencies=_guard(PermissionAction.LIST))
async def list_grants_of_role(role_id: int, db: AsyncSession = Depends(get_db)):
    grants = await role_service.list_role_permissions(db, role_id=role_id, limit=None)
    return ok([RolePermissionOut.from_grant(g) for g in grants])


@router.delete("/role/{role_id}", summary="Remove every grant of a role", dependencies=_guard(PermissionAction.DELETE))
async def clear_grants_of_role(role_id: int, db: AsyncSession = Depends(get_db)):
    removed = await role_service.clear_role_permissions(db, role_id)
    return ok(RemovedOut(removed=removed))


@router.get("/{id}", summary="Get a grant", dependencies=_guard(PermissionAction.READ))
async def get_role_permission(id: int, db: AsyncSession = Depends(get_db)):
    return ok(RolePermissionOut.from_grant(await role_service.get_role_permission(db, id)))


@router.put("/{id}", summary="Change a grant", dependencies=_guard(PermissionAction.UPDATE))
async def update_role_permission(id: int, body: RolePermissionIn, db: AsyncSession = Depends(get_db)):
    grant = await role_service.update_role_permission(db, id, body.role_id, body.permission_id)
    return ok(RolePermissionOut.from_grant(grant))


@router.delete("/{id}", summary="Revoke a grant", dependencies=_guard(PermissionAction.DELETE))
async def delete_role_permission(id: int, db: AsyncSession = Depends(get_db)):
    await role_service.delete_role_permission(db, id)
    return ok()
