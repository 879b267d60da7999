"""Permission administration.  Catalog entries are read-only."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from wasteops.auth.catalog import PermissionAction, PermissionGroup, perm
from wasteops.auth.deps import require_permissions
from wasteops.db.engine import get_db
from wasteops.schemas.common import ok
from wasteops.schemas.rbac import PermissionIn, PermissionOut
from wasteops.services import role_service

router = APIRouter()


def _guard(action: PermissionAction):
    return [Depends(require_permissions(perm(PermissionGroup.PERMISSION, action)))]


@router.get("", summary="List permissions", dependencies=_guard(PermissionAction.LIST))
async def list_permissions(
    search: str | None = Query(None, description="Substring of the group or name"),
    limit: int = Query(200, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    permissions = await role_service.list_permissions(db, search=search, limit=limit, offset=offset)
    return ok([PermissionOut.model_validate(p) for p in permissions])


@router.post(
    "",
    summary="Create a permission",
    status_code=status.HTTP_201_CREATED,
    dependencies=_guard(PermissionAction.CREATE),
)
async def create_permission(body: PermissionIn, db: AsyncSession = Depends(get_db)):
    permission = await role_service.create_permission(db, body.group, body.name)
    return ok(PermissionOut.model_validate(permission))


@router.get("/{id}", summary="Get a permission", dependencies=_guard(PermissionAction.READ))
async def get_permission(id: int, db: AsyncSession = Depends(get_db)):
    return ok(PermissionOut.model_validate(await role_service.get_permission(db, id)))


@router.put("/{id}", summary="Rename a permission", dependencies=_guard(PermissionAction.UPDATE))
async def update_permission(id: int, body: PermissionIn, db: AsyncSession = Depends(get_db)):
    permission = await role_service.update_permission(db, id, body.group, body.name)
    return ok(PermissionOut.model_validate(permission))


@router.delete("/{id}", summary="Delete a permission", dependencies=_guard(PermissionAction.DELETE))
async def delete_permission(id: int, db: AsyncSession = Depends(get_db)):
    await role_service.delete_permission(db, id)
    return ok()
