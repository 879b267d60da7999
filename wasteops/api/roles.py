"""Role administration.

Endpoints
---------
GET    /api/v1/roles         role:list    roles with their permission strings
POST   /api/v1/roles         role:create
GET    /api/v1/roles/{id}    role:read
PUT    /api/v1/roles/{id}    role:update  rename (custom roles only)
DELETE /api/v1/roles/{id}    role:delete  custom roles only
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from wasteops.auth.catalog import PermissionAction, PermissionGroup, perm
from wasteops.auth.deps import require_permissions
from wasteops.db.engine import get_db
from wasteops.schemas.common import ok
from wasteops.schemas.rbac import RoleIn, RoleOut
from wasteops.services import permission_service, role_service

router = APIRouter()


def _guard(action: PermissionAction):
    return [Depends(require_permissions(perm(PermissionGroup.ROLE, action)))]


@router.get("", summary="List roles with their permissions", dependencies=_guard(PermissionAction.LIST))
async def list_roles(
    search: str | None = Query(None, description="Substring of the role name"),
    limit: int = Query(200, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    roles = await permission_service.list_roles(db, search=search, limit=limit, offset=offset)
    return ok([RoleOut.from_role(role) for role in roles])


@router.post(
    "",
    summary="Create a role",
    status_code=status.HTTP_201_CREATED,
    dependencies=_guard(PermissionAction.CREATE),
)
async def create_role(body: RoleIn, db: AsyncSession = Depends(get_db)):
    role = await role_service.create_role(db, body.name)
    return ok(RoleOut.from_role(role))


@router.get("/{id}", summary="Get a role", dependencies=_guard(PermissionAction.READ))
async def get_role(id: int, db: AsyncSession = Depends(get_db)):
    return ok(RoleOut.from_role(await role_service.get_role(db, id)))


@router.put("/{id}", summary="Rename a role", dependencies=_guard(PermissionAction.UPDATE))
async def update_role(id: int, body: RoleIn, db: AsyncSession = Depends(get_db)):
    role = await role_service.rename_role(db, id, body.name)
    return ok(RoleOut.from_role(role))


@router.delete("/{id}", summary="Delete a role", dependencies=_guard(PermissionAction.DELETE))
async def delete_role(id: int, db: AsyncSession = Depends(get_db)):
    await role_service.delete_role(db, id)
    return ok()
