"""Staff profile endpoints (status-checked for every route)."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from wasteops.auth.catalog import PermissionAction, PermissionGroup, perm
from wasteops.auth.deps import get_current_staff, require_permissions
from wasteops.auth.roles import require_owner_or_roles
from wasteops.db.engine import get_db
from wasteops.db.models import StaffRole
from wasteops.errors import NotFound
from wasteops.schemas.auth import EffectivePermissionsOut, StaffOut
from wasteops.schemas.common import ok
from wasteops.services import permission_service, staff_service

router = APIRouter(dependencies=[Depends(get_current_staff)])


@router.get(
    "/{id}",
    summary="Staff profile (owner, admin or route manager)",
    dependencies=[Depends(require_owner_or_roles(StaffRole.ADMIN, StaffRole.ROUTE_MANAGER))],
)
async def get_staff(id: int, db: AsyncSession = Depends(get_db)):
    staff = await staff_service.get_staff_by_id(db, id)
    if staff is None:
        raise NotFound(f"staff {id} not found", source="staff.get")
    return ok(StaffOut.model_validate(staff))


@router.get(
    "/{id}/permissions",
    summary="Effective permissions of a staff member",
    dependencies=[Depends(require_permissions(perm(PermissionGroup.USER, PermissionAction.READ)))],
)
async def get_staff_permissions(id: int, request: Request, db: AsyncSession = Depends(get_db)):
    if await staff_service.get_staff_by_id(db, id) is None:
        raise NotFound(f"staff {id} not found", source="staff.permissions")
    settings = request.app.state.settings
    granted = await permission_service.resolve_effective_permissions(
        db,
        id,
        timeout_ms=settings.PERMISSION_QUERY_TIMEOUT_MS,
        retries=settings.PERMISSION_QUERY_RETRIES,
    )
    return ok(EffectivePermissionsOut(staff_id=id, permissions=sorted(granted)))
