"""Assignments of RBAC roles to staff members."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from wasteops.auth.catalog import PermissionAction, PermissionGroup, perm
from wasteops.auth.deps import Principal, require_permissions
from wasteops.db.engine import get_db
from wasteops.schemas.common import ok
from wasteops.schemas.rbac import RemovedOut, UserRoleOut, UserRoleRecordOut, UserRoleRequest, UserRoleUpdate
from wasteops.services import permission_service, role_service

logger = logging.getLogger("wasteops.rbac")
router = APIRouter()


def _require(action: PermissionAction):
    return require_permissions(perm(PermissionGroup.USER_ROLE, action))


@router.get("", summary="List role assignments", dependencies=[Depends(_require(PermissionAction.LIST))])
async def list_user_roles(
    limit: int = Query(200, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    assignments = await role_service.list_user_roles(db, limit=limit, offset=offset)
    return ok([UserRoleRecordOut.from_assignment(a) for a in assignments])


@router.post("", summary="Grant a role to a staff member")
async def assign_user_role(
    body: UserRoleRequest,
    principal: Principal = Depends(_require(PermissionAction.CREATE)),
    db: AsyncSession = Depends(get_db),
):
    await permission_service.assign_role(db, body.user_id, body.role)
    logger.info("Staff %d granted role '%s' to staff %d", principal.staff_id, body.role, body.user_id)
    return ok(UserRoleOut(user_id=body.user_id, role=body.role, assigned=True))


@router.delete("", summary="Revoke a role from a staff member")
async def revoke_user_role(
    body: UserRoleRequest,
    principal: Principal = Depends(_require(PermissionAction.DELETE)),
    db: AsyncSession = Depends(get_db),
):
    removed = await permission_service.revoke_role(db, body.user_id, body.role)
    if removed:
        logger.info(
            "Staff %d revoked role '%s' from staff %d", principal.staff_id, body.role, body.user_id
        )
    return ok(UserRoleOut(user_id=body.user_id, role=body.role, assigned=False))


@router.get(
    "/user/{user_id}",
    summary="List the roles of a staff member",
    dependencies=[Depends(_require(PermissionAction.LIST))],
)
async def list_roles_of_user(user_id: int, db: AsyncSession = Depends(get_db)):
    assignments = await role_service.list_user_roles(db, user_id=user_id, limit=None)
    return ok([UserRoleRecordOut.from_assignment(a) for a in assignments])


@router.delete(
    "/user/{user_id}",
    summary="Revoke every role of a staff member",
    dependencies=[Depends(_require(PermissionAction.DELETE))],
)
async def clear_roles_of_user(user_id: int, db: AsyncSession = Depends(get_db)):
    removed = await role_service.clear_user_roles(db, user_id)
    return ok(RemovedOut(removed=removed))


@router.get("/{id}", summary="Get a role assignment", dependencies=[Depends(_require(PermissionAction.READ))])
async def get_user_role(id: int, db: AsyncSession = Depends(get_db)):
    return ok(UserRoleRecordOut.from_assignment(await role_service.get_user_role(db, id)))


@router.put("/{id}", summary="Move an assignment to another role", dependencies=[Depends(_require(PermissionAction.UPDATE))])
async def update_user_role(id: int, body: UserRoleUpdate, db: AsyncSession = Depends(get_db)):
    assignment = await role_service.update_user_role(db, id, body.role)
    return ok(UserRoleRecordOut.from_assignment(assignment))


@router.delete("/{id}", summary="Revoke one role assignment", dependencies=[Depends(_require(PermissionAction.DELETE))])
async def delete_user_role(id: int, db: AsyncSession = Depends(get_db)):
    await role_service.delete_user_role(db, id)
    return ok()
