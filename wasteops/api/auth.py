"""Authentication API: login, identity and password endpoints.

Endpoints
---------
POST /api/v1/auth/login            email + password -> JWT
GET  /api/v1/auth/me               current staff profile (active accounts only)
PUT  /api/v1/auth/change-password  old + new password
GET  /api/v1/auth/session          token context; header or ?token= query
WS   /api/v1/auth/ws               token context over a WebSocket upgrade
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request, WebSocket
from sqlalchemy.ext.asyncio import AsyncSession

from wasteops.auth.deps import (
    Principal,
    TokenContext,
    get_current_staff,
    require_level,
    require_socket_level,
)
from wasteops.db.engine import get_db
from wasteops.errors import NotFound, Unauthenticated
from wasteops.schemas.auth import ChangePasswordRequest, LoginRequest, LoginResponse, SessionOut, StaffOut
from wasteops.schemas.common import ok
from wasteops.services import staff_service

logger = logging.getLogger("wasteops.auth")
router = APIRouter()


def _session_out(ctx: TokenContext) -> SessionOut:
    claims = ctx.claims
    return SessionOut(
        staff_id=claims.staff_id,
        email=claims.email,
        role=claims.role.value,
        status=claims.status.value,
        level=ctx.level,
        expires_at=claims.exp,
    )


@router.post("/login", summary="Login with email + password")
async def login(
    body: LoginRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    metrics = request.app.state.metrics
    try:
        staff = await staff_service.authenticate(db, body.email, body.password)
    except Unauthenticated:
        metrics.record_login("failure")
        raise

    token_service = request.app.state.token_service
    token = token_service.issue(staff)
    metrics.record_login("success")
    logger.info("Login: staff=%d role='%s'", staff.id, staff.role)
    return ok(
        LoginResponse(
            token=token,
            expires_in=token_service.ttl_seconds,
            staff=StaffOut.model_validate(staff),
        )
    )


@router.get("/me", summary="Return the current staff profile")
async def me(
    principal: Principal = Depends(get_current_staff),
    db: AsyncSession = Depends(get_db),
):
    staff = await staff_service.get_staff_by_id(db, principal.staff_id)
    if staff is None:
        raise NotFound("user not found", source="auth.me")
    return ok(StaffOut.model_validate(staff))


@router.put("/change-password", summary="Change the caller's password")
async def change_password(
    body: ChangePasswordRequest,
    request: Request,
    principal: Principal = Depends(get_current_staff),
    db: AsyncSession = Depends(get_db),
):
    await staff_service.change_password(
        db,
        principal.staff_id,
        body.old_password,
        body.new_password,
        rounds=request.app.state.settings.BCRYPT_ROUNDS,
    )
    return ok({"message": "password changed"})


@router.get("/session", summary="Describe the presented token")
async def session(ctx: TokenContext = Depends(require_level(allow_query=True))):
    return ok(_session_out(ctx))


@router.websocket("/ws")
async def session_socket(
    websocket: WebSocket,
    ctx: TokenContext = Depends(require_socket_level()),
):
    await websocket.accept(subprotocol="Bearer")
    await websocket.send_json(ok(_session_out(ctx).model_dump()))
    await websocket.close()
