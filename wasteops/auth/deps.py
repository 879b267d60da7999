"""FastAPI guard dependencies.

Every guard is a dependency (or a factory returning one) that either
returns an identity object or raises a :class:`~wasteops.errors.ServiceError`.
Guards are chained in order, e.g. a router-level ``get_current_staff``
followed by a route-level ``require_roles(...)``.

Guards
------
``require_level(min_level, allow_query=False)``
    Bearer header (optionally the ``token`` query parameter) → validate →
    privilege level from ``aud`` ≥ *min_level*.
``require_socket_level(min_level)``
    Same, reading ``Sec-WebSocket-Protocol: Bearer, <token>``.
``get_current_staff``
    Bearer header → validate → account must be ``active``.
``require_permissions(*perms)``
    Bearer header or ``token`` query → validate → status → effective
    permissions from the database must cover every required permission.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

from fastapi import Depends, Request, WebSocketException, status
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import HTTPConnection

from wasteops.auth.catalog import DEFAULT_MIN_LEVEL, PermissionKey, parse_permission
from wasteops.auth.extract import extract_bearer_token, extract_level, extract_socket_token
from wasteops.auth.tokens import TokenClaims, TokenService
from wasteops.db.engine import get_db
from wasteops.db.models import StaffStatus
from wasteops.errors import Forbidden, InvalidRequest, ServiceError, Unauthenticated
from wasteops.services import permission_service
from wasteops.utils.logger import ctx_staff_id

logger = logging.getLogger("wasteops.auth")


@dataclass
class TokenContext:
    """A validated token and the privilege level it carries."""

    token: str
    claims: TokenClaims
    level: int


@dataclass
class Principal:
    """Authenticated staff identity for a request."""

    staff_id: int
    email: str
    role: str
    status: str
    level: int

    def has_role(self, *roles: str) -> bool:
        return self.role in roles

    @classmethod
    def from_context(cls, ctx: TokenContext) -> "Principal":
        claims = ctx.claims
        return cls(
            staff_id=claims.staff_id,
            email=claims.email,
            role=claims.role.value,
            status=claims.status.value,
            level=ctx.level,
        )


# ── Shared helpers ────────────────────────────────────────────────────────────


def get_token_service(conn: HTTPConnection) -> TokenService:
    return conn.app.state.token_service


def record_denial(conn: HTTPConnection, exc: ServiceError) -> None:
    """Count and log an auth failure; internal errors are not denials."""
    if exc.status_code >= 500:
        return
    conn.app.state.metrics.record_denial(exc.kind)
    logger.warning(
        "Access denied (%s) on %s: %s", exc.kind, conn.url.path, exc.message
    )


def _token_from_header_or_query(conn: HTTPConnection, allow_query: bool) -> str:
    try:
        return extract_bearer_token(conn.headers.get("Authorization"))
    except Unauthenticated:
        query_token = conn.query_params.get("token") if allow_query else None
        if not query_token:
            raise
        return query_token


def _validate(conn: HTTPConnection, token: str, *, level_guard: bool = True) -> TokenContext:
    """Validate *token*; outside the level guards a bad ``aud`` is a 401."""
    claims = get_token_service(conn).validate(token)
    try:
        level = extract_level(claims.aud)
    except InvalidRequest as exc:
        if level_guard:
            raise
        raise Unauthenticated(exc.message, source=exc.source) from exc
    return TokenContext(token=token, claims=claims, level=level)


def _attach(conn: HTTPConnection, ctx: TokenContext) -> None:
    conn.state.token = ctx.token
    conn.state.claims = ctx.claims
    conn.state.level = ctx.level
    ctx_staff_id.set(ctx.claims.staff_id)


def _check_level(ctx: TokenContext, min_level: int) -> None:
    if ctx.level < min_level:
        raise Forbidden(
            f"privilege level {ctx.level} is below the required {min_level}",
            source="auth.level",
        )


def _check_status(principal: Principal) -> None:
    if principal.status != StaffStatus.ACTIVE.value:
        raise Forbidden("account is not active", source="auth.status")


# ── Level guards ──────────────────────────────────────────────────────────────


def require_level(min_level: int = DEFAULT_MIN_LEVEL, *, allow_query: bool = False):
    """Return a dependency enforcing a bearer token with level ≥ *min_level*.

    With ``allow_query=True`` the ``token`` query parameter is accepted when
    the Authorization header is absent or malformed (browser downloads).
    """

    async def _check(request: Request) -> TokenContext:
        try:
            ctx = _validate(request, _token_from_header_or_query(request, allow_query))
            _check_level(ctx, min_level)
        except ServiceError as exc:
            record_denial(request, exc)
            raise
        _attach(request, ctx)
        return ctx

    return _check


def require_socket_level(min_level: int = DEFAULT_MIN_LEVEL):
    """Level guard for WebSocket upgrades (``Sec-WebSocket-Protocol``).

    On a WebSocket connection a failure closes the handshake with policy
    violation (1008); on plain HTTP it raises the ServiceError as usual.
    """

    async def _check(conn: HTTPConnection) -> TokenContext:
        try:
            token = extract_socket_token(conn.headers.get("Sec-WebSocket-Protocol"))
            ctx = _validate(conn, token)
            _check_level(ctx, min_level)
        except ServiceError as exc:
            record_denial(conn, exc)
            if conn.scope["type"] == "websocket":
                raise WebSocketException(
                    code=status.WS_1008_POLICY_VIOLATION, reason=exc.message
                ) from exc
            raise
        _attach(conn, ctx)
        return ctx

    return _check


# ── Status-checked guard ──────────────────────────────────────────────────────


async def get_current_staff(request: Request) -> Principal:
    """Authenticate the bearer token and require an ``active`` account."""
    try:
        ctx = _validate(
            request, _token_from_header_or_query(request, allow_query=False), level_guard=False
        )
        principal = Principal.from_context(ctx)
        _check_status(principal)
    except ServiceError as exc:
        record_denial(request, exc)
        raise
    _attach(request, ctx)
    request.state.principal = principal
    return principal


# ── Permission guard ──────────────────────────────────────────────────────────


def require_permissions(*perms: str | PermissionKey):
    """Return a dependency requiring every permission in *perms*.

    Permissions are checked against the catalog here, so an unknown string
    raises ValueError when the route is declared.

    Usage::

        @router.get("/roles", dependencies=[Depends(require_permissions("role:list"))])
        async def list_roles(...): ...
    """
    if not perms:
        raise ValueError("require_permissions() needs at least one permission")
    required = [str(parse_permission(p)) for p in perms]

    async def _check(request: Request, db: AsyncSession = Depends(get_db)) -> Principal:
        settings = request.app.state.settings
        try:
            ctx = _validate(
                request, _token_from_header_or_query(request, allow_query=True), level_guard=False
            )
            principal = Principal.from_context(ctx)
            _check_status(principal)
            try:
                staff_id = int(ctx.claims.sub)
            except ValueError as exc:
                raise Unauthenticated("invalid subject", source="auth.permission") from exc

            started = time.perf_counter()
            granted = await permission_service.resolve_effective_permissions(
                db,
                staff_id,
                timeout_ms=settings.PERMISSION_QUERY_TIMEOUT_MS,
                retries=settings.PERMISSION_QUERY_RETRIES,
            )
            request.app.state.metrics.record_permission_lookup(time.perf_counter() - started)

            if not all(p in granted for p in required):
                raise Forbidden(f"need permission(s): {required}", source="auth.permission")
        except ServiceError as exc:
            record_denial(request, exc)
            raise

        _attach(request, ctx)
        request.state.principal = principal
        request.state.permissions = granted
        return principal

    return _check
