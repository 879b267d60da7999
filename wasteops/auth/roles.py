"""Role-gating FastAPI dependencies.

Both guards read the principal attached by an earlier guard
(``get_current_staff`` or ``require_permissions``), so chain them after one::

    router = APIRouter(dependencies=[Depends(get_current_staff)])

    @router.get("/staff/{id}",
                dependencies=[Depends(require_owner_or_roles("admin", "route_manager"))])
    async def get_staff(...): ...
"""

from __future__ import annotations

import logging

from fastapi import Request

from wasteops.auth.deps import Principal, record_denial
from wasteops.db.models import StaffRole
from wasteops.errors import Forbidden, ServiceError, Unauthenticated

logger = logging.getLogger("wasteops.auth")


def _role_values(roles: tuple[str | StaffRole, ...]) -> tuple[str, ...]:
    return tuple(StaffRole(r).value for r in roles)


def _attached_principal(request: Request) -> Principal:
    principal = getattr(request.state, "principal", None)
    if principal is None:
        raise Unauthenticated("no authenticated principal", source="auth.role")
    return principal


def require_roles(*roles: str | StaffRole):
    """Return a dependency that passes only when the principal's role is in *roles*."""
    allowed = _role_values(roles)

    async def _check(request: Request) -> Principal:
        try:
            principal = _attached_principal(request)
            if not principal.has_role(*allowed):
                raise Forbidden(f"requires one of roles: {list(allowed)}", source="auth.role")
        except ServiceError as exc:
            record_denial(request, exc)
            raise
        return principal

    return _check


def require_owner_or_roles(*roles: str | StaffRole, param: str = "id"):
    """Like :func:`require_roles`, but the owner of path parameter *param* also passes."""
    allowed = _role_values(roles)

    async def _check(request: Request) -> Principal:
        try:
            principal = _attached_principal(request)
            if principal.has_role(*allowed):
                return principal
            try:
                target_id = int(request.path_params.get(param, ""))
            except ValueError:
                target_id = None
            if target_id != principal.staff_id:
                raise Forbidden(
                    f"requires ownership or one of roles: {list(allowed)}", source="auth.owner"
                )
        except ServiceError as exc:
            record_denial(request, exc)
            raise
        return principal

    return _check
