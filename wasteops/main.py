"""FastAPI application entry point.

``create_app(settings)`` builds a fully wired application; every piece of
process-wide state (engine, session factory, token service, rate limiter,
metrics) is created in the lifespan and kept on ``app.state``.

Run with::

    uvicorn wasteops.main:create_app --factory
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from wasteops import __version__
from wasteops.api.auth import router as auth_router
from wasteops.api.permissions import router as permissions_router
from wasteops.api.role_permissions import router as role_permissions_router
from wasteops.api.roles import router as roles_router
from wasteops.api.staff import router as staff_router
from wasteops.api.user_roles import router as user_roles_router
from wasteops.auth.deps import get_current_staff
from wasteops.auth.roles import require_roles
from wasteops.auth.tokens import TokenService
from wasteops.config import Settings
from wasteops.db.engine import build_engine, build_session_factory, create_schema
from wasteops.db.models import StaffRole
from wasteops.errors import install_error_handlers
from wasteops.services.permission_service import ensure_canonical_permissions
from wasteops.services.staff_service import ensure_default_admin
from wasteops.utils.logger import ctx_request_id, setup_logger
from wasteops.utils.metrics import MetricsCollector, to_prometheus_text
from wasteops.utils.rate_limit import RateLimiter, enforce_rate_limit

logger = logging.getLogger("wasteops")

API_PREFIX = "/api/v1"


async def _seed(app: FastAPI) -> None:
    """Create tables, then seed the permission catalog and the bootstrap admin."""
    settings: Settings = app.state.settings
    await create_schema(app.state.engine)
    async with app.state.session_factory() as db:
        await ensure_canonical_permissions(db)
        await ensure_default_admin(db, settings)
        await db.commit()


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings

    # Key material problems surface here, before the engine is opened.
    app.state.token_service = TokenService.from_settings(settings)
    app.state.metrics = MetricsCollector()
    app.state.rate_limiter = RateLimiter(
        settings.RATE_LIMIT_MAX_REQUESTS, settings.RATE_LIMIT_WINDOW_SECONDS
    )
    app.state.engine = build_engine(settings)
    app.state.session_factory = build_session_factory(app.state.engine)
    try:
        if settings.SEED_ON_STARTUP:
            await _seed(app)
        logger.info(
            "wasteops %s started (db=%s, jwt=%s)",
            __version__, settings.DB_DIALECT, app.state.token_service.algorithm,
        )
        yield
    finally:
        await app.state.engine.dispose()
        logger.info("Database engine disposed")


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or Settings()
    setup_logger(
        log_format=settings.LOG_FORMAT,
        log_level="DEBUG" if settings.DEBUG else settings.LOG_LEVEL,
    )

    app = FastAPI(
        title="wasteops",
        description="Authorization core of the waste-collection back office",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def add_request_id(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        token = ctx_request_id.set(request_id)
        try:
            response = await call_next(request)
        finally:
            ctx_request_id.reset(token)
        response.headers["X-Request-ID"] = request_id
        return response

    install_error_handlers(app)

    # Mount routers
    limited = [Depends(enforce_rate_limit)]
    app.include_router(auth_router, prefix=f"{API_PREFIX}/auth", tags=["auth"], dependencies=limited)
    app.include_router(roles_router, prefix=f"{API_PREFIX}/roles", tags=["rbac"], dependencies=limited)
    app.include_router(permissions_router, prefix=f"{API_PREFIX}/permissions", tags=["rbac"], dependencies=limited)
    app.include_router(
        role_permissions_router, prefix=f"{API_PREFIX}/role-permissions", tags=["rbac"], dependencies=limited
    )
    app.include_router(user_roles_router, prefix=f"{API_PREFIX}/user-roles", tags=["rbac"], dependencies=limited)
    app.include_router(staff_router, prefix=f"{API_PREFIX}/staff", tags=["staff"], dependencies=limited)

    @app.get("/api/health")
    async def health():
        return {"status": "ok"}

    @app.get(
        "/api/metrics",
        response_class=PlainTextResponse,
        tags=["observability"],
        dependencies=[Depends(get_current_staff), Depends(require_roles(StaffRole.ADMIN))],
    )
    async def prometheus_metrics(request: Request):
        """Prometheus text exposition of the in-process auth metrics (admin only)."""
        return to_prometheus_text(request.app.state.metrics)

    return app
