"""Shared fixtures for wasteops tests."""

from __future__ import annotations

import time
from types import SimpleNamespace

import jwt
import pytest
from httpx import ASGITransport, AsyncClient

from wasteops.config import Settings
from wasteops.main import create_app
from wasteops.services import permission_service, staff_service

TEST_SECRET = "test-secret-key-that-is-long-enough-for-hs256"
ADMIN_EMAIL = "admin@system.com"
ADMIN_PASSWORD = "Admin@123456"


def build_settings(tmp_path, **overrides) -> Settings:
    values = {
        "DATABASE_URL": f"sqlite+aiosqlite:///{tmp_path / 'wasteops-test.db'}",
        "JWT_ALGORITHM": "HS256",
        "JWT_SECRET": TEST_SECRET,
        "BCRYPT_ROUNDS": 4,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def identity(staff_id: int = 1, role: str = "admin", status: str = "active", email: str | None = None):
    """Staff-like object accepted by ``TokenService.issue``."""
    return SimpleNamespace(
        id=staff_id,
        email=email or f"staff{staff_id}@example.com",
        role=role,
        status=status,
    )


def token_without_audience(staff_id: int = 1, role: str = "admin", email: str = ADMIN_EMAIL) -> str:
    """A correctly signed HS256 token that carries no ``aud`` claim."""
    now = int(time.time())
    return jwt.encode(
        {
            "sub": str(staff_id),
            "iss": "waste.mysterchat.com",
            "iat": now,
            "nbf": now,
            "exp": now + 600,
            "staff_id": staff_id,
            "email": email,
            "role": role,
            "status": "active",
        },
        TEST_SECRET,
        algorithm="HS256",
    )


@pytest.fixture
def settings(tmp_path) -> Settings:
    return build_settings(tmp_path)


@pytest.fixture
async def app(settings):
    """Application with its lifespan entered (schema created, catalog seeded)."""
    application = create_app(settings)
    async with application.router.lifespan_context(application):
        yield application


@pytest.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
async def db(app):
    async with app.state.session_factory() as session:
        yield session


@pytest.fixture
def make_staff(app):
    """Create (and commit) a staff member, optionally granting RBAC roles."""

    async def _make(
        email: str,
        *,
        role: str = "driver",
        status: str = "active",
        password: str = "password123",
        rbac_roles: tuple[str, ...] = (),
    ):
        async with app.state.session_factory() as session:
            staff = await staff_service.create_staff(
                session,
                email=email,
                password=password,
                role=role,
                status=status,
                rounds=4,
            )
            for name in rbac_roles:
                await permission_service.assign_role(session, staff.id, name)
            await session.commit()
            return staff

    return _make


@pytest.fixture
def auth_headers(app):
    """Build an Authorization header for a staff row (or identity)."""

    def _headers(staff) -> dict[str, str]:
        token = app.state.token_service.issue(staff)
        return {"Authorization": f"Bearer {token}"}

    return _headers
