"""End-to-end tests for the HTTP surface."""

from __future__ import annotations

import asyncio

import pytest
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient
from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine
from starlette.websockets import WebSocketDisconnect

from conftest import ADMIN_EMAIL, ADMIN_PASSWORD, build_settings, identity, token_without_audience
from wasteops.db.engine import build_session_factory
from wasteops.main import create_app

API = "/api/v1"


async def _login(client, email: str = ADMIN_EMAIL, password: str = ADMIN_PASSWORD) -> str:
    resp = await client.post(f"{API}/auth/login", json={"email": email, "password": password})
    assert resp.status_code == 200, resp.text
    return resp.json()["data"]["token"]


class TestHealth:
    @pytest.mark.asyncio
    async def test_health_returns_ok(self, client):
        resp = await client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}

    @pytest.mark.asyncio
    async def test_request_id_is_echoed(self, client):
        resp = await client.get("/api/health", headers={"X-Request-ID": "req-123"})
        assert resp.headers["X-Request-ID"] == "req-123"
        generated = await client.get("/api/health")
        assert generated.headers["X-Request-ID"]


class TestLogin:
    @pytest.mark.asyncio
    async def test_bootstrap_admin_login(self, app, client):
        resp = await client.post(
            f"{API}/auth/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD}
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        data = body["data"]
        assert data["expires_in"] == 86400
        assert data["staff"]["email"] == ADMIN_EMAIL
        assert "password_hash" not in data["staff"]
        claims = app.state.token_service.validate(data["token"])
        assert claims.role.value == "admin"
        assert claims.aud == ["level:9"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "email,password",
        [(ADMIN_EMAIL, "wrong-password"), ("ghost@example.com", ADMIN_PASSWORD)],
    )
    async def test_failed_login_is_generic(self, client, email, password):
        resp = await client.post(f"{API}/auth/login", json={"email": email, "password": password})
        assert resp.status_code == 401
        assert resp.headers["WWW-Authenticate"] == "Bearer"
        error = resp.json()["errors"][0]
        assert error == {
            "code": 401,
            "source": "auth.login",
            "title": "Unauthorized",
            "message": "invalid email or password",
        }

    @pytest.mark.asyncio
    async def test_inactive_account_login_is_generic(self, client, make_staff):
        await make_staff("off@example.com", status="inactive")
        resp = await client.post(
            f"{API}/auth/login", json={"email": "off@example.com", "password": "password123"}
        )
        assert resp.status_code == 401
        assert resp.json()["errors"][0]["message"] == "invalid email or password"

    @pytest.mark.asyncio
    async def test_missing_field_is_bad_request(self, client):
        resp = await client.post(f"{API}/auth/login", json={"email": ADMIN_EMAIL})
        assert resp.status_code == 400
        body = resp.json()
        assert body["success"] is False
        assert body["errors"][0]["source"] == "validation"

    @pytest.mark.asyncio
    async def test_login_outcomes_are_counted(self, app, client):
        await _login(client)
        await client.post(f"{API}/auth/login", json={"email": ADMIN_EMAIL, "password": "nope-nope"})
        metrics = app.state.metrics
        assert metrics.get_counter("auth_login_total", labels={"outcome": "success"}) == 1
        assert metrics.get_counter("auth_login_total", labels={"outcome": "failure"}) == 1


class TestMe:
    @pytest.mark.asyncio
    async def test_me_returns_profile(self, client):
        token = await _login(client)
        resp = await client.get(f"{API}/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 200
        assert resp.json()["data"]["role"] == "admin"

    @pytest.mark.asyncio
    async def test_me_without_token(self, client):
        resp = await client.get(f"{API}/auth/me")
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_me_with_non_active_token(self, client, make_staff, auth_headers):
        staff = await make_staff("leave@example.com", status="on_leave")
        resp = await client.get(f"{API}/auth/me", headers=auth_headers(staff))
        assert resp.status_code == 403
        assert resp.json()["errors"][0]["message"] == "account is not active"

    @pytest.mark.asyncio
    async def test_me_for_deleted_staff(self, client, auth_headers):
        resp = await client.get(f"{API}/auth/me", headers=auth_headers(identity(777, "driver")))
        assert resp.status_code == 404


class TestChangePassword:
    @pytest.mark.asyncio
    async def test_change_password_flow(self, client, make_staff):
        await make_staff("pw@example.com", password="password123")
        token = await _login(client, "pw@example.com", "password123")
        headers = {"Authorization": f"Bearer {token}"}

        resp = await client.put(
            f"{API}/auth/change-password",
            json={"old_password": "password123", "new_password": "brand-new-pass"},
            headers=headers,
        )
        assert resp.status_code == 200
        await _login(client, "pw@example.com", "brand-new-pass")

    @pytest.mark.asyncio
    async def test_short_new_password(self, client, make_staff, auth_headers):
        staff = await make_staff("pw2@example.com", password="password123")
        resp = await client.put(
            f"{API}/auth/change-password",
            json={"old_password": "password123", "new_password": "short"},
            headers=auth_headers(staff),
        )
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_wrong_old_password(self, client, make_staff, auth_headers):
        staff = await make_staff("pw3@example.com", password="password123")
        resp = await client.put(
            f"{API}/auth/change-password",
            json={"old_password": "not-my-password", "new_password": "brand-new-pass"},
            headers=auth_headers(staff),
        )
        assert resp.status_code == 401


class TestSession:
    @pytest.mark.asyncio
    async def test_session_via_query_token(self, client):
        token = await _login(client)
        resp = await client.get(f"{API}/auth/session", params={"token": token})
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["level"] == 9
        assert data["staff_id"] == 1

    @pytest.mark.asyncio
    async def test_session_rejects_citizen(self, client, make_staff, auth_headers):
        citizen = await make_staff("citizen@example.com", role="citizen")
        resp = await client.get(f"{API}/auth/session", headers=auth_headers(citizen))
        assert resp.status_code == 403


class TestRolesAndAssignments:
    @pytest.mark.asyncio
    async def test_admin_lists_roles(self, client):
        token = await _login(client)
        resp = await client.get(f"{API}/roles", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 200
        roles = {r["name"]: r["permissions"] for r in resp.json()["data"]}
        assert len(roles["Admin"]) == 25
        assert roles["User"] == ["user:list", "user:read"]

    @pytest.mark.asyncio
    async def test_permission_guard_accepts_query_token(self, client):
        token = await _login(client)
        resp = await client.get(f"{API}/roles", params={"token": token})
        assert resp.status_code == 200

    @pytest.mark.asyncio
    async def test_missing_permission_is_forbidden(self, client, make_staff, auth_headers):
        staff = await make_staff("plain@example.com", rbac_roles=("User",))
        resp = await client.get(f"{API}/roles", headers=auth_headers(staff))
        assert resp.status_code == 403
        assert resp.json()["errors"][0]["message"] == "need permission(s): ['role:list']"

    @pytest.mark.asyncio
    async def test_permission_guard_checks_status(self, client, make_staff, auth_headers):
        staff = await make_staff("suspended@example.com", status="inactive", rbac_roles=("Admin",))
        resp = await client.get(f"{API}/roles", headers=auth_headers(staff))
        assert resp.status_code == 403
        assert resp.json()["errors"][0]["message"] == "account is not active"

    @pytest.mark.asyncio
    async def test_token_without_audience_is_unauthenticated(self, client):
        resp = await client.get(
            f"{API}/roles", headers={"Authorization": f"Bearer {token_without_audience()}"}
        )
        assert resp.status_code == 401
        assert resp.headers["WWW-Authenticate"] == "Bearer"

    @pytest.mark.asyncio
    async def test_saturated_pool_does_not_fail_lookup(self, app, client, settings, auth_headers):
        assert settings.PERMISSION_QUERY_TIMEOUT_MS == 50
        engine = create_async_engine(settings.DATABASE_URL, pool_size=1, max_overflow=0)
        app.state.session_factory = build_session_factory(engine)
        held = asyncio.Event()

        async def hold_only_connection():
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
                held.set()
                await asyncio.sleep(0.2)

        try:
            holder = asyncio.create_task(hold_only_connection())
            await held.wait()
            resp = await client.get(
                f"{API}/roles", headers=auth_headers(identity(1, "admin", email=ADMIN_EMAIL))
            )
            await holder
        finally:
            await engine.dispose()
        assert resp.status_code == 200, resp.text

    @pytest.mark.asyncio
    async def test_grant_and_revoke_role(self, client, make_staff, auth_headers):
        admin_headers = {"Authorization": f"Bearer {await _login(client)}"}
        staff = await make_staff("promote@example.com")
        staff_headers = auth_headers(staff)

        assert (await client.get(f"{API}/roles", headers=staff_headers)).status_code == 403

        resp = await client.post(
            f"{API}/user-roles", json={"user_id": staff.id, "role": "Admin"}, headers=admin_headers
        )
        assert resp.status_code == 200
        assert resp.json()["data"] == {"user_id": staff.id, "role": "Admin", "assigned": True}
        # effective permissions are recomputed per request
        assert (await client.get(f"{API}/roles", headers=staff_headers)).status_code == 200

        resp = await client.request(
            "DELETE", f"{API}/user-roles", json={"user_id": staff.id, "role": "Admin"}, headers=admin_headers
        )
        assert resp.status_code == 200
        assert (await client.get(f"{API}/roles", headers=staff_headers)).status_code == 403

    @pytest.mark.asyncio
    async def test_grant_unknown_role(self, client):
        admin_headers = {"Authorization": f"Bearer {await _login(client)}"}
        resp = await client.post(
            f"{API}/user-roles", json={"user_id": 1, "role": "Overlord"}, headers=admin_headers
        )
        assert resp.status_code == 404


class TestStaffEndpoints:
    @pytest.mark.asyncio
    async def test_owner_reads_own_profile(self, client, make_staff, auth_headers):
        staff = await make_staff("owner@example.com")
        resp = await client.get(f"{API}/staff/{staff.id}", headers=auth_headers(staff))
        assert resp.status_code == 200
        assert resp.json()["data"]["email"] == "owner@example.com"

    @pytest.mark.asyncio
    async def test_other_profile_forbidden(self, client, make_staff, auth_headers):
        staff = await make_staff("nosy@example.com")
        resp = await client.get(f"{API}/staff/1", headers=auth_headers(staff))
        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_route_manager_reads_any_profile(self, client, make_staff, auth_headers):
        manager = await make_staff("manager@example.com", role="route_manager")
        resp = await client.get(f"{API}/staff/1", headers=auth_headers(manager))
        assert resp.status_code == 200

    @pytest.mark.asyncio
    async def test_missing_profile(self, client):
        admin_headers = {"Authorization": f"Bearer {await _login(client)}"}
        resp = await client.get(f"{API}/staff/4040", headers=admin_headers)
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_effective_permissions(self, client, make_staff):
        admin_headers = {"Authorization": f"Bearer {await _login(client)}"}
        staff = await make_staff("perm@example.com", rbac_roles=("User",))
        resp = await client.get(f"{API}/staff/{staff.id}/permissions", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json()["data"] == {"staff_id": staff.id, "permissions": ["user:list", "user:read"]}

    @pytest.mark.asyncio
    async def test_effective_permissions_requires_user_read(self, client, make_staff, auth_headers):
        staff = await make_staff("noread@example.com")
        resp = await client.get(f"{API}/staff/{staff.id}/permissions", headers=auth_headers(staff))
        assert resp.status_code == 403


class TestMetricsEndpoint:
    @pytest.mark.asyncio
    async def test_admin_scrapes_metrics(self, client):
        await client.get(f"{API}/auth/me")
        admin_headers = {"Authorization": f"Bearer {await _login(client)}"}
        resp = await client.get("/api/metrics", headers=admin_headers)
        assert resp.status_code == 200
        assert "# TYPE wasteops_auth_denied_total counter" in resp.text
        assert 'wasteops_auth_denied_total{kind="Unauthenticated"} 1' in resp.text

    @pytest.mark.asyncio
    async def test_non_admin_cannot_scrape(self, client, make_staff, auth_headers):
        manager = await make_staff("metrics@example.com", role="route_manager")
        resp = await client.get("/api/metrics", headers=auth_headers(manager))
        assert resp.status_code == 403


class TestRateLimit:
    @pytest.mark.asyncio
    async def test_requests_over_limit_are_rejected(self, tmp_path):
        app = create_app(build_settings(tmp_path, RATE_LIMIT_MAX_REQUESTS=2))
        async with app.router.lifespan_context(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as ac:
                headers = {"X-Forwarded-For": "10.0.0.1"}
                for _ in range(2):
                    resp = await ac.get(f"{API}/auth/me", headers=headers)
                    assert resp.status_code == 401
                resp = await ac.get(f"{API}/auth/me", headers=headers)
                assert resp.status_code == 429
                assert resp.json()["errors"][0]["title"] == "Too Many Requests"

                other = await ac.get(f"{API}/auth/me", headers={"X-Forwarded-For": "10.0.0.2"})
                assert other.status_code == 401
            assert app.state.metrics.get_counter("rate_limited_total") == 1


class TestSessionSocket:
    def test_socket_handshake_with_bearer_protocol(self, settings):
        app = create_app(settings)
        with TestClient(app) as tc:
            token = app.state.token_service.issue(identity(1, "admin", email=ADMIN_EMAIL))
            with tc.websocket_connect(f"{API}/auth/ws", subprotocols=["Bearer", token]) as ws:
                message = ws.receive_json()
        assert message["success"] is True
        assert message["data"]["level"] == 9

    def test_socket_handshake_rejected_without_token(self, settings):
        app = create_app(settings)
        with TestClient(app) as tc:
            with pytest.raises(WebSocketDisconnect) as excinfo:
                with tc.websocket_connect(f"{API}/auth/ws", subprotocols=["Basic", "nope"]):
                    pass
        assert excinfo.value.code == 1008
