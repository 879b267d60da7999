"""Tests for the credential store."""

from __future__ import annotations

import pytest

from conftest import ADMIN_EMAIL, ADMIN_PASSWORD
from wasteops.errors import InvalidRequest, NotFound, Unauthenticated
from wasteops.services import permission_service, staff_service
from wasteops.services.staff_service import INVALID_CREDENTIALS


class TestBootstrapAdmin:
    @pytest.mark.asyncio
    async def test_admin_seeded_at_startup(self, db):
        admin = await staff_service.get_staff_by_email(db, ADMIN_EMAIL)
        assert admin is not None
        assert admin.role == "admin"
        assert admin.status == "active"
        assert admin.password_hash != ADMIN_PASSWORD
        granted = await permission_service.resolve_effective_permissions(db, admin.id)
        assert "role_permission:delete" in granted

    @pytest.mark.asyncio
    async def test_second_seed_is_a_no_op(self, db, settings):
        assert await staff_service.ensure_default_admin(db, settings) is None


class TestAuthenticate:
    @pytest.mark.asyncio
    async def test_valid_credentials(self, db):
        staff = await staff_service.authenticate(db, ADMIN_EMAIL, ADMIN_PASSWORD)
        assert staff.email == ADMIN_EMAIL

    @pytest.mark.asyncio
    async def test_email_is_case_insensitive(self, db):
        staff = await staff_service.authenticate(db, "  Admin@System.COM ", ADMIN_PASSWORD)
        assert staff.email == ADMIN_EMAIL

    @pytest.mark.asyncio
    async def test_failures_share_one_message(self, db, make_staff):
        await make_staff("inactive@example.com", status="inactive", password="password123")
        attempts = [
            ("nobody@example.com", "password123"),
            (ADMIN_EMAIL, "not-the-password"),
            ("inactive@example.com", "password123"),
        ]
        messages = set()
        for email, password in attempts:
            with pytest.raises(Unauthenticated) as excinfo:
                await staff_service.authenticate(db, email, password)
            messages.add(excinfo.value.message)
        assert messages == {INVALID_CREDENTIALS}

    @pytest.mark.asyncio
    async def test_soft_deleted_staff_cannot_login(self, db, make_staff):
        created = await make_staff("leaver@example.com", password="password123")
        staff = await staff_service.get_staff_by_id(db, created.id)
        await staff_service.soft_delete_staff(db, staff)
        await db.commit()
        assert await staff_service.get_staff_by_id(db, created.id) is None
        with pytest.raises(Unauthenticated):
            await staff_service.authenticate(db, "leaver@example.com", "password123")


class TestChangePassword:
    @pytest.mark.asyncio
    async def test_change_and_login_with_new_password(self, db, make_staff):
        staff = await make_staff("changer@example.com", password="password123")
        await staff_service.change_password(db, staff.id, "password123", "n3w-password", rounds=4)
        await db.commit()
        assert (await staff_service.authenticate(db, "changer@example.com", "n3w-password")).id == staff.id
        with pytest.raises(Unauthenticated):
            await staff_service.authenticate(db, "changer@example.com", "password123")

    @pytest.mark.asyncio
    async def test_wrong_old_password(self, db, make_staff):
        staff = await make_staff("wrongold@example.com", password="password123")
        with pytest.raises(Unauthenticated):
            await staff_service.change_password(db, staff.id, "nope-nope", "n3w-password", rounds=4)

    @pytest.mark.asyncio
    async def test_new_password_too_short(self, db, make_staff):
        staff = await make_staff("short@example.com", password="password123")
        with pytest.raises(InvalidRequest, match="at least 8"):
            await staff_service.change_password(db, staff.id, "password123", "short", rounds=4)

    @pytest.mark.asyncio
    async def test_unknown_staff(self, db):
        with pytest.raises(NotFound):
            await staff_service.change_password(db, 9999, "password123", "n3w-password", rounds=4)


class TestCreateStaff:
    @pytest.mark.asyncio
    async def test_email_is_normalized(self, db):
        staff = await staff_service.create_staff(
            db, email=" New.Driver@Example.com ", password="password123", role="driver", rounds=4
        )
        assert staff.email == "new.driver@example.com"
        assert staff.status == "active"

    @pytest.mark.asyncio
    async def test_unknown_role_rejected(self, db):
        with pytest.raises(InvalidRequest):
            await staff_service.create_staff(
                db, email="x@example.com", password="password123", role="overlord", rounds=4
            )

    @pytest.mark.asyncio
    async def test_short_password_rejected(self, db):
        with pytest.raises(InvalidRequest):
            await staff_service.create_staff(db, email="y@example.com", password="short", rounds=4)
