"""Credential store: staff lookup, login and password changes.

Staff rows are soft-deleted: a tombstoned row (``deleted_at`` set) is
invisible to every lookup here, so it can neither log in nor be resolved
from a still-valid token.

A bootstrap admin is seeded at startup when no staff member with
``BOOTSTRAP_ADMIN_EMAIL`` exists (default ``admin@system.com`` /
``Admin@123456``; change it in production).
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from wasteops.auth.catalog import ADMIN_ROLE
from wasteops.auth.passwords import MIN_PASSWORD_LENGTH, hash_password, verify_password
from wasteops.config import Settings
from wasteops.db.models import Staff, StaffRole, StaffStatus
from wasteops.errors import InvalidRequest, NotFound, Unauthenticated
from wasteops.services import permission_service

logger = logging.getLogger("wasteops.staff")

INVALID_CREDENTIALS = "invalid email or password"


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


# ── Lookups ───────────────────────────────────────────────────


async def get_staff_by_email(db: AsyncSession, email: str) -> Staff | None:
    result = await db.execute(
        select(Staff).where(Staff.email == normalize_email(email), Staff.deleted_at.is_(None))
    )
    return result.scalar_one_or_none()


async def get_staff_by_id(db: AsyncSession, staff_id: int) -> Staff | None:
    result = await db.execute(
        select(Staff).where(Staff.id == int(staff_id), Staff.deleted_at.is_(None))
    )
    return result.scalar_one_or_none()


# ── Writes ────────────────────────────────────────────────────


async def create_staff(
    db: AsyncSession,
    *,
    email: str,
    password: str,
    role: str = StaffRole.CITIZEN.value,
    status: str = StaffStatus.ACTIVE.value,
    prefix: str = "",
    first_name: str = "",
    last_name: str = "",
    phone: str = "",
    rounds: int = 12,
) -> Staff:
    try:
        role = StaffRole(role).value
        status = StaffStatus(status).value
    except ValueError as exc:
        raise InvalidRequest(str(exc), source="staff.create") from exc
    if len(password) < MIN_PASSWORD_LENGTH:
        raise InvalidRequest(
            f"password must be at least {MIN_PASSWORD_LENGTH} characters", source="staff.create"
        )
    try:
        password_hash = await asyncio.to_thread(hash_password, password, rounds)
    except ValueError as exc:
        raise InvalidRequest(str(exc), source="staff.create") from exc

    staff = Staff(
        email=normalize_email(email),
        password_hash=password_hash,
        role=role,
        status=status,
        prefix=prefix,
        first_name=first_name,
        last_name=last_name,
        phone=phone,
    )
    db.add(staff)
    await db.flush()
    await db.refresh(staff)
    logger.info("Created staff %d (%s) with role '%s'", staff.id, staff.email, role)
    return staff


async def save_staff(db: AsyncSession, staff: Staff) -> Staff:
    staff.updated_at = datetime.now(timezone.utc)
    db.add(staff)
    await db.flush()
    return staff


async def soft_delete_staff(db: AsyncSession, staff: Staff) -> None:
    staff.deleted_at = datetime.now(timezone.utc)
    await save_staff(db, staff)
    logger.info("Soft-deleted staff %d", staff.id)


# ── Authentication ────────────────────────────────────────────


async def authenticate(db: AsyncSession, email: str, password: str) -> Staff:
    """Verify email + password.

    Unknown email, inactive account and wrong password all raise the same
    Unauthenticated message; only the log line says which one it was.
    """
    staff = await get_staff_by_email(db, email)
    if staff is None:
        logger.info("Login rejected: unknown email %r", normalize_email(email))
        raise Unauthenticated(INVALID_CREDENTIALS, source="auth.login")
    if not staff.is_active:
        logger.warning("Login rejected: staff %d is %s", staff.id, staff.status)
        raise Unauthenticated(INVALID_CREDENTIALS, source="auth.login")
    if not await asyncio.to_thread(verify_password, password, staff.password_hash):
        logger.info("Login rejected: bad password for staff %d", staff.id)
        raise Unauthenticated(INVALID_CREDENTIALS, source="auth.login")
    return staff


async def change_password(
    db: AsyncSession,
    staff_id: int,
    old_password: str,
    new_password: str,
    *,
    rounds: int = 12,
) -> None:
    staff = await get_staff_by_id(db, staff_id)
    if staff is None:
        raise NotFound("user not found", source="auth.change_password")
    if not await asyncio.to_thread(verify_password, old_password, staff.password_hash):
        raise Unauthenticated("old password is incorrect", source="auth.change_password")
    if len(new_password or "") < MIN_PASSWORD_LENGTH:
        raise InvalidRequest(
            f"new password must be at least {MIN_PASSWORD_LENGTH} characters",
            source="auth.change_password",
        )
    try:
        staff.password_hash = await asyncio.to_thread(hash_password, new_password, rounds)
    except ValueError as exc:
        raise InvalidRequest(str(exc), source="auth.change_password") from exc
    await save_staff(db, staff)
    logger.info("Password changed for staff %d", staff.id)


# ── Seeding ───────────────────────────────────────────────────


async def ensure_default_admin(db: AsyncSession, settings: Settings) -> Staff | None:
    """Seed the bootstrap admin and grant it the Admin RBAC role.

    Returns the newly created staff row, or None when it already existed.
    """
    email = normalize_email(settings.BOOTSTRAP_ADMIN_EMAIL)
    if not email or not settings.BOOTSTRAP_ADMIN_PASSWORD:
        return None

    result = await db.execute(select(Staff).where(Staff.email == email))
    existing = result.scalar_one_or_none()
    if existing is not None:
        if existing.deleted_at is None:
            await permission_service.assign_role(db, existing.id, ADMIN_ROLE)
        return None

    admin = await create_staff(
        db,
        email=email,
        password=settings.BOOTSTRAP_ADMIN_PASSWORD,
        role=StaffRole.ADMIN.value,
        prefix="System",
        first_name="Admin",
        last_name="Default",
        phone="0000000000",
        rounds=settings.BCRYPT_ROUNDS,
    )
    await permission_service.assign_role(db, admin.id, ADMIN_ROLE)
    logger.warning(
        "Seeded default admin (email=%s). Change its password immediately in production!", email
    )
    return admin
