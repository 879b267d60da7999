"""Pydantic schemas for the auth and staff endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class LoginRequest(BaseModel):
    email: str = Field(min_length=1, max_length=256)
    password: str = Field(min_length=1)


class StaffOut(BaseModel):
    """Public staff profile; never carries the password hash."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    prefix: str
    first_name: str
    last_name: str
    email: str
    role: str
    status: str
    phone: str
    created_at: datetime | None = None
    updated_at: datetime | None = None


class LoginResponse(BaseModel):
    token: str
    token_type: str = "bearer"
    expires_in: int
    staff: StaffOut


class ChangePasswordRequest(BaseModel):
    old_password: str = Field(min_length=1)
    # Length policy is enforced by the credential store.
    new_password: str


class SessionOut(BaseModel):
    staff_id: int
    email: str
    role: str
    status: str
    level: int
    expires_at: int


class EffectivePermissionsOut(BaseModel):
    staff_id: int
    permissions: list[str]
