"""Response envelope used by every endpoint."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class ResponseError(BaseModel):
    code: int
    source: str | None = None
    title: str
    message: str


class ResponseForm(BaseModel):
    success: bool
    data: Any | None = None
    errors: list[ResponseError] = Field(default_factory=list)


def ok(data: Any = None) -> dict[str, Any]:
    """Build a success envelope for a handler return value."""
    return {"success": True, "data": data}
