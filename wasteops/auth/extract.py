"""Credential extraction from request headers and token claims."""

from __future__ import annotations

from wasteops.errors import InvalidRequest, Unauthenticated


def extract_bearer_token(auth_header: str | None) -> str:
    """``Authorization: Bearer <token>``: exactly two space-separated parts."""
    parts = (auth_header or "").strip().split(" ")
    if len(parts) != 2 or parts[0] != "Bearer" or not parts[1]:
        raise Unauthenticated("Authorization: Bearer token", source="auth.extract")
    return parts[1]


def extract_socket_token(protocol_header: str | None) -> str:
    """``Sec-WebSocket-Protocol: Bearer, <token>`` used on socket upgrades."""
    parts = (protocol_header or "").split(",")
    if len(parts) < 2 or parts[0].strip() != "Bearer" or not parts[1].strip():
        raise Unauthenticated("Sec-WebSocket-Protocol: Bearer, access_token", source="auth.extract")
    return parts[1].strip()


def extract_level(aud: list[str] | None) -> int:
    """Privilege level from the first audience entry, ``"<prefix>:<level>"``."""
    if not aud:
        raise InvalidRequest("aud field mismatch", source="auth.extract")
    pieces = aud[0].split(":")
    if len(pieces) < 2:
        raise InvalidRequest("level field mismatch", source="auth.extract")
    try:
        return int(pieces[1])
    except ValueError as exc:
        raise Unauthenticated("level is not an integer", source="auth.extract") from exc
