"""JWT issuance and validation.

Wire contract (one claim shape for every guard)::

    sub       stringified staff id
    iss       settings.JWT_ISSUER
    iat, nbf  issue time
    exp       iat + settings.TOKEN_TTL_SECONDS (86400)
    aud       ["<JWT_LEVEL_PREFIX>:<level>"]   privilege level of the role
    staff_id  int
    email     str
    role      StaffRole value
    status    StaffStatus value

Tokens are stateless: there is no refresh token and no server-side
revocation list, so logout is client-side only.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import jwt
from cryptography.hazmat.primitives import serialization
from pydantic import BaseModel, ValidationError, field_validator

from wasteops.auth.catalog import level_for_role
from wasteops.config import Settings
from wasteops.db.models import StaffRole, StaffStatus
from wasteops.errors import InternalError, Unauthenticated

logger = logging.getLogger("wasteops.auth.tokens")

_REQUIRED_CLAIMS = ["sub", "iss", "iat", "nbf", "exp"]


class TokenClaims(BaseModel):
    """Validated, deserialized token payload."""

    sub: str
    iss: str
    iat: int
    nbf: int
    exp: int
    aud: list[str] = []
    staff_id: int
    email: str
    role: StaffRole
    status: StaffStatus

    @field_validator("aud", mode="before")
    @classmethod
    def _aud_as_list(cls, v: Any) -> list[str]:
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return list(v)


# ── Key material ───────────────────────────────────────────────


def _read_pem(inline: str | None, path: str | None) -> bytes | None:
    if inline:
        return inline.encode()
    if path and Path(path).is_file():
        return Path(path).read_bytes()
    return None


@dataclass(frozen=True)
class KeyMaterial:
    """Signing / verification keys for one algorithm.

    ``signing_key`` may be None for verify-only deployments; issuing a token
    then fails with InternalError.
    """

    algorithm: str
    signing_key: Any
    verification_key: Any

    @classmethod
    def from_settings(cls, settings: Settings) -> "KeyMaterial":
        alg = settings.JWT_ALGORITHM.upper()
        if settings.is_symmetric_jwt:
            return cls(alg, settings.JWT_SECRET, settings.JWT_SECRET)

        private_pem = _read_pem(settings.JWT_PRIVATE_KEY, settings.JWT_PRIVATE_KEY_PATH)
        public_pem = _read_pem(settings.JWT_PUBLIC_KEY, settings.JWT_PUBLIC_KEY_PATH)

        private_key = None
        if private_pem is not None:
            private_key = serialization.load_pem_private_key(private_pem, password=None)
        if public_pem is not None:
            public_key = serialization.load_pem_public_key(public_pem)
        elif private_key is not None:
            public_key = private_key.public_key()
        else:
            raise ValueError(
                f"No key material for {alg}: set JWT_PUBLIC_KEY(_PATH) "
                "or run `wasteops-keygen` to create a dev key pair"
            )
        return cls(alg, private_key, public_key)


# ── Service ────────────────────────────────────────────────────


class TokenService:
    """Mint and verify tokens.  Immutable once constructed; safe to share."""

    def __init__(
        self,
        keys: KeyMaterial,
        *,
        issuer: str,
        ttl_seconds: int = 86400,
        level_prefix: str = "level",
    ) -> None:
        self._keys = keys
        self._issuer = issuer
        self._ttl = timedelta(seconds=ttl_seconds)
        self._level_prefix = level_prefix

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenService":
        return cls(
            KeyMaterial.from_settings(settings),
            issuer=settings.JWT_ISSUER,
            ttl_seconds=settings.TOKEN_TTL_SECONDS,
            level_prefix=settings.JWT_LEVEL_PREFIX,
        )

    @property
    def algorithm(self) -> str:
        return self._keys.algorithm

    @property
    def ttl_seconds(self) -> int:
        return int(self._ttl.total_seconds())

    def issue(self, identity: Any, *, now: datetime | None = None) -> str:
        """Sign a token for *identity* (anything with id/email/role/status)."""
        now = now or datetime.now(timezone.utc)
        try:
            role = StaffRole(identity.role).value
            status = StaffStatus(identity.status).value
        except ValueError as exc:
            logger.error("Cannot issue token for staff %s: %s", identity.id, exc)
            raise InternalError("failed to generate token", source="auth.tokens") from exc
        payload = {
            "sub": str(identity.id),
            "iss": self._issuer,
            "iat": int(now.timestamp()),
            "nbf": int(now.timestamp()),
            "exp": int((now + self._ttl).timestamp()),
            "aud": [f"{self._level_prefix}:{level_for_role(role)}"],
            "staff_id": int(identity.id),
            "email": identity.email,
            "role": role,
            "status": status,
        }
        if self._keys.signing_key is None:
            raise InternalError("token signing key is not configured", source="auth.tokens")
        try:
            return jwt.encode(payload, self._keys.signing_key, algorithm=self._keys.algorithm)
        except (jwt.PyJWTError, ValueError, TypeError) as exc:
            logger.error("Token signing failed: %s", exc)
            raise InternalError("failed to generate token", source="auth.tokens") from exc

    def validate(self, token: str) -> TokenClaims:
        """Verify signature, issuer and time window; return the claims."""
        if not token:
            raise Unauthenticated("missing token", source="auth.tokens")
        try:
            payload = jwt.decode(
                token,
                self._keys.verification_key,
                algorithms=[self._keys.algorithm],
                issuer=self._issuer,
                options={"require": _REQUIRED_CLAIMS, "verify_aud": False},
            )
        except jwt.ExpiredSignatureError as exc:
            raise Unauthenticated("token expired", source="auth.tokens") from exc
        except jwt.ImmatureSignatureError as exc:
            raise Unauthenticated("token not yet valid", source="auth.tokens") from exc
        except jwt.InvalidTokenError as exc:
            logger.debug("Token rejected: %s", exc)
            raise Unauthenticated("invalid token", source="auth.tokens") from exc

        try:
            claims = TokenClaims.model_validate(payload)
        except ValidationError as exc:
            logger.debug("Token claims rejected: %s", exc)
            raise Unauthenticated("invalid token claims", source="auth.tokens") from exc
        if claims.sub != str(claims.staff_id):
            raise Unauthenticated("invalid token claims", source="auth.tokens")
        return claims
