from __future__ import annotations

import base64
import hashlib
import hmac
import json
import os
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from report_service.errors import unauthenticated

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class AuthConfig:
    """Caller identification settings.

    JWT verification is on as soon as any ``JWT_*`` value is set. The plain
    ``x-user-id`` header is honored only with ``AUTH_DEV_MODE`` enabled and
    JWT off; with neither, no request carries an identity.
    """

    shared_secret: str = ""
    issuer: str = ""
    audience: str = ""
    required_claims: tuple[str, ...] = ("sub", "exp")
    dev_mode: bool = False
    dev_user_header: str = "x-user-id"

    @property
    def jwt_enabled(self) -> bool:
        return bool(self.shared_secret or self.issuer or self.audience)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "AuthConfig":
        env = os.environ if environ is None else environ
        claims = tuple(x.strip() for x in str(env.get("JWT_REQUIRED_CLAIMS", "sub,exp")).split(",") if x.strip())
        return cls(
            shared_secret=str(env.get("JWT_SHARED_SECRET", "")).strip(),
            issuer=str(env.get("JWT_ISSUER", "")).strip(),
            audience=str(env.get("JWT_AUDIENCE", "")).strip(),
            required_claims=claims,
            dev_mode=str(env.get("AUTH_DEV_MODE", "")).strip().lower() in _TRUTHY,
            dev_user_header=str(env.get("AUTH_DEV_USER_HEADER", "x-user-id")).strip() or "x-user-id",
        )


def _segment(raw: str) -> bytes:
    return base64.urlsafe_b64decode(raw + "=" * (-len(raw) % 4))


def _timestamp(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


class BearerTokenVerifier:
    """HS256 verification of ``Authorization: Bearer`` tokens down to a subject."""

    def __init__(self, cfg: AuthConfig) -> None:
        self.cfg = cfg

    def subject(self, authorization: str | None) -> str:
        scheme, _, token = (authorization or "").partition(" ")
        if scheme != "Bearer" or not token.strip():
            raise unauthenticated("missing Authorization bearer token")
        claims = self._verified_claims(token.strip())
        self._check_claims(claims)
        subject = str(claims.get("sub") or "").strip()
        if not subject:
            raise unauthenticated("missing subject claim")
        return subject

    def _verified_claims(self, token: str) -> dict[str, Any]:
        try:
            header_raw, payload_raw, signature_raw = token.split(".")
            header = json.loads(_segment(header_raw))
            claims = json.loads(_segment(payload_raw))
        except ValueError:
            raise unauthenticated("invalid token format") from None
        if not isinstance(header, dict) or not isinstance(claims, dict):
            raise unauthenticated("invalid token format")
        if str(header.get("alg", "")).upper() != "HS256":
            raise unauthenticated("unsupported jwt algorithm")
        if not self.cfg.shared_secret:
            raise unauthenticated("jwt shared secret not configured")
        digest = hmac.new(
            self.cfg.shared_secret.encode("utf-8"),
            f"{header_raw}.{payload_raw}".encode("ascii"),
            hashlib.sha256,
        ).digest()
        expected = base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")
        if not hmac.compare_digest(expected, signature_raw):
            raise unauthenticated("invalid token signature")
        return claims

    def _check_claims(self, claims: dict[str, Any]) -> None:
        missing = [x for x in self.cfg.required_claims if x not in claims]
        if missing:
            raise unauthenticated(f"missing required claim: {missing[0]}")
        now = datetime.now(UTC).timestamp()
        exp = _timestamp(claims.get("exp"))
        if exp is None or exp <= now:
            raise unauthenticated("token expired")
        nbf = _timestamp(claims.get("nbf"))
        if nbf is not None and nbf > now:
            raise unauthenticated("token not yet valid")
        if self.cfg.issuer and str(claims.get("iss", "")) != self.cfg.issuer:
            raise unauthenticated("jwt issuer mismatch")
        if self.cfg.audience:
            aud = claims.get("aud")
            audiences = {str(x) for x in aud} if isinstance(aud, list) else {str(aud or "")}
            if self.cfg.audience not in audiences:
                raise unauthenticated("jwt audience mismatch")


def resolve_caller(*, headers: Mapping[str, str], cfg: AuthConfig) -> str | None:
    """Caller identity for a request, or ``None`` when there is none.

    With JWT configured the bearer token is mandatory and invalid tokens raise.
    """
    if cfg.jwt_enabled:
        return BearerTokenVerifier(cfg).subject(headers.get("Authorization"))
    if cfg.dev_mode:
        return str(headers.get(cfg.dev_user_header) or "").strip() or None
    return None
