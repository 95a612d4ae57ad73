"""
Signed session tokens handed out by the login endpoint.
"""

from __future__ import annotations

import time
from typing import Any

import jwt

from api.config import AuthConfig

ALGORITHM = "HS256"
AUTHENTICATED_ROLE = "authenticated"


class InvalidSession(Exception):
    """Raised when a presented token is missing, tampered with or expired."""


def issue_session_token(identity: dict[str, Any], config: AuthConfig, *, now: int | None = None) -> str:
    issued_at = int(time.time()) if now is None else now
    claims: dict[str, Any] = {
        "sub": str(identity["id"]),
        "role": AUTHENTICATED_ROLE,
        "app_role": identity["role"],
        "iat": issued_at,
        "exp": issued_at + config.token_ttl_seconds,
    }
    if identity["role"] != "client":
        claims["email"] = identity.get("email")
    return jwt.encode(claims, config.jwt_secret, algorithm=ALGORITHM)


def decode_session_token(token: str, config: AuthConfig) -> dict[str, Any]:
    try:
        claims = jwt.decode(
            token,
            config.jwt_secret,
            algorithms=[ALGORITHM],
            options={"require": ["sub", "exp"]},
        )
    except jwt.InvalidTokenError as exc:
        raise InvalidSession("Invalid or expired session") from exc
    if claims.get("role") != AUTHENTICATED_ROLE or not claims.get("app_role"):
        raise InvalidSession("Invalid or expired session")
    return claims


def parse_bearer(header: str | None) -> str:
    if not header:
        raise InvalidSession("Login required")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise InvalidSession("Login required")
    return token.strip()
