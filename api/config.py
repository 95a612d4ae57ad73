"""
Process configuration for the studio authentication services.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Mapping

DEFAULT_TOKEN_TTL_SECONDS = 7 * 24 * 60 * 60
DEFAULT_BCRYPT_ROUNDS = 10
TRUTHY = {"1", "true", "yes", "on"}


class ConfigurationError(Exception):
    """Raised when required process configuration is missing or malformed."""

    def __init__(self, missing: list[str], message: str | None = None) -> None:
        self.missing = missing
        super().__init__(message or f"Missing configuration: {', '.join(missing)}")


class InvalidConfiguration(ConfigurationError):
    """Raised when a configuration variable is set but cannot be parsed."""

    def __init__(self, name: str, message: str) -> None:
        super().__init__([], message)
        self.name = name


def _required(environ: Mapping[str, str], names: list[str]) -> dict[str, str]:
    values = {name: (environ.get(name) or "").strip() for name in names}
    missing = [name for name, value in values.items() if not value]
    if missing:
        raise ConfigurationError(missing)
    return values


def _int_env(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise InvalidConfiguration(name, f"{name} must be an integer, got {raw!r}") from exc


@dataclass(frozen=True)
class AuthConfig:
    store_url: str
    store_service_key: str
    jwt_secret: str
    login_code_salt: str
    token_ttl_seconds: int = DEFAULT_TOKEN_TTL_SECONDS
    bcrypt_rounds: int = DEFAULT_BCRYPT_ROUNDS
    # Return "Account not migrated" instead of the generic credential error.
    expose_unmigrated_reason: bool = False

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "AuthConfig":
        environ = os.environ if environ is None else environ
        values = _required(
            environ,
            ["SUPABASE_URL", "SUPABASE_SERVICE_ROLE_KEY", "SUPABASE_JWT_SECRET", "LOGIN_CODE_SALT"],
        )
        return cls(
            store_url=values["SUPABASE_URL"],
            store_service_key=values["SUPABASE_SERVICE_ROLE_KEY"],
            jwt_secret=values["SUPABASE_JWT_SECRET"],
            login_code_salt=values["LOGIN_CODE_SALT"],
            token_ttl_seconds=_int_env(environ, "AUTH_TOKEN_TTL_SECONDS", DEFAULT_TOKEN_TTL_SECONDS),
            bcrypt_rounds=_int_env(environ, "AUTH_BCRYPT_ROUNDS", DEFAULT_BCRYPT_ROUNDS),
            expose_unmigrated_reason=(
                environ.get("AUTH_EXPOSE_UNMIGRATED_REASON", "").strip().lower() in TRUTHY
            ),
        )


@dataclass(frozen=True)
class MigrationConfig:
    store_url: str
    store_service_key: str
    login_code_salt: str
    bcrypt_rounds: int = DEFAULT_BCRYPT_ROUNDS

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "MigrationConfig":
        environ = os.environ if environ is None else environ
        values = _required(environ, ["SUPABASE_URL", "SUPABASE_SERVICE_ROLE_KEY", "LOGIN_CODE_SALT"])
        return cls(
            store_url=values["SUPABASE_URL"],
            store_service_key=values["SUPABASE_SERVICE_ROLE_KEY"],
            login_code_salt=values["LOGIN_CODE_SALT"],
            bcrypt_rounds=_int_env(environ, "AUTH_BCRYPT_ROUNDS", DEFAULT_BCRYPT_ROUNDS),
        )


@dataclass(frozen=True)
class NotifyConfig:
    whatsapp_token: str | None
    phone_number_id: str | None
    admin_phone: str | None
    graph_version: str = "v20.0"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "NotifyConfig":
        environ = os.environ if environ is None else environ
        return cls(
            whatsapp_token=environ.get("WHATSAPP_TOKEN") or None,
            phone_number_id=environ.get("WHATSAPP_PHONE_NUMBER_ID") or None,
            admin_phone=environ.get("WHATSAPP_ADMIN_PHONE") or None,
            graph_version=environ.get("WHATSAPP_GRAPH_VERSION") or "v20.0",
        )


@lru_cache
def get_auth_config() -> AuthConfig:
    return AuthConfig.from_env()


@lru_cache
def get_notify_config() -> NotifyConfig:
    return NotifyConfig.from_env()
