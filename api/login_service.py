"""
Login for staff/admin (email + password) and clients (six-digit access code).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Annotated, Any, Callable, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from api.config import AuthConfig, ConfigurationError, get_auth_config
from api.credential_store import CredentialStore, get_credential_store
from api.security import SecretHasher, fingerprint, is_login_code
from api.session_tokens import issue_session_token

logger = logging.getLogger(__name__)

PUBLIC_USER_FIELDS = ("id", "name", "email", "phone", "role", "status")


class LoginError(Exception):
    """Base class for login failures that map to a client-facing response."""

    status_code = 401
    message = "Invalid credentials"

    def public_message(self, config: AuthConfig) -> str:
        return self.message


class InvalidRequest(LoginError):
    """Raised when the request body is malformed."""

    status_code = 400

    def __init__(self, message: str = "Invalid request") -> None:
        super().__init__(message)
        self.message = message


class InvalidCredentials(LoginError):
    """Raised when the email is unknown or the password does not match."""

    message = "Invalid credentials"


class InvalidCode(LoginError):
    """Raised when the access code is unknown or does not match."""

    message = "Invalid code"


class AccountNotMigrated(LoginError):
    """Raised when the identity exists but has no hash to verify against."""

    def __init__(self, mode: str, field: str) -> None:
        super().__init__(f"Account not migrated: missing {field}")
        self.mode = mode
        self.field = field

    def public_message(self, config: AuthConfig) -> str:
        if config.expose_unmigrated_reason:
            return str(self)
        return InvalidCode.message if self.mode == "client" else InvalidCredentials.message


class StaffLogin(BaseModel):
    type: Literal["staff"]
    email: Optional[str] = None
    password: Optional[str] = None


class ClientLogin(BaseModel):
    type: Literal["client"]
    code: Optional[str] = None


LoginRequest = Annotated[Union[StaffLogin, ClientLogin], Field(discriminator="type")]
_login_request_adapter: TypeAdapter[Union[StaffLogin, ClientLogin]] = TypeAdapter(LoginRequest)


def parse_login_request(body: Any) -> Union[StaffLogin, ClientLogin]:
    if not isinstance(body, dict):
        raise InvalidRequest()
    try:
        return _login_request_adapter.validate_python(body)
    except ValidationError as exc:
        raise InvalidRequest() from exc


def public_user(identity: dict[str, Any]) -> dict[str, Any]:
    return {field: identity.get(field) for field in PUBLIC_USER_FIELDS}


@dataclass(frozen=True)
class LoginResult:
    token: str
    user: dict[str, Any]


class LoginService:
    def __init__(
        self,
        store: CredentialStore,
        config: AuthConfig,
        hasher: SecretHasher | None = None,
    ) -> None:
        self.store = store
        self.config = config
        self.hasher = hasher or SecretHasher(rounds=config.bcrypt_rounds)

    def authenticate(self, request: Union[StaffLogin, ClientLogin]) -> LoginResult:
        if isinstance(request, StaffLogin):
            identity = self._authenticate_staff(request)
        elif isinstance(request, ClientLogin):
            identity = self._authenticate_client(request)
        else:
            raise InvalidRequest()
        token = issue_session_token(identity, self.config)
        return LoginResult(token=token, user=public_user(identity))

    def _authenticate_staff(self, request: StaffLogin) -> dict[str, Any]:
        email = (request.email or "").strip().lower()
        password = request.password or ""
        if not email or not password:
            raise InvalidRequest("Missing credentials")

        identity = self.store.find_staff_by_email(email)
        if identity is None:
            raise InvalidCredentials()
        if not identity.get("password_hash"):
            raise AccountNotMigrated("staff", "password_hash")
        if not self.hasher.verify(password, identity["password_hash"]):
            raise InvalidCredentials()
        return identity

    def _authenticate_client(self, request: ClientLogin) -> dict[str, Any]:
        code = (request.code or "").strip()
        if not is_login_code(code):
            raise InvalidRequest("Invalid code format")

        identity = self.store.find_client_by_code_sha(fingerprint(code, self.config.login_code_salt))
        if identity is None:
            raise InvalidCode()
        if not identity.get("login_code_hash"):
            raise AccountNotMigrated("client", "login_code_hash")
        if not self.hasher.verify(code, identity["login_code_hash"]):
            raise InvalidCode()
        return identity


def _default_store(config: AuthConfig) -> CredentialStore:
    return get_credential_store(config.store_url, config.store_service_key)


def handle_login(
    method: str,
    body: Any,
    *,
    config_loader: Callable[[], AuthConfig] = get_auth_config,
    store_factory: Callable[[AuthConfig], CredentialStore] = _default_store,
) -> tuple[int, dict[str, Any]]:
    """
    Transport-neutral login handler returning ``(status_code, payload)``.
    Every failure is mapped to a JSON error body here; nothing propagates.
    """
    if (method or "").upper() != "POST":
        return 405, {"error": "Method not allowed"}

    try:
        config = config_loader()
    except ConfigurationError as exc:
        logger.error("Login unavailable: %s", exc)
        return 500, {"error": "Server misconfigured"}

    mode = body.get("type") if isinstance(body, dict) else None
    try:
        request = parse_login_request(body)
        result = LoginService(store_factory(config), config).authenticate(request)
    except LoginError as err:
        logger.info("Login rejected (mode=%s, reason=%s)", mode, type(err).__name__)
        return err.status_code, {"error": err.public_message(config)}
    except Exception:
        logger.exception("Login failed unexpectedly (mode=%s)", mode)
        return 500, {"error": "Server error"}

    logger.info("Login succeeded (mode=%s, user=%s)", mode, result.user["id"])
    return 200, {"token": result.token, "user": result.user}
