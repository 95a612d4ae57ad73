"""
FastAPI application exposing studio login, notifications and identity administration.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.config import AuthConfig, ConfigurationError, get_auth_config, get_notify_config
from api.credential_store import CredentialStoreError, get_credential_store
from api.identity_service import (
    DuplicateEmail,
    DuplicateLoginCode,
    IdentityError,
    IdentityNotFound,
    IdentityService,
    InvalidIdentityInput,
)
from api.login_service import handle_login
from api.security import SecretHasher
from api.session_tokens import InvalidSession, decode_session_token, parse_bearer
from api.whatsapp import handle_notify

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Souli Studio API")

ALL_METHODS = ["GET", "HEAD", "OPTIONS", "POST", "PUT", "PATCH", "DELETE"]


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code == status.HTTP_405_METHOD_NOT_ALLOWED:
        return JSONResponse({"error": "Method not allowed"}, status_code=exc.status_code)
    return JSONResponse({"error": str(exc.detail)}, status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse({"error": "Invalid request"}, status_code=status.HTTP_400_BAD_REQUEST)


async def _json_body(request: Request) -> Any:
    try:
        return await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None


def get_config() -> AuthConfig:
    try:
        return get_auth_config()
    except ConfigurationError as exc:
        logger.error("Configuration error: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Server misconfigured"
        )


def get_identity_service(config: AuthConfig = Depends(get_config)) -> IdentityService:
    store = get_credential_store(config.store_url, config.store_service_key)
    return IdentityService(store, SecretHasher(rounds=config.bcrypt_rounds), config.login_code_salt)


def _session_or_401(request: Request, config: AuthConfig) -> dict[str, Any]:
    try:
        return decode_session_token(parse_bearer(request.headers.get("Authorization")), config)
    except InvalidSession as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc))


def _admin_session_or_403(request: Request, config: AuthConfig) -> dict[str, Any]:
    session = _session_or_401(request, config)
    if session.get("app_role") != "admin":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin role required")
    return session


def _handle_error(err: IdentityError) -> HTTPException:
    if isinstance(err, IdentityNotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(err))
    if isinstance(err, (DuplicateEmail, DuplicateLoginCode)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(err))
    if isinstance(err, InvalidIdentityInput):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(err))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(err) or "Bad request")


def _store_failure(exc: CredentialStoreError) -> HTTPException:
    logger.error("Credential store failure: %s", exc)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Server error")


class StaffCreateRequest(BaseModel):
    first_name: str
    family_name: str
    email: str
    password: str
    phone: str | None = None


class ClientCreateRequest(BaseModel):
    name: str
    email: str | None = None
    phone: str | None = None
    login_code: str | None = None


@app.api_route("/api/login", methods=ALL_METHODS)
async def login(request: Request) -> JSONResponse:
    """Exchange staff credentials or a client access code for a session token."""
    body = await _json_body(request) if request.method == "POST" else None
    # bcrypt verification is slow on purpose; keep it off the event loop.
    status_code, payload = await run_in_threadpool(handle_login, request.method, body)
    return JSONResponse(payload, status_code=status_code)


@app.api_route("/api/notify", methods=ALL_METHODS)
async def notify(request: Request) -> JSONResponse:
    """Acknowledge an appointment request to the client and alert the studio admin."""
    body = await _json_body(request) if request.method == "POST" else None
    status_code, payload = await run_in_threadpool(
        handle_notify, request.method, body, config_loader=get_notify_config
    )
    return JSONResponse(payload, status_code=status_code)


@app.get("/api/session")
def current_session(request: Request, config: AuthConfig = Depends(get_config)):
    claims = _session_or_401(request, config)
    return {
        "sub": claims["sub"],
        "app_role": claims["app_role"],
        "email": claims.get("email"),
        "exp": claims["exp"],
    }


@app.post("/api/staff", status_code=status.HTTP_201_CREATED)
def create_staff(
    request: Request,
    payload: StaffCreateRequest,
    config: AuthConfig = Depends(get_config),
    service: IdentityService = Depends(get_identity_service),
):
    _admin_session_or_403(request, config)
    try:
        user = service.create_staff(
            payload.first_name, payload.family_name, payload.email, payload.password, payload.phone
        )
    except IdentityError as err:
        raise _handle_error(err)
    except CredentialStoreError as exc:
        raise _store_failure(exc)
    return {"user": user}


@app.post("/api/clients", status_code=status.HTTP_201_CREATED)
def create_client(
    request: Request,
    payload: ClientCreateRequest,
    config: AuthConfig = Depends(get_config),
    service: IdentityService = Depends(get_identity_service),
):
    """Create a client; the plain login code is returned once and never stored."""
    _admin_session_or_403(request, config)
    try:
        created = service.create_client(payload.name, payload.email, payload.phone, payload.login_code)
    except IdentityError as err:
        raise _handle_error(err)
    except CredentialStoreError as exc:
        raise _store_failure(exc)
    return {"user": created.user, "login_code": created.login_code}


@app.post("/api/identities/{identity_id}/archive")
def archive_identity(
    identity_id: str,
    request: Request,
    config: AuthConfig = Depends(get_config),
    service: IdentityService = Depends(get_identity_service),
):
    _admin_session_or_403(request, config)
    try:
        return {"user": service.archive_identity(identity_id)}
    except IdentityError as err:
        raise _handle_error(err)
    except CredentialStoreError as exc:
        raise _store_failure(exc)


@app.post("/api/identities/{identity_id}/unarchive")
def unarchive_identity(
    identity_id: str,
    request: Request,
    config: AuthConfig = Depends(get_config),
    service: IdentityService = Depends(get_identity_service),
):
    _admin_session_or_403(request, config)
    try:
        return {"user": service.unarchive_identity(identity_id)}
    except IdentityError as err:
        raise _handle_error(err)
    except CredentialStoreError as exc:
        raise _store_failure(exc)
