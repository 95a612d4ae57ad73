"""
Admin actions that create staff and client identities and manage their lifecycle.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from typing import Any, Optional

from api.credential_store import CredentialStore, DuplicateIdentity
from api.login_service import public_user
from api.security import SecretHasher, fingerprint, is_hashable, is_login_code

CODE_LENGTH = 6
MAX_CODE_ATTEMPTS = 50


class IdentityError(Exception):
    """Base class for identity administration errors."""


class InvalidIdentityInput(IdentityError):
    """Raised when required fields are missing or malformed."""


class DuplicateEmail(IdentityError):
    """Raised when the email already belongs to another identity."""


class DuplicateLoginCode(IdentityError):
    """Raised when another identity already uses the login code."""


class IdentityNotFound(IdentityError):
    """Raised when the target identity does not exist."""


@dataclass(frozen=True)
class CreatedClient:
    user: dict[str, Any]
    login_code: str


def _clean(value: Optional[str]) -> Optional[str]:
    value = (value or "").strip()
    return value or None


class IdentityService:
    def __init__(self, store: CredentialStore, hasher: SecretHasher, login_code_salt: str) -> None:
        self.store = store
        self.hasher = hasher
        self.login_code_salt = login_code_salt

    def create_staff(
        self,
        first_name: str,
        family_name: str,
        email: str,
        password: str,
        phone: Optional[str] = None,
    ) -> dict[str, Any]:
        first = _clean(first_name)
        family = _clean(family_name)
        clean_email = (email or "").strip().lower()
        if not first or not family:
            raise InvalidIdentityInput("First name and family name are required")
        if not clean_email:
            raise InvalidIdentityInput("Email is required")
        if not password:
            raise InvalidIdentityInput("Password is required")
        if not is_hashable(password):
            raise InvalidIdentityInput("Password must be at most 72 bytes")
        if self.store.email_exists(clean_email):
            raise DuplicateEmail("Email already in use")

        record = self._insert(
            {
                "name": f"{first} {family}",
                "email": clean_email,
                "phone": _clean(phone),
                "role": "staff",
                "status": "active",
                "password_hash": self.hasher.hash(password),
            }
        )
        return public_user(record)

    def create_client(
        self,
        name: str,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        login_code: Optional[str] = None,
    ) -> CreatedClient:
        clean_name = _clean(name)
        if not clean_name:
            raise InvalidIdentityInput("Name is required")
        clean_email = _clean(email)
        if clean_email:
            clean_email = clean_email.lower()
            if self.store.email_exists(clean_email):
                raise DuplicateEmail("Email already in use")

        code = _clean(login_code)
        if code is None:
            code = self._generate_unique_code()
        elif not is_login_code(code):
            raise InvalidIdentityInput("Login code must be exactly 6 digits")
        code_sha = fingerprint(code, self.login_code_salt)
        if self.store.code_sha_exists(code_sha):
            raise DuplicateLoginCode("Login code already in use")

        record = self._insert(
            {
                "name": clean_name,
                "email": clean_email,
                "phone": _clean(phone),
                "role": "client",
                "status": "active",
                "login_code_sha": code_sha,
                "login_code_hash": self.hasher.hash(code),
            }
        )
        return CreatedClient(user=public_user(record), login_code=code)

    def _insert(self, record: dict[str, Any]) -> dict[str, Any]:
        # a concurrent create can still win after the existence checks
        try:
            return self.store.insert_identity(record)
        except DuplicateIdentity as exc:
            if exc.field == "email":
                raise DuplicateEmail("Email already in use") from exc
            if exc.field == "login_code_sha":
                raise DuplicateLoginCode("Login code already in use") from exc
            raise

    def archive_identity(self, identity_id: str) -> dict[str, Any]:
        return self._set_status(identity_id, "archived")

    def unarchive_identity(self, identity_id: str) -> dict[str, Any]:
        return self._set_status(identity_id, "active")

    def _set_status(self, identity_id: str, status: str) -> dict[str, Any]:
        if self.store.get_identity(identity_id) is None:
            raise IdentityNotFound("Identity not found")
        record = self.store.set_status(identity_id, status)
        if record is None:
            raise IdentityNotFound("Identity not found")
        return public_user(record)

    def _generate_unique_code(self) -> str:
        for _ in range(MAX_CODE_ATTEMPTS):
            candidate = f"{secrets.randbelow(10**CODE_LENGTH):0{CODE_LENGTH}d}"
            if not self.store.code_sha_exists(fingerprint(candidate, self.login_code_salt)):
                return candidate
        raise DuplicateLoginCode("Could not allocate a unique login code")
