"""
Access to the ``users`` table for the credential subsystem.

Two backends share one interface: SQLite for local development and tests,
and the hosted Supabase (PostgREST) table used in production.
"""

from __future__ import annotations

import sqlite3
import uuid
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

import requests

from api.database import SQLITE_PREFIX, get_connection, init_db, sqlite_path_from_url

STAFF_ROLES = ("admin", "staff")
CLIENT_ROLE = "client"
TARGET_FIELDS = ("password_hash", "login_code_sha", "login_code_hash")
PENDING_COLUMNS = (
    "id",
    "role",
    "email",
    "password",
    "login_code",
    "password_hash",
    "login_code_hash",
    "login_code_sha",
)
UPDATABLE_COLUMNS = frozenset(
    {"name", "email", "phone", "status", "password_hash", "login_code_sha", "login_code_hash"}
)
UNIQUE_COLUMNS = ("login_code_sha", "email")
REQUEST_TIMEOUT = 10


class CredentialStoreError(Exception):
    """Raised when the backing store cannot be read or written."""


class DuplicateIdentity(CredentialStoreError):
    """Raised when an insert collides with a unique column."""

    def __init__(self, field: Optional[str], message: str) -> None:
        super().__init__(message)
        self.field = field


def _duplicate_field(detail: str) -> Optional[str]:
    for field in UNIQUE_COLUMNS:
        if field in detail:
            return field
    return None


class CredentialStore:
    """Interface used by the login, migration and identity services."""

    def find_staff_by_email(self, email: str) -> Optional[dict[str, Any]]:
        raise NotImplementedError

    def find_client_by_code_sha(self, code_sha: str) -> Optional[dict[str, Any]]:
        raise NotImplementedError

    def fetch_pending(self, offset: int, limit: int) -> list[dict[str, Any]]:
        """Rows missing at least one hash or fingerprint field, ordered by id."""
        raise NotImplementedError

    def update_identity(self, identity_id: str, patch: dict[str, Any]) -> None:
        raise NotImplementedError

    def insert_identity(self, record: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    def get_identity(self, identity_id: str) -> Optional[dict[str, Any]]:
        raise NotImplementedError

    def email_exists(self, email: str) -> bool:
        raise NotImplementedError

    def code_sha_exists(self, code_sha: str) -> bool:
        raise NotImplementedError

    def set_status(self, identity_id: str, status: str) -> Optional[dict[str, Any]]:
        self.update_identity(identity_id, {"status": status})
        return self.get_identity(identity_id)


def _check_patch(patch: dict[str, Any]) -> None:
    unknown = set(patch) - UPDATABLE_COLUMNS
    if unknown:
        raise CredentialStoreError(f"Refusing to update columns: {', '.join(sorted(unknown))}")


class SqliteCredentialStore(CredentialStore):
    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        init_db(db_path)

    def _one(self, query: str, params: tuple) -> Optional[dict[str, Any]]:
        try:
            with get_connection(self.db_path) as conn:
                rows = conn.execute(query, params).fetchall()
        except sqlite3.Error as exc:
            raise CredentialStoreError(f"Lookup failed: {exc}") from exc
        # More than one match is ambiguous and never authenticates anyone.
        if len(rows) != 1:
            return None
        return dict(rows[0])

    def find_staff_by_email(self, email: str) -> Optional[dict[str, Any]]:
        return self._one(
            "SELECT * FROM users WHERE email = ? AND role IN (?, ?) LIMIT 2",
            (email, *STAFF_ROLES),
        )

    def find_client_by_code_sha(self, code_sha: str) -> Optional[dict[str, Any]]:
        return self._one(
            "SELECT * FROM users WHERE role = ? AND login_code_sha = ? LIMIT 2",
            (CLIENT_ROLE, code_sha),
        )

    def fetch_pending(self, offset: int, limit: int) -> list[dict[str, Any]]:
        try:
            with get_connection(self.db_path) as conn:
                rows = conn.execute(
                    f"""
                    SELECT {", ".join(PENDING_COLUMNS)} FROM users
                    WHERE password_hash IS NULL OR login_code_hash IS NULL OR login_code_sha IS NULL
                    ORDER BY id
                    LIMIT ? OFFSET ?
                    """,
                    (limit, offset),
                ).fetchall()
        except sqlite3.Error as exc:
            raise CredentialStoreError(f"Fetch failed: {exc}") from exc
        return [dict(row) for row in rows]

    def update_identity(self, identity_id: str, patch: dict[str, Any]) -> None:
        _check_patch(patch)
        if not patch:
            return
        assignments = ", ".join(f"{column} = ?" for column in patch)
        try:
            with get_connection(self.db_path) as conn:
                conn.execute(
                    f"UPDATE users SET {assignments} WHERE id = ?",
                    (*patch.values(), identity_id),
                )
                conn.commit()
        except sqlite3.Error as exc:
            raise CredentialStoreError(f"Update failed for {identity_id}: {exc}") from exc

    def insert_identity(self, record: dict[str, Any]) -> dict[str, Any]:
        record = {"id": str(uuid.uuid4()), **record}
        columns = ", ".join(record)
        placeholders = ", ".join("?" for _ in record)
        try:
            with get_connection(self.db_path) as conn:
                conn.execute(
                    f"INSERT INTO users ({columns}) VALUES ({placeholders})",
                    tuple(record.values()),
                )
                conn.commit()
        except sqlite3.IntegrityError as exc:
            raise DuplicateIdentity(_duplicate_field(str(exc)), f"Insert failed: {exc}") from exc
        except sqlite3.Error as exc:
            raise CredentialStoreError(f"Insert failed: {exc}") from exc
        created = self.get_identity(record["id"])
        if created is None:
            raise CredentialStoreError("Inserted row could not be read back.")
        return created

    def get_identity(self, identity_id: str) -> Optional[dict[str, Any]]:
        return self._one("SELECT * FROM users WHERE id = ?", (identity_id,))

    def email_exists(self, email: str) -> bool:
        return self._exists("SELECT 1 FROM users WHERE email = ?", (email,))

    def code_sha_exists(self, code_sha: str) -> bool:
        return self._exists("SELECT 1 FROM users WHERE login_code_sha = ?", (code_sha,))

    def _exists(self, query: str, params: tuple) -> bool:
        try:
            with get_connection(self.db_path) as conn:
                return conn.execute(query, params).fetchone() is not None
        except sqlite3.Error as exc:
            raise CredentialStoreError(f"Lookup failed: {exc}") from exc


class SupabaseCredentialStore(CredentialStore):
    """PostgREST client for the hosted ``users`` table, authenticated with the service key."""

    def __init__(self, url: str, service_key: str, session: requests.Session | None = None) -> None:
        self.endpoint = f"{url.rstrip('/')}/rest/v1/users"
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "apikey": service_key,
                "Authorization": f"Bearer {service_key}",
                "Content-Type": "application/json",
            }
        )

    def _request(
        self,
        method: str,
        params: dict[str, str],
        payload: dict[str, Any] | None = None,
        prefer: str | None = None,
    ) -> list[dict[str, Any]]:
        headers = {"Prefer": prefer} if prefer else None
        try:
            res = self.session.request(
                method,
                self.endpoint,
                params=params,
                json=payload,
                headers=headers,
                timeout=REQUEST_TIMEOUT,
            )
        except requests.RequestException as exc:
            raise CredentialStoreError(f"Store request failed: {exc}") from exc
        if res.status_code == 409:
            raise DuplicateIdentity(_duplicate_field(res.text), f"Store conflict: {res.text[:200]}")
        if res.status_code >= 400:
            raise CredentialStoreError(f"Store request failed: {res.status_code} {res.text[:200]}")
        if not res.content:
            return []
        data = res.json()
        return data if isinstance(data, list) else [data]

    def _one(self, params: dict[str, str]) -> Optional[dict[str, Any]]:
        rows = self._request("GET", {"select": "*", "limit": "2", **params})
        return rows[0] if len(rows) == 1 else None

    def find_staff_by_email(self, email: str) -> Optional[dict[str, Any]]:
        return self._one({"email": f"eq.{email}", "role": f"in.({','.join(STAFF_ROLES)})"})

    def find_client_by_code_sha(self, code_sha: str) -> Optional[dict[str, Any]]:
        return self._one({"role": f"eq.{CLIENT_ROLE}", "login_code_sha": f"eq.{code_sha}"})

    def fetch_pending(self, offset: int, limit: int) -> list[dict[str, Any]]:
        return self._request(
            "GET",
            {
                "select": ",".join(PENDING_COLUMNS),
                "or": f"({','.join(f'{field}.is.null' for field in TARGET_FIELDS)})",
                "order": "id.asc",
                "offset": str(offset),
                "limit": str(limit),
            },
        )

    def update_identity(self, identity_id: str, patch: dict[str, Any]) -> None:
        _check_patch(patch)
        if not patch:
            return
        self._request("PATCH", {"id": f"eq.{identity_id}"}, payload=patch)

    def insert_identity(self, record: dict[str, Any]) -> dict[str, Any]:
        rows = self._request("POST", {"select": "*"}, payload=record, prefer="return=representation")
        if not rows:
            raise CredentialStoreError("Insert returned no row.")
        return rows[0]

    def get_identity(self, identity_id: str) -> Optional[dict[str, Any]]:
        return self._one({"id": f"eq.{identity_id}"})

    def email_exists(self, email: str) -> bool:
        return bool(self._request("GET", {"select": "id", "email": f"eq.{email}", "limit": "1"}))

    def code_sha_exists(self, code_sha: str) -> bool:
        return bool(
            self._request("GET", {"select": "id", "login_code_sha": f"eq.{code_sha}", "limit": "1"})
        )


def open_credential_store(store_url: str, service_key: str) -> CredentialStore:
    """Pick the backend from the configured store URL."""
    if store_url.startswith(SQLITE_PREFIX):
        return SqliteCredentialStore(sqlite_path_from_url(store_url))
    return SupabaseCredentialStore(store_url, service_key)


@lru_cache(maxsize=4)
def get_credential_store(store_url: str, service_key: str) -> CredentialStore:
    return open_credential_store(store_url, service_key)
