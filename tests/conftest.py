from pathlib import Path
from typing import Any

import pytest

from api.config import AuthConfig, get_auth_config, get_notify_config
from api.credential_store import SqliteCredentialStore, get_credential_store
from api.security import SecretHasher, fingerprint

TEST_SALT = "unit-test-salt"
TEST_JWT_SECRET = "unit-test-jwt-secret"
# bcrypt's minimum cost keeps the suite fast.
TEST_ROUNDS = 4


class RecordingStore(SqliteCredentialStore):
    """SQLite store that records every lookup and write it serves."""

    def __init__(self, db_path: Path) -> None:
        super().__init__(db_path)
        self.reads = 0
        self.fetch_offsets: list[int] = []
        self.updated_ids: list[str] = []

    def find_staff_by_email(self, email: str):
        self.reads += 1
        return super().find_staff_by_email(email)

    def find_client_by_code_sha(self, code_sha: str):
        self.reads += 1
        return super().find_client_by_code_sha(code_sha)

    def fetch_pending(self, offset: int, limit: int):
        self.fetch_offsets.append(offset)
        return super().fetch_pending(offset, limit)

    def update_identity(self, identity_id: str, patch: dict[str, Any]) -> None:
        self.updated_ids.append(identity_id)
        super().update_identity(identity_id, patch)


@pytest.fixture
def db_path(tmp_path) -> Path:
    return tmp_path / "studio.db"


@pytest.fixture
def config(db_path) -> AuthConfig:
    return AuthConfig(
        store_url=f"sqlite:///{db_path}",
        store_service_key="service-role-key",
        jwt_secret=TEST_JWT_SECRET,
        login_code_salt=TEST_SALT,
        bcrypt_rounds=TEST_ROUNDS,
    )


@pytest.fixture
def store(db_path) -> RecordingStore:
    return RecordingStore(db_path)


@pytest.fixture
def hasher() -> SecretHasher:
    return SecretHasher(rounds=TEST_ROUNDS)


@pytest.fixture
def add_staff(store, hasher):
    def _add(email: str, secret: str | None = None, role: str = "staff", **extra) -> dict:
        record = {"name": extra.pop("name", "Staff Member"), "email": email, "role": role, **extra}
        if secret is not None:
            record["password_hash"] = hasher.hash(secret)
        return store.insert_identity(record)

    return _add


@pytest.fixture
def add_client(store, hasher):
    def _add(code: str, *, with_hash: bool = True, **extra) -> dict:
        record = {
            "name": extra.pop("name", "Client"),
            "role": "client",
            "login_code_sha": fingerprint(code, TEST_SALT),
            **extra,
        }
        if with_hash:
            record["login_code_hash"] = hasher.hash(code)
        return store.insert_identity(record)

    return _add


@pytest.fixture
def studio_env(monkeypatch, db_path):
    """Environment for the HTTP entry points, backed by a throwaway SQLite file."""
    monkeypatch.setenv("SUPABASE_URL", f"sqlite:///{db_path}")
    monkeypatch.setenv("SUPABASE_SERVICE_ROLE_KEY", "service-role-key")
    monkeypatch.setenv("SUPABASE_JWT_SECRET", TEST_JWT_SECRET)
    monkeypatch.setenv("LOGIN_CODE_SALT", TEST_SALT)
    monkeypatch.setenv("AUTH_BCRYPT_ROUNDS", str(TEST_ROUNDS))
    monkeypatch.delenv("AUTH_EXPOSE_UNMIGRATED_REASON", raising=False)
    get_auth_config.cache_clear()
    get_notify_config.cache_clear()
    get_credential_store.cache_clear()
    yield
    get_auth_config.cache_clear()
    get_notify_config.cache_clear()
    get_credential_store.cache_clear()
