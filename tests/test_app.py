import pytest
from fastapi.testclient import TestClient

from api import whatsapp
from api.config import get_auth_config
from app import app


@pytest.fixture
def client(studio_env):
    return TestClient(app)


@pytest.fixture
def admin_token(client, add_staff):
    add_staff("boss@studio.tn", "s3cret", role="admin")
    res = client.post("/api/login", json={"type": "staff", "email": "boss@studio.tn", "password": "s3cret"})
    assert res.status_code == 200
    return res.json()["token"]


def _auth(token):
    return {"Authorization": f"Bearer {token}"}


def test_staff_login(client, add_staff):
    add_staff("a@studio.tn", "hunter2")

    res = client.post("/api/login", json={"type": "staff", "email": "a@studio.tn", "password": "hunter2"})

    assert res.status_code == 200
    body = res.json()
    assert body["token"]
    assert body["user"]["email"] == "a@studio.tn"


def test_bad_password_is_401(client, add_staff):
    add_staff("a@studio.tn", "hunter2")

    res = client.post("/api/login", json={"type": "staff", "email": "a@studio.tn", "password": "nope"})

    assert res.status_code == 401
    assert res.json() == {"error": "Invalid credentials"}


def test_login_rejects_other_methods(client):
    res = client.get("/api/login")

    assert res.status_code == 405
    assert res.json() == {"error": "Method not allowed"}


@pytest.mark.parametrize("method", ["OPTIONS", "HEAD", "PUT"])
def test_login_rejects_every_non_post_method(client, method):
    res = client.request(method, "/api/login")

    assert res.status_code == 405
    if method != "HEAD":
        assert res.json() == {"error": "Method not allowed"}


def test_notify_rejects_options(client):
    res = client.options("/api/notify")

    assert res.status_code == 405
    assert res.json() == {"error": "Method not allowed"}


def test_router_method_errors_use_the_same_body(client):
    res = client.get("/api/staff")

    assert res.status_code == 405
    assert res.json() == {"error": "Method not allowed"}


def test_login_with_non_json_body(client):
    res = client.post("/api/login", content=b"not json", headers={"Content-Type": "application/json"})

    assert res.status_code == 400
    assert res.json() == {"error": "Invalid request"}


def test_login_without_configuration(client, monkeypatch):
    monkeypatch.delenv("LOGIN_CODE_SALT")
    get_auth_config.cache_clear()

    res = client.post("/api/login", json={"type": "client", "code": "123456"})

    assert res.status_code == 500
    assert res.json() == {"error": "Server misconfigured"}


def test_malformed_setting_is_logged_as_invalid(client, monkeypatch, caplog):
    monkeypatch.setenv("AUTH_BCRYPT_ROUNDS", "ten")
    get_auth_config.cache_clear()

    res = client.post("/api/login", json={"type": "client", "code": "123456"})

    assert res.status_code == 500
    assert res.json() == {"error": "Server misconfigured"}
    assert "AUTH_BCRYPT_ROUNDS must be an integer" in caplog.text
    assert "missing" not in caplog.text.lower()


def test_admin_creates_client_who_then_logs_in(client, admin_token):
    created = client.post("/api/clients", json={"name": "Leila", "phone": "+21620111222"}, headers=_auth(admin_token))
    assert created.status_code == 201
    code = created.json()["login_code"]

    login = client.post("/api/login", json={"type": "client", "code": code})
    assert login.status_code == 200
    token = login.json()["token"]

    session = client.get("/api/session", headers=_auth(token))
    assert session.status_code == 200
    assert session.json()["sub"] == created.json()["user"]["id"]
    assert session.json()["app_role"] == "client"
    assert session.json()["email"] is None


def test_admin_creates_staff(client, admin_token):
    res = client.post(
        "/api/staff",
        json={"first_name": "Amira", "family_name": "Ben Salah", "email": "amira@studio.tn", "password": "pw"},
        headers=_auth(admin_token),
    )

    assert res.status_code == 201
    assert res.json()["user"]["name"] == "Amira Ben Salah"

    duplicate = client.post(
        "/api/staff",
        json={"first_name": "A", "family_name": "B", "email": "amira@studio.tn", "password": "pw"},
        headers=_auth(admin_token),
    )
    assert duplicate.status_code == 409
    assert duplicate.json() == {"error": "Email already in use"}


def test_invalid_client_code_is_400(client, admin_token):
    res = client.post("/api/clients", json={"name": "Leila", "login_code": "12"}, headers=_auth(admin_token))

    assert res.status_code == 400


def test_archive_and_unarchive(client, admin_token, add_client):
    target = add_client("123456")

    archived = client.post(f"/api/identities/{target['id']}/archive", headers=_auth(admin_token))
    restored = client.post(f"/api/identities/{target['id']}/unarchive", headers=_auth(admin_token))
    missing = client.post("/api/identities/nope/archive", headers=_auth(admin_token))

    assert archived.json()["user"]["status"] == "archived"
    assert restored.json()["user"]["status"] == "active"
    assert missing.status_code == 404


def test_admin_routes_require_a_token(client):
    res = client.post("/api/clients", json={"name": "Leila"})

    assert res.status_code == 401


def test_admin_routes_reject_non_admin_sessions(client, add_client):
    add_client("123456")
    token = client.post("/api/login", json={"type": "client", "code": "123456"}).json()["token"]

    res = client.post("/api/clients", json={"name": "Leila"}, headers=_auth(token))

    assert res.status_code == 403
    assert res.json() == {"error": "Admin role required"}


def test_session_rejects_garbage_token(client):
    res = client.get("/api/session", headers=_auth("not-a-token"))

    assert res.status_code == 401


def test_notify_sends_both_messages(client, monkeypatch):
    monkeypatch.setenv("WHATSAPP_TOKEN", "wa-token")
    monkeypatch.setenv("WHATSAPP_PHONE_NUMBER_ID", "1234")
    monkeypatch.setenv("WHATSAPP_ADMIN_PHONE", "+21699000111")
    sent = []

    class Ok:
        status_code = 200
        content = b""

    def fake_post(url, json=None, headers=None, timeout=None):
        sent.append(json["to"])
        return Ok()

    monkeypatch.setattr(whatsapp.requests, "post", fake_post)

    res = client.post("/api/notify", json={"date": "2026-10-19", "name": "Leila", "phone": "+21620111222"})

    assert res.status_code == 200
    assert res.json() == {"success": True, "results": {"client": "sent", "admin": "sent"}}
    assert sent == ["21620111222", "21699000111"]


def test_notify_missing_fields(client):
    res = client.post("/api/notify", json={"name": "Leila"})

    assert res.status_code == 400
    assert res.json() == {"error": "Missing required fields"}
