from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from cloudrecon.config import get_settings
from cloudrecon.db import Base, dispose_engine
from cloudrecon.db.database import get_engine
from cloudrecon.main import create_app

pytestmark = pytest.mark.security


def _setup_db(tmp_path: Path, monkeypatch):
    db_path = tmp_path / "api_auth.db"
    db_url = f"sqlite:///{db_path.as_posix()}"
    monkeypatch.setenv("DATABASE_URL", db_url)
    monkeypatch.setenv("DATABASE_URL_POSTGRES", "")
    monkeypatch.setenv("BOOTSTRAP_ADMIN_ENABLED", "false")
    monkeypatch.setenv("QUEUE_BACKEND", "none")
    get_settings.cache_clear()
    dispose_engine()
    engine = get_engine()
    Base.metadata.create_all(bind=engine)
    return engine


def _register(client, username="alice", email="alice@example.com", password="correct-horse"):
    return client.post(
        "/api/auth/register",
        json={"username": username, "email": email, "password": password},
    )


def test_register_login_logout_roundtrip(monkeypatch, tmp_path):
    _setup_db(tmp_path, monkeypatch)

    with TestClient(create_app()) as client:
        registered = _register(client)
        assert registered.status_code == 200
        assert registered.headers["cache-control"].startswith("no-store")
        assert registered.json()["user"]["username"] == "alice"
        assert registered.json()["user"]["is_admin"] is False

        login = client.post("/api/auth/login", json={"username": "alice", "password": "correct-horse"})
        assert login.status_code == 200
        token = login.json()["token"]
        headers = {"Authorization": f"Bearer {token}"}

        profile = client.get("/api/user/profile", headers=headers)
        assert profile.status_code == 200
        assert profile.json()["email"] == "alice@example.com"

        assert client.post("/api/auth/logout", headers=headers).json() == {"message": "Logged out"}
        assert client.get("/api/user/profile", headers=headers).status_code == 401

    dispose_engine()


def test_duplicate_registration_conflicts(monkeypatch, tmp_path):
    _setup_db(tmp_path, monkeypatch)

    with TestClient(create_app()) as client:
        _register(client)
        res = _register(client, email="other@example.com")

    assert res.status_code == 409
    assert res.json()["error"]["code"] == "E4090"
    dispose_engine()


def test_short_password_rejected(monkeypatch, tmp_path):
    _setup_db(tmp_path, monkeypatch)

    with TestClient(create_app()) as client:
        res = _register(client, password="abc")

    assert res.status_code == 400
    assert "at least 6" in res.json()["detail"]
    dispose_engine()


def test_bad_login_is_generic(monkeypatch, tmp_path):
    _setup_db(tmp_path, monkeypatch)

    with TestClient(create_app()) as client:
        _register(client)
        wrong_password = client.post("/api/auth/login", json={"username": "alice", "password": "nope-nope"})
        unknown_user = client.post("/api/auth/login", json={"username": "mallory", "password": "whatever"})

    assert wrong_password.status_code == unknown_user.status_code == 401
    assert wrong_password.json()["detail"] == unknown_user.json()["detail"] == "Invalid username or password"
    dispose_engine()


def test_invalid_bearer_token_rejected(monkeypatch, tmp_path):
    _setup_db(tmp_path, monkeypatch)

    with TestClient(create_app()) as client:
        res = client.get("/api/user/profile", headers={"Authorization": "Bearer not-a-real-token"})
        basic = client.get("/api/user/profile", headers={"Authorization": "Basic YWxpY2U6eA=="})

    assert res.status_code == 401
    assert res.json()["detail"] == "Session expired or invalid"
    assert basic.status_code == 401
    assert basic.json()["detail"] == "Not authenticated"
    dispose_engine()


def test_profile_update(monkeypatch, tmp_path):
    _setup_db(tmp_path, monkeypatch)

    with TestClient(create_app()) as client:
        token = _register(client).json()["token"]
        _register(client, username="bob", email="bob@example.com")
        headers = {"Authorization": f"Bearer {token}"}

        taken = client.put("/api/user/profile", json={"username": "bob"}, headers=headers)
        assert taken.status_code == 409

        updated = client.put(
            "/api/user/profile",
            json={"username": "alice2", "password": "new-password"},
            headers=headers,
        )
        assert updated.status_code == 200
        assert updated.json()["username"] == "alice2"

        login = client.post("/api/auth/login", json={"username": "alice2", "password": "new-password"})
        assert login.status_code == 200

    dispose_engine()
