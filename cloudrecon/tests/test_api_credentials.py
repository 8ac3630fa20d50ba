from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from cloudrecon.auth.session import create_session
from cloudrecon.config import get_settings
from cloudrecon.core.crypto import decrypt_secret
from cloudrecon.db import Base, dispose_engine
from cloudrecon.db.database import get_engine
from cloudrecon.db.models import Credential, Task, TaskResult, User
from cloudrecon.main import create_app

pytestmark = pytest.mark.security


def _setup_db(tmp_path: Path, monkeypatch):
    db_path = tmp_path / "api_credentials.db"
    db_url = f"sqlite:///{db_path.as_posix()}"
    monkeypatch.setenv("DATABASE_URL", db_url)
    monkeypatch.setenv("DATABASE_URL_POSTGRES", "")
    monkeypatch.setenv("BOOTSTRAP_ADMIN_ENABLED", "false")
    monkeypatch.setenv("QUEUE_BACKEND", "none")
    monkeypatch.setenv("PROVIDER_MODE", "mock")
    get_settings.cache_clear()
    dispose_engine()
    engine = get_engine()
    Base.metadata.create_all(bind=engine)
    return engine


def _seed_user(engine, username="cred-user"):
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    db = SessionLocal()
    try:
        user = User(email=f"{username}@example.com", username=username, hashed_password="hashed", is_active=True)
        db.add(user)
        db.commit()
        db.refresh(user)
        token = create_session(db, user)
        return {"Authorization": f"Bearer {token}"}
    finally:
        db.close()


def _create(client, headers, **overrides):
    body = {
        "cloud_provider": "AWS",
        "access_key": "AKIAEXAMPLE",
        "secret_key": "wJalrXUtnFEMI/K7MDENG",
        "name": "prod",
        "description": "production account",
        "region": "us-east-1",
    }
    body.update(overrides)
    return client.post("/api/credentials", json=body, headers=headers)


def test_secret_key_is_never_returned(monkeypatch, tmp_path):
    engine = _setup_db(tmp_path, monkeypatch)
    headers = _seed_user(engine)

    with TestClient(create_app()) as client:
        created = _create(client, headers)
        assert created.status_code == 200
        cred_id = created.json()["id"]

        responses = [
            created,
            client.get("/api/credentials", headers=headers),
            client.get(f"/api/credentials/{cred_id}", headers=headers),
            client.put(f"/api/credentials/{cred_id}", json={"name": "renamed"}, headers=headers),
        ]
        for res in responses:
            assert "wJalrXUtnFEMI" not in res.text
            assert "secret_key" not in res.text

    db = sessionmaker(bind=get_engine())()
    try:
        row = db.get(Credential, cred_id)
        assert row.secret_key_encrypted != "wJalrXUtnFEMI/K7MDENG"
        assert decrypt_secret(row.secret_key_encrypted) == "wJalrXUtnFEMI/K7MDENG"
    finally:
        db.close()
    dispose_engine()


def test_unknown_provider_rejected(monkeypatch, tmp_path):
    engine = _setup_db(tmp_path, monkeypatch)
    headers = _seed_user(engine)

    with TestClient(create_app()) as client:
        res = _create(client, headers, cloud_provider="Oracle")

    assert res.status_code == 400
    assert res.json()["error"]["code"] == "E4001"
    dispose_engine()


def test_update_semantics(monkeypatch, tmp_path):
    engine = _setup_db(tmp_path, monkeypatch)
    headers = _seed_user(engine)

    with TestClient(create_app()) as client:
        cred_id = _create(client, headers).json()["id"]

        res = client.put(f"/api/credentials/{cred_id}", json={"description": ""}, headers=headers)
        assert res.status_code == 200
        assert res.json()["description"] == ""
        assert res.json()["region"] == "us-east-1"
        assert res.json()["name"] == "prod"

        res = client.put(f"/api/credentials/{cred_id}", json={"region": None, "name": "staging"}, headers=headers)
        assert res.json()["region"] == "us-east-1"
        assert res.json()["name"] == "staging"

        res = client.put(f"/api/credentials/{cred_id}", json={"name": "  "}, headers=headers)
        assert res.status_code == 400

        res = client.put(f"/api/credentials/{cred_id}", json={"cloud_provider": "GCP"}, headers=headers)
        assert res.json()["cloud_provider"] == "GCP"

    dispose_engine()


def test_other_users_credentials_are_invisible(monkeypatch, tmp_path):
    engine = _setup_db(tmp_path, monkeypatch)
    alice = _seed_user(engine, "alice")
    bob = _seed_user(engine, "bob")

    with TestClient(create_app()) as client:
        cred_id = _create(client, alice).json()["id"]

        assert client.get("/api/credentials", headers=bob).json() == []
        assert client.get(f"/api/credentials/{cred_id}", headers=bob).status_code == 404
        assert client.put(f"/api/credentials/{cred_id}", json={"name": "x"}, headers=bob).status_code == 404
        assert client.delete(f"/api/credentials/{cred_id}", headers=bob).status_code == 404

    dispose_engine()


def test_delete_refused_while_tasks_unfinished_then_cascades(monkeypatch, tmp_path):
    engine = _setup_db(tmp_path, monkeypatch)
    headers = _seed_user(engine)

    with TestClient(create_app()) as client:
        cred_id = _create(client, headers).json()["id"]
        task_id = client.post(
            "/api/tasks",
            json={"credential_id": cred_id, "task_type": "escalate"},
            headers=headers,
        ).json()["id"]

        blocked = client.delete(f"/api/credentials/{cred_id}", headers=headers)
        assert blocked.status_code == 409
        assert blocked.json()["detail"] == "Credential is in use by 1 unfinished task(s)"

        assert client.post(f"/api/tasks/{task_id}/run", headers=headers).json()["status"] == "completed"

        deleted = client.delete(f"/api/credentials/{cred_id}", headers=headers)
        assert deleted.status_code == 200
        assert deleted.json() == {"status": "deleted"}
        assert client.get(f"/api/tasks/{task_id}", headers=headers).status_code == 404

    db = sessionmaker(bind=get_engine())()
    try:
        assert db.query(Task).count() == 0
        assert db.query(TaskResult).count() == 0
    finally:
        db.close()
    dispose_engine()
