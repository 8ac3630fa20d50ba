from pathlib import Path

import pytest
from sqlalchemy.orm import sessionmaker

from cloudrecon.auth.bootstrap import ensure_bootstrap_admin
from cloudrecon.config import get_settings
from cloudrecon.db import Base, dispose_engine
from cloudrecon.db.database import get_engine
from cloudrecon.db.models import User


def _setup_db(tmp_path: Path, monkeypatch, **env):
    db_path = tmp_path / "bootstrap_admin.db"
    db_url = f"sqlite:///{db_path.as_posix()}"
    monkeypatch.setenv("DATABASE_URL", db_url)
    monkeypatch.setenv("DATABASE_URL_POSTGRES", "")
    for key, value in env.items():
        if value is None:
            monkeypatch.delenv(key, raising=False)
        else:
            monkeypatch.setenv(key, value)
    get_settings.cache_clear()
    dispose_engine()
    engine = get_engine()
    Base.metadata.create_all(bind=engine)
    return engine


def _get_session(engine):
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    return SessionLocal()


def test_bootstrap_creates_admin(monkeypatch, tmp_path):
    engine = _setup_db(
        tmp_path,
        monkeypatch,
        BOOTSTRAP_ADMIN_ENABLED="true",
        BOOTSTRAP_ADMIN_USERNAME="admin",
        BOOTSTRAP_ADMIN_EMAIL="admin@example.com",
        BOOTSTRAP_ADMIN_PASSWORD="password123",
    )

    ensure_bootstrap_admin(get_settings())

    db = _get_session(engine)
    try:
        admin = db.query(User).filter(User.role == "admin").first()
        assert admin is not None
        assert admin.username == "admin"
        assert admin.is_admin
        assert admin.hashed_password.startswith("$argon2")
    finally:
        db.close()
        dispose_engine()


def test_bootstrap_skips_if_admin_exists(monkeypatch, tmp_path):
    engine = _setup_db(
        tmp_path,
        monkeypatch,
        BOOTSTRAP_ADMIN_ENABLED="true",
        BOOTSTRAP_ADMIN_USERNAME="admin2",
        BOOTSTRAP_ADMIN_EMAIL="admin2@example.com",
        BOOTSTRAP_ADMIN_PASSWORD="password123",
    )

    db = _get_session(engine)
    try:
        db.add(User(email="existing@example.com", username="existing", hashed_password="hashed", role="admin"))
        db.commit()
    finally:
        db.close()

    ensure_bootstrap_admin(get_settings())

    db = _get_session(engine)
    try:
        assert db.query(User).count() == 1
    finally:
        db.close()
        dispose_engine()


def test_bootstrap_disabled_does_nothing(monkeypatch, tmp_path):
    engine = _setup_db(tmp_path, monkeypatch, BOOTSTRAP_ADMIN_ENABLED="false", BOOTSTRAP_ADMIN_USERNAME="admin")

    ensure_bootstrap_admin(get_settings())

    db = _get_session(engine)
    try:
        assert db.query(User).count() == 0
    finally:
        db.close()
        dispose_engine()


def test_bootstrap_refuses_production(monkeypatch, tmp_path):
    _setup_db(
        tmp_path,
        monkeypatch,
        ENVIRONMENT="production",
        CORS_ORIGINS="https://app.example.com",
        BOOTSTRAP_ADMIN_ENABLED="true",
        BOOTSTRAP_ADMIN_USERNAME="admin",
        BOOTSTRAP_ADMIN_EMAIL="admin@example.com",
        BOOTSTRAP_ADMIN_PASSWORD="password123",
    )

    with pytest.raises(SystemExit):
        ensure_bootstrap_admin(get_settings())
    get_settings.cache_clear()
    dispose_engine()
