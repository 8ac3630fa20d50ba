"""SQLAlchemy engine and session management."""

from typing import Generator, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from cloudrecon.config import get_settings
from cloudrecon.core.logging import get_logger

logger = get_logger(__name__)

Base = declarative_base()

_engine: Optional[Engine] = None
_session_local: Optional[sessionmaker] = None


def get_engine() -> Engine:
    """Return the process-wide engine, creating it on first use."""
    global _engine
    if _engine is None:
        url = get_settings().effective_database_url
        connect_args = {}
        if url.startswith("sqlite"):
            # Worker threads and request threads share the engine.
            connect_args = {"check_same_thread": False, "timeout": 30}
        _engine = create_engine(url, connect_args=connect_args, pool_pre_ping=True)
    return _engine


def get_session_local() -> sessionmaker:
    global _session_local
    if _session_local is None:
        _session_local = sessionmaker(autocommit=False, autoflush=False, bind=get_engine())
    return _session_local


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency yielding one session per request."""
    db = get_session_local()()
    try:
        yield db
    finally:
        db.close()


def dispose_engine() -> None:
    """Drop the cached engine (tests swap DATABASE_URL between cases)."""
    global _engine, _session_local
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_local = None


def create_schema() -> None:
    """Create missing tables."""
    from cloudrecon.db import models  # noqa: F401  (registers tables)

    Base.metadata.create_all(bind=get_engine())


def verify_database_connection() -> bool:
    """Return True when a trivial query succeeds."""
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as exc:
        logger.error("Database connection check failed", data={"error": str(exc)})
        return False
