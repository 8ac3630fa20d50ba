"""Opaque session tokens for API authentication."""

import hashlib
import secrets
from datetime import timedelta
from typing import Optional

from sqlalchemy.orm import Session as DBSession

from cloudrecon.config import get_settings
from cloudrecon.core.time import utcnow
from cloudrecon.db.models import Session, User


def _hash_token(token: str) -> str:
    """Hash a session token."""
    return hashlib.sha256(token.encode()).hexdigest()


def create_session(db: DBSession, user: User) -> str:
    """Create a new session for a user and return the raw bearer token.

    Only the SHA-256 of the token is stored.
    """
    settings = get_settings()
    session_token = secrets.token_urlsafe(32)

    session = Session(
        user_id=user.id,
        token_hash=_hash_token(session_token),
        expires_at=utcnow() + timedelta(seconds=settings.session_ttl_seconds),
    )
    db.add(session)
    db.commit()

    return session_token


def validate_session(db: DBSession, session_token: str) -> Optional[Session]:
    """Validate a session token and return the session if valid."""
    if not session_token:
        return None

    return db.query(Session).filter(
        Session.token_hash == _hash_token(session_token),
        Session.expires_at > utcnow(),
    ).first()


def invalidate_session(db: DBSession, session_token: str) -> bool:
    """Invalidate a session."""
    if not session_token:
        return False

    result = db.query(Session).filter(Session.token_hash == _hash_token(session_token)).delete()
    db.commit()
    return result > 0


def cleanup_expired_sessions(db: DBSession) -> int:
    """Remove expired sessions."""
    result = db.query(Session).filter(Session.expires_at <= utcnow()).delete()
    db.commit()
    return result
