"""FastAPI dependencies for authentication."""

from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session as DBSession

from cloudrecon.auth.session import validate_session
from cloudrecon.core.logging import get_logger
from cloudrecon.db import get_db
from cloudrecon.db.models import User
from cloudrecon.services.audit_service import audit_log_event

logger = get_logger(__name__)


def extract_bearer_token(request: Request) -> Optional[str]:
    """Return the token from ``Authorization: Bearer <token>``, if any."""
    header = request.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_current_user(
    request: Request,
    db: DBSession = Depends(get_db),
) -> User:
    """Get the current authenticated user.

    Raises:
        HTTPException: If not authenticated.
    """
    session_token = extract_bearer_token(request)

    if not session_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    session = validate_session(db, session_token)

    if not session:
        audit_log_event(
            db,
            event_type="auth_invalid_session",
            user_id=None,
            request=request,
            data={"path": request.url.path},
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session expired or invalid",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user = db.query(User).filter(User.id == session.user_id).first()

    if not user or not user.is_active:
        audit_log_event(
            db,
            event_type="auth_inactive_user",
            user_id=session.user_id,
            request=request,
            data={"path": request.url.path},
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found or inactive",
        )

    return user
