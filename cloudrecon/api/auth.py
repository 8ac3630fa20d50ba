"""Authentication API endpoints."""

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.orm import Session as DBSession

from cloudrecon.auth.dependencies import extract_bearer_token
from cloudrecon.auth.password import hash_password, validate_password_length, verify_password_with_upgrade
from cloudrecon.auth.session import create_session, invalidate_session, validate_session
from cloudrecon.core.exceptions import AuthenticationError
from cloudrecon.core.logging import get_logger
from cloudrecon.db import get_db
from cloudrecon.db.models import User
from cloudrecon.services.audit_service import audit_log_event

logger = get_logger(__name__)
router = APIRouter(prefix="/api/auth", tags=["auth"])


class RegisterRequest(BaseModel):
    """Registration request model."""

    username: str = Field(min_length=3, max_length=64)
    email: EmailStr
    password: str = Field(min_length=1, max_length=128)


class LoginRequest(BaseModel):
    """Login request model."""

    username: str
    password: str


class UserResponse(BaseModel):
    """User response model."""

    id: str
    email: str
    username: str
    role: str
    is_admin: bool
    created_at: datetime

    class Config:
        from_attributes = True


class AuthResponse(BaseModel):
    """Authentication response model."""

    user: UserResponse
    token: str


# Cache-control headers for sensitive auth endpoints
_AUTH_CACHE_CONTROL = "no-store, no-cache, must-revalidate, private"
_AUTH_PRAGMA = "no-cache"


@router.post("/register", response_model=AuthResponse)
async def register(
    payload: RegisterRequest,
    response: Response,
    http_request: Request,
    db: DBSession = Depends(get_db),
):
    """Register a new user account."""
    response.headers["Cache-Control"] = _AUTH_CACHE_CONTROL
    response.headers["Pragma"] = _AUTH_PRAGMA

    password_error = validate_password_length(payload.password)
    if password_error:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=password_error,
        )

    existing = db.query(User).filter(
        (User.email == payload.email) | (User.username == payload.username)
    ).first()

    if existing:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Username or email already exists",
        )

    user = User(
        email=payload.email,
        username=payload.username,
        hashed_password=hash_password(payload.password),
    )
    db.add(user)
    db.commit()
    db.refresh(user)

    audit_log_event(
        db,
        event_type="auth.register",
        user_id=user.id,
        request=http_request,
        data={"username": user.username},
    )

    token = create_session(db, user)
    logger.info(f"User registered: {user.username}")

    return AuthResponse(user=UserResponse.model_validate(user), token=token)


@router.post("/login", response_model=AuthResponse)
async def login(
    payload: LoginRequest,
    response: Response,
    http_request: Request,
    db: DBSession = Depends(get_db),
):
    """Log in with username and password."""
    response.headers["Cache-Control"] = _AUTH_CACHE_CONTROL
    response.headers["Pragma"] = _AUTH_PRAGMA

    user = db.query(User).filter(User.username == payload.username).first()

    verify = None
    if user:
        verify = verify_password_with_upgrade(payload.password, user.hashed_password)

    if not user or not verify or not verify.ok:
        audit_log_event(
            db,
            event_type="auth.login_failed",
            user_id=user.id if user else None,
            request=http_request,
            data={"username": payload.username},
        )
        raise AuthenticationError("Invalid username or password")

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is disabled",
        )

    # bcrypt -> argon2id, or argon2 parameter rehash
    if verify.upgraded_hash:
        user.hashed_password = verify.upgraded_hash
        db.add(user)
        db.commit()

    token = create_session(db, user)

    logger.info(f"User logged in: {user.username}")
    audit_log_event(
        db,
        event_type="auth.login",
        user_id=user.id,
        request=http_request,
        data={"username": user.username},
    )

    return AuthResponse(user=UserResponse.model_validate(user), token=token)


@router.post("/logout")
async def logout(
    request: Request,
    response: Response,
    db: DBSession = Depends(get_db),
):
    """Revoke the presented bearer token."""
    response.headers["Cache-Control"] = _AUTH_CACHE_CONTROL
    response.headers["Pragma"] = _AUTH_PRAGMA

    session_token = extract_bearer_token(request)
    user_id = None
    if session_token:
        session = validate_session(db, session_token)
        if session:
            user_id = session.user_id
        invalidate_session(db, session_token)

    audit_log_event(db, event_type="auth.logout", user_id=user_id, request=request, data=None)

    return {"message": "Logged out"}
