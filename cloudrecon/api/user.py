"""User profile endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.orm import Session as DBSession

from cloudrecon.api.auth import UserResponse
from cloudrecon.auth.dependencies import get_current_user
from cloudrecon.auth.password import hash_password, validate_password_length
from cloudrecon.db import get_db
from cloudrecon.db.models import User
from cloudrecon.services.audit_service import audit_log_event

router = APIRouter(prefix="/api/user", tags=["user"])


class ProfileUpdateRequest(BaseModel):
    username: Optional[str] = Field(default=None, min_length=3, max_length=64)
    email: Optional[EmailStr] = None
    password: Optional[str] = Field(default=None, max_length=128)


@router.get("/profile", response_model=UserResponse)
async def get_profile(current_user: User = Depends(get_current_user)):
    return UserResponse.model_validate(current_user)


@router.put("/profile", response_model=UserResponse)
async def update_profile(
    body: ProfileUpdateRequest,
    request: Request,
    db: DBSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    if body.username and body.username != current_user.username:
        taken = db.query(User).filter(User.username == body.username, User.id != current_user.id).first()
        if taken:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Username already exists")
        current_user.username = body.username

    if body.email and body.email != current_user.email:
        taken = db.query(User).filter(User.email == body.email, User.id != current_user.id).first()
        if taken:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already exists")
        current_user.email = body.email

    if body.password:
        password_error = validate_password_length(body.password)
        if password_error:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=password_error)
        current_user.hashed_password = hash_password(body.password)

    db.commit()
    db.refresh(current_user)
    audit_log_event(
        db,
        event_type="user.profile_updated",
        user_id=current_user.id,
        request=request,
        data={"password_changed": bool(body.password)},
    )
    return UserResponse.model_validate(current_user)
