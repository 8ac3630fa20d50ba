"""Cloud credential endpoints. Secret keys are write-only."""

from typing import List, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session as DBSession

from cloudrecon.auth.dependencies import get_current_user
from cloudrecon.db import get_db
from cloudrecon.db.models import User
from cloudrecon.services import credential_service
from cloudrecon.services.audit_service import audit_log_event

router = APIRouter(prefix="/api/credentials", tags=["credentials"])


class CredentialModel(BaseModel):
    id: str
    cloud_provider: str
    access_key: str
    region: str
    name: str
    description: str
    created_at: Optional[str]
    updated_at: Optional[str]


class CredentialCreateRequest(BaseModel):
    cloud_provider: str = Field(min_length=1, max_length=64)
    access_key: str = Field(min_length=1, max_length=255)
    secret_key: str = Field(min_length=1)
    name: str = Field(min_length=1, max_length=255)
    description: str = ""
    region: str = Field(default="", max_length=64)


class CredentialUpdateRequest(BaseModel):
    cloud_provider: Optional[str] = Field(default=None, max_length=64)
    access_key: Optional[str] = Field(default=None, max_length=255)
    secret_key: Optional[str] = None
    name: Optional[str] = Field(default=None, max_length=255)
    description: Optional[str] = None
    region: Optional[str] = Field(default=None, max_length=64)


def _to_model(credential) -> CredentialModel:
    return CredentialModel(**credential_service.serialize_credential(credential))


@router.get("", response_model=List[CredentialModel])
async def list_credentials(
    db: DBSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return [_to_model(c) for c in credential_service.list_credentials(db, current_user)]


@router.post("", response_model=CredentialModel)
async def create_credential(
    body: CredentialCreateRequest,
    request: Request,
    db: DBSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    credential = credential_service.create_credential(
        db,
        current_user,
        cloud_provider=body.cloud_provider,
        access_key=body.access_key,
        secret_key=body.secret_key,
        name=body.name,
        description=body.description,
        region=body.region,
    )
    audit_log_event(
        db,
        event_type="credential.created",
        user_id=current_user.id,
        request=request,
        data={"credential_id": credential.id, "cloud_provider": credential.cloud_provider},
    )
    return _to_model(credential)


@router.get("/{credential_id}", response_model=CredentialModel)
async def get_credential(
    credential_id: str,
    db: DBSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return _to_model(credential_service.get_credential(db, current_user, credential_id))


@router.put("/{credential_id}", response_model=CredentialModel)
async def update_credential(
    credential_id: str,
    body: CredentialUpdateRequest,
    request: Request,
    db: DBSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    credential = credential_service.update_credential(
        db,
        current_user,
        credential_id,
        body.model_dump(exclude_unset=True),
    )
    audit_log_event(
        db,
        event_type="credential.updated",
        user_id=current_user.id,
        request=request,
        data={"credential_id": credential.id, "fields": sorted(body.model_fields_set)},
    )
    return _to_model(credential)


@router.delete("/{credential_id}")
async def delete_credential(
    credential_id: str,
    request: Request,
    db: DBSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    credential_service.delete_credential(db, current_user, credential_id)
    audit_log_event(
        db,
        event_type="credential.deleted",
        user_id=current_user.id,
        request=request,
        data={"credential_id": credential_id},
    )
    return {"status": "deleted"}
