"""Inline cloud operations.

Each call runs the adapter in-request and is recorded as a terminal task
so it shows up in the caller's history and in the analysis endpoints.
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session as DBSession

from cloudrecon.api.deps import get_task_service
from cloudrecon.auth.dependencies import get_current_user
from cloudrecon.db import get_db
from cloudrecon.db.models import TaskType, User
from cloudrecon.services.audit_service import audit_log_event
from cloudrecon.services.task_service import TaskService

router = APIRouter(prefix="/api/cloud", tags=["cloud"])


class CredentialRequest(BaseModel):
    credential_id: str = Field(min_length=1)


class EnumerateRequest(CredentialRequest):
    resource_type: str = Field(min_length=1)
    region: str = ""


class OperateRequest(CredentialRequest):
    resource_type: str = Field(min_length=1)
    action: str = Field(min_length=1)
    resource_id: str = ""
    params: Dict[str, Any] = Field(default_factory=dict)


def _audit(db: DBSession, request: Request, user: User, operation: str, credential_id: str, task_id: str) -> None:
    audit_log_event(
        db,
        event_type=f"cloud.{operation}",
        user_id=user.id,
        request=request,
        data={"credential_id": credential_id, "task_id": task_id},
    )


@router.post("/enumerate")
def enumerate_resources(
    body: EnumerateRequest,
    request: Request,
    db: DBSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    outcome = service.run_inline(
        current_user.id,
        body.credential_id,
        TaskType.ENUMERATE,
        resource_type=body.resource_type,
        region=body.region,
    )
    _audit(db, request, current_user, TaskType.ENUMERATE, body.credential_id, outcome.task.id)
    return {
        "message": "Resource enumeration completed",
        "credential": outcome.credential_name,
        "resource_type": body.resource_type,
        "result": outcome.result,
        "task_id": outcome.task.id,
    }


@router.post("/escalate")
def escalate_privileges(
    body: CredentialRequest,
    request: Request,
    db: DBSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    outcome = service.run_inline(current_user.id, body.credential_id, TaskType.ESCALATE)
    _audit(db, request, current_user, TaskType.ESCALATE, body.credential_id, outcome.task.id)
    return {
        "message": "Privilege escalation completed",
        "credential": outcome.credential_name,
        "result": outcome.result,
        "task_id": outcome.task.id,
    }


@router.post("/operate")
def operate_resource(
    body: OperateRequest,
    request: Request,
    db: DBSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    outcome = service.run_inline(
        current_user.id,
        body.credential_id,
        TaskType.OPERATE,
        resource_type=body.resource_type,
        action=body.action,
        resource_id=body.resource_id,
        params=body.params,
    )
    _audit(db, request, current_user, TaskType.OPERATE, body.credential_id, outcome.task.id)
    return {
        "message": "Resource operation completed",
        "credential": outcome.credential_name,
        "resource_type": body.resource_type,
        "action": body.action,
        "resource_id": body.resource_id,
        "result": outcome.result,
        "task_id": outcome.task.id,
    }


@router.post("/takeover")
def takeover_cloud(
    body: CredentialRequest,
    request: Request,
    db: DBSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    outcome = service.run_inline(current_user.id, body.credential_id, TaskType.TAKEOVER)
    _audit(db, request, current_user, TaskType.TAKEOVER, body.credential_id, outcome.task.id)
    return {
        "message": "Cloud platform takeover completed",
        "credential": outcome.credential_name,
        "result": outcome.result,
        "task_id": outcome.task.id,
    }


@router.post("/permissions")
def get_permissions(
    body: CredentialRequest,
    current_user: User = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    return {"result": service.get_permissions(current_user.id, body.credential_id)}


@router.post("/validate")
def validate_credential(
    body: CredentialRequest,
    current_user: User = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    return {"valid": service.validate_credential(current_user.id, body.credential_id)}


@router.post("/resources")
def fetch_last_enumeration(
    body: CredentialRequest,
    current_user: User = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    """Latest stored enumeration for a credential, without calling the cloud."""
    return service.fetch_last_enumeration(current_user.id, body.credential_id)
