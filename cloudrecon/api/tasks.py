"""Task endpoints: submit, inspect, and run pending tasks out-of-band."""

from typing import List, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from cloudrecon.api.deps import get_task_service
from cloudrecon.auth.dependencies import get_current_user
from cloudrecon.db.models import User
from cloudrecon.services.task_service import TaskService
from cloudrecon.tasks.store import ResultRecord, TaskRecord

router = APIRouter(prefix="/api/tasks", tags=["tasks"])


class TaskModel(BaseModel):
    id: str
    credential_id: str
    name: str
    task_type: str
    status: str
    parameters: str
    start_time: Optional[str]
    end_time: Optional[str]
    created_at: Optional[str]


class TaskSubmitResponse(TaskModel):
    queued: bool


class TaskResultModel(BaseModel):
    id: str
    task_id: str
    result: str
    error: str
    timestamp: Optional[str]


class TaskCreateRequest(BaseModel):
    credential_id: str = Field(min_length=1)
    task_type: str = Field(min_length=1, max_length=32)
    name: str = Field(default="", max_length=255)
    # Opaque JSON object string, stored as given.
    parameters: str = "{}"


def _task(record: TaskRecord) -> TaskModel:
    return TaskModel(**record.to_dict())


def _result(record: ResultRecord) -> TaskResultModel:
    return TaskResultModel(**record.to_dict())


@router.get("", response_model=List[TaskModel])
def list_tasks(
    current_user: User = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    return [_task(t) for t in service.list_tasks(current_user.id)]


@router.post("", response_model=TaskSubmitResponse, status_code=status.HTTP_201_CREATED)
def create_task(
    body: TaskCreateRequest,
    current_user: User = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    task, queued = service.submit_task(
        current_user.id,
        body.credential_id,
        body.task_type,
        body.name,
        body.parameters,
    )
    return TaskSubmitResponse(**task.to_dict(), queued=queued)


@router.get("/{task_id}", response_model=TaskModel)
def get_task(
    task_id: str,
    current_user: User = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    return _task(service.get_task(current_user.id, task_id))


@router.get("/{task_id}/results", response_model=List[TaskResultModel])
def list_task_results(
    task_id: str,
    current_user: User = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    return [_result(r) for r in service.list_results(current_user.id, task_id)]


@router.post("/{task_id}/run", response_model=TaskModel)
def run_task(
    task_id: str,
    current_user: User = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    """Process a pending task in-request (used when no queue is configured)."""
    return _task(service.run_pending(current_user.id, task_id))
