"""Task API surface: the call contract between the HTTP layer and the core."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from cloudrecon.cloud.base import CloudProvider
from cloudrecon.cloud.factory import create_provider
from cloudrecon.config import Settings, get_settings
from cloudrecon.core.exceptions import (
    BadRequestError,
    CloudReconError,
    ConflictError,
    NotFoundError,
    QueueUnavailableError,
    UnsupportedTaskTypeError,
    UpstreamError,
)
from cloudrecon.core.logging import get_logger
from cloudrecon.core.time import isoformat, utcnow
from cloudrecon.db.models import TaskStatus, TaskType
from cloudrecon.tasks.queue import TaskQueue
from cloudrecon.tasks.schemas import InvalidParametersError, dump_params, validate_params
from cloudrecon.tasks.store import CredentialSecret, ResultRecord, TaskRecord, TaskStore
from cloudrecon.tasks.worker import ProviderFactory, Worker, dump_result, invoke_adapter

logger = get_logger(__name__)


@dataclass(frozen=True)
class InlineOutcome:
    task: TaskRecord
    result: Dict[str, Any]
    credential_name: str


class TaskService:
    """Submit, inspect and run tasks on behalf of a user.

    Every read is ownership-scoped: a task or credential owned by someone
    else is reported as not found.
    """

    def __init__(
        self,
        store: Optional[TaskStore] = None,
        queue: Optional[TaskQueue] = None,
        *,
        settings: Optional[Settings] = None,
        provider_factory: Optional[ProviderFactory] = None,
    ):
        self.store = store or TaskStore()
        self.queue = queue
        self.settings = settings or get_settings()
        self.provider_factory = provider_factory or create_provider

    # -- queued path -------------------------------------------------------

    def submit_task(
        self,
        user_id: str,
        credential_id: str,
        task_type: str,
        name: str,
        params_json: str,
    ) -> Tuple[TaskRecord, bool]:
        """Create a ``pending`` task and try to enqueue it.

        Returns the task and whether it was queued. A queue failure never
        rolls back the task; it stays ``pending`` for ``run_pending``.
        """
        task = self.store.create_task(user_id, credential_id, task_type, params_json, name=name)
        logger.info(
            "Task created",
            data={"task_id": task.id, "task_type": task_type, "status": task.status},
        )
        return task, self._enqueue(task.id)

    def _enqueue(self, task_id: str) -> bool:
        if self.queue is None:
            logger.warning("Task queue unavailable; task left pending", data={"task_id": task_id})
            return False
        try:
            self.queue.push(task_id)
        except QueueUnavailableError as exc:
            logger.warning("Task enqueue failed; task left pending", data={"task_id": task_id, "error": exc.message})
            return False
        return True

    def run_pending(self, user_id: str, task_id: str) -> TaskRecord:
        """Process a ``pending`` task synchronously through the worker routine."""
        task = self.store.get_task_for_user(task_id, user_id)
        if task.status != TaskStatus.PENDING:
            raise ConflictError(f"Task is {task.status}, only pending tasks can be run")
        worker = Worker(self.store, None, settings=self.settings, provider_factory=self.provider_factory)
        return worker.process_task(task.id) or task

    # -- reads -------------------------------------------------------------

    def get_task(self, user_id: str, task_id: str) -> TaskRecord:
        return self.store.get_task_for_user(task_id, user_id)

    def list_tasks(self, user_id: str) -> List[TaskRecord]:
        return self.store.list_tasks_for_user(user_id)

    def list_results(self, user_id: str, task_id: str) -> List[ResultRecord]:
        self.store.get_task_for_user(task_id, user_id)
        return self.store.list_results(task_id)

    def fetch_last_enumeration(self, user_id: str, credential_id: str) -> Dict[str, Any]:
        """Payload of the most recent completed enumeration for a credential."""
        credential_name = self.store.credential_name(credential_id, user_id)
        latest = self.store.find_latest(user_id, credential_id, TaskType.ENUMERATE, TaskStatus.COMPLETED)
        if latest is None:
            raise NotFoundError("No enumeration task found")
        task, row = latest
        if row is None:
            raise NotFoundError("Task result not found")
        try:
            result = json.loads(row.result)
        except ValueError as exc:
            raise CloudReconError("Failed to parse task result") from exc
        return {
            "message": "Resources fetched from database",
            "credential": credential_name,
            "result": result,
            "task_id": task.id,
            "timestamp": isoformat(task.end_time),
        }

    # -- inline path -------------------------------------------------------

    def run_inline(
        self,
        user_id: str,
        credential_id: str,
        operation: str,
        *,
        resource_type: Optional[str] = None,
        region: Optional[str] = None,
        action: Optional[str] = None,
        resource_id: Optional[str] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> InlineOutcome:
        """Run one adapter operation in-request and record it as a terminal task.

        Raises:
            UnsupportedTaskTypeError: ``operation`` is not a task type.
            NotFoundError: the credential is not the caller's.
            CloudReconError: adapter construction or the call itself failed;
                a ``failed`` task with the message is recorded first.
        """
        if operation not in TaskType.ALL:
            raise UnsupportedTaskTypeError(operation)

        credential = self.store.load_credential_for_user(credential_id, user_id)
        region = (region or "").strip() or credential.region
        task_params = self._inline_params(operation, resource_type, region, action, resource_id, params)
        try:
            validated = validate_params(operation, task_params)
        except InvalidParametersError as exc:
            raise BadRequestError(exc.reason) from exc

        params_json = dump_params(task_params)
        started_at = utcnow()
        try:
            adapter = self._build_adapter(credential, region)
            result = invoke_adapter(adapter, operation, validated)
        except CloudReconError as exc:
            self._record_inline_failure(user_id, credential_id, operation, params_json, exc.message, started_at)
            raise
        except Exception as exc:
            message = str(exc) or type(exc).__name__
            logger.error(
                "Inline adapter call raised",
                data={"operation": operation, "credential_id": credential_id, "error": message},
                exc_info=True,
            )
            self._record_inline_failure(user_id, credential_id, operation, params_json, message, started_at)
            raise UpstreamError(message, provider=credential.cloud_provider) from exc

        task = self.store.record_inline(
            user_id,
            credential_id,
            operation,
            params_json,
            result_json=dump_result(result),
            started_at=started_at,
        )
        logger.info("Inline operation completed", data={"operation": operation, "task_id": task.id})
        return InlineOutcome(task=task, result=result, credential_name=credential.name)

    def _record_inline_failure(self, user_id, credential_id, operation, params_json, error, started_at) -> None:
        self.store.record_inline(
            user_id,
            credential_id,
            operation,
            params_json,
            result_json="",
            error=error,
            started_at=started_at,
        )
        logger.warning(
            "Inline operation failed",
            data={"operation": operation, "credential_id": credential_id, "error": error},
        )

    @staticmethod
    def _inline_params(operation, resource_type, region, action, resource_id, params) -> Dict[str, Any]:
        if operation == TaskType.ENUMERATE:
            return {"resource_type": resource_type, "region": region}
        if operation == TaskType.OPERATE:
            merged = dict(params or {})
            merged.update({"resource_type": resource_type, "action": action, "resource_id": resource_id})
            return merged
        return {}

    def _build_adapter(self, credential: CredentialSecret, region: str) -> CloudProvider:
        return self.provider_factory(
            credential.cloud_provider,
            credential.access_key,
            credential.secret_key,
            region,
            settings=self.settings,
        )

    def get_permissions(self, user_id: str, credential_id: str) -> Dict[str, Any]:
        credential = self.store.load_credential_for_user(credential_id, user_id)
        return self._build_adapter(credential, credential.region).get_permissions()

    def validate_credential(self, user_id: str, credential_id: str) -> bool:
        credential = self.store.load_credential_for_user(credential_id, user_id)
        return bool(self._build_adapter(credential, credential.region).validate_credentials())
