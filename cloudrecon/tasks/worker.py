"""Queue-fed task worker.

Each worker is a daemon thread that pops task ids, runs the adapter
operation named by the task type, and records the outcome through the
Task Store. The worker never holds a database session or lock while a
cloud call is in flight.
"""

from __future__ import annotations

import json
import threading
from typing import Any, Callable, Dict, List, Optional, Tuple

from cloudrecon.cloud.base import CloudProvider
from cloudrecon.cloud.factory import create_provider
from cloudrecon.config import Settings, get_settings
from cloudrecon.core.exceptions import CloudReconError, QueueUnavailableError
from cloudrecon.core.logging import get_logger
from cloudrecon.db.models import TaskStatus, TaskType
from cloudrecon.tasks.queue import TaskQueue
from cloudrecon.tasks.schemas import (
    PARAM_MODELS,
    InvalidParametersError,
    parse_params_blob,
    validate_params,
)
from cloudrecon.tasks.store import TaskRecord, TaskStore

logger = get_logger(__name__)

ProviderFactory = Callable[..., CloudProvider]


def invoke_adapter(adapter: CloudProvider, task_type: str, params) -> Dict[str, Any]:
    """Call the adapter operation for ``task_type`` with validated ``params``."""
    if task_type == TaskType.ENUMERATE:
        return adapter.enumerate(params.resource_type)
    if task_type == TaskType.ESCALATE:
        return adapter.escalate()
    if task_type == TaskType.OPERATE:
        return adapter.operate(
            params.resource_type,
            params.action,
            params.resource_id,
            params.model_dump(),
        )
    if task_type == TaskType.TAKEOVER:
        return adapter.takeover()
    raise KeyError(task_type)


def dump_result(result: Dict[str, Any]) -> str:
    return json.dumps(result, ensure_ascii=False, default=str)


class Worker:
    """One consumer loop over the task queue.

    ``process_task`` is the single processing routine; the loop, the
    out-of-band ``run_pending`` path and the tests all go through it.
    """

    def __init__(
        self,
        store: Optional[TaskStore] = None,
        queue: Optional[TaskQueue] = None,
        *,
        settings: Optional[Settings] = None,
        provider_factory: Optional[ProviderFactory] = None,
        name: str = "worker-1",
    ):
        self.store = store or TaskStore()
        self.queue = queue
        self.settings = settings or get_settings()
        self.provider_factory = provider_factory or create_provider
        self.name = name
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # -- lifecycle ---------------------------------------------------------

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self.run, name=self.name, daemon=True)
        self._thread.start()
        logger.info("Worker started", data={"worker": self.name})

    def signal_stop(self) -> None:
        self._stop.set()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Worker stopped", data={"worker": self.name})

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run(self) -> None:
        """Consume until ``stop`` is called."""
        retry = self.settings.queue_retry_interval_seconds
        pop_timeout = self.settings.queue_pop_timeout_seconds

        while not self._stop.is_set():
            if self.queue is None:
                self._stop.wait(retry)
                continue

            try:
                task_id = self.queue.pop(pop_timeout)
            except QueueUnavailableError as exc:
                logger.warning("Task queue pop failed", data={"worker": self.name, "error": exc.message})
                self._stop.wait(retry)
                continue

            if not task_id:
                continue

            try:
                self.process_task(task_id)
            except Exception as exc:
                # Left un-acked: the id is redelivered by requeue_inflight.
                logger.error(
                    "Task processing aborted",
                    data={"worker": self.name, "task_id": task_id, "error": str(exc)},
                    exc_info=True,
                )
                continue

            try:
                self.queue.ack(task_id)
            except QueueUnavailableError as exc:
                logger.warning("Task queue ack failed", data={"task_id": task_id, "error": exc.message})

    # -- processing --------------------------------------------------------

    def process_task(self, task_id: str) -> Optional[TaskRecord]:
        """Run one task to a terminal status.

        Returns the task as stored afterwards, or None for an unknown id.
        A task that is already terminal is returned untouched.
        """
        task = self.store.get_task(task_id)
        if task is None:
            logger.warning("Dropping unknown task id", data={"task_id": task_id})
            return None

        if task.is_terminal:
            logger.info("Skipping redelivered terminal task", data={"task_id": task_id, "status": task.status})
            return task

        if task.status == TaskStatus.PENDING:
            if not self.store.update_status(task_id, TaskStatus.RUNNING):
                # Another worker claimed it between our read and the update.
                return self.store.get_task(task_id)
        else:
            logger.info("Resuming task left running", data={"task_id": task_id})

        result, error = self._execute(task)
        if error:
            finished = self.store.finish_task(task_id, TaskStatus.FAILED, error=error)
            if finished:
                logger.warning("Task failed", data={"task_id": task_id, "task_type": task.task_type, "error": error})
        else:
            finished = self.store.finish_task(task_id, TaskStatus.COMPLETED, result_json=dump_result(result))
        if not finished:
            logger.info("Task already finished elsewhere", data={"task_id": task_id})
        return self.store.get_task(task_id)

    def _execute(self, task: TaskRecord) -> Tuple[Optional[Dict[str, Any]], str]:
        """Returns ``(result, "")`` on success or ``(None, reason)``."""
        try:
            credential = self.store.load_credential(task.credential_id)
        except RuntimeError as exc:
            logger.error("Credential secret unreadable", data={"task_id": task.id, "error": str(exc)})
            return None, "Failed to create cloud provider"
        if credential is None or credential.user_id != task.user_id:
            return None, "Credential not found"

        try:
            adapter = self.provider_factory(
                credential.cloud_provider,
                credential.access_key,
                credential.secret_key,
                credential.region,
                settings=self.settings,
            )
        except Exception as exc:
            logger.warning(
                "Cloud provider construction failed",
                data={"task_id": task.id, "provider": credential.cloud_provider, "error": str(exc)},
            )
            return None, "Failed to create cloud provider"

        try:
            raw = parse_params_blob(task.params)
            if task.task_type not in PARAM_MODELS:
                return None, "Unsupported task type"
            params = validate_params(task.task_type, raw)
        except InvalidParametersError as exc:
            return None, exc.reason

        try:
            return invoke_adapter(adapter, task.task_type, params), ""
        except CloudReconError as exc:
            return None, exc.message
        except Exception as exc:
            logger.error(
                "Adapter call raised",
                data={"task_id": task.id, "task_type": task.task_type, "error": str(exc)},
                exc_info=True,
            )
            return None, str(exc) or type(exc).__name__


def start_workers(
    queue: Optional[TaskQueue],
    settings: Optional[Settings] = None,
    store: Optional[TaskStore] = None,
) -> List[Worker]:
    """Start ``settings.worker_count`` workers sharing one store and queue."""
    settings = settings or get_settings()
    store = store or TaskStore()
    if queue is not None:
        try:
            moved = queue.requeue_inflight()
        except QueueUnavailableError as exc:
            logger.warning("Could not requeue in-flight tasks", data={"error": exc.message})
        else:
            if moved:
                logger.info("Requeued in-flight tasks", data={"count": moved})

    workers = [
        Worker(store, queue, settings=settings, name=f"worker-{index + 1}")
        for index in range(settings.worker_count)
    ]
    for worker in workers:
        worker.start()
    return workers


def stop_workers(workers: List[Worker], timeout: Optional[float] = None) -> None:
    for worker in workers:
        worker.signal_stop()
    for worker in workers:
        worker.stop(timeout)
