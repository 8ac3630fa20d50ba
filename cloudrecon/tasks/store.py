"""Durable task store: the single source of truth for task status.

Every operation runs in its own short session and transaction, so callers
(worker threads, request handlers) never hold a session across a cloud call.
Status changes are conditional UPDATEs guarded by the allowed predecessor
states; a transition that lost a race simply reports ``False``.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, FrozenSet, Iterator, List, Optional, Tuple

from sqlalchemy import func, update
from sqlalchemy.orm import Session as DBSession
from sqlalchemy.orm import sessionmaker

from cloudrecon.core.crypto import decrypt_secret
from cloudrecon.core.exceptions import NotFoundError
from cloudrecon.core.logging import get_logger
from cloudrecon.core.time import isoformat, utcnow
from cloudrecon.db.database import get_session_local
from cloudrecon.db.models import Credential, Task, TaskResult, TaskStatus

logger = get_logger(__name__)

# target status -> statuses it may be entered from
ALLOWED_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    TaskStatus.RUNNING: frozenset({TaskStatus.PENDING}),
    TaskStatus.COMPLETED: frozenset({TaskStatus.RUNNING}),
    TaskStatus.FAILED: frozenset({TaskStatus.PENDING, TaskStatus.RUNNING}),
}


@dataclass(frozen=True)
class TaskRecord:
    id: str
    user_id: str
    credential_id: str
    name: str
    task_type: str
    status: str
    params: str
    start_time: Optional[datetime]
    end_time: Optional[datetime]
    created_at: Optional[datetime]

    @classmethod
    def from_model(cls, task: Task) -> "TaskRecord":
        return cls(
            id=task.id,
            user_id=task.user_id,
            credential_id=task.credential_id,
            name=task.name or "",
            task_type=task.task_type,
            status=task.status,
            params=task.params or "",
            start_time=task.start_time,
            end_time=task.end_time,
            created_at=task.created_at,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in TaskStatus.TERMINAL

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "credential_id": self.credential_id,
            "name": self.name,
            "task_type": self.task_type,
            "status": self.status,
            "parameters": self.params,
            "start_time": isoformat(self.start_time),
            "end_time": isoformat(self.end_time),
            "created_at": isoformat(self.created_at),
        }


@dataclass(frozen=True)
class ResultRecord:
    id: str
    task_id: str
    result: str
    error: str
    timestamp: datetime

    @classmethod
    def from_model(cls, row: TaskResult) -> "ResultRecord":
        return cls(
            id=row.id,
            task_id=row.task_id,
            result=row.result or "",
            error=row.error or "",
            timestamp=row.timestamp,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "task_id": self.task_id,
            "result": self.result,
            "error": self.error,
            "timestamp": isoformat(self.timestamp),
        }


@dataclass(frozen=True)
class CredentialSecret:
    """Decrypted credential material, only ever held in memory."""

    id: str
    user_id: str
    cloud_provider: str
    access_key: str
    secret_key: str = field(repr=False)
    region: str = ""
    name: str = ""


class TaskStore:
    """Queries over ``tasks``/``task_results`` used by the worker and API surface."""

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self._session_factory = session_factory

    @contextmanager
    def _session(self) -> Iterator[DBSession]:
        factory = self._session_factory or get_session_local()
        db = factory()
        try:
            yield db
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    # -- tasks -------------------------------------------------------------

    def create_task(
        self,
        user_id: str,
        credential_id: str,
        task_type: str,
        params_json: str,
        name: str = "",
    ) -> TaskRecord:
        """Persist a ``pending`` task.

        Raises:
            NotFoundError: the credential does not exist or belongs to someone else.
        """
        with self._session() as db:
            self._owned_credential(db, user_id, credential_id)
            task = Task(
                user_id=user_id,
                credential_id=credential_id,
                task_type=task_type,
                name=name or "",
                params=params_json,
                status=TaskStatus.PENDING,
            )
            db.add(task)
            db.commit()
            db.refresh(task)
            return TaskRecord.from_model(task)

    def get_task(self, task_id: str) -> Optional[TaskRecord]:
        with self._session() as db:
            task = db.get(Task, task_id)
            return TaskRecord.from_model(task) if task else None

    def get_task_for_user(self, task_id: str, user_id: str) -> TaskRecord:
        with self._session() as db:
            task = db.query(Task).filter(Task.id == task_id, Task.user_id == user_id).first()
            if task is None:
                raise NotFoundError("Task not found")
            return TaskRecord.from_model(task)

    def list_tasks_for_user(self, user_id: str) -> List[TaskRecord]:
        with self._session() as db:
            tasks = (
                db.query(Task)
                .filter(Task.user_id == user_id)
                .order_by(Task.created_at.desc())
                .all()
            )
            return [TaskRecord.from_model(t) for t in tasks]

    def update_status(self, task_id: str, status: str, now: Optional[datetime] = None) -> bool:
        """Move a task to ``status`` if the transition is allowed from its current state.

        Entering ``running`` stamps ``start_time``; entering a terminal state
        stamps ``end_time`` (and ``start_time`` when short-circuiting from
        ``pending``). Returns False when the task is missing or the move is
        not permitted.
        """
        with self._session() as db:
            changed = self._transition(db, task_id, status, now or utcnow())
            db.commit()
        if changed:
            logger.info("Task status changed", data={"task_id": task_id, "status": status})
        return changed

    def _transition(self, db: DBSession, task_id: str, status: str, now: datetime) -> bool:
        sources = ALLOWED_TRANSITIONS.get(status)
        if not sources:
            raise ValueError(f"Tasks cannot transition into {status!r}")

        values = {"status": status, "updated_at": now}
        if status == TaskStatus.RUNNING:
            values["start_time"] = now
        else:
            values["start_time"] = func.coalesce(Task.start_time, now)
            values["end_time"] = now

        stmt = (
            update(Task)
            .where(Task.id == task_id, Task.status.in_(sorted(sources)))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return db.execute(stmt).rowcount == 1

    # -- results -----------------------------------------------------------

    def append_result(
        self,
        task_id: str,
        result_json: str,
        error: str = "",
        now: Optional[datetime] = None,
    ) -> ResultRecord:
        with self._session() as db:
            if db.get(Task, task_id) is None:
                raise NotFoundError("Task not found")
            row = TaskResult(task_id=task_id, result=result_json, error=error or "", timestamp=now or utcnow())
            db.add(row)
            db.commit()
            db.refresh(row)
            return ResultRecord.from_model(row)

    def finish_task(
        self,
        task_id: str,
        status: str,
        result_json: str = "",
        error: str = "",
        now: Optional[datetime] = None,
    ) -> bool:
        """Write the outcome row and the terminal status in one transaction.

        Nothing is written when the task is already terminal, so a redelivered
        task never gains a second outcome or regresses its status.
        """
        if status not in TaskStatus.TERMINAL:
            raise ValueError(f"{status!r} is not a terminal status")
        now = now or utcnow()
        with self._session() as db:
            if not self._transition(db, task_id, status, now):
                db.rollback()
                return False
            db.add(TaskResult(task_id=task_id, result=result_json, error=error or "", timestamp=now))
            db.commit()
        logger.info("Task status changed", data={"task_id": task_id, "status": status})
        return True

    def list_results(self, task_id: str) -> List[ResultRecord]:
        with self._session() as db:
            rows = (
                db.query(TaskResult)
                .filter(TaskResult.task_id == task_id)
                .order_by(TaskResult.timestamp.asc())
                .all()
            )
            return [ResultRecord.from_model(r) for r in rows]

    def find_latest(
        self,
        user_id: str,
        credential_id: str,
        task_type: str,
        status: str = TaskStatus.COMPLETED,
    ) -> Optional[Tuple[TaskRecord, Optional[ResultRecord]]]:
        """Most recent matching task by ``end_time`` and its newest result row."""
        with self._session() as db:
            task = (
                db.query(Task)
                .filter(
                    Task.user_id == user_id,
                    Task.credential_id == credential_id,
                    Task.task_type == task_type,
                    Task.status == status,
                )
                .order_by(Task.end_time.desc(), Task.created_at.desc())
                .first()
            )
            if task is None:
                return None
            row = (
                db.query(TaskResult)
                .filter(TaskResult.task_id == task.id)
                .order_by(TaskResult.timestamp.desc())
                .first()
            )
            return TaskRecord.from_model(task), (ResultRecord.from_model(row) if row else None)

    def record_inline(
        self,
        user_id: str,
        credential_id: str,
        task_type: str,
        params_json: str,
        result_json: str,
        error: str = "",
        name: str = "",
        started_at: Optional[datetime] = None,
    ) -> TaskRecord:
        """Persist an already-executed inline operation as a terminal task plus its result."""
        now = utcnow()
        status = TaskStatus.FAILED if error else TaskStatus.COMPLETED
        with self._session() as db:
            self._owned_credential(db, user_id, credential_id)
            task = Task(
                user_id=user_id,
                credential_id=credential_id,
                task_type=task_type,
                name=name or "",
                params=params_json,
                status=status,
                start_time=started_at or now,
                end_time=now,
            )
            db.add(task)
            db.flush()
            db.add(TaskResult(task_id=task.id, result=result_json, error=error or "", timestamp=now))
            db.commit()
            db.refresh(task)
            return TaskRecord.from_model(task)

    # -- credentials -------------------------------------------------------

    @staticmethod
    def _owned_credential(db: DBSession, user_id: str, credential_id: str) -> Credential:
        credential = (
            db.query(Credential)
            .filter(Credential.id == credential_id, Credential.user_id == user_id)
            .first()
        )
        if credential is None:
            raise NotFoundError("Credential not found")
        return credential

    def credential_name(self, credential_id: str, user_id: str) -> str:
        """Ownership check that never touches the secret."""
        with self._session() as db:
            return self._owned_credential(db, user_id, credential_id).name

    def load_credential(self, credential_id: str) -> Optional[CredentialSecret]:
        """Fetch a credential with its secret decrypted, for adapter construction.

        Raises:
            RuntimeError: the stored secret cannot be decrypted.
        """
        with self._session() as db:
            credential = db.get(Credential, credential_id)
            if credential is None:
                return None
            return CredentialSecret(
                id=credential.id,
                user_id=credential.user_id,
                cloud_provider=credential.cloud_provider,
                access_key=credential.access_key,
                secret_key=decrypt_secret(credential.secret_key_encrypted),
                region=credential.region or "",
                name=credential.name,
            )

    def load_credential_for_user(self, credential_id: str, user_id: str) -> CredentialSecret:
        credential = self.load_credential(credential_id)
        if credential is None or credential.user_id != user_id:
            raise NotFoundError("Credential not found")
        return credential
