"""SQLAlchemy database models."""

import secrets
from typing import List

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, relationship

from cloudrecon.core.time import utcnow
from cloudrecon.db.database import Base


def generate_id() -> str:
    """Generate a unique ID."""
    return secrets.token_urlsafe(16)


class TaskStatus:
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    TERMINAL = frozenset({COMPLETED, FAILED})
    ALL = frozenset({PENDING, RUNNING, COMPLETED, FAILED})


class TaskType:
    ENUMERATE = "enumerate"
    ESCALATE = "escalate"
    OPERATE = "operate"
    TAKEOVER = "takeover"

    ALL = frozenset({ENUMERATE, ESCALATE, OPERATE, TAKEOVER})


class User(Base):
    """User account model."""

    __tablename__ = "users"

    id = Column(String(32), primary_key=True, default=generate_id)
    email = Column(String(255), unique=True, index=True, nullable=False)
    username = Column(String(64), unique=True, index=True, nullable=False)
    hashed_password = Column(String(255), nullable=False)
    role = Column(String(32), nullable=False, default="user")
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    sessions: Mapped[List["Session"]] = relationship(
        "Session", back_populates="user", cascade="all, delete-orphan"
    )
    credentials: Mapped[List["Credential"]] = relationship(
        "Credential", back_populates="user", cascade="all, delete-orphan"
    )

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def __repr__(self) -> str:
        return f"<User {self.username}>"


class Session(Base):
    """User session model for authentication."""

    __tablename__ = "sessions"

    id = Column(String(32), primary_key=True, default=generate_id)
    user_id = Column(String(32), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    token_hash = Column(String(255), nullable=False, unique=True, index=True)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=utcnow)

    user: Mapped["User"] = relationship("User", back_populates="sessions")

    def __repr__(self) -> str:
        return f"<Session {self.id[:8]}...>"


class Credential(Base):
    """Cloud provider access key pair owned by a user.

    ``secret_key_encrypted`` holds a Fernet token; the plaintext secret only
    exists in memory while an adapter is being built.
    """

    __tablename__ = "credentials"

    id = Column(String(32), primary_key=True, default=generate_id)
    user_id = Column(String(32), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    cloud_provider = Column(String(64), nullable=False)
    access_key = Column(String(255), nullable=False)
    secret_key_encrypted = Column(Text, nullable=False)
    region = Column(String(64), nullable=False, default="")
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, default="")
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    user: Mapped["User"] = relationship("User", back_populates="credentials")
    tasks: Mapped[List["Task"]] = relationship(
        "Task", back_populates="credential", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Credential {self.cloud_provider} {self.id[:8]}...>"


class Task(Base):
    """One requested adapter operation and its lifecycle."""

    __tablename__ = "tasks"
    __table_args__ = (
        Index("ix_tasks_user_id_created_at", "user_id", "created_at"),
        Index("ix_tasks_lookup", "user_id", "credential_id", "task_type", "status"),
    )

    id = Column(String(32), primary_key=True, default=generate_id)
    user_id = Column(String(32), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    credential_id = Column(String(32), ForeignKey("credentials.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(255), nullable=False, default="")
    task_type = Column(String(32), nullable=False)
    status = Column(String(16), nullable=False, default=TaskStatus.PENDING)
    params = Column(Text, nullable=False, default="{}")
    start_time = Column(DateTime, nullable=True)
    end_time = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    credential: Mapped["Credential"] = relationship("Credential", back_populates="tasks")
    results: Mapped[List["TaskResult"]] = relationship(
        "TaskResult",
        back_populates="task",
        cascade="all, delete-orphan",
        order_by="TaskResult.timestamp",
    )

    def __repr__(self) -> str:
        return f"<Task {self.task_type} {self.status} {self.id[:8]}...>"


class TaskResult(Base):
    """Serialized adapter output (or failure reason) attached to a task."""

    __tablename__ = "task_results"

    id = Column(String(32), primary_key=True, default=generate_id)
    task_id = Column(String(32), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    result = Column(Text, nullable=False, default="")
    error = Column(Text, nullable=False, default="")
    timestamp = Column(DateTime, default=utcnow, nullable=False)

    task: Mapped["Task"] = relationship("Task", back_populates="results")

    def __repr__(self) -> str:
        return f"<TaskResult {self.id[:8]}...>"


class AuditLog(Base):
    """Audit log entry for security and operational events."""

    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("ix_audit_logs_created_at", "created_at"),
        Index("ix_audit_logs_user_id", "user_id"),
        Index("ix_audit_logs_event_type", "event_type"),
    )

    id = Column(String(32), primary_key=True, default=generate_id)
    user_id = Column(String(32), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    event_type = Column(String(128), nullable=False)
    ip = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)
    path = Column(String(255), nullable=True)
    method = Column(String(16), nullable=True)
    data_json = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    def __repr__(self) -> str:
        return f"<AuditLog {self.event_type} {self.id[:8]}...>"
