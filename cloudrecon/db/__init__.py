"""Database module for CloudRecon."""

from cloudrecon.db.database import (
    Base,
    create_schema,
    dispose_engine,
    get_db,
    get_engine,
    get_session_local,
    verify_database_connection,
)
from cloudrecon.db.models import (
    AuditLog,
    Credential,
    Session,
    Task,
    TaskResult,
    TaskStatus,
    TaskType,
    User,
)

__all__ = [
    # Database infrastructure
    "Base",
    "create_schema",
    "get_db",
    "get_engine",
    "get_session_local",
    "dispose_engine",
    "verify_database_connection",
    # Accounts
    "User",
    "Session",
    "AuditLog",
    # Task execution
    "Credential",
    "Task",
    "TaskResult",
    "TaskStatus",
    "TaskType",
]
