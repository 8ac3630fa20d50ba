"""Task execution: durable store, queue, parameter schemas and the worker."""

from cloudrecon.tasks.store import CredentialSecret, ResultRecord, TaskRecord, TaskStore

__all__ = ["TaskStore", "TaskRecord", "ResultRecord", "CredentialSecret"]
