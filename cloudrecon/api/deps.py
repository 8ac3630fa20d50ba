"""Shared router dependencies."""

from fastapi import Request

from cloudrecon.config import get_settings
from cloudrecon.services.task_service import TaskService
from cloudrecon.tasks.store import TaskStore


def get_task_service(request: Request) -> TaskService:
    """Task API surface bound to the app's store and queue."""
    state = request.app.state
    store = getattr(state, "task_store", None) or TaskStore()
    return TaskService(store, getattr(state, "task_queue", None), settings=get_settings())
