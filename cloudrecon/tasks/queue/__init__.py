"""Task queue abstractions.

A FIFO of task ids with blocking pop and at-least-once delivery. A popped id
stays "in flight" until ``ack``; ``requeue_inflight`` puts un-acked ids back
at the head of the queue so a crashed worker's tasks are redelivered.

Usage:
    from cloudrecon.tasks.queue import get_task_queue

    queue = get_task_queue(settings)   # None when no queue is available
    queue.push(task.id)
    task_id = queue.pop(timeout=5)
    ...
    queue.ack(task_id)
"""

from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

__all__ = [
    "TaskQueue",
    "InMemoryTaskQueue",
    "RedisTaskQueue",
    "get_task_queue",
]


@runtime_checkable
class TaskQueue(Protocol):
    """Protocol for task queue backends."""

    def push(self, task_id: str) -> None:
        """Enqueue a task id. Pushing an id that is already waiting is a no-op.

        Raises:
            QueueUnavailableError: the backend cannot be reached.
        """
        ...

    def pop(self, timeout: float) -> Optional[str]:
        """Block up to ``timeout`` seconds for the next id; None when empty.

        Raises:
            QueueUnavailableError: the backend cannot be reached.
        """
        ...

    def ack(self, task_id: str) -> None:
        """Forget an in-flight id once its processing is finished."""
        ...

    def requeue_inflight(self) -> int:
        """Return every un-acked id to the queue. Returns how many were moved."""
        ...


from cloudrecon.tasks.queue.factory import get_task_queue  # noqa: E402
from cloudrecon.tasks.queue.memory import InMemoryTaskQueue  # noqa: E402
from cloudrecon.tasks.queue.redis_queue import RedisTaskQueue  # noqa: E402
