"""Factory returning the configured task queue backend (redis|memory|none)."""

from __future__ import annotations

from typing import Optional

from cloudrecon.config import Settings
from cloudrecon.core.exceptions import QueueUnavailableError
from cloudrecon.core.logging import get_logger
from cloudrecon.tasks.queue.memory import InMemoryTaskQueue
from cloudrecon.tasks.queue.redis_queue import RedisTaskQueue

logger = get_logger(__name__)


def get_task_queue(settings: Settings):
    """Build the queue for ``settings.queue_backend``.

    Returns None for ``none`` and when redis cannot be reached at startup;
    the absence is logged and tasks stay ``pending`` until run out-of-band.

    Raises:
        ValueError: unknown backend name.
    """
    backend = settings.queue_backend

    if backend == "none":
        logger.warning("Task queue disabled; tasks stay pending until run explicitly")
        return None

    if backend == "memory":
        return InMemoryTaskQueue()

    if backend == "redis":
        if not settings.redis_url:
            logger.warning("QUEUE_BACKEND=redis but REDIS_URL is empty; running without a task queue")
            return None
        queue = RedisTaskQueue(
            settings.redis_url,
            settings.queue_name,
            pop_timeout=settings.queue_pop_timeout_seconds,
        )
        try:
            queue.ping()
        except QueueUnavailableError as exc:
            logger.warning("Task queue unreachable; running without it", data={"error": exc.message})
            return None
        logger.info("Task queue connected", data={"backend": "redis", "queue": settings.queue_name})
        return queue

    raise ValueError(f"Unknown queue_backend: {backend}. Use 'redis', 'memory' or 'none'")


def describe_queue(queue: Optional[object]) -> str:
    if queue is None:
        return "none"
    if isinstance(queue, RedisTaskQueue):
        return "redis"
    return "memory"
