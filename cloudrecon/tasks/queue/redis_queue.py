"""Redis-backed task queue.

Ids are LPUSHed onto ``<name>`` and popped with BLMOVE (right -> left) into
``<name>:processing``, so an id survives a worker crash until it is acked
with LREM. Works across processes and hosts.
"""

from __future__ import annotations

from typing import Optional

import redis

from cloudrecon.core.exceptions import QueueUnavailableError


class RedisTaskQueue:
    """At-least-once FIFO on two redis lists."""

    def __init__(self, redis_url: str, name: str = "task_queue", *, pop_timeout: float = 5.0, client=None):
        """Initialize the queue.

        Args:
            redis_url: Redis connection URL.
            name: List key holding waiting ids.
            pop_timeout: Longest blocking pop expected; the socket timeout is
                sized above it so BLMOVE never trips the client-side timeout.
            client: Pre-built ``redis.Redis`` (tests).
        """
        self.name = name
        self.processing = f"{name}:processing"
        self._client = client or redis.Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=pop_timeout + 5,
        )

    def ping(self) -> bool:
        try:
            return bool(self._client.ping())
        except redis.RedisError as exc:
            raise QueueUnavailableError(f"Task queue unavailable: {exc}") from exc

    def push(self, task_id: str) -> None:
        try:
            pipe = self._client.pipeline(transaction=True)
            pipe.lrem(self.name, 0, task_id)
            pipe.lpush(self.name, task_id)
            pipe.execute()
        except redis.RedisError as exc:
            raise QueueUnavailableError(f"Task queue unavailable: {exc}") from exc

    def pop(self, timeout: float) -> Optional[str]:
        try:
            return self._client.blmove(
                self.name,
                self.processing,
                max(int(timeout), 1),
                src="RIGHT",
                dest="LEFT",
            )
        except redis.RedisError as exc:
            raise QueueUnavailableError(f"Task queue unavailable: {exc}") from exc

    def ack(self, task_id: str) -> None:
        try:
            self._client.lrem(self.processing, 1, task_id)
        except redis.RedisError as exc:
            raise QueueUnavailableError(f"Task queue unavailable: {exc}") from exc

    def requeue_inflight(self) -> int:
        moved = 0
        try:
            # Newest first, so the oldest in-flight id ends up at the pop end.
            while self._client.lmove(self.processing, self.name, src="LEFT", dest="RIGHT") is not None:
                moved += 1
        except redis.RedisError as exc:
            raise QueueUnavailableError(f"Task queue unavailable: {exc}") from exc
        return moved

    def close(self) -> None:
        self._client.close()
