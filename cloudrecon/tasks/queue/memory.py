"""In-process task queue.

Per-process only: the API and the worker threads must share the same
instance (the app keeps it on ``app.state.task_queue``).
"""

from __future__ import annotations

import threading
import time
from collections import deque
from typing import Deque, List, Optional


class InMemoryTaskQueue:
    """Thread-safe FIFO with an in-flight list, mirroring the redis backend."""

    def __init__(self):
        self._waiting: Deque[str] = deque()
        self._inflight: List[str] = []
        self._cond = threading.Condition()

    def push(self, task_id: str) -> None:
        with self._cond:
            if task_id in self._waiting:
                return
            self._waiting.append(task_id)
            self._cond.notify()

    def pop(self, timeout: float) -> Optional[str]:
        deadline = time.monotonic() + max(timeout, 0)
        with self._cond:
            while not self._waiting:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return None
                self._cond.wait(remaining)
            task_id = self._waiting.popleft()
            self._inflight.append(task_id)
            return task_id

    def ack(self, task_id: str) -> None:
        with self._cond:
            if task_id in self._inflight:
                self._inflight.remove(task_id)

    def requeue_inflight(self) -> int:
        with self._cond:
            moved = 0
            # Oldest in-flight id ends up at the head.
            while self._inflight:
                task_id = self._inflight.pop()
                if task_id not in self._waiting:
                    self._waiting.appendleft(task_id)
                    moved += 1
            if moved:
                self._cond.notify_all()
            return moved

    def __len__(self) -> int:
        with self._cond:
            return len(self._waiting)

    def inflight(self) -> List[str]:
        with self._cond:
            return list(self._inflight)
