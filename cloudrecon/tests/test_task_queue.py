import os
import threading
import time
import uuid

import pytest

from cloudrecon.config import Settings
from cloudrecon.core.exceptions import QueueUnavailableError
from cloudrecon.tasks.queue import InMemoryTaskQueue, RedisTaskQueue, TaskQueue, get_task_queue
from cloudrecon.tasks.queue.factory import describe_queue


def test_memory_queue_is_fifo():
    queue = InMemoryTaskQueue()
    for task_id in ("a", "b", "c"):
        queue.push(task_id)

    assert [queue.pop(0.1) for _ in range(3)] == ["a", "b", "c"]
    assert queue.pop(0.05) is None


def test_memory_queue_push_is_idempotent_while_waiting():
    queue = InMemoryTaskQueue()
    queue.push("a")
    queue.push("a")

    assert len(queue) == 1


def test_memory_queue_pop_blocks_until_push():
    queue = InMemoryTaskQueue()
    threading.Timer(0.1, queue.push, args=("late",)).start()

    started = time.monotonic()
    assert queue.pop(2) == "late"
    assert time.monotonic() - started < 1.5


def test_memory_queue_ack_clears_inflight():
    queue = InMemoryTaskQueue()
    queue.push("a")
    queue.pop(0.1)
    assert queue.inflight() == ["a"]

    queue.ack("a")

    assert queue.inflight() == []
    assert queue.requeue_inflight() == 0


def test_memory_queue_requeue_puts_oldest_first():
    queue = InMemoryTaskQueue()
    for task_id in ("a", "b", "c"):
        queue.push(task_id)
    queue.pop(0.1)
    queue.pop(0.1)

    assert queue.requeue_inflight() == 2
    assert [queue.pop(0.1) for _ in range(3)] == ["a", "b", "c"]


def test_memory_queue_satisfies_protocol():
    assert isinstance(InMemoryTaskQueue(), TaskQueue)


def test_factory_backends():
    assert get_task_queue(Settings(queue_backend="none")) is None
    assert isinstance(get_task_queue(Settings(queue_backend="memory")), InMemoryTaskQueue)
    assert describe_queue(None) == "none"
    assert describe_queue(InMemoryTaskQueue()) == "memory"


def test_factory_redis_unreachable_degrades_to_none():
    settings = Settings(queue_backend="redis", redis_url="redis://127.0.0.1:1/0")
    assert get_task_queue(settings) is None


def test_redis_errors_surface_as_queue_unavailable():
    queue = RedisTaskQueue("redis://127.0.0.1:1/0", pop_timeout=1)

    with pytest.raises(QueueUnavailableError):
        queue.push("a")
    with pytest.raises(QueueUnavailableError):
        queue.pop(1)
    queue.close()


@pytest.fixture
def redis_queue():
    url = os.environ.get("REDIS_URL", "redis://localhost:6379/0")
    queue = RedisTaskQueue(url, f"test-queue-{uuid.uuid4().hex[:8]}", pop_timeout=1)
    try:
        queue.ping()
    except QueueUnavailableError:
        pytest.skip("redis not reachable")
    yield queue
    queue._client.delete(queue.name, queue.processing)
    queue.close()


@pytest.mark.integration
def test_redis_queue_fifo_and_ack(redis_queue):
    redis_queue.push("a")
    redis_queue.push("b")
    redis_queue.push("a")

    assert redis_queue.pop(1) == "b"
    assert redis_queue.pop(1) == "a"
    assert redis_queue.pop(1) is None

    redis_queue.ack("b")
    assert redis_queue._client.lrange(redis_queue.processing, 0, -1) == ["a"]


@pytest.mark.integration
def test_redis_queue_requeue_inflight_preserves_order(redis_queue):
    for task_id in ("a", "b", "c"):
        redis_queue.push(task_id)
    redis_queue.pop(1)
    redis_queue.pop(1)

    assert redis_queue.requeue_inflight() == 2
    assert [redis_queue.pop(1) for _ in range(3)] == ["a", "b", "c"]
