import json
import time
from pathlib import Path

from sqlalchemy.orm import sessionmaker

from cloudrecon.cloud import factory as provider_factory
from cloudrecon.config import Settings, get_settings
from cloudrecon.core.crypto import encrypt_secret
from cloudrecon.core.exceptions import NoResultsError, UpstreamError
from cloudrecon.db import Base, dispose_engine
from cloudrecon.db.database import get_engine
from cloudrecon.db.models import Credential, TaskStatus, User
from cloudrecon.tasks.queue import InMemoryTaskQueue
from cloudrecon.tasks.store import TaskStore
from cloudrecon.tasks.worker import Worker, start_workers, stop_workers


def _setup_db(tmp_path: Path, monkeypatch):
    db_path = tmp_path / "worker.db"
    db_url = f"sqlite:///{db_path.as_posix()}"
    monkeypatch.setenv("DATABASE_URL", db_url)
    monkeypatch.setenv("DATABASE_URL_POSTGRES", "")
    monkeypatch.setenv("BOOTSTRAP_ADMIN_ENABLED", "false")
    get_settings.cache_clear()
    dispose_engine()
    engine = get_engine()
    Base.metadata.create_all(bind=engine)
    return engine


def _seed(engine, provider="AWS", region=""):
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    db = SessionLocal()
    try:
        user = User(email="worker@example.com", username="worker-user", hashed_password="hashed", is_active=True)
        db.add(user)
        db.flush()
        credential = Credential(
            user_id=user.id,
            cloud_provider=provider,
            access_key="AKIATEST",
            secret_key_encrypted=encrypt_secret("secret"),
            region=region,
            name="worker-cred",
        )
        db.add(credential)
        db.commit()
        return user.id, credential.id
    finally:
        db.close()


class ScriptedAdapter:
    """Adapter double recording calls and replaying canned outcomes."""

    tag = "AWS"
    region = ""

    def __init__(self, enumerate_result=None, error=None):
        self.enumerate_result = enumerate_result or {"instances": []}
        self.error = error
        self.calls = []

    def _outcome(self, name, *args, value=None):
        self.calls.append((name, args))
        if self.error is not None:
            raise self.error
        return value

    def enumerate(self, resource_type):
        return self._outcome("enumerate", resource_type, value=self.enumerate_result)

    def escalate(self):
        return self._outcome("escalate", value={"user": "alice", "riskLevel": "Medium"})

    def operate(self, resource_type, action, resource_id, params):
        return self._outcome("operate", resource_type, action, resource_id, params, value={"message": "done"})

    def takeover(self):
        return self._outcome("takeover", value={"message": "Cloud platform takeover attempted"})

    def validate_credentials(self):
        return True

    def get_permissions(self):
        return {"permissions": []}


def _worker(adapter, queue=None, **settings):
    built = []

    def factory(tag, access_key, secret_key, region="", settings=None):
        built.append((tag, access_key, secret_key, region))
        return adapter

    worker = Worker(
        TaskStore(),
        queue,
        settings=Settings(queue_pop_timeout_seconds=1, queue_retry_interval_seconds=0.1, **settings),
        provider_factory=factory,
    )
    worker.built = built
    return worker


def test_enumerate_with_partial_errors_completes(tmp_path, monkeypatch):
    engine = _setup_db(tmp_path, monkeypatch)
    user_id, cred_id = _seed(engine)
    payload = {
        "instances": [{"instanceId": "i-1", "region": "us-east-1"}],
        "errors": ["EC2 (us-west-2): AccessDenied"],
    }
    adapter = ScriptedAdapter(enumerate_result=payload)
    worker = _worker(adapter)
    store = worker.store
    task = store.create_task(user_id, cred_id, "enumerate", '{"resource_type": "ec2"}')

    done = worker.process_task(task.id)

    assert done.status == TaskStatus.COMPLETED
    assert done.start_time is not None and done.end_time is not None
    results = store.list_results(task.id)
    assert len(results) == 1
    assert json.loads(results[0].result) == payload
    assert results[0].error == ""
    assert adapter.calls == [("enumerate", ("ec2",))]
    assert worker.built == [("AWS", "AKIATEST", "secret", "")]
    dispose_engine()


def test_unsupported_provider_fails_task(tmp_path, monkeypatch):
    engine = _setup_db(tmp_path, monkeypatch)
    user_id, cred_id = _seed(engine, provider="Oracle")
    store = TaskStore()
    task = store.create_task(user_id, cred_id, "escalate", "{}")

    done = Worker(store, None, settings=Settings()).process_task(task.id)

    assert done.status == TaskStatus.FAILED
    assert store.list_results(task.id)[0].error == "Failed to create cloud provider"
    dispose_engine()


def test_unknown_task_type_fails_after_adapter_built(tmp_path, monkeypatch):
    engine = _setup_db(tmp_path, monkeypatch)
    user_id, cred_id = _seed(engine)
    adapter = ScriptedAdapter()
    worker = _worker(adapter)
    task = worker.store.create_task(user_id, cred_id, "exfil", "{}")

    done = worker.process_task(task.id)

    assert done.status == TaskStatus.FAILED
    assert worker.store.list_results(task.id)[0].error == "Unsupported task type"
    assert adapter.calls == []
    dispose_engine()


def test_enumerate_without_resource_type(tmp_path, monkeypatch):
    engine = _setup_db(tmp_path, monkeypatch)
    user_id, cred_id = _seed(engine)
    worker = _worker(ScriptedAdapter())
    task = worker.store.create_task(user_id, cred_id, "enumerate", '{"resource_type": 7}')

    worker.process_task(task.id)

    assert worker.store.list_results(task.id)[0].error == "Invalid resource type"
    dispose_engine()


def test_operate_missing_keys_and_non_object_params(tmp_path, monkeypatch):
    engine = _setup_db(tmp_path, monkeypatch)
    user_id, cred_id = _seed(engine)
    worker = _worker(ScriptedAdapter())
    missing = worker.store.create_task(user_id, cred_id, "operate", '{"resource_type": "s3"}')
    not_object = worker.store.create_task(user_id, cred_id, "escalate", "[1, 2]")

    worker.process_task(missing.id)
    worker.process_task(not_object.id)

    assert worker.store.list_results(missing.id)[0].error == "Invalid parameters"
    assert worker.store.list_results(not_object.id)[0].error == "Invalid parameters"
    dispose_engine()


def test_operate_forwards_full_parameter_map(tmp_path, monkeypatch):
    engine = _setup_db(tmp_path, monkeypatch)
    user_id, cred_id = _seed(engine)
    adapter = ScriptedAdapter()
    worker = _worker(adapter)
    params = {"resource_type": "s3", "action": "download", "resource_id": "reports", "key": "q1.csv"}
    task = worker.store.create_task(user_id, cred_id, "operate", json.dumps(params))

    assert worker.process_task(task.id).status == TaskStatus.COMPLETED

    name, args = adapter.calls[0]
    assert name == "operate"
    assert args[:3] == ("s3", "download", "reports")
    assert args[3]["key"] == "q1.csv"
    dispose_engine()


def test_adapter_error_message_becomes_failure_reason(tmp_path, monkeypatch):
    engine = _setup_db(tmp_path, monkeypatch)
    user_id, cred_id = _seed(engine)
    worker = _worker(ScriptedAdapter(error=NoResultsError(errors=["EC2 (us-east-1): denied"])))
    task = worker.store.create_task(user_id, cred_id, "enumerate", '{"resource_type": "ec2"}')

    done = worker.process_task(task.id)

    assert done.status == TaskStatus.FAILED
    result = worker.store.list_results(task.id)[0]
    assert result.error == "failed to enumerate any resources"
    assert result.result == ""
    dispose_engine()


def test_unexpected_adapter_exception_fails_task(tmp_path, monkeypatch):
    engine = _setup_db(tmp_path, monkeypatch)
    user_id, cred_id = _seed(engine)
    worker = _worker(ScriptedAdapter(error=RuntimeError("socket closed")))
    task = worker.store.create_task(user_id, cred_id, "takeover", "{}")

    assert worker.process_task(task.id).status == TaskStatus.FAILED
    assert worker.store.list_results(task.id)[0].error == "socket closed"
    dispose_engine()


def test_deleted_credential_fails_task(tmp_path, monkeypatch):
    engine = _setup_db(tmp_path, monkeypatch)
    user_id, cred_id = _seed(engine)
    worker = _worker(ScriptedAdapter())
    task = worker.store.create_task(user_id, cred_id, "escalate", "{}")
    monkeypatch.setattr(worker.store, "load_credential", lambda credential_id: None)

    worker.process_task(task.id)

    assert worker.store.list_results(task.id)[0].error == "Credential not found"
    dispose_engine()


def test_undecryptable_secret_fails_task(tmp_path, monkeypatch):
    engine = _setup_db(tmp_path, monkeypatch)
    user_id, cred_id = _seed(engine)
    worker = _worker(ScriptedAdapter())
    task = worker.store.create_task(user_id, cred_id, "escalate", "{}")
    monkeypatch.setenv("SECRET_KEY", "rotated-key")
    get_settings.cache_clear()

    worker.process_task(task.id)

    assert worker.store.list_results(task.id)[0].error == "Failed to create cloud provider"
    get_settings.cache_clear()
    dispose_engine()


def test_redelivered_terminal_task_is_untouched(tmp_path, monkeypatch):
    engine = _setup_db(tmp_path, monkeypatch)
    user_id, cred_id = _seed(engine)
    adapter = ScriptedAdapter()
    worker = _worker(adapter)
    task = worker.store.create_task(user_id, cred_id, "escalate", "{}")
    first = worker.process_task(task.id)

    again = worker.process_task(task.id)

    assert again == first
    assert len(adapter.calls) == 1
    assert len(worker.store.list_results(task.id)) == 1
    dispose_engine()


def test_running_task_is_resumed_keeping_start_time(tmp_path, monkeypatch):
    engine = _setup_db(tmp_path, monkeypatch)
    user_id, cred_id = _seed(engine)
    worker = _worker(ScriptedAdapter())
    task = worker.store.create_task(user_id, cred_id, "escalate", "{}")
    worker.store.update_status(task.id, TaskStatus.RUNNING)
    started = worker.store.get_task(task.id).start_time

    done = worker.process_task(task.id)

    assert done.status == TaskStatus.COMPLETED
    assert done.start_time == started
    dispose_engine()


def test_unknown_task_id_is_dropped(tmp_path, monkeypatch):
    _setup_db(tmp_path, monkeypatch)
    assert _worker(ScriptedAdapter()).process_task("missing") is None
    dispose_engine()


def _wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.05)
    return False


def test_worker_loop_consumes_queue_and_acks(tmp_path, monkeypatch):
    engine = _setup_db(tmp_path, monkeypatch)
    user_id, cred_id = _seed(engine)
    queue = InMemoryTaskQueue()
    worker = _worker(ScriptedAdapter(), queue)
    task = worker.store.create_task(user_id, cred_id, "escalate", "{}")
    queue.push(task.id)

    worker.start()
    try:
        assert _wait_for(lambda: worker.store.get_task(task.id).status == TaskStatus.COMPLETED)
        assert _wait_for(lambda: queue.inflight() == [])
    finally:
        worker.stop(timeout=3)

    assert not worker.is_running
    dispose_engine()


def test_worker_loop_leaves_id_inflight_when_processing_aborts(tmp_path, monkeypatch):
    engine = _setup_db(tmp_path, monkeypatch)
    user_id, cred_id = _seed(engine)
    queue = InMemoryTaskQueue()
    worker = _worker(ScriptedAdapter(), queue)
    task = worker.store.create_task(user_id, cred_id, "escalate", "{}")

    def broken_get_task(task_id):
        raise RuntimeError("database went away")

    monkeypatch.setattr(worker.store, "get_task", broken_get_task)
    queue.push(task.id)

    worker.start()
    try:
        assert _wait_for(lambda: queue.inflight() == [task.id])
    finally:
        worker.stop(timeout=3)

    assert queue.requeue_inflight() == 1
    dispose_engine()


def test_start_workers_requeues_inflight_first(tmp_path, monkeypatch):
    engine = _setup_db(tmp_path, monkeypatch)
    user_id, cred_id = _seed(engine)
    monkeypatch.setitem(
        provider_factory.PROVIDER_BUILDERS,
        "AWS",
        lambda access_key, secret_key, region="", settings=None: ScriptedAdapter(),
    )
    store = TaskStore()
    task = store.create_task(user_id, cred_id, "escalate", "{}")
    queue = InMemoryTaskQueue()
    queue.push(task.id)
    queue.pop(0.1)

    settings = Settings(worker_count=2, queue_pop_timeout_seconds=1, queue_retry_interval_seconds=0.1)
    workers = start_workers(queue, settings, store)
    try:
        assert len(workers) == 2
        assert _wait_for(lambda: store.get_task(task.id).status == TaskStatus.COMPLETED)
    finally:
        stop_workers(workers, timeout=3)

    assert all(not w.is_running for w in workers)
    dispose_engine()


def test_upstream_error_message_recorded(tmp_path, monkeypatch):
    engine = _setup_db(tmp_path, monkeypatch)
    user_id, cred_id = _seed(engine)
    worker = _worker(ScriptedAdapter(error=UpstreamError("failed to get federation token: denied")))
    task = worker.store.create_task(
        user_id, cred_id, "operate", '{"resource_type": "iam", "action": "federated_login", "resource_id": ""}'
    )

    worker.process_task(task.id)

    assert worker.store.list_results(task.id)[0].error == "failed to get federation token: denied"
    dispose_engine()


def test_worker_without_queue_idles_and_stops_promptly(tmp_path, monkeypatch):
    engine = _setup_db(tmp_path, monkeypatch)
    user_id, cred_id = _seed(engine)
    adapter = ScriptedAdapter()
    store = TaskStore()
    task = store.create_task(user_id, cred_id, "escalate", "{}")
    worker = Worker(
        store,
        None,
        settings=Settings(queue_retry_interval_seconds=0.05),
        provider_factory=lambda *args, **kwargs: adapter,
    )

    waits = []
    real_wait = worker._stop.wait

    def counting_wait(timeout=None):
        waits.append(timeout)
        return real_wait(timeout)

    monkeypatch.setattr(worker._stop, "wait", counting_wait)

    worker.start()
    time.sleep(0.4)
    assert worker.is_running

    stopped_at = time.monotonic()
    worker.stop(timeout=2)
    assert time.monotonic() - stopped_at < 1.0
    assert not worker.is_running

    assert 2 <= len(waits) <= 20
    assert set(waits) == {0.05}
    assert adapter.calls == []
    assert store.get_task(task.id).status == TaskStatus.PENDING
    dispose_engine()
