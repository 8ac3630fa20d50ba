"""Run task workers without the HTTP API.

Usage:
    python -m cloudrecon.scripts.run_worker [--workers N]

Uses the configured database and queue. With QUEUE_BACKEND=memory there is
nothing to consume from another process, so a shared redis queue is required.
"""

from __future__ import annotations

import argparse
import signal
import sys
import threading

from cloudrecon.config import get_settings
from cloudrecon.core.logging import get_logger, setup_logging
from cloudrecon.db import create_schema, dispose_engine, verify_database_connection
from cloudrecon.tasks.queue import get_task_queue
from cloudrecon.tasks.worker import start_workers, stop_workers

logger = get_logger(__name__)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Run CloudRecon task workers")
    parser.add_argument("--workers", type=int, default=None, help="Override WORKER_COUNT")
    args = parser.parse_args(argv)

    settings = get_settings()
    if args.workers is not None:
        if args.workers < 1:
            print("Error: --workers must be at least 1", file=sys.stderr)
            sys.exit(1)
        settings = settings.model_copy(update={"worker_count": args.workers})

    setup_logging(
        level=settings.log_level,
        json_output=not settings.debug,
        log_file=settings.log_file or None,
    )

    if settings.queue_backend == "memory":
        print("Error: QUEUE_BACKEND=memory cannot be shared with the API process", file=sys.stderr)
        sys.exit(1)

    if settings.auto_create_schema:
        create_schema()
    if not verify_database_connection():
        print("Error: database connection failed", file=sys.stderr)
        sys.exit(1)

    queue = get_task_queue(settings)
    workers = start_workers(queue, settings)
    logger.info("Standalone workers running", data={"count": len(workers)})

    stopped = threading.Event()

    def _handle_signal(signum, _frame):
        logger.info("Stop signal received", data={"signal": signum})
        stopped.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    stopped.wait()
    stop_workers(workers, timeout=settings.queue_pop_timeout_seconds + 1)
    dispose_engine()


if __name__ == "__main__":
    main()
