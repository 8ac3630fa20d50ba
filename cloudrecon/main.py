"""
CloudRecon control plane.

FastAPI application hosting the task API, with the queue-fed workers
running as background threads in the same process.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from cloudrecon import __version__
from cloudrecon.api import (
    analysis_router,
    auth_router,
    cloud_router,
    credentials_router,
    health_router,
    tasks_router,
    user_router,
)
from cloudrecon.auth.bootstrap import ensure_bootstrap_admin
from cloudrecon.auth.session import cleanup_expired_sessions
from cloudrecon.config import get_settings
from cloudrecon.core import (
    RequestContextMiddleware,
    get_logger,
    setup_exception_handlers,
    setup_logging,
)
from cloudrecon.db import create_schema, dispose_engine, get_session_local, verify_database_connection
from cloudrecon.tasks.queue import get_task_queue
from cloudrecon.tasks.queue.factory import describe_queue
from cloudrecon.tasks.store import TaskStore
from cloudrecon.tasks.worker import start_workers, stop_workers

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    settings = get_settings()

    # Startup
    setup_logging(
        level=settings.log_level,
        json_output=not settings.debug,
        log_file=settings.log_file or None,
    )

    logger.info(
        "Starting CloudRecon",
        data={
            "host": settings.host,
            "port": settings.port,
            "debug": settings.debug,
            "cors_origins": settings.cors_origins_list,
            "queue_backend": settings.queue_backend,
            "provider_mode": settings.provider_mode,
        },
    )

    if settings.auto_create_schema:
        create_schema()

    db_ok = verify_database_connection()
    if db_ok:
        logger.info("Database connection verified")
        try:
            ensure_bootstrap_admin(settings)
        except Exception as exc:
            logger.error("Bootstrap admin failed", data={"error": str(exc)})

        db = get_session_local()()
        try:
            removed = cleanup_expired_sessions(db)
            if removed:
                logger.info("Removed expired sessions", data={"count": removed})
        finally:
            db.close()
    else:
        logger.warning("Database connection failed - check DATABASE_URL")

    _app.state.start_time = datetime.now(UTC)

    # Tests may pre-seed a store or queue on app.state.
    if getattr(_app.state, "task_store", None) is None:
        _app.state.task_store = TaskStore()
    if not hasattr(_app.state, "task_queue"):
        _app.state.task_queue = get_task_queue(settings)
    logger.info("Task queue ready", data={"backend": describe_queue(_app.state.task_queue)})

    _app.state.workers = []
    if settings.worker_enabled:
        _app.state.workers = start_workers(_app.state.task_queue, settings, _app.state.task_store)

    yield

    # Shutdown
    logger.info("Shutting down CloudRecon")
    stop_workers(_app.state.workers, timeout=settings.queue_pop_timeout_seconds + 1)
    close = getattr(_app.state.task_queue, "close", None)
    if close is not None:
        close()
    dispose_engine()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="CloudRecon",
        description="Multi-cloud credential reconnaissance and task execution control plane",
        version=__version__,
        lifespan=lifespan,
        docs_url=settings.docs_url,
        openapi_url=settings.openapi_url,
    )

    # Setup exception handlers (must be before middleware)
    setup_exception_handlers(app)

    # Request context (inject request ID, log requests)
    app.add_middleware(RequestContextMiddleware)

    allow_origin_regex = None
    if not settings.is_production:
        allow_origin_regex = r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$"

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
        allow_origin_regex=allow_origin_regex,
    )

    # Register routers
    app.include_router(health_router)
    app.include_router(auth_router)
    app.include_router(user_router)
    app.include_router(credentials_router)
    app.include_router(tasks_router)
    app.include_router(cloud_router)
    app.include_router(analysis_router)

    return app


# Create application instance
app = create_app()


def main() -> None:
    settings = get_settings()
    uvicorn.run("cloudrecon.main:app", host=settings.host, port=settings.port, reload=False)


if __name__ == "__main__":
    main()
