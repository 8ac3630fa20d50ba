"""
Health check endpoints.

Provides liveness and readiness probes for monitoring.
"""

from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from cloudrecon import __version__
from cloudrecon.config import get_settings
from cloudrecon.core.exceptions import QueueUnavailableError
from cloudrecon.db import verify_database_connection
from cloudrecon.tasks.queue import RedisTaskQueue
from cloudrecon.tasks.queue.factory import describe_queue

router = APIRouter(tags=["health"])


@router.get("/health")
@router.get("/healthz")
async def healthcheck(request: Request) -> dict[str, Any]:
    """
    Health check endpoint.

    Returns basic service health status. Used by load balancers,
    orchestrators, and monitoring systems.
    """
    settings = get_settings()
    workers = getattr(request.app.state, "workers", None) or []
    return {
        "status": "ok",
        "version": __version__,
        "timestamp": datetime.now(UTC).isoformat(),
        "environment": settings.environment,
        "queue": describe_queue(getattr(request.app.state, "task_queue", None)),
        "workers": sum(1 for w in workers if w.is_running),
        "provider_mode": settings.provider_mode,
    }


@router.get("/readyz")
async def readiness(request: Request) -> JSONResponse:
    """
    Readiness check endpoint.

    The database must answer. A missing queue does not make the service
    unready (tasks stay pending), but an unreachable redis queue does.
    """
    checks: dict[str, bool] = {
        "database": verify_database_connection(),
        "config": True,
    }

    queue = getattr(request.app.state, "task_queue", None)
    if isinstance(queue, RedisTaskQueue):
        try:
            checks["queue"] = queue.ping()
        except QueueUnavailableError:
            checks["queue"] = False

    all_ready = all(checks.values())
    payload: dict[str, Any] = {
        "status": "ready" if all_ready else "not_ready",
        "timestamp": datetime.now(UTC).isoformat(),
        "checks": checks,
    }

    return JSONResponse(
        status_code=status.HTTP_200_OK if all_ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content=payload,
    )
