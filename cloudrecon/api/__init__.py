"""API routers."""

from cloudrecon.api.analysis import router as analysis_router
from cloudrecon.api.auth import router as auth_router
from cloudrecon.api.cloud import router as cloud_router
from cloudrecon.api.credentials import router as credentials_router
from cloudrecon.api.health import router as health_router
from cloudrecon.api.tasks import router as tasks_router
from cloudrecon.api.user import router as user_router

__all__ = [
    "analysis_router",
    "auth_router",
    "cloud_router",
    "credentials_router",
    "health_router",
    "tasks_router",
    "user_router",
]
