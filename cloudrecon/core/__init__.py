"""Core module with logging, middleware, and exception handling."""

from cloudrecon.core.exceptions import setup_exception_handlers
from cloudrecon.core.logging import get_logger, setup_logging
from cloudrecon.core.middleware import RequestContextMiddleware

__all__ = [
    "get_logger",
    "setup_logging",
    "RequestContextMiddleware",
    "setup_exception_handlers",
]
