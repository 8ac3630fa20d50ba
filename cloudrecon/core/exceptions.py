"""Typed errors for the task execution core and their FastAPI handlers."""

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from cloudrecon.core.logging import get_logger, request_context

logger = get_logger(__name__)


class CloudReconError(Exception):
    """Base exception for CloudRecon."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        code: str = "E5000",
        details: dict = None,
    ):
        self.message = message
        self.status_code = status_code
        self.code = code
        self.details = details or {}
        super().__init__(message)


class BadRequestError(CloudReconError):
    """Validation failure at the API surface."""

    def __init__(self, message: str = "Bad request", details: dict = None):
        super().__init__(message, status_code=status.HTTP_400_BAD_REQUEST, code="E4000", details=details)


class AuthenticationError(CloudReconError):
    """Missing or invalid authentication."""

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message, status_code=status.HTTP_401_UNAUTHORIZED, code="E4010")


class NotFoundError(CloudReconError):
    """Resource does not exist or is not visible to the caller."""

    def __init__(self, message: str = "Resource not found"):
        super().__init__(message, status_code=status.HTTP_404_NOT_FOUND, code="E4040")


class ConflictError(CloudReconError):
    def __init__(self, message: str = "Conflict"):
        super().__init__(message, status_code=status.HTTP_409_CONFLICT, code="E4090")


class UnsupportedProviderError(CloudReconError):
    def __init__(self, provider: str):
        super().__init__(
            f"unsupported cloud provider: {provider}",
            status_code=status.HTTP_400_BAD_REQUEST,
            code="E4001",
            details={"provider": provider},
        )


class UnsupportedResourceTypeError(CloudReconError):
    def __init__(self, resource_type: str):
        super().__init__(
            f"unsupported resource type: {resource_type}",
            status_code=status.HTTP_400_BAD_REQUEST,
            code="E4002",
        )


class UnsupportedTaskTypeError(CloudReconError):
    def __init__(self, task_type: str):
        super().__init__(
            f"unsupported task type: {task_type}",
            status_code=status.HTTP_400_BAD_REQUEST,
            code="E4003",
        )


class AdapterInitError(CloudReconError):
    """Credential rejected while bootstrapping a provider SDK."""

    def __init__(self, message: str, provider: str = None):
        super().__init__(
            message,
            status_code=status.HTTP_502_BAD_GATEWAY,
            code="E3001",
            details={"provider": provider} if provider else {},
        )


class UpstreamError(CloudReconError):
    """A cloud SDK call failed (transport, denied, throttled)."""

    def __init__(self, message: str, provider: str = None, code: str = "E3000"):
        super().__init__(
            message,
            status_code=status.HTTP_502_BAD_GATEWAY,
            code=code,
            details={"provider": provider} if provider else {},
        )


class NoResultsError(UpstreamError):
    """Every enumeration unit failed."""

    def __init__(self, message: str = "failed to enumerate any resources", errors: list = None):
        super().__init__(message, code="E3002")
        self.errors = list(errors or [])
        if self.errors:
            self.details = {"errors": self.errors}


class QueueUnavailableError(CloudReconError):
    """Informational: the task queue is absent or unreachable."""

    def __init__(self, message: str = "Task queue unavailable"):
        super().__init__(message, status_code=status.HTTP_503_SERVICE_UNAVAILABLE, code="E5030")


def _request_id() -> str | None:
    ctx = request_context.get()
    return ctx.get("request_id") if ctx else None


def _envelope(status_code: int, code: str, message, extra: dict = None, headers=None) -> JSONResponse:
    content = {
        "detail": message,
        "error": {
            "code": code,
            "message": message,
            "request_id": _request_id(),
        },
    }
    if extra:
        content.update(extra)
    return JSONResponse(status_code=status_code, content=content, headers=headers)


def setup_exception_handlers(app: FastAPI) -> None:
    """Register exception handlers with FastAPI app."""

    @app.exception_handler(CloudReconError)
    async def cloudrecon_exception_handler(
        request: Request, exc: CloudReconError
    ) -> JSONResponse:
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(
            f"Request failed: {exc.message}",
            data={"status_code": exc.status_code, "code": exc.code, "details": exc.details},
        )
        return _envelope(exc.status_code, exc.code, exc.message, extra=exc.details)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        logger.warning("Validation error", data={"errors": exc.errors()})
        return _envelope(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            "E4220",
            "Validation error",
            extra={"errors": jsonable_errors(exc.errors())},
        )

    @app.exception_handler(ValidationError)
    async def validation_exception_handler(
        request: Request, exc: ValidationError
    ) -> JSONResponse:
        logger.warning("Validation error", data={"errors": exc.errors()})
        return _envelope(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            "E4220",
            "Validation error",
            extra={"errors": jsonable_errors(exc.errors())},
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(
        request: Request, exc: HTTPException
    ) -> JSONResponse:
        return _envelope(
            exc.status_code,
            f"E{exc.status_code}0",
            exc.detail,
            headers=exc.headers,
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        logger.error(
            f"Unhandled exception: {type(exc).__name__}: {exc}",
            exc_info=True,
        )
        return _envelope(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "E5000",
            "Internal server error",
        )


def jsonable_errors(errors: list) -> list:
    """Strip non-serialisable context from pydantic error entries."""
    cleaned = []
    for err in errors:
        item = {k: v for k, v in err.items() if k in ("loc", "msg", "type")}
        item["loc"] = [str(part) for part in item.get("loc", ())]
        cleaned.append(item)
    return cleaned
