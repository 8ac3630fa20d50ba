"""Request-scoped context for logs and error envelopes."""

import secrets
import time
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from cloudrecon.core.logging import get_logger, request_context

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Stamp every request with an id, echo it back and log the outcome.

    A caller-supplied ``X-Request-ID`` is reused so operator tooling can
    correlate its own logs with ours.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = (request.headers.get(REQUEST_ID_HEADER) or "").strip()[:64] or secrets.token_hex(8)
        token = request_context.set(
            {"request_id": request_id, "path": request.url.path, "method": request.method}
        )
        started = time.perf_counter()
        try:
            response = await call_next(request)
            elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
            log = logger.warning if response.status_code >= 500 else logger.info
            log(
                f"{request.method} {request.url.path} -> {response.status_code}",
                data={"duration_ms": elapsed_ms},
            )
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            request_context.reset(token)
