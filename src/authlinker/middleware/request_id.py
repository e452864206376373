"""Request ID middleware: propagates a caller's X-Request-Id or mints one."""

import re
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

MAX_REQUEST_ID_LENGTH = 64
_REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9._:-]+$")


def incoming_request_id(request: Request) -> str | None:
    """The caller's id if it is short and log-safe, otherwise None."""
    value = request.headers.get("X-Request-Id")
    if not value or len(value) > MAX_REQUEST_ID_LENGTH or not _REQUEST_ID_PATTERN.match(value):
        return None
    return value


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Bind a request id (plus method and path) to the structlog context and echo it back."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = incoming_request_id(request) or str(uuid.uuid4())
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )
        response = await call_next(request)
        response.headers["X-Request-Id"] = request_id
        return response
