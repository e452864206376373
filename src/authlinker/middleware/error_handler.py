"""Global error handlers: typed link failures and everything else as consistent JSON."""

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from authlinker.links.errors import CooldownError, InvalidActionError, KeysNotLoadedError, LinkError

logger = structlog.get_logger()

INTERNAL_LINK_ERROR_MESSAGE = "Link service failure"


def link_error_response(exc: LinkError) -> JSONResponse:
    """Map a typed link failure onto an HTTP status.

    Storage and crypto details stay in the logs; callers only see the code.
    """
    if isinstance(exc, InvalidActionError):
        return JSONResponse(status_code=400, content={"detail": {"code": exc.code, "message": str(exc)}})
    if isinstance(exc, CooldownError):
        return JSONResponse(
            status_code=429,
            content={
                "detail": {"code": exc.code, "message": str(exc), "remaining_seconds": exc.remaining_seconds},
            },
            headers={"Retry-After": str(exc.remaining_seconds)},
        )
    if isinstance(exc, KeysNotLoadedError):
        return JSONResponse(status_code=503, content={"detail": {"code": exc.code, "message": str(exc)}})
    return JSONResponse(
        status_code=500,
        content={"detail": {"code": exc.code, "message": INTERNAL_LINK_ERROR_MESSAGE}},
    )


def setup_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers."""

    @app.exception_handler(LinkError)
    async def link_exception_handler(request: Request, exc: LinkError) -> JSONResponse:
        response = link_error_response(exc)
        if response.status_code >= 500:
            logger.error("link_request_failed", path=request.url.path, code=exc.code, error=str(exc))
        return response

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content={"detail": "Validation error", "errors": exc.errors()},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all for unhandled exceptions, always JSON."""
        logger.error(
            "unhandled_exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=exc,
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )
