"""Exception handlers mapping the error taxonomy onto HTTP responses.

Every error body has the same shape
(:class:`~smsrental.api.schemas.ErrorResponse`)::

    {"error": "...", "code": "rejected", "retryable": false, "hint": "..."}

``code`` is the :class:`~smsrental.core.exceptions.FailureKind` tag, so
clients can branch on it without parsing the message.
"""

from __future__ import annotations

import logging
from typing import Final

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from smsrental.api.schemas import ErrorResponse
from smsrental.core.exceptions import FailureKind, ProviderRateLimitError, SmsRentalError

__all__ = ["STATUS_BY_KIND", "add_exception_handlers"]

logger = logging.getLogger(__name__)

#: HTTP status for each failure tag.
STATUS_BY_KIND: Final[dict[FailureKind, int]] = {
    FailureKind.NOT_FOUND: 404,
    FailureKind.ALREADY_TERMINAL: 409,
    FailureKind.DUPLICATE_ASSIGNMENT: 409,
    FailureKind.REJECTED: 422,
    FailureKind.PARSE_FAILURE: 502,
    FailureKind.UNAVAILABLE: 503,
    FailureKind.RATE_LIMITED: 503,
    FailureKind.RELAY_EXHAUSTED: 503,
    FailureKind.CONFIG: 503,
    FailureKind.STORAGE: 500,
    FailureKind.INTERNAL: 500,
}


def add_exception_handlers(app: FastAPI) -> None:
    """Register the error handlers on *app*."""

    @app.exception_handler(SmsRentalError)
    async def smsrental_exception_handler(request: Request, exc: SmsRentalError) -> JSONResponse:
        status = STATUS_BY_KIND.get(exc.kind, 500)
        if status >= 500:
            logger.warning("%s %s -> %d: %s", request.method, request.url.path, status, exc)
        headers: dict[str, str] = {}
        if isinstance(exc, ProviderRateLimitError) and exc.retry_after is not None:
            headers["Retry-After"] = str(int(exc.retry_after))
        return JSONResponse(
            status_code=status,
            content=ErrorResponse(
                error=str(exc),
                code=str(exc.kind),
                retryable=exc.retryable,
                hint=getattr(exc, "hint", None),
            ).model_dump(),
            headers=headers or None,
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(error=str(exc.detail), code="http_error").model_dump(),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content=ErrorResponse(
                error=f"Input validation failed: {exc.errors()[0].get('msg', '') if exc.errors() else ''}",
                code="validation_error",
            ).model_dump(),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "Unhandled exception on %s %s: %s",
            request.method,
            request.url.path,
            exc,
            exc_info=True,
        )
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(error="An internal error occurred.", code="internal").model_dump(),
        )
