"""Exception handlers registered by create_app.

Every failure leaves the API in the same JSON envelope (see error_model).
Storage outcomes map onto 400/404/410/500, authentication failures collapse
into one indistinguishable 401, and anything unexpected becomes a bare 500.
"""

import logging
from typing import Any

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from ephemstore.api.error_model import error_code_for_status, make_error_response
from ephemstore.auth.errors import AuthenticationError
from ephemstore.storage.errors import (
    InvalidObjectIdError,
    ObjectExpiredError,
    ObjectNotFoundError,
    ObjectStorageError,
)

logger = logging.getLogger(__name__)

# (status, code, message) returned for each client-visible storage outcome.
_STORAGE_OUTCOMES: tuple[tuple[type[ObjectStorageError], int, str, str], ...] = (
    (InvalidObjectIdError, 400, "INVALID_ID", "Invalid file ID"),
    (ObjectNotFoundError, 404, "NOT_FOUND", "File not found"),
    (ObjectExpiredError, 410, "EXPIRED", "File has expired"),
)


class EphemstoreHttpError(Exception):
    """Raised by route handlers to answer with a specific status and code."""

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = details


async def ephemstore_http_error_handler(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, EphemstoreHttpError)

    return make_error_response(
        request,
        code=exc.code,
        message=exc.message,
        http_status=exc.status_code,
        details=exc.details,
    )


async def storage_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Map storage outcomes to HTTP statuses.

    Backend faults are logged with their cause and reported generically.
    """
    assert isinstance(exc, ObjectStorageError)

    for error_type, status, code, message in _STORAGE_OUTCOMES:
        if isinstance(exc, error_type):
            return make_error_response(request, code=code, message=message, http_status=status)

    logger.error("Storage failure on %s %s: %s", request.method, request.url.path, exc)
    return make_error_response(
        request,
        code="STORAGE_ERROR",
        message="Storage operation failed",
        http_status=500,
    )


async def authentication_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Answer every authentication failure with the same 401 body."""
    assert isinstance(exc, AuthenticationError)

    logger.info(
        "Unauthorized %s %s: %s",
        request.method,
        request.url.path,
        exc.reason or type(exc).__name__,
    )
    return make_error_response(
        request,
        code="UNAUTHORIZED",
        message="Unauthorized",
        http_status=401,
    )


async def http_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Wrap routing errors (unknown path, wrong method) in the envelope."""
    assert isinstance(exc, HTTPException)

    return make_error_response(
        request,
        code=error_code_for_status(exc.status_code),
        message=str(exc.detail or exc.status_code),
        http_status=exc.status_code,
    )


def _field_name(location: tuple[Any, ...]) -> str:
    parts = [str(part) for part in location[1:]] if location else []
    return ".".join(parts) or "request"


async def request_validation_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Report which fields failed validation, without echoing their input."""
    assert isinstance(exc, RequestValidationError)

    fields = [
        {"field": _field_name(tuple(err.get("loc", ()))), "message": err.get("msg", "invalid")}
        for err in exc.errors()
    ]
    return make_error_response(
        request,
        code="BAD_REQUEST",
        message="Invalid request",
        http_status=400,
        details={"fields": fields} if fields else None,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last resort: log the traceback server-side and answer 500."""
    logger.exception(
        "Unhandled %s on %s %s",
        type(exc).__name__,
        request.method,
        request.url.path,
        extra={"request_id": getattr(request.state, "request_id", None)},
    )
    return make_error_response(
        request,
        code="INTERNAL_ERROR",
        message="Internal server error",
        http_status=500,
    )
