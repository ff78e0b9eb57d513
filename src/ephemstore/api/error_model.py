"""JSON error envelope shared by every ephemstore error response.

    {"code": "NOT_FOUND", "message": "File not found", "details": null,
     "request_id": "..."}

request_id is always set and mirrored in the X-Request-Id response header.
"""

from __future__ import annotations

import uuid
from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse

REQUEST_ID_HEADER = "X-Request-Id"

_CODES_BY_STATUS: dict[int, str] = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    410: "GONE",
    413: "PAYLOAD_TOO_LARGE",
    500: "INTERNAL_ERROR",
    503: "SERVICE_UNAVAILABLE",
}


def error_code_for_status(status_code: int) -> str:
    return _CODES_BY_STATUS.get(status_code, "ERROR")


def resolve_request_id(request: Request) -> str:
    """Correlation id for this request.

    Prefers the id assigned by RequestIdMiddleware, then the inbound header.
    Errors raised before the middleware ran get a fresh UUID.
    """
    assigned = getattr(request.state, "request_id", None)
    if assigned is not None:
        return str(assigned)
    return request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())


def make_error_response(
    request: Request,
    *,
    code: str,
    message: str,
    http_status: int,
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    request_id = resolve_request_id(request)
    return JSONResponse(
        status_code=http_status,
        content={
            "code": code,
            "message": message,
            "details": details,
            "request_id": request_id,
        },
        headers={REQUEST_ID_HEADER: request_id},
    )
