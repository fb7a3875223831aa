"""Shared error response builder for the boxstore API.

Every handler and middleware produces the same envelope:
- error: str - machine-readable error kind (e.g., "FILE_TOO_LARGE")
- message: str - human-readable error message
- details: dict | None - optional additional context (no filesystem paths)
- request_id: str - request correlation ID (always present)
"""

from __future__ import annotations

import uuid
from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse

ERROR_KIND_TO_STATUS: dict[str, int] = {
    "INVALID_REQUEST": 400,
    "PATH_TRAVERSAL": 400,
    "FORBIDDEN": 403,
    "NOT_FOUND": 404,
    "UPLOAD_TIMEOUT": 408,
    "MISSING_CHUNKS": 409,
    "FILE_TOO_LARGE": 413,
    "RANGE_NOT_SATISFIABLE": 416,
    "CHECKSUM_MISMATCH": 422,
    "SIZE_MISMATCH": 422,
    "UPLOAD_ERROR": 500,
    "INTERNAL_ERROR": 500,
    "NO_STORAGE_SPACE": 507,
}

HTTP_STATUS_TO_CODE: dict[int, str] = {
    400: "INVALID_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    408: "UPLOAD_TIMEOUT",
    409: "CONFLICT",
    413: "FILE_TOO_LARGE",
    415: "UNSUPPORTED_MEDIA_TYPE",
    416: "RANGE_NOT_SATISFIABLE",
    422: "UNPROCESSABLE_ENTITY",
    500: "INTERNAL_ERROR",
    503: "SERVICE_UNAVAILABLE",
    507: "NO_STORAGE_SPACE",
}


def _get_request_id(request: Request) -> str:
    """Extract or generate request_id for error responses.

    Priority:
    1. request.state.request_id (set by RequestIdMiddleware)
    2. X-Request-Id header (if present)
    3. Generate new UUID (fallback)
    """
    request_id: str | None = getattr(request.state, "request_id", None)
    if request_id is not None:
        return str(request_id)

    header_id: str | None = request.headers.get("X-Request-Id")
    if header_id:
        return header_id

    return str(uuid.uuid4())


def make_error_response(
    request: Request,
    *,
    code: str,
    message: str,
    http_status: int,
    details: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Build an error JSON response.

    Args:
        request: The FastAPI request object (for request_id extraction).
        code: Machine-readable error kind (e.g., "NOT_FOUND").
        message: Human-readable error message.
        http_status: HTTP status code.
        details: Optional dict with additional context.
        headers: Extra response headers (e.g., Content-Range on 416).

    Returns:
        JSONResponse with the error envelope and X-Request-Id header.
    """
    request_id = _get_request_id(request)

    body: dict[str, Any] = {
        "error": code,
        "message": message,
        "details": details,
        "request_id": request_id,
    }

    response = JSONResponse(status_code=http_status, content=body, headers=headers)
    response.headers["X-Request-Id"] = request_id

    return response


def get_status_for_error_kind(kind: str) -> int:
    """Get the HTTP status code for a storage error kind."""
    return ERROR_KIND_TO_STATUS.get(kind, 500)


def get_error_code_for_status(status_code: int) -> str:
    """Get standard error code for HTTP status code."""
    return HTTP_STATUS_TO_CODE.get(status_code, "ERROR")
