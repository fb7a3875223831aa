"""boxstore API error handling.

Global exception handlers:
- BoxstoreHttpError: Application-specific errors with structured envelope
- ArtifactStorageError: Storage failures, status chosen by error kind
- HTTPException: FastAPI/Starlette HTTP exceptions
- RequestValidationError: Pydantic validation errors
- Exception: Catch-all for unhandled exceptions (fail closed, no stack traces)
"""

import logging
from typing import Any

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from boxstore.api.error_model import (
    get_error_code_for_status,
    get_status_for_error_kind,
    make_error_response,
)
from boxstore.storage.errors import ArtifactStorageError, RangeNotSatisfiableError

logger = logging.getLogger(__name__)


class ErrorResponse(BaseModel):
    """Error envelope schema."""

    error: str
    message: str
    details: dict[str, Any] | None = None
    request_id: str | None = None


class BoxstoreHttpError(Exception):
    """Application-level HTTP error with structured error envelope.

    Attributes:
        status_code: HTTP status code (e.g., 403, 404).
        code: Machine-readable error code (e.g., "FORBIDDEN").
        message: Human-readable error message.
        details: Optional dict with additional error context.
    """

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


async def boxstore_http_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """FastAPI exception handler for BoxstoreHttpError."""
    assert isinstance(exc, BoxstoreHttpError)

    return make_error_response(
        request,
        code=exc.code,
        message=exc.message,
        http_status=exc.status_code,
        details=exc.details,
    )


async def artifact_storage_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """FastAPI exception handler for ArtifactStorageError.

    Only the status code varies by error kind; the payload shape is fixed.
    """
    assert isinstance(exc, ArtifactStorageError)

    status = get_status_for_error_kind(exc.kind)
    request_id = getattr(request.state, "request_id", None)
    if status >= 500:
        logger.error("Storage failure: %s", exc, extra={"request_id": request_id})
    else:
        logger.info(
            "Storage request rejected: %s %s", exc.kind, exc, extra={"request_id": request_id}
        )

    headers = None
    if isinstance(exc, RangeNotSatisfiableError):
        headers = {"Content-Range": f"bytes */{exc.size}", "Accept-Ranges": "bytes"}

    return make_error_response(
        request,
        code=exc.kind,
        message=exc.message,
        http_status=status,
        details=exc.details or None,
        headers=headers,
    )


async def http_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """FastAPI exception handler for HTTPException."""
    assert isinstance(exc, HTTPException)

    code = get_error_code_for_status(exc.status_code)
    message = str(exc.detail) if exc.detail else f"HTTP {exc.status_code}"

    return make_error_response(
        request,
        code=code,
        message=message,
        http_status=exc.status_code,
        details=None,
    )


async def request_validation_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """FastAPI exception handler for RequestValidationError.

    Does not expose raw validation internals.
    """
    assert isinstance(exc, RequestValidationError)

    safe_details: list[dict[str, Any]] = []
    for error in exc.errors():
        loc = error.get("loc", ())
        safe_loc = [str(part) for part in loc if part not in ("body", "query", "path", "header")]
        safe_details.append(
            {
                "field": ".".join(safe_loc) if safe_loc else "request",
                "message": error.get("msg", "Validation error"),
            }
        )

    return make_error_response(
        request,
        code="INVALID_REQUEST",
        message="Request validation failed",
        http_status=400,
        details={"errors": safe_details} if safe_details else None,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all exception handler for unhandled exceptions.

    Fails closed: returns 500 with safe generic message and logs the
    exception. Never exposes stack traces to clients.
    """
    request_id = getattr(request.state, "request_id", None)

    logger.exception(
        "Unhandled exception: %s",
        type(exc).__name__,
        extra={"request_id": request_id},
    )

    return make_error_response(
        request,
        code="INTERNAL_ERROR",
        message="An internal error occurred",
        http_status=500,
        details=None,
    )
