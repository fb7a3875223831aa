"""Tests for the boxstore API error model, request ids and health endpoint.

Tests cover:
A) Storage errors map to the documented status codes
B) Error envelope shape {error, message, details, request_id}
C) X-Request-Id echoed or generated
D) Generic exception handling (500 with safe message, no stack traces)
"""

from __future__ import annotations

import uuid
from datetime import datetime

import pytest
from fastapi import APIRouter
from fastapi.testclient import TestClient

from boxstore.api.error_model import ERROR_KIND_TO_STATUS, get_status_for_error_kind
from boxstore.api.main import create_app
from boxstore.api.routes.health import BOXSTORE_VERSION
from boxstore.config import StorageSettings
from boxstore.storage import errors


@pytest.fixture
def client(settings: StorageSettings) -> TestClient:
    """Create a test client for the boxstore API."""
    return TestClient(create_app(settings=settings), raise_server_exceptions=False)


class TestStatusMapping:
    """Each storage error kind has exactly one status code."""

    @pytest.mark.parametrize(
        "error,status",
        [
            (errors.ValidationError("bad"), 400),
            (errors.PathTraversalError(), 400),
            (errors.ArtifactNotFoundError(), 404),
            (errors.UploadTimeoutError("slow"), 408),
            (errors.MissingChunksError([1], 3), 409),
            (errors.SizeLimitExceededError(11, 10), 413),
            (errors.RangeNotSatisfiableError(10), 416),
            (errors.SizeMismatchError(1, 5_000_000, 1_048_576), 422),
            (errors.ChecksumMismatchError("sha256"), 422),
            (errors.StorageIOError(), 500),
            (errors.InsufficientStorageError(), 507),
        ],
    )
    def test_kind_to_status(self, error: errors.ArtifactStorageError, status: int) -> None:
        """Error kinds map to their HTTP status."""
        assert get_status_for_error_kind(error.kind) == status

    def test_unknown_kind_is_500(self) -> None:
        """Unmapped kinds fail closed to 500."""
        assert get_status_for_error_kind("SOMETHING_NEW") == 500

    def test_every_kind_is_mapped(self) -> None:
        """No storage error subclass is missing from the status map."""
        kinds = {
            cls.kind
            for cls in vars(errors).values()
            if isinstance(cls, type) and issubclass(cls, errors.ArtifactStorageError)
        }

        assert kinds <= set(ERROR_KIND_TO_STATUS)


class TestErrorEnvelope:
    """The error payload never changes shape."""

    def test_not_found_envelope(self, client: TestClient) -> None:
        """404 carries error, message, details and request_id."""
        response = client.get(
            "/api/organization/o/box/b/version/1/provider/p/architecture/a/file/download"
        )

        assert response.status_code == 404
        body = response.json()
        assert set(body) == {"error", "message", "details", "request_id"}
        assert body["error"] == "NOT_FOUND"
        assert body["request_id"] == response.headers["X-Request-Id"]

    def test_generic_exception_is_safe(self, settings: StorageSettings) -> None:
        """Unhandled exceptions return INTERNAL_ERROR without internals."""
        app = create_app(settings=settings)
        router = APIRouter()

        @router.get("/explode")
        def explode() -> None:
            raise RuntimeError("secret internal detail")

        app.include_router(router)
        client = TestClient(app, raise_server_exceptions=False)

        response = client.get("/explode")

        assert response.status_code == 500
        body = response.json()
        assert body["error"] == "INTERNAL_ERROR"
        assert "secret" not in response.text


class TestRequestId:
    """X-Request-Id propagation."""

    def test_incoming_request_id_is_echoed(self, client: TestClient) -> None:
        """A caller-supplied request id is returned unchanged."""
        request_id = str(uuid.uuid4())

        response = client.get("/health", headers={"X-Request-Id": request_id})

        assert response.headers["X-Request-Id"] == request_id

    def test_request_id_generated_when_absent(self, client: TestClient) -> None:
        """A UUID is generated when the caller sends none."""
        response = client.get("/health")

        assert uuid.UUID(response.headers["X-Request-Id"])


class TestHealth:
    """GET /health."""

    def test_health_ok(self, client: TestClient) -> None:
        """Health returns status, version and an ISO-8601 time."""
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["version"] == BOXSTORE_VERSION
        datetime.fromisoformat(data["time"])
