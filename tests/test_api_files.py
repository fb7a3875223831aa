"""Tests for the artifact file routes.

Tests cover:
- Single-shot and chunked uploads over HTTP (201 create, 200 update)
- Full and ranged downloads, 416 with Content-Range: bytes */size
- Error envelope for checksum, size and validation failures
- info and delete endpoints
- Access resolver: unknown architecture (404) and denial (403)
- Client disconnect mid-upload (500 with upload details)
"""

from __future__ import annotations

import hashlib
import json
from typing import Any

import pytest
from fastapi import Request
from fastapi.testclient import TestClient

from boxstore.api.access import AllowAllAccessResolver
from boxstore.api.main import create_app
from boxstore.config import StorageSettings
from boxstore.metadata.store import InMemoryArtifactMetadataStore
from boxstore.storage.models import ArtifactId
from boxstore.storage.paths import StoragePathResolver

BASE = (
    "/api/organization/acme/box/ubuntu/version/1.0.0"
    "/provider/virtualbox/architecture/amd64/file"
)
ARCH_KEY = "acme/ubuntu/1.0.0/virtualbox/amd64"
PAYLOAD = b"vagrant-box-content-" * 500


class ReadOnlyAccessResolver(AllowAllAccessResolver):
    """Allows downloads, denies uploads and deletes."""

    def can_write(self, request: Request, artifact_id: ArtifactId) -> bool:
        return False


class UnknownArchitectureResolver(AllowAllAccessResolver):
    """Knows no architectures at all."""

    def resolve_architecture_id(self, artifact_id: ArtifactId) -> str | None:
        return None


@pytest.fixture
def client(
    settings: StorageSettings, metadata_store: InMemoryArtifactMetadataStore
) -> TestClient:
    """Create a test client over a temp storage root."""
    app = create_app(settings=settings, metadata_store=metadata_store)
    return TestClient(app, raise_server_exceptions=False)


def _upload(client: TestClient, data: bytes = PAYLOAD, **headers: str):
    return client.post(f"{BASE}/upload", content=data, headers=headers)


class TestSingleShotUpload:
    """Uploads without chunk headers."""

    def test_create_then_update(self, client: TestClient) -> None:
        """First upload is 201, re-upload is 200."""
        first = _upload(client)
        second = client.put(f"{BASE}/upload", content=PAYLOAD)

        assert first.status_code == 201
        body = first.json()
        assert body["message"] == "File upload completed"
        assert body["fileSize"] == len(PAYLOAD)
        assert body["path"] == f"{ARCH_KEY}/vagrant.box"
        assert body["details"]["isComplete"] is True
        assert body["details"]["status"] == "complete"

        assert second.status_code == 200

    def test_checksum_verified(self, client: TestClient) -> None:
        """A matching checksum is reported as verified."""
        digest = hashlib.sha512(PAYLOAD).hexdigest()

        response = _upload(client, **{"X-Checksum": digest, "X-Checksum-Type": "SHA512"})

        assert response.status_code == 201
        assert response.json()["details"]["checksumVerified"] is True

    def test_checksum_mismatch_returns_422_and_no_artifact(
        self, client: TestClient, settings: StorageSettings
    ) -> None:
        """A wrong checksum is rejected and nothing is downloadable."""
        response = _upload(client, **{"X-Checksum": "0" * 64, "X-Checksum-Type": "sha256"})

        assert response.status_code == 422
        body = response.json()
        assert body["error"] == "CHECKSUM_MISMATCH"
        assert body["message"] == "Checksum verification failed"
        assert "duration" in body["details"]
        assert body["details"]["maxFileSize"] == settings.max_file_size_label
        assert body["request_id"]

        assert client.get(f"{BASE}/download").status_code == 404

    def test_too_large_returns_413(self, client: TestClient, settings: StorageSettings) -> None:
        """A body above the ceiling is rejected with FILE_TOO_LARGE."""
        assert settings.max_file_size is not None
        response = _upload(client, b"\0" * (settings.max_file_size + 1))

        assert response.status_code == 413
        assert response.json()["error"] == "FILE_TOO_LARGE"

    def test_invalid_chunk_header_returns_400(self, client: TestClient) -> None:
        """Malformed chunk headers are INVALID_REQUEST."""
        response = _upload(client, **{"X-Chunk-Index": "x", "X-Total-Chunks": "2"})

        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_REQUEST"

    def test_traversal_segment_returns_400(self, client: TestClient) -> None:
        """A segment with a path separator never reaches the filesystem."""
        url = BASE.replace("/box/ubuntu/", "/box/a%5Cb/")

        response = client.post(f"{url}/upload", content=b"x")

        assert response.status_code == 400
        assert response.json()["error"] == "PATH_TRAVERSAL"


class TestChunkedUpload:
    """Uploads with X-Chunk-Index / X-Total-Chunks."""

    def test_out_of_order_chunks(self, client: TestClient, settings: StorageSettings) -> None:
        """Chunks sent as [2, 0, 1] reassemble and clear staging."""
        chunks = [b"abcdef", b"ghijkl", b"mnopqr"]
        responses = {}
        for index in (2, 0, 1):
            responses[index] = _upload(
                client,
                chunks[index],
                **{"X-Chunk-Index": str(index), "X-Total-Chunks": "3"},
            )

        progress = responses[2].json()
        assert responses[2].status_code == 200
        assert progress["message"] == "Chunk upload completed"
        assert progress["fileSize"] == len(chunks[2])
        assert progress["details"] == {
            "isComplete": False,
            "status": "in_progress",
            "chunkIndex": 2,
            "totalChunks": 3,
            "receivedChunks": 1,
        }

        final = responses[1]
        assert final.status_code == 201
        assert final.json()["details"]["isComplete"] is True
        assert final.json()["fileSize"] == 18

        download = client.get(f"{BASE}/download")
        assert download.content == b"abcdefghijklmnopqr"

        location = StoragePathResolver(settings.storage_dir).locate(
            ArtifactId("acme", "ubuntu", "1.0.0", "virtualbox", "amd64")
        )
        assert not location.staging_dir.exists()


class TestDownload:
    """Full and ranged downloads."""

    def test_round_trip(self, client: TestClient) -> None:
        """Downloaded bytes equal the uploaded bytes."""
        _upload(client)

        response = client.get(f"{BASE}/download")

        assert response.status_code == 200
        assert response.content == PAYLOAD
        assert response.headers["accept-ranges"] == "bytes"
        assert response.headers["content-length"] == str(len(PAYLOAD))
        assert "vagrant.box" in response.headers["content-disposition"]

    def test_range_request(self, client: TestClient) -> None:
        """A Range header returns 206 with the requested slice."""
        _upload(client)

        response = client.get(f"{BASE}/download", headers={"Range": "bytes=20-39"})

        assert response.status_code == 206
        assert response.content == PAYLOAD[20:40]
        assert response.headers["content-range"] == f"bytes 20-39/{len(PAYLOAD)}"

    def test_unsatisfiable_range_returns_416(self, client: TestClient) -> None:
        """A start beyond EOF returns 416 with the total size."""
        _upload(client)
        size = len(PAYLOAD)

        response = client.get(f"{BASE}/download", headers={"Range": f"bytes={size}-"})

        assert response.status_code == 416
        assert response.headers["content-range"] == f"bytes */{size}"
        body = response.json()
        assert body["error"] == "RANGE_NOT_SATISFIABLE"
        assert body["details"]["fileSize"] == size

    def test_missing_artifact_returns_404(self, client: TestClient) -> None:
        """Downloading before any upload is NOT_FOUND."""
        response = client.get(f"{BASE}/download")

        assert response.status_code == 404
        assert response.json()["error"] == "NOT_FOUND"

    def test_download_count_in_info(self, client: TestClient) -> None:
        """Each download is counted in the info endpoint."""
        _upload(client)
        client.get(f"{BASE}/download")
        client.get(f"{BASE}/download", headers={"Range": "bytes=0-0"})

        info = client.get(f"{BASE}/info").json()

        assert info["downloadCount"] == 2


class TestInfoAndDelete:
    """Metadata and removal endpoints."""

    def test_info_returns_record(self, client: TestClient) -> None:
        """info exposes name, size, checksum and counter."""
        digest = hashlib.sha1(PAYLOAD).hexdigest()
        _upload(client, **{"X-Checksum": digest, "X-Checksum-Type": "sha1"})

        response = client.get(f"{BASE}/info")

        assert response.status_code == 200
        info = response.json()
        assert info["fileName"] == "vagrant.box"
        assert info["fileSize"] == len(PAYLOAD)
        assert info["checksum"] == digest
        assert info["checksumType"] == "SHA1"
        assert info["downloadCount"] == 0

    def test_info_missing_returns_404(self, client: TestClient) -> None:
        """info without a record is NOT_FOUND."""
        assert client.get(f"{BASE}/info").status_code == 404

    def test_delete_removes_file_and_record(self, client: TestClient) -> None:
        """delete removes bytes and metadata; a second delete is 404."""
        _upload(client)

        response = client.delete(f"{BASE}/delete")

        assert response.status_code == 200
        assert response.json() == {"message": "File deleted successfully"}
        assert client.get(f"{BASE}/download").status_code == 404
        assert client.get(f"{BASE}/info").status_code == 404
        assert client.delete(f"{BASE}/delete").status_code == 404


class TestAccessResolver:
    """Upstream identity and authorization boundary."""

    def test_denied_write_returns_403(
        self, settings: StorageSettings, metadata_store: InMemoryArtifactMetadataStore
    ) -> None:
        """A resolver denying writes blocks uploads but not downloads."""
        app = create_app(
            settings=settings,
            metadata_store=metadata_store,
            access_resolver=ReadOnlyAccessResolver(),
        )
        client = TestClient(app, raise_server_exceptions=False)

        upload = _upload(client)
        download = client.get(f"{BASE}/download")

        assert upload.status_code == 403
        assert upload.json()["error"] == "FORBIDDEN"
        assert download.status_code == 404

    def test_unknown_architecture_returns_404(
        self, settings: StorageSettings, metadata_store: InMemoryArtifactMetadataStore
    ) -> None:
        """An architecture the resolver cannot find is NOT_FOUND."""
        app = create_app(
            settings=settings,
            metadata_store=metadata_store,
            access_resolver=UnknownArchitectureResolver(),
        )
        client = TestClient(app, raise_server_exceptions=False)

        response = _upload(client)

        assert response.status_code == 404
        assert "amd64" in response.json()["message"]

    def test_default_resolver_keys_metadata_by_tuple(
        self, client: TestClient, metadata_store: InMemoryArtifactMetadataStore
    ) -> None:
        """Without a resolver the joined tuple is the architecture id."""
        _upload(client)

        assert metadata_store.get(ARCH_KEY) is not None


@pytest.mark.anyio
class TestClientDisconnect:
    """Client disconnects during the request body."""

    async def test_disconnect_mid_body_returns_upload_error(
        self, settings: StorageSettings, metadata_store: InMemoryArtifactMetadataStore
    ) -> None:
        """A dropped upload answers 500 UPLOAD_ERROR and stores nothing."""
        app = create_app(settings=settings, metadata_store=metadata_store)
        incoming: list[dict[str, Any]] = [
            {"type": "http.request", "body": b"partial-box", "more_body": True},
            {"type": "http.disconnect"},
        ]
        sent: list[dict[str, Any]] = []

        async def receive() -> dict[str, Any]:
            return incoming.pop(0) if incoming else {"type": "http.disconnect"}

        async def send(message: dict[str, Any]) -> None:
            sent.append(message)

        path = f"{BASE}/upload"
        scope = {
            "type": "http",
            "asgi": {"version": "3.0"},
            "http_version": "1.1",
            "method": "POST",
            "scheme": "http",
            "path": path,
            "raw_path": path.encode(),
            "root_path": "",
            "query_string": b"",
            "headers": [(b"host", b"testserver"), (b"content-length", b"4096")],
            "client": ("testclient", 50000),
            "server": ("testserver", 80),
        }

        await app(scope, receive, send)

        assert sent[0]["type"] == "http.response.start"
        assert sent[0]["status"] == 500
        body = json.loads(
            b"".join(m.get("body", b"") for m in sent if m["type"] == "http.response.body")
        )
        assert body["error"] == "UPLOAD_ERROR"
        assert body["message"] == "Client disconnected during upload"
        assert "duration" in body["details"]
        assert body["details"]["maxFileSize"] == settings.max_file_size_label

        location = StoragePathResolver(settings.storage_dir).locate(
            ArtifactId("acme", "ubuntu", "1.0.0", "virtualbox", "amd64")
        )
        assert not location.file_path.exists()
        assert metadata_store.get(ARCH_KEY) is None
