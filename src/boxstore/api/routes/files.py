"""Artifact file routes for the boxstore API.

Provides per-architecture file endpoints:
- POST/PUT .../file/upload (single-shot or chunked upload)
- GET .../file/download (full or ranged download)
- GET .../file/info (metadata record)
- DELETE .../file/delete (remove artifact, staging area and record)

Every route resolves the architecture through the configured
ArtifactAccessResolver before touching storage.
"""

from __future__ import annotations

import functools
import logging
import time
from typing import Any

import anyio
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.requests import ClientDisconnect

from boxstore.api.access import ArtifactAccessResolver
from boxstore.api.errors import BoxstoreHttpError
from boxstore.config import StorageSettings
from boxstore.metadata.store import ArtifactMetadataStore
from boxstore.storage.cleanup import remove_artifact
from boxstore.storage.download import BOX_MEDIA_TYPE, DownloadServer
from boxstore.storage.errors import ArtifactNotFoundError, ArtifactStorageError, StorageIOError
from boxstore.storage.models import ArtifactId, UploadOutcome
from boxstore.storage.paths import ArtifactLocation, StoragePathResolver
from boxstore.storage.upload import UploadReceiver, UploadRequest

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Files"])

FILE_ROUTE_PREFIX = (
    "/api/organization/{organization}/box/{box}/version/{version}"
    "/provider/{provider}/architecture/{architecture}/file"
)


def _artifact_id(
    organization: str, box: str, version: str, provider: str, architecture: str
) -> ArtifactId:
    return ArtifactId(
        organization=organization,
        box=box,
        version=version,
        provider=provider,
        architecture=architecture,
    )


def _authorize(request: Request, artifact_id: ArtifactId, *, write: bool) -> str:
    """Resolve the architecture id and enforce access.

    Raises:
        BoxstoreHttpError: 404 if the architecture is unknown, 403 if denied.
    """
    resolver: ArtifactAccessResolver = request.app.state.access_resolver

    architecture_id = resolver.resolve_architecture_id(artifact_id)
    if architecture_id is None:
        raise BoxstoreHttpError(
            status_code=404,
            code="NOT_FOUND",
            message=f"Architecture {artifact_id.architecture} not found for provider "
            f"{artifact_id.provider} in version {artifact_id.version} of box {artifact_id.box}",
        )

    allowed = (
        resolver.can_write(request, artifact_id)
        if write
        else resolver.can_read(request, artifact_id)
    )
    if not allowed:
        raise BoxstoreHttpError(
            status_code=403,
            code="FORBIDDEN",
            message="Not authorized to access this artifact",
        )
    return architecture_id


def _locate(request: Request, artifact_id: ArtifactId) -> ArtifactLocation:
    resolver: StoragePathResolver = request.app.state.path_resolver
    return resolver.locate(artifact_id)


def _upload_response(
    outcome: UploadOutcome, artifact_id: ArtifactId, location: ArtifactLocation
) -> JSONResponse:
    if not outcome.is_complete:
        return JSONResponse(
            status_code=200,
            content={
                "message": "Chunk upload completed",
                "fileSize": outcome.file_size,
                "details": {
                    "isComplete": False,
                    "status": "in_progress",
                    "chunkIndex": outcome.chunk_index,
                    "totalChunks": outcome.total_chunks,
                    "receivedChunks": outcome.received_chunks,
                },
            },
        )

    details: dict[str, Any] = {
        "isComplete": True,
        "status": "complete",
        "fileSize": outcome.file_size,
        "checksumVerified": outcome.checksum_verified,
    }
    if outcome.is_chunked:
        details["chunkIndex"] = outcome.chunk_index
        details["totalChunks"] = outcome.total_chunks
    details.update(outcome.extra)

    return JSONResponse(
        status_code=201 if outcome.created else 200,
        content={
            "message": "File upload completed",
            "fileSize": outcome.file_size,
            "path": f"{artifact_id.key}/{location.file_name}",
            "details": details,
        },
    )


@router.api_route(f"{FILE_ROUTE_PREFIX}/upload", methods=["POST", "PUT"])
async def upload_file(
    request: Request,
    organization: str,
    box: str,
    version: str,
    provider: str,
    architecture: str,
) -> JSONResponse:
    """Upload an artifact, either whole or one chunk at a time.

    Chunked mode is selected by the X-Chunk-Index and X-Total-Chunks
    headers. X-Checksum and X-Checksum-Type request verification of the
    finished artifact.
    """
    started = time.monotonic()
    settings: StorageSettings = request.app.state.settings
    receiver: UploadReceiver = request.app.state.upload_receiver
    request_id = getattr(request.state, "request_id", None)

    artifact_id = _artifact_id(organization, box, version, provider, architecture)

    try:
        architecture_id = _authorize(request, artifact_id, write=True)
        upload_request = UploadRequest.from_headers(request.headers)
        location = _locate(request, artifact_id)
        outcome = await receiver.receive(
            location, architecture_id, request.stream(), upload_request
        )
    except ClientDisconnect as e:
        logger.warning(
            "Client disconnected during upload of %s",
            artifact_id.key,
            extra={"request_id": request_id},
        )
        raise _with_upload_details(
            StorageIOError("Client disconnected during upload"), started, settings
        ) from e
    except ArtifactStorageError as e:
        _with_upload_details(e, started, settings)
        raise

    return _upload_response(outcome, artifact_id, location)


def _with_upload_details(
    error: ArtifactStorageError, started: float, settings: StorageSettings
) -> ArtifactStorageError:
    error.details.setdefault("duration", f"{time.monotonic() - started:.0f} seconds")
    error.details.setdefault("maxFileSize", settings.max_file_size_label)
    return error


@router.get(f"{FILE_ROUTE_PREFIX}/download")
async def download_file(
    request: Request,
    organization: str,
    box: str,
    version: str,
    provider: str,
    architecture: str,
) -> StreamingResponse:
    """Download an artifact, honoring a single "bytes=start-end" Range."""
    server: DownloadServer = request.app.state.download_server

    artifact_id = _artifact_id(organization, box, version, provider, architecture)
    architecture_id = _authorize(request, artifact_id, write=False)
    location = _locate(request, artifact_id)

    handle = await server.open(location, architecture_id, request.headers.get("range"))

    return StreamingResponse(
        handle.iter_bytes(),
        status_code=handle.status_code,
        headers=handle.headers,
        media_type=BOX_MEDIA_TYPE,
    )


@router.get(f"{FILE_ROUTE_PREFIX}/info")
async def get_file_info(
    request: Request,
    organization: str,
    box: str,
    version: str,
    provider: str,
    architecture: str,
) -> dict[str, Any]:
    """Return the metadata record of an artifact."""
    store: ArtifactMetadataStore = request.app.state.metadata_store

    artifact_id = _artifact_id(organization, box, version, provider, architecture)
    architecture_id = _authorize(request, artifact_id, write=False)
    location = _locate(request, artifact_id)

    record = await anyio.to_thread.run_sync(store.get, architecture_id, location.file_name)
    if record is None:
        raise ArtifactNotFoundError("File not found")
    return record.to_dict()


@router.delete(f"{FILE_ROUTE_PREFIX}/delete")
async def delete_file(
    request: Request,
    organization: str,
    box: str,
    version: str,
    provider: str,
    architecture: str,
) -> dict[str, str]:
    """Remove an artifact file, its staging area and its metadata record."""
    store: ArtifactMetadataStore = request.app.state.metadata_store

    artifact_id = _artifact_id(organization, box, version, provider, architecture)
    architecture_id = _authorize(request, artifact_id, write=True)
    location = _locate(request, artifact_id)

    removed_file = await anyio.to_thread.run_sync(remove_artifact, location)
    removed_record = await anyio.to_thread.run_sync(
        functools.partial(store.delete, architecture_id, location.file_name)
    )
    if not removed_file and not removed_record:
        raise ArtifactNotFoundError("File not found")

    logger.info(
        "Deleted artifact %s (file=%s record=%s)", artifact_id.key, removed_file, removed_record
    )
    return {"message": "File deleted successfully"}
