"""Upload receiver: single-shot and chunked artifact transfers.

Single-shot uploads stream the request body straight into the canonical
artifact path. Chunked uploads stage each numbered chunk under
.staging/chunk-{n}, written as chunk-{n}.part and renamed once the chunk
is complete. When every index 0..total-1 is present the chunks are merged
in order into the canonical path and the staging directory removed.

Either way, the finished artifact is validated (size ceiling, declared
length, checksum) before its metadata record is written. Any failure removes
the partial artifact so that a stored artifact always matches its record.
"""

from __future__ import annotations

import asyncio
import errno
import functools
import logging
import os
import time
import weakref
from collections.abc import AsyncIterable, Mapping
from dataclasses import dataclass
from pathlib import Path

import anyio
from aiofile import async_open

from boxstore.config import StorageSettings
from boxstore.metadata.store import ArtifactMetadataStore, MetadataStoreError
from boxstore.storage.checksum import normalize_checksum_type, verify_checksum
from boxstore.storage.cleanup import safe_rmdir, safe_unlink
from boxstore.storage.errors import (
    ArtifactNotFoundError,
    ChecksumMismatchError,
    InsufficientStorageError,
    MissingChunksError,
    SizeLimitExceededError,
    SizeMismatchError,
    StorageIOError,
    UploadTimeoutError,
    ValidationError,
)
from boxstore.storage.models import UploadOutcome
from boxstore.storage.paths import CHUNK_PREFIX, ArtifactLocation
from boxstore.storage.tracing import traced_storage_operation

logger = logging.getLogger(__name__)

CHUNK_INDEX_HEADER = "x-chunk-index"
TOTAL_CHUNKS_HEADER = "x-total-chunks"
CHECKSUM_HEADER = "x-checksum"
CHECKSUM_TYPE_HEADER = "x-checksum-type"

COPY_BLOCK_SIZE = 16 * 1024 * 1024
MIN_SIZE_TOLERANCE = 1024 * 1024
PROGRESS_LOG_INTERVAL = 1024 * 1024 * 1024


def _parse_int_header(headers: Mapping[str, str], name: str) -> int | None:
    raw = headers.get(name)
    if raw is None or not raw.strip():
        return None
    try:
        return int(raw.strip())
    except ValueError as e:
        raise ValidationError(f"Invalid {name} header: {raw!r}") from e


@dataclass(frozen=True)
class UploadRequest:
    """Transfer parameters taken from upload request headers.

    Chunk mode is selected only when both chunk headers are present;
    Transfer-Encoding never selects the mode.
    """

    content_length: int | None = None
    chunk_index: int | None = None
    total_chunks: int | None = None
    checksum: str | None = None
    checksum_type: str | None = None
    transfer_encoding_chunked: bool = False

    @classmethod
    def from_headers(cls, headers: Mapping[str, str]) -> UploadRequest:
        """Parse and validate upload headers.

        Raises:
            ValidationError: If a numeric header is malformed or the chunk
                index is outside [0, total).
        """
        content_length = _parse_int_header(headers, "content-length")
        if content_length is not None and content_length < 0:
            raise ValidationError("Content-Length must not be negative")

        chunk_index = _parse_int_header(headers, CHUNK_INDEX_HEADER)
        total_chunks = _parse_int_header(headers, TOTAL_CHUNKS_HEADER)
        if chunk_index is None or total_chunks is None:
            chunk_index = total_chunks = None
        else:
            if total_chunks < 1:
                raise ValidationError("X-Total-Chunks must be at least 1")
            if not 0 <= chunk_index < total_chunks:
                raise ValidationError(
                    f"X-Chunk-Index {chunk_index} outside range 0..{total_chunks - 1}"
                )

        checksum = (headers.get(CHECKSUM_HEADER) or "").strip() or None
        checksum_type = (headers.get(CHECKSUM_TYPE_HEADER) or "").strip() or None
        transfer_encoding = headers.get("transfer-encoding") or ""

        return cls(
            content_length=content_length,
            chunk_index=chunk_index,
            total_chunks=total_chunks,
            checksum=checksum,
            checksum_type=checksum_type,
            transfer_encoding_chunked="chunked" in transfer_encoding.lower(),
        )

    @property
    def is_chunked(self) -> bool:
        return self.chunk_index is not None and self.total_chunks is not None


def size_tolerance(declared: int) -> int:
    """Allowed difference between declared and measured single-shot size."""
    return max(MIN_SIZE_TOLERANCE, declared // 100)


def scan_chunk_indices(staging_dir: Path) -> set[int]:
    """Return the chunk indices currently present in a staging directory."""
    try:
        names = os.listdir(staging_dir)
    except FileNotFoundError:
        return set()

    indices: set[int] = set()
    for name in names:
        if not name.startswith(CHUNK_PREFIX):
            continue
        suffix = name[len(CHUNK_PREFIX) :]
        if suffix.isdigit():
            indices.add(int(suffix))
    return indices


def _storage_error(e: OSError, action: str) -> StorageIOError:
    if e.errno == errno.ENOSPC:
        return InsufficientStorageError("Not enough storage space available", cause=e)
    return StorageIOError(f"Could not {action}", details={"reason": e.strerror or str(e)}, cause=e)


class UploadReceiver:
    """Receives artifact uploads and finalizes them.

    Merge and finalize for one canonical path are serialized by an
    in-process lock. Other workers sharing the storage volume are not
    coordinated; a duplicate merge that finds the staging directory gone
    treats the artifact as already merged.
    """

    def __init__(self, settings: StorageSettings, metadata_store: ArtifactMetadataStore) -> None:
        self._settings = settings
        self._metadata = metadata_store
        self._locks: weakref.WeakValueDictionary[Path, asyncio.Lock] = weakref.WeakValueDictionary()

    def _lock_for(self, location: ArtifactLocation) -> asyncio.Lock:
        lock = self._locks.get(location.file_path)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[location.file_path] = lock
        return lock

    @traced_storage_operation("upload")
    async def receive(
        self,
        location: ArtifactLocation,
        architecture_id: str,
        body: AsyncIterable[bytes],
        request: UploadRequest,
    ) -> UploadOutcome:
        """Receive one upload request (a whole artifact or one chunk).

        Args:
            location: Resolved on-disk location of the artifact.
            architecture_id: Metadata key of the artifact.
            body: Request body stream.
            request: Parsed upload headers.

        Returns:
            UploadOutcome describing progress or the finalized artifact.

        Raises:
            ArtifactStorageError: On validation, size, checksum, timeout or
                I/O failure. The partial artifact has been removed.
        """
        started = time.monotonic()
        mode = "single"
        if request.is_chunked:
            mode = f"chunk {request.chunk_index}/{request.total_chunks}"
        logger.info(
            "Upload started: artifact=%s mode=%s content_length=%s checksum_type=%s",
            architecture_id,
            mode,
            request.content_length,
            request.checksum_type or "NULL",
        )

        index, total = request.chunk_index, request.total_chunks
        try:
            with anyio.fail_after(self._settings.upload_timeout_seconds):
                if index is not None and total is not None:
                    outcome = await self._receive_chunk(
                        location, architecture_id, body, request, index=index, total=total
                    )
                else:
                    outcome = await self._receive_single(location, architecture_id, body, request)
        except TimeoutError as e:
            elapsed = time.monotonic() - started
            logger.error("Upload timed out after %.1fs: artifact=%s", elapsed, architecture_id)
            raise UploadTimeoutError(
                "Upload timed out - Request took too long to complete",
                details={"duration": f"{elapsed:.0f} seconds"},
            ) from e

        if outcome.is_complete:
            elapsed = time.monotonic() - started
            speed = outcome.file_size / elapsed / (1024 * 1024) if elapsed > 0 else 0.0
            logger.info(
                "Upload completed: artifact=%s size=%d duration=%.1fs speed=%.1fMB/s",
                architecture_id,
                outcome.file_size,
                elapsed,
                speed,
            )
        return outcome

    async def _stream_to_file(self, body: AsyncIterable[bytes], path: Path) -> int:
        """Write a body stream to path (truncate-and-create)."""
        limit = self._settings.max_file_size
        written = 0
        next_progress = PROGRESS_LOG_INTERVAL
        try:
            async with async_open(path, "wb") as f:
                async for block in body:
                    if not block:
                        continue
                    written += len(block)
                    if limit is not None and written > limit:
                        raise SizeLimitExceededError(written, limit)
                    await f.write(block)
                    if written >= next_progress:
                        logger.info("Upload progress: %s bytes=%d", path.name, written)
                        next_progress += PROGRESS_LOG_INTERVAL
        except OSError as e:
            raise _storage_error(e, "write upload data") from e
        return written

    async def _receive_single(
        self,
        location: ArtifactLocation,
        architecture_id: str,
        body: AsyncIterable[bytes],
        request: UploadRequest,
    ) -> UploadOutcome:
        declared = request.content_length
        limit = self._settings.max_file_size

        if declared is None and not request.transfer_encoding_chunked:
            raise ValidationError("Content-Length header required")
        if declared is not None and limit is not None and declared > limit:
            raise SizeLimitExceededError(declared, limit)

        _ensure_directory(location.directory)

        async with self._lock_for(location):
            try:
                await self._stream_to_file(body, location.file_path)
                final_size = _measure(location.file_path)
                self._check_size(final_size, declared)
                verified = await self._verify_checksum(location.file_path, request)
            except BaseException:
                self._discard(location.file_path, architecture_id)
                raise

            created = await self._sync_metadata(architecture_id, request, final_size)

        return UploadOutcome(
            is_complete=True,
            file_size=final_size,
            created=created,
            checksum_verified=verified,
        )

    async def _receive_chunk(
        self,
        location: ArtifactLocation,
        architecture_id: str,
        body: AsyncIterable[bytes],
        request: UploadRequest,
        *,
        index: int,
        total: int,
    ) -> UploadOutcome:
        chunk_path = location.chunk_path(index)
        partial_path = location.partial_chunk_path(index)
        _ensure_directory(location.staging_dir)

        # Chunks become visible to the completeness scan only once fully written.
        try:
            chunk_size = await self._stream_to_file(body, partial_path)
            os.replace(partial_path, chunk_path)
        except OSError as e:
            safe_unlink(partial_path)
            raise _storage_error(e, "store chunk") from e
        except BaseException:
            safe_unlink(partial_path)
            raise

        present = scan_chunk_indices(location.staging_dir)
        logger.info(
            "Chunk %d/%d stored for %s (%d bytes, %d present)",
            index + 1,
            total,
            architecture_id,
            chunk_size,
            len(present),
        )

        if present != set(range(total)):
            return UploadOutcome(
                is_complete=False,
                file_size=chunk_size,
                chunk_index=index,
                total_chunks=total,
                received_chunks=len(present & set(range(total))),
            )

        return await self.assemble(location, architecture_id, request)

    async def assemble(
        self,
        location: ArtifactLocation,
        architecture_id: str,
        request: UploadRequest,
    ) -> UploadOutcome:
        """Merge staged chunks into the artifact, then validate and record it.

        Safe to call more than once: a call that finds the staging directory
        gone reports the already-merged artifact.

        Raises:
            MissingChunksError: If some index in 0..total-1 is not staged.
            ArtifactStorageError: On validation or I/O failure; the merged
                artifact has been removed.
        """
        total = request.total_chunks
        if total is None:
            raise ValidationError("Chunk count is required to assemble an upload")

        async with self._lock_for(location):
            merged = await self._merge_chunks(location, total)
            if not merged:
                if not location.file_path.exists():
                    raise ArtifactNotFoundError(
                        "Chunks were merged by another request but no artifact remains"
                    )
                return UploadOutcome(
                    is_complete=True,
                    file_size=_measure(location.file_path),
                    chunk_index=request.chunk_index,
                    total_chunks=total,
                    received_chunks=total,
                    extra={"alreadyMerged": True},
                )

            try:
                final_size = _measure(location.file_path)
                self._check_size(final_size, None)
                verified = await self._verify_checksum(location.file_path, request)
            except BaseException:
                self._discard(location.file_path, architecture_id)
                raise

            created = await self._sync_metadata(architecture_id, request, final_size)

        return UploadOutcome(
            is_complete=True,
            file_size=final_size,
            created=created,
            chunk_index=request.chunk_index,
            total_chunks=total,
            received_chunks=total,
            checksum_verified=verified,
        )

    async def _merge_chunks(self, location: ArtifactLocation, total: int) -> bool:
        """Append chunks 0..total-1 to the canonical path, consuming them.

        Returns:
            True if this call merged the chunks, False if the staging
            directory was already gone.
        """
        staging = location.staging_dir
        if not staging.is_dir():
            logger.info("Staging directory already removed; chunks merged by another request")
            return False

        present = sorted(scan_chunk_indices(staging))
        missing = sorted(set(range(total)) - set(present))
        if missing:
            raise MissingChunksError(missing, total)

        logger.info("Merging %d chunks into %s", total, location.file_name)
        try:
            async with async_open(location.file_path, "wb") as out:
                for index in range(total):
                    chunk_path = location.chunk_path(index)
                    merged_bytes = 0
                    async with async_open(chunk_path, "rb") as src:
                        while True:
                            block = await src.read(COPY_BLOCK_SIZE)
                            if not block:
                                break
                            await out.write(block)
                            merged_bytes += len(block)
                    safe_unlink(chunk_path)
                    logger.info("Merging chunk %d/%d (%d bytes)", index + 1, total, merged_bytes)
        except OSError as e:
            safe_unlink(location.file_path)
            raise _storage_error(e, "merge chunks") from e

        safe_rmdir(staging)
        return True

    def _check_size(self, final_size: int, declared: int | None) -> None:
        limit = self._settings.max_file_size
        if limit is not None and final_size > limit:
            raise SizeLimitExceededError(final_size, limit)

        if declared is not None:
            tolerance = size_tolerance(declared)
            if abs(final_size - declared) > tolerance:
                raise SizeMismatchError(final_size, declared, tolerance)

    async def _verify_checksum(self, path: Path, request: UploadRequest) -> bool | None:
        algorithm = normalize_checksum_type(request.checksum_type)
        if not request.checksum or algorithm is None:
            return None

        try:
            result = await anyio.to_thread.run_sync(
                verify_checksum, path, request.checksum, algorithm
            )
        except OSError as e:
            raise _storage_error(e, "read artifact for checksum") from e

        if result is None:
            logger.warning("Skipping checksum verification, unsupported type %s", algorithm)
            return None
        if not result:
            logger.error("Checksum verification failed: %s type=%s", path.name, algorithm)
            raise ChecksumMismatchError(algorithm)
        logger.info("Checksum verified: type=%s", algorithm)
        return True

    async def _sync_metadata(
        self, architecture_id: str, request: UploadRequest, final_size: int
    ) -> bool:
        upsert = functools.partial(
            self._metadata.upsert,
            architecture_id=architecture_id,
            checksum=request.checksum,
            checksum_type=request.checksum_type,
            file_size=final_size,
        )
        try:
            _, created = await anyio.to_thread.run_sync(upsert)
        except MetadataStoreError as e:
            logger.error("Could not record artifact metadata for %s: %s", architecture_id, e)
            raise StorageIOError("Could not record artifact metadata") from e
        return created

    def _discard(self, path: Path, architecture_id: str) -> None:
        if safe_unlink(path):
            logger.info("Removed rejected upload for %s", architecture_id)


def _ensure_directory(path: Path) -> None:
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise _storage_error(e, "create upload directory") from e


def _measure(path: Path) -> int:
    try:
        return path.stat().st_size
    except OSError as e:
        raise _storage_error(e, "measure uploaded file") from e


__all__ = [
    "UploadReceiver",
    "UploadRequest",
    "scan_chunk_indices",
    "size_tolerance",
]
