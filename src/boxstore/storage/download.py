"""Range-aware artifact download.

DownloadServer.open() does every check that can still produce an error
response (existence, range validation) before the first byte is sent. The
returned handle streams the requested interval; a failure after streaming
has started is logged and re-raised so the connection is dropped.
"""

from __future__ import annotations

import functools
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from pathlib import Path

import anyio
from aiofile import async_open

from boxstore.metadata.store import ArtifactMetadataStore
from boxstore.storage.errors import ArtifactNotFoundError, StorageIOError
from boxstore.storage.models import RangeSpec
from boxstore.storage.paths import ArtifactLocation
from boxstore.storage.ranges import parse_range_header
from boxstore.storage.tracing import traced_storage_operation

logger = logging.getLogger(__name__)

STREAM_BLOCK_SIZE = 1024 * 1024
BOX_MEDIA_TYPE = "application/octet-stream"


@dataclass
class DownloadHandle:
    """A validated download ready to be streamed.

    Attributes:
        path: Artifact file to read.
        file_name: Name advertised in Content-Disposition.
        status_code: 200 for the whole file, 206 for a range.
        content_length: Number of bytes the body will yield.
        byte_range: Interval served, or None for the whole file.
        headers: Response headers (Content-Length, Accept-Ranges, ...).
    """

    path: Path
    file_name: str
    status_code: int
    content_length: int
    byte_range: RangeSpec | None = None
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def start(self) -> int:
        return self.byte_range.start if self.byte_range is not None else 0

    async def iter_bytes(self, block_size: int = STREAM_BLOCK_SIZE) -> AsyncIterator[bytes]:
        """Yield the selected interval in blocks of at most block_size."""
        remaining = self.content_length
        sent = 0
        try:
            async with async_open(self.path, "rb") as f:
                f.seek(self.start)
                while remaining > 0:
                    block = await f.read(min(block_size, remaining))
                    if not block:
                        break
                    remaining -= len(block)
                    sent += len(block)
                    yield block
        except OSError as e:
            logger.error(
                "Download stream failed after %d bytes: %s: %s",
                sent,
                self.file_name,
                e,
            )
            raise

        if remaining > 0:
            logger.error(
                "Artifact shrank during download: %s sent=%d expected=%d",
                self.file_name,
                sent,
                self.content_length,
            )
            raise StorageIOError(
                "Artifact changed while streaming",
                details={"sent": sent, "expected": self.content_length},
            )


class DownloadServer:
    """Serves full or ranged reads of stored artifacts."""

    def __init__(self, metadata_store: ArtifactMetadataStore) -> None:
        self._metadata = metadata_store

    @traced_storage_operation("download")
    async def open(
        self,
        location: ArtifactLocation,
        architecture_id: str,
        range_header: str | None = None,
    ) -> DownloadHandle:
        """Validate a download request and build its handle.

        Args:
            location: Resolved on-disk location of the artifact.
            architecture_id: Metadata key of the artifact.
            range_header: Raw Range header value, if any.

        Returns:
            DownloadHandle with status and headers set.

        Raises:
            ArtifactNotFoundError: If no artifact file exists.
            RangeNotSatisfiableError: If the range cannot be served.
        """
        path = location.file_path
        try:
            size = path.stat().st_size
        except FileNotFoundError as e:
            raise ArtifactNotFoundError("File not found on disk") from e
        except OSError as e:
            raise StorageIOError("Could not read artifact", cause=e) from e
        if not path.is_file():
            raise ArtifactNotFoundError("File not found on disk")

        headers = {
            "Accept-Ranges": "bytes",
            "Content-Disposition": f'attachment; filename="{location.file_name}"',
        }

        if range_header:
            byte_range = parse_range_header(range_header, size)
            headers["Content-Range"] = byte_range.content_range()
            headers["Content-Length"] = str(byte_range.length)
            handle = DownloadHandle(
                path=path,
                file_name=location.file_name,
                status_code=206,
                content_length=byte_range.length,
                byte_range=byte_range,
                headers=headers,
            )
            logger.info(
                "Serving range %d-%d/%d of %s",
                byte_range.start,
                byte_range.end,
                size,
                architecture_id,
            )
        else:
            headers["Content-Length"] = str(size)
            handle = DownloadHandle(
                path=path,
                file_name=location.file_name,
                status_code=200,
                content_length=size,
                headers=headers,
            )
            logger.info("Serving full artifact %s (%d bytes)", architecture_id, size)

        await self._count_download(architecture_id, location.file_name)
        return handle

    async def _count_download(self, architecture_id: str, file_name: str) -> None:
        increment = functools.partial(
            self._metadata.increment_download_count, architecture_id, file_name
        )
        try:
            count = await anyio.to_thread.run_sync(increment)
        except Exception as e:
            logger.warning("Could not increment download count for %s: %s", architecture_id, e)
            return
        if count is None:
            logger.warning("No metadata record to count download for %s", architecture_id)
