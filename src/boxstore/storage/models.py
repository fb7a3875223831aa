"""boxstore storage data models.

Provides typed dataclasses for artifact identifiers, byte ranges and
upload outcomes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class ArtifactId:
    """Identifier tuple addressing exactly one artifact.

    Attributes:
        organization: Owning organization name.
        box: Box (collection) name within the organization.
        version: Version number of the box.
        provider: Provider name (e.g., "virtualbox").
        architecture: Architecture name (e.g., "amd64").
    """

    organization: str
    box: str
    version: str
    provider: str
    architecture: str

    def segments(self) -> tuple[str, str, str, str, str]:
        """Return the identifier segments, outermost first."""
        return (self.organization, self.box, self.version, self.provider, self.architecture)

    @property
    def key(self) -> str:
        """Logical key used for logging and default metadata identity."""
        return "/".join(self.segments())


@dataclass(frozen=True)
class RangeSpec:
    """A satisfiable byte interval [start, end] within a file of size bytes."""

    start: int
    end: int
    size: int

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    @property
    def is_full(self) -> bool:
        return self.start == 0 and self.end == self.size - 1

    def content_range(self) -> str:
        return f"bytes {self.start}-{self.end}/{self.size}"


@dataclass(frozen=True)
class UploadOutcome:
    """Result of one upload request.

    Attributes:
        is_complete: True when the artifact was finalized by this request.
        file_size: Final artifact size (complete) or bytes of this chunk.
        created: True when no artifact existed before this upload.
        chunk_index: Index of the chunk received (chunked mode only).
        total_chunks: Declared chunk count (chunked mode only).
        received_chunks: Chunks present in staging after this request.
        checksum_verified: True/False after verification, None if skipped.
    """

    is_complete: bool
    file_size: int
    created: bool = False
    chunk_index: int | None = None
    total_chunks: int | None = None
    received_chunks: int | None = None
    checksum_verified: bool | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def is_chunked(self) -> bool:
        return self.total_chunks is not None
