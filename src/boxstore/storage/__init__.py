"""boxstore artifact storage.

Stores one binary artifact per (organization, box, version, provider,
architecture) tuple on a local filesystem, with chunked uploads, checksum
verification and range-aware downloads.

Environment Variables:
    BOXSTORE_STORAGE_DIR: Root directory for artifacts
        (default: /var/lib/boxstore/storage)
"""

from boxstore.storage.errors import (
    ArtifactNotFoundError,
    ArtifactStorageError,
    PathTraversalError,
)
from boxstore.storage.models import ArtifactId, RangeSpec, UploadOutcome
from boxstore.storage.paths import ArtifactLocation, StoragePathResolver

__all__ = [
    "ArtifactId",
    "ArtifactLocation",
    "ArtifactNotFoundError",
    "ArtifactStorageError",
    "PathTraversalError",
    "RangeSpec",
    "StoragePathResolver",
    "UploadOutcome",
]
