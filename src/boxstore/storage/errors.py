"""boxstore artifact storage error types.

Every storage failure is an ArtifactStorageError carrying a machine-readable
kind, a human-readable message and optional structured details. The API layer
only varies the HTTP status code per kind; the payload shape never changes.
"""

from __future__ import annotations

from typing import Any


class ArtifactStorageError(Exception):
    """Base exception for artifact storage operations.

    Attributes:
        kind: Machine-readable error kind (e.g., "FILE_TOO_LARGE").
        message: Human-readable error message.
        details: Optional structured context for the client.
    """

    kind = "UPLOAD_ERROR"

    def __init__(
        self,
        message: str,
        *,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = dict(details) if details else {}

    def __str__(self) -> str:
        if not self.details:
            return self.message
        rendered = " ".join(f"{k}={v}" for k, v in sorted(self.details.items()))
        return f"{self.message} {rendered}"


class ValidationError(ArtifactStorageError):
    """Raised when transfer headers are malformed or inconsistent."""

    kind = "INVALID_REQUEST"


class PathTraversalError(ArtifactStorageError):
    """Raised when identifier segments would resolve outside the storage root.

    Upstream validation should make this unreachable; it is a hard failure.
    """

    kind = "PATH_TRAVERSAL"

    def __init__(
        self,
        message: str = "Path traversal attempt detected",
        *,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details=details)


class ArtifactNotFoundError(ArtifactStorageError):
    """Raised when no artifact file exists at the canonical path."""

    kind = "NOT_FOUND"

    def __init__(
        self,
        message: str = "Artifact not found",
        *,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details=details)


class SizeLimitExceededError(ArtifactStorageError):
    """Raised when an artifact exceeds the configured size ceiling."""

    kind = "FILE_TOO_LARGE"

    def __init__(self, size: int, max_size: int) -> None:
        super().__init__(
            f"File size cannot exceed {max_size} bytes",
            details={"fileSize": size, "maxFileSize": max_size},
        )
        self.size = size
        self.max_size = max_size


class SizeMismatchError(ArtifactStorageError):
    """Raised when the measured size differs from the declared length."""

    kind = "SIZE_MISMATCH"

    def __init__(self, measured: int, declared: int, tolerance: int) -> None:
        super().__init__(
            "File size mismatch",
            details={"fileSize": measured, "declaredSize": declared, "tolerance": tolerance},
        )
        self.measured = measured
        self.declared = declared


class MissingChunksError(ArtifactStorageError):
    """Raised when a chunk set is incomplete at merge time.

    This is the recoverable "still uploading" state, not a corrupt transfer.
    """

    kind = "MISSING_CHUNKS"

    def __init__(self, missing: list[int], total: int) -> None:
        super().__init__(
            f"Missing chunks: {', '.join(str(i) for i in missing)}",
            details={"missingChunks": list(missing), "totalChunks": total},
        )
        self.missing = list(missing)
        self.total = total


class ChecksumMismatchError(ArtifactStorageError):
    """Raised when the final bytes do not match the declared checksum."""

    kind = "CHECKSUM_MISMATCH"

    def __init__(self, algorithm: str) -> None:
        super().__init__(
            "Checksum verification failed",
            details={"checksumType": algorithm},
        )
        self.algorithm = algorithm


class RangeNotSatisfiableError(ArtifactStorageError):
    """Raised when a Range header cannot be served; carries the total size."""

    kind = "RANGE_NOT_SATISFIABLE"

    def __init__(self, size: int, range_header: str | None = None) -> None:
        super().__init__(
            "Requested range not satisfiable",
            details={"fileSize": size},
        )
        self.size = size
        self.range_header = range_header


class UploadTimeoutError(ArtifactStorageError):
    """Raised when a transfer outlives the configured upload timeout."""

    kind = "UPLOAD_TIMEOUT"


class StorageIOError(ArtifactStorageError):
    """Raised when the filesystem cannot complete an operation."""

    kind = "UPLOAD_ERROR"

    def __init__(
        self,
        message: str = "Storage I/O error",
        *,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message, details=details)
        self.cause = cause


class InsufficientStorageError(StorageIOError):
    """Raised when the storage volume has no space left."""

    kind = "NO_STORAGE_SPACE"
