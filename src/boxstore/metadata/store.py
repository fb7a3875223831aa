"""Artifact metadata store interface and in-memory implementation.

This is the single point where the storage core writes to persistence.
Records are keyed by (architecture_id, file_name); the owning
organization/box/version/provider chain is resolved upstream.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import UTC, datetime

from boxstore.storage.paths import ARTIFACT_FILE_NAME

logger = logging.getLogger(__name__)

NULL_CHECKSUM_TYPE = "NULL"


def normalize_stored_checksum_type(checksum_type: str | None) -> str:
    """Return the persisted (upper-case) checksum type, "NULL" when absent."""
    if not checksum_type or not checksum_type.strip():
        return NULL_CHECKSUM_TYPE
    return checksum_type.strip().upper()


@dataclass(frozen=True)
class ArtifactMetadata:
    """Persisted metadata for one artifact.

    Attributes:
        architecture_id: Identifier of the owning architecture record.
        file_name: Fixed logical file name.
        checksum: Declared checksum (hex) or None.
        checksum_type: Upper-case algorithm name, "NULL" when none.
        file_size: Final size in bytes.
        download_count: Number of successful download opens.
        created_at: Timestamp of first upload.
        updated_at: Timestamp of the latest upsert or counter change.
    """

    architecture_id: str
    file_name: str
    checksum: str | None
    checksum_type: str
    file_size: int
    download_count: int
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> dict[str, str | int | None]:
        """Convert to the camelCase wire representation."""
        return {
            "fileName": self.file_name,
            "checksum": self.checksum,
            "checksumType": self.checksum_type,
            "fileSize": self.file_size,
            "downloadCount": self.download_count,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }


class MetadataStoreError(Exception):
    """Raised when the metadata store cannot complete an operation."""

    pass


class ArtifactMetadataStore(ABC):
    """Abstract base class for artifact metadata persistence.

    Implementations:
    - InMemoryArtifactMetadataStore: process-local (dev/test)
    - SqlArtifactMetadataStore: SQLAlchemy-backed (SQLite/PostgreSQL)
    """

    @abstractmethod
    def upsert(
        self,
        *,
        architecture_id: str,
        file_name: str = ARTIFACT_FILE_NAME,
        checksum: str | None,
        checksum_type: str | None,
        file_size: int,
    ) -> tuple[ArtifactMetadata, bool]:
        """Create the record if absent, otherwise update it in place.

        Returns:
            Tuple of (stored record, created flag).
        """
        ...

    @abstractmethod
    def get(
        self, architecture_id: str, file_name: str = ARTIFACT_FILE_NAME
    ) -> ArtifactMetadata | None:
        """Return the record, or None if absent."""
        ...

    @abstractmethod
    def increment_download_count(
        self, architecture_id: str, file_name: str = ARTIFACT_FILE_NAME
    ) -> int | None:
        """Increment the download counter.

        Returns:
            New counter value, or None if no record exists.
        """
        ...

    @abstractmethod
    def delete(self, architecture_id: str, file_name: str = ARTIFACT_FILE_NAME) -> bool:
        """Delete the record. Returns True if a record was removed."""
        ...


class InMemoryArtifactMetadataStore(ArtifactMetadataStore):
    """Thread-safe in-memory metadata store."""

    def __init__(self) -> None:
        self._records: dict[tuple[str, str], ArtifactMetadata] = {}
        self._lock = threading.Lock()

    def upsert(
        self,
        *,
        architecture_id: str,
        file_name: str = ARTIFACT_FILE_NAME,
        checksum: str | None,
        checksum_type: str | None,
        file_size: int,
    ) -> tuple[ArtifactMetadata, bool]:
        now = datetime.now(UTC)
        key = (architecture_id, file_name)
        with self._lock:
            existing = self._records.get(key)
            if existing is None:
                record = ArtifactMetadata(
                    architecture_id=architecture_id,
                    file_name=file_name,
                    checksum=checksum,
                    checksum_type=normalize_stored_checksum_type(checksum_type),
                    file_size=file_size,
                    download_count=0,
                    created_at=now,
                    updated_at=now,
                )
            else:
                record = replace(
                    existing,
                    checksum=checksum,
                    checksum_type=normalize_stored_checksum_type(checksum_type),
                    file_size=file_size,
                    updated_at=now,
                )
            self._records[key] = record
        return record, existing is None

    def get(
        self, architecture_id: str, file_name: str = ARTIFACT_FILE_NAME
    ) -> ArtifactMetadata | None:
        with self._lock:
            return self._records.get((architecture_id, file_name))

    def increment_download_count(
        self, architecture_id: str, file_name: str = ARTIFACT_FILE_NAME
    ) -> int | None:
        key = (architecture_id, file_name)
        with self._lock:
            existing = self._records.get(key)
            if existing is None:
                return None
            record = replace(
                existing,
                download_count=existing.download_count + 1,
                updated_at=datetime.now(UTC),
            )
            self._records[key] = record
            return record.download_count

    def delete(self, architecture_id: str, file_name: str = ARTIFACT_FILE_NAME) -> bool:
        with self._lock:
            return self._records.pop((architecture_id, file_name), None) is not None

    def clear(self) -> None:
        """Remove all records (tests only)."""
        with self._lock:
            self._records.clear()
