"""boxstore artifact metadata persistence.

Backends:
- InMemoryArtifactMetadataStore: process-local (dev/test)
- SqlArtifactMetadataStore: SQLAlchemy (SQLite/PostgreSQL)
"""

from __future__ import annotations

from boxstore.metadata.store import (
    ArtifactMetadata,
    ArtifactMetadataStore,
    InMemoryArtifactMetadataStore,
    MetadataStoreError,
)


def create_metadata_store(database_url: str | None) -> ArtifactMetadataStore:
    """Build the configured metadata store.

    Args:
        database_url: SQLAlchemy URL, or None for the in-memory store.
    """
    if not database_url:
        return InMemoryArtifactMetadataStore()

    from boxstore.metadata.sql_store import SqlArtifactMetadataStore

    return SqlArtifactMetadataStore(database_url)


__all__ = [
    "ArtifactMetadata",
    "ArtifactMetadataStore",
    "InMemoryArtifactMetadataStore",
    "MetadataStoreError",
    "create_metadata_store",
]
