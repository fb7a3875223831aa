"""SQLAlchemy-backed artifact metadata store.

Works against any SQLAlchemy URL; SQLite is used for single-node deployments
and tests, PostgreSQL in production.

Environment Variables:
    BOXSTORE_METADATA_DB_URL: Connection string, e.g.
        sqlite:///./var/boxstore/metadata.sqlite3 or postgresql://...
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import create_engine, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from boxstore.metadata.store import (
    ArtifactMetadata,
    ArtifactMetadataStore,
    MetadataStoreError,
    normalize_stored_checksum_type,
)
from boxstore.observability.tracing import instrument_sqlalchemy
from boxstore.storage.paths import ARTIFACT_FILE_NAME

if TYPE_CHECKING:
    from sqlalchemy import Connection, Engine

logger = logging.getLogger(__name__)


class SqlArtifactMetadataStore(ArtifactMetadataStore):
    """Metadata store over a single "files" table.

    Records are unique per (architecture_id, file_name). Timestamps are
    stored as ISO-8601 text for dialect portability.
    """

    _CREATE_TABLE_SQL = """
        CREATE TABLE IF NOT EXISTS files (
            architecture_id VARCHAR(255) NOT NULL,
            file_name VARCHAR(255) NOT NULL,
            checksum VARCHAR(255),
            checksum_type VARCHAR(16) NOT NULL,
            file_size BIGINT NOT NULL,
            download_count INTEGER NOT NULL DEFAULT 0,
            created_at VARCHAR(64) NOT NULL,
            updated_at VARCHAR(64) NOT NULL,
            PRIMARY KEY (architecture_id, file_name)
        )
    """

    _SELECT_SQL = """
        SELECT architecture_id, file_name, checksum, checksum_type, file_size,
               download_count, created_at, updated_at
        FROM files
        WHERE architecture_id = :architecture_id AND file_name = :file_name
    """

    _INSERT_SQL = """
        INSERT INTO files (
            architecture_id, file_name, checksum, checksum_type, file_size,
            download_count, created_at, updated_at
        ) VALUES (
            :architecture_id, :file_name, :checksum, :checksum_type, :file_size,
            0, :now, :now
        )
    """

    _UPDATE_SQL = """
        UPDATE files
        SET checksum = :checksum, checksum_type = :checksum_type,
            file_size = :file_size, updated_at = :now
        WHERE architecture_id = :architecture_id AND file_name = :file_name
    """

    _INCREMENT_SQL = """
        UPDATE files
        SET download_count = download_count + 1, updated_at = :now
        WHERE architecture_id = :architecture_id AND file_name = :file_name
    """

    _DELETE_SQL = """
        DELETE FROM files
        WHERE architecture_id = :architecture_id AND file_name = :file_name
    """

    def __init__(self, url: str | None = None, *, engine: Engine | None = None) -> None:
        """Initialize the store and create the table if needed.

        Args:
            url: SQLAlchemy database URL. Ignored when engine is given.
            engine: Pre-built engine (tests, shared pools).

        Raises:
            MetadataStoreError: If neither url nor engine is given, or the
                schema cannot be created.
        """
        if engine is None:
            if not url:
                raise MetadataStoreError("Metadata database URL not configured")
            if url.startswith("postgres://"):
                url = url.replace("postgres://", "postgresql://", 1)
            engine = create_engine(url, pool_pre_ping=True, echo=False)
            instrument_sqlalchemy(engine)

        self._engine = engine
        self._ensure_schema()

    @property
    def engine(self) -> Engine:
        return self._engine

    def _ensure_schema(self) -> None:
        try:
            with self._engine.begin() as conn:
                conn.execute(text(self._CREATE_TABLE_SQL))
        except SQLAlchemyError as e:
            raise MetadataStoreError(f"Failed to initialize metadata store: {e}") from e
        logger.info("Initialized artifact metadata store (%s)", self._engine.dialect.name)

    @staticmethod
    def _row_to_metadata(row: Any) -> ArtifactMetadata:
        return ArtifactMetadata(
            architecture_id=str(row.architecture_id),
            file_name=str(row.file_name),
            checksum=row.checksum,
            checksum_type=str(row.checksum_type),
            file_size=int(row.file_size),
            download_count=int(row.download_count),
            created_at=datetime.fromisoformat(row.created_at),
            updated_at=datetime.fromisoformat(row.updated_at),
        )

    def _select(self, conn: Connection, architecture_id: str, file_name: str) -> Any:
        return conn.execute(
            text(self._SELECT_SQL),
            {"architecture_id": architecture_id, "file_name": file_name},
        ).fetchone()

    def upsert(
        self,
        *,
        architecture_id: str,
        file_name: str = ARTIFACT_FILE_NAME,
        checksum: str | None,
        checksum_type: str | None,
        file_size: int,
    ) -> tuple[ArtifactMetadata, bool]:
        params = {
            "architecture_id": architecture_id,
            "file_name": file_name,
            "checksum": checksum,
            "checksum_type": normalize_stored_checksum_type(checksum_type),
            "file_size": file_size,
            "now": datetime.now(UTC).isoformat(),
        }

        try:
            with self._engine.begin() as conn:
                created = self._select(conn, architecture_id, file_name) is None
                if created:
                    conn.execute(text(self._INSERT_SQL), params)
                else:
                    conn.execute(text(self._UPDATE_SQL), params)
                row = self._select(conn, architecture_id, file_name)
        except IntegrityError:
            # A concurrent upload inserted the record first.
            logger.debug("Concurrent metadata insert for %s; updating", architecture_id)
            try:
                with self._engine.begin() as conn:
                    conn.execute(text(self._UPDATE_SQL), params)
                    row = self._select(conn, architecture_id, file_name)
                created = False
            except SQLAlchemyError as e:
                raise MetadataStoreError(f"Failed to upsert metadata: {e}") from e
        except SQLAlchemyError as e:
            raise MetadataStoreError(f"Failed to upsert metadata: {e}") from e

        return self._row_to_metadata(row), created

    def get(
        self, architecture_id: str, file_name: str = ARTIFACT_FILE_NAME
    ) -> ArtifactMetadata | None:
        try:
            with self._engine.connect() as conn:
                row = self._select(conn, architecture_id, file_name)
        except SQLAlchemyError as e:
            raise MetadataStoreError(f"Failed to read metadata: {e}") from e
        return self._row_to_metadata(row) if row is not None else None

    def increment_download_count(
        self, architecture_id: str, file_name: str = ARTIFACT_FILE_NAME
    ) -> int | None:
        try:
            with self._engine.begin() as conn:
                result = conn.execute(
                    text(self._INCREMENT_SQL),
                    {
                        "architecture_id": architecture_id,
                        "file_name": file_name,
                        "now": datetime.now(UTC).isoformat(),
                    },
                )
                if result.rowcount == 0:
                    return None
                row = self._select(conn, architecture_id, file_name)
        except SQLAlchemyError as e:
            raise MetadataStoreError(f"Failed to increment download count: {e}") from e
        return int(row.download_count)

    def delete(self, architecture_id: str, file_name: str = ARTIFACT_FILE_NAME) -> bool:
        try:
            with self._engine.begin() as conn:
                result = conn.execute(
                    text(self._DELETE_SQL),
                    {"architecture_id": architecture_id, "file_name": file_name},
                )
                deleted = result.rowcount > 0
        except SQLAlchemyError as e:
            raise MetadataStoreError(f"Failed to delete metadata: {e}") from e
        return deleted

    def dispose(self) -> None:
        """Release pooled connections."""
        self._engine.dispose()
