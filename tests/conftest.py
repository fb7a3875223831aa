"""Pytest configuration and fixtures for boxstore tests.

This module provides common fixtures and configuration for all tests.
"""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from boxstore.config import (
    BOXSTORE_CONFIG_PATH_ENV,
    BOXSTORE_MAX_FILE_SIZE_GB_ENV,
    BOXSTORE_METADATA_DB_URL_ENV,
    BOXSTORE_STORAGE_DIR_ENV,
    BOXSTORE_UPLOAD_TIMEOUT_HOURS_ENV,
    StorageSettings,
    reset_settings,
)
from boxstore.metadata.store import InMemoryArtifactMetadataStore
from boxstore.storage.models import ArtifactId
from boxstore.storage.paths import ArtifactLocation, StoragePathResolver, reset_storage_root

TEST_MAX_FILE_SIZE = 1024 * 1024


@pytest.fixture
def anyio_backend() -> str:
    """Run anyio-marked tests on asyncio only."""
    return "asyncio"


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Point process-wide storage configuration at a temp directory.

    Clears the cached settings and storage root before and after each test.
    """
    for key in (
        BOXSTORE_CONFIG_PATH_ENV,
        BOXSTORE_MAX_FILE_SIZE_GB_ENV,
        BOXSTORE_METADATA_DB_URL_ENV,
        BOXSTORE_UPLOAD_TIMEOUT_HOURS_ENV,
    ):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv(BOXSTORE_STORAGE_DIR_ENV, str(tmp_path / "storage"))

    reset_settings()
    reset_storage_root()
    yield
    reset_settings()
    reset_storage_root()


@pytest.fixture
def storage_root(tmp_path: Path) -> Path:
    """Return an existing storage root directory."""
    root = tmp_path / "storage"
    root.mkdir(parents=True, exist_ok=True)
    return root


@pytest.fixture
def settings(storage_root: Path) -> StorageSettings:
    """Settings with a small size ceiling for fast limit tests."""
    return StorageSettings(
        storage_dir=storage_root,
        max_file_size=TEST_MAX_FILE_SIZE,
        upload_timeout_seconds=30.0,
    )


@pytest.fixture
def metadata_store() -> InMemoryArtifactMetadataStore:
    """Create a fresh in-memory metadata store."""
    return InMemoryArtifactMetadataStore()


@pytest.fixture
def artifact_id() -> ArtifactId:
    """Return a representative identifier tuple."""
    return ArtifactId(
        organization="acme",
        box="ubuntu-server",
        version="1.0.0",
        provider="virtualbox",
        architecture="amd64",
    )


@pytest.fixture
def location(storage_root: Path, artifact_id: ArtifactId) -> ArtifactLocation:
    """Resolve the artifact location under the temp storage root."""
    return StoragePathResolver(storage_root).locate(artifact_id)

