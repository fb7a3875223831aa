"""Secure mapping from artifact identifiers to filesystem locations.

All paths are computed lexically (no filesystem access), so resolution is
deterministic and safe to call from concurrent requests. Any identifier that
would land outside the storage root raises PathTraversalError.

Layout:
    {storage_root}/{organization}/{box}/{version}/{provider}/{architecture}/
        vagrant.box           # canonical artifact
        .staging/chunk-{n}    # transient chunks during a chunked upload
        .staging/chunk-{n}.part  # chunk still being received
"""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass
from pathlib import Path

from boxstore.config import DEFAULT_STORAGE_DIR, ConfigError, get_settings
from boxstore.storage.errors import PathTraversalError
from boxstore.storage.models import ArtifactId

logger = logging.getLogger(__name__)

ARTIFACT_FILE_NAME = "vagrant.box"
STAGING_DIR_NAME = ".staging"
CHUNK_PREFIX = "chunk-"
PARTIAL_SUFFIX = ".part"

_storage_root: Path | None = None
_root_lock = threading.Lock()


def get_storage_root() -> Path:
    """Return the process-wide storage root, initializing it once.

    Falls back to the built-in default when configuration cannot be loaded.
    """
    global _storage_root

    if _storage_root is None:
        with _root_lock:
            if _storage_root is None:
                try:
                    root = get_settings().storage_dir
                except ConfigError as e:
                    logger.warning("Falling back to default storage root: %s", e)
                    root = Path(DEFAULT_STORAGE_DIR)
                _storage_root = Path(os.path.normpath(os.path.abspath(root)))
    return _storage_root


def reset_storage_root() -> None:
    """Clear the cached storage root (tests only)."""
    global _storage_root
    with _root_lock:
        _storage_root = None


def _has_parent_reference(segment: str) -> bool:
    parts = segment.replace("\\", "/").split("/")
    return any(part == ".." for part in parts)


def resolve_secure_path(*segments: str, root: str | Path | None = None) -> Path:
    """Join identifier segments under the storage root.

    Args:
        *segments: Path segments, outermost first.
        root: Storage root; defaults to get_storage_root().

    Returns:
        Normalized absolute path inside root.

    Raises:
        PathTraversalError: If a segment references a parent directory,
            contains a NUL byte, or the joined path escapes root.
    """
    base = get_storage_root() if root is None else Path(root)
    if not str(base):
        raise PathTraversalError("Storage root is not configured")
    base_str = os.path.normpath(os.path.abspath(base))

    for segment in segments:
        if "\x00" in segment or _has_parent_reference(segment):
            raise PathTraversalError()

    full = os.path.normpath(os.path.join(base_str, *segments))

    # commonpath rather than startswith: "/data2" must not match root "/data".
    if full != base_str and os.path.commonpath([base_str, full]) != base_str:
        raise PathTraversalError()

    return Path(full)


@dataclass(frozen=True)
class ArtifactLocation:
    """On-disk locations belonging to one artifact."""

    directory: Path
    file_name: str = ARTIFACT_FILE_NAME

    @property
    def file_path(self) -> Path:
        return self.directory / self.file_name

    @property
    def staging_dir(self) -> Path:
        return self.directory / STAGING_DIR_NAME

    def chunk_path(self, index: int) -> Path:
        return self.staging_dir / f"{CHUNK_PREFIX}{index}"

    def partial_chunk_path(self, index: int) -> Path:
        return self.staging_dir / f"{CHUNK_PREFIX}{index}{PARTIAL_SUFFIX}"


class StoragePathResolver:
    """Resolves ArtifactId tuples to ArtifactLocation objects."""

    def __init__(self, root: str | Path | None = None) -> None:
        """Initialize the resolver.

        Args:
            root: Storage root. If None, the process-wide root is used.
        """
        self._root = Path(os.path.normpath(os.path.abspath(root))) if root is not None else None

    @property
    def root(self) -> Path:
        return self._root if self._root is not None else get_storage_root()

    def locate(self, artifact_id: ArtifactId) -> ArtifactLocation:
        """Compute the artifact directory for an identifier tuple.

        Each segment must be a single, non-empty path component.

        Raises:
            PathTraversalError: If any segment is unsafe.
        """
        for segment in artifact_id.segments():
            if not segment or segment in (".", "..") or "/" in segment or "\\" in segment:
                raise PathTraversalError(
                    details={"artifact": artifact_id.key},
                )
        directory = resolve_secure_path(*artifact_id.segments(), root=self.root)
        return ArtifactLocation(directory=directory)
