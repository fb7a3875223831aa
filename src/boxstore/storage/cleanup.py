"""Best-effort filesystem cleanup.

Cleanup never raises: a failure to delete is logged so it cannot mask the
primary error that triggered the cleanup.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from boxstore.storage.paths import ArtifactLocation

logger = logging.getLogger(__name__)


def safe_unlink(path: Path) -> bool:
    """Delete a file if present. Returns True if a file was removed."""
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    except OSError as e:
        logger.warning("Could not delete file %s: %s", path.name, e)
        return False
    return True


def safe_rmdir(path: Path) -> bool:
    """Remove an empty directory if present."""
    try:
        path.rmdir()
    except FileNotFoundError:
        return False
    except OSError as e:
        logger.warning("Could not remove directory %s: %s", path.name, e)
        return False
    return True


def safe_rmtree(path: Path) -> bool:
    """Recursively remove a directory if present."""
    if not path.exists():
        return False
    try:
        shutil.rmtree(path)
    except OSError as e:
        logger.warning("Could not remove directory tree %s: %s", path.name, e)
        return False
    return True


def remove_artifact(location: ArtifactLocation) -> bool:
    """Delete an artifact file, its staging area and its directory.

    Returns:
        True if the artifact file existed and was removed.
    """
    removed = safe_unlink(location.file_path)
    safe_rmtree(location.staging_dir)
    safe_rmtree(location.directory)
    return removed
