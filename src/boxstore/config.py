"""boxstore runtime configuration.

Settings are read once from an optional YAML file and then overridden by
environment variables. Components receive a StorageSettings instance
explicitly; get_settings() is the process-wide cached accessor.

Environment Variables:
    BOXSTORE_CONFIG_PATH: Optional YAML config file.
    BOXSTORE_STORAGE_DIR: Root directory for artifacts
        (default: /var/lib/boxstore/storage)
    BOXSTORE_MAX_FILE_SIZE_GB: Artifact size ceiling in GB, 0 disables (default: 10)
    BOXSTORE_UPLOAD_TIMEOUT_HOURS: Upload deadline in hours (default: 24)
    BOXSTORE_METADATA_DB_URL: SQLAlchemy URL for artifact metadata
        (default: unset, in-memory store)
"""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

BOXSTORE_CONFIG_PATH_ENV = "BOXSTORE_CONFIG_PATH"
BOXSTORE_STORAGE_DIR_ENV = "BOXSTORE_STORAGE_DIR"
BOXSTORE_MAX_FILE_SIZE_GB_ENV = "BOXSTORE_MAX_FILE_SIZE_GB"
BOXSTORE_UPLOAD_TIMEOUT_HOURS_ENV = "BOXSTORE_UPLOAD_TIMEOUT_HOURS"
BOXSTORE_METADATA_DB_URL_ENV = "BOXSTORE_METADATA_DB_URL"

DEFAULT_STORAGE_DIR = "/var/lib/boxstore/storage"
DEFAULT_MAX_FILE_SIZE_GB = 10.0
DEFAULT_UPLOAD_TIMEOUT_HOURS = 24.0

GIB = 1024 * 1024 * 1024

_settings: StorageSettings | None = None
_settings_lock = threading.Lock()


class ConfigError(Exception):
    """Raised when configuration values are present but malformed."""

    pass


@dataclass(frozen=True)
class StorageSettings:
    """Resolved storage configuration.

    Attributes:
        storage_dir: Root directory under which all artifacts live.
        max_file_size: Artifact size ceiling in bytes, or None when unlimited.
        upload_timeout_seconds: Deadline for one upload request.
        metadata_database_url: SQLAlchemy URL for the metadata store, or None.
    """

    storage_dir: Path
    max_file_size: int | None = int(DEFAULT_MAX_FILE_SIZE_GB * GIB)
    upload_timeout_seconds: float = DEFAULT_UPLOAD_TIMEOUT_HOURS * 3600
    metadata_database_url: str | None = None

    @property
    def max_file_size_label(self) -> str | None:
        """Human-readable size ceiling for error payloads."""
        if self.max_file_size is None:
            return None
        return f"{self.max_file_size / GIB:g}GB"


def _parse_float(raw: Any, name: str) -> float:
    try:
        return float(raw)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid numeric value for {name}: {raw!r}") from e


def _load_yaml(path: str) -> dict[str, Any]:
    """Load the optional YAML config file."""
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {path}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")
    return data


def load_settings(environ: dict[str, str] | None = None) -> StorageSettings:
    """Build StorageSettings from YAML file, environment and defaults.

    Args:
        environ: Environment mapping to read (defaults to os.environ).

    Returns:
        Resolved settings.

    Raises:
        ConfigError: If a value is present but malformed.
    """
    env = os.environ if environ is None else environ

    file_values: dict[str, Any] = {}
    config_path = env.get(BOXSTORE_CONFIG_PATH_ENV)
    if config_path:
        file_values = _load_yaml(config_path)
        logger.info("Loaded storage configuration from %s", config_path)

    storage_dir = env.get(BOXSTORE_STORAGE_DIR_ENV) or file_values.get(
        "storage_directory", DEFAULT_STORAGE_DIR
    )

    max_size_raw = env.get(BOXSTORE_MAX_FILE_SIZE_GB_ENV)
    if max_size_raw is None:
        max_size_raw = file_values.get("max_file_size_gb", DEFAULT_MAX_FILE_SIZE_GB)
    max_size_gb = _parse_float(max_size_raw, "max_file_size_gb")
    if max_size_gb < 0:
        raise ConfigError(f"max_file_size_gb must not be negative: {max_size_gb}")

    timeout_raw = env.get(BOXSTORE_UPLOAD_TIMEOUT_HOURS_ENV)
    if timeout_raw is None:
        timeout_raw = file_values.get("upload_timeout_hours", DEFAULT_UPLOAD_TIMEOUT_HOURS)
    timeout_hours = _parse_float(timeout_raw, "upload_timeout_hours")
    if timeout_hours <= 0:
        raise ConfigError(f"upload_timeout_hours must be positive: {timeout_hours}")

    db_url = env.get(BOXSTORE_METADATA_DB_URL_ENV) or file_values.get("metadata_database_url")

    return StorageSettings(
        storage_dir=Path(str(storage_dir)),
        max_file_size=int(max_size_gb * GIB) if max_size_gb > 0 else None,
        upload_timeout_seconds=timeout_hours * 3600,
        metadata_database_url=str(db_url) if db_url else None,
    )


def get_settings() -> StorageSettings:
    """Return process-wide settings, loading them on first call."""
    global _settings

    if _settings is None:
        with _settings_lock:
            if _settings is None:
                _settings = load_settings()
                logger.debug("Storage settings initialized: dir=%s", _settings.storage_dir)
    return _settings


def reset_settings() -> None:
    """Clear cached settings.

    Used for testing to force a reload from the environment.
    """
    global _settings
    with _settings_lock:
        _settings = None
