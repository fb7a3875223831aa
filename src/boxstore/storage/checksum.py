"""Streaming checksum computation and verification for stored artifacts."""

from __future__ import annotations

import hashlib
import logging
from pathlib import Path

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 1024 * 1024

SUPPORTED_ALGORITHMS = frozenset({"md5", "sha1", "sha256", "sha384", "sha512"})

_NO_CHECKSUM = frozenset({"", "null", "none"})


def normalize_checksum_type(name: str | None) -> str | None:
    """Return the lower-case algorithm name, or None for "no checksum".

    Unsupported names are returned normalized; callers decide whether to
    skip verification.
    """
    if name is None:
        return None
    normalized = name.strip().lower().replace("-", "")
    if normalized in _NO_CHECKSUM:
        return None
    return normalized


def compute_checksum(path: str | Path, algorithm: str) -> str | None:
    """Stream a file through the named digest.

    Returns:
        Lower-case hex digest, or None if the algorithm is unsupported.

    Raises:
        OSError: If the file cannot be read.
    """
    normalized = normalize_checksum_type(algorithm)
    if normalized is None or normalized not in SUPPORTED_ALGORITHMS:
        return None

    digest = hashlib.new(normalized)
    with open(path, "rb") as f:
        while True:
            block = f.read(READ_CHUNK_SIZE)
            if not block:
                break
            digest.update(block)
    return digest.hexdigest()


def verify_checksum(path: str | Path, expected_hex: str, algorithm: str) -> bool | None:
    """Compare a file's digest against an expected hex value.

    Never mutates the file; cleanup on mismatch is the caller's job.

    Args:
        path: File to hash.
        expected_hex: Expected digest, hex encoded (any case).
        algorithm: Digest name such as "sha256" (any case).

    Returns:
        True on match, False on mismatch, None when the algorithm is not
        verifiable (callers skip verification).
    """
    actual = compute_checksum(path, algorithm)
    if actual is None:
        logger.warning("Checksum algorithm not supported, skipping verification: %s", algorithm)
        return None
    return actual == expected_hex.strip().lower()
