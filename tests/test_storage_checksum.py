"""Tests for streaming checksum verification."""

from __future__ import annotations

import hashlib
from pathlib import Path

import pytest

from boxstore.storage.checksum import (
    READ_CHUNK_SIZE,
    compute_checksum,
    normalize_checksum_type,
    verify_checksum,
)

PAYLOAD = b"vagrant box payload " * 100


@pytest.fixture
def artifact_file(tmp_path: Path) -> Path:
    """Write a small artifact to disk."""
    path = tmp_path / "vagrant.box"
    path.write_bytes(PAYLOAD)
    return path


class TestNormalizeChecksumType:
    """Tests for algorithm name normalization."""

    @pytest.mark.parametrize("name", [None, "", "NULL", "null", "None", "  "])
    def test_no_checksum_values(self, name: str | None) -> None:
        """Empty and NULL-like names mean no checksum."""
        assert normalize_checksum_type(name) is None

    @pytest.mark.parametrize(
        "name,expected",
        [("SHA256", "sha256"), ("sha-512", "sha512"), (" Md5 ", "md5"), ("CRC32", "crc32")],
    )
    def test_names_are_lowercased(self, name: str, expected: str) -> None:
        """Names are case-insensitive and dashes are dropped."""
        assert normalize_checksum_type(name) == expected


class TestVerifyChecksum:
    """Tests for verify_checksum()."""

    @pytest.mark.parametrize("algorithm", ["md5", "sha1", "sha256", "sha384", "sha512"])
    def test_matching_digest(self, artifact_file: Path, algorithm: str) -> None:
        """Every supported algorithm verifies a matching digest."""
        expected = hashlib.new(algorithm, PAYLOAD).hexdigest()

        assert verify_checksum(artifact_file, expected, algorithm.upper()) is True

    def test_hex_comparison_is_case_insensitive(self, artifact_file: Path) -> None:
        """Upper-case expected hex still matches."""
        expected = hashlib.sha256(PAYLOAD).hexdigest().upper()

        assert verify_checksum(artifact_file, expected, "sha256") is True

    def test_mismatch_returns_false(self, artifact_file: Path) -> None:
        """A wrong digest returns False and leaves the file untouched."""
        assert verify_checksum(artifact_file, "0" * 64, "sha256") is False
        assert artifact_file.read_bytes() == PAYLOAD

    def test_unsupported_algorithm_is_not_verifiable(self, artifact_file: Path) -> None:
        """Unknown algorithms return None so callers skip verification."""
        assert verify_checksum(artifact_file, "deadbeef", "crc32") is None

    def test_missing_file_raises(self, tmp_path: Path) -> None:
        """Read failures propagate as OSError."""
        with pytest.raises(OSError):
            verify_checksum(tmp_path / "absent.box", "0" * 64, "sha256")


class TestComputeChecksum:
    """Tests for compute_checksum()."""

    def test_streams_files_larger_than_one_block(self, tmp_path: Path) -> None:
        """Files spanning several read blocks hash identically to hashlib."""
        data = bytes(range(256)) * (READ_CHUNK_SIZE // 256 * 2 + 3)
        path = tmp_path / "big.box"
        path.write_bytes(data)

        assert compute_checksum(path, "sha1") == hashlib.sha1(data).hexdigest()

    def test_empty_file(self, tmp_path: Path) -> None:
        """An empty file hashes to the empty digest."""
        path = tmp_path / "empty.box"
        path.write_bytes(b"")

        assert compute_checksum(path, "md5") == hashlib.md5(b"").hexdigest()

    def test_unsupported_returns_none(self, artifact_file: Path) -> None:
        """Unsupported algorithms return None."""
        assert compute_checksum(artifact_file, "whirlpool") is None
