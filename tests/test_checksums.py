"""Unit tests for checksum validation."""

import hashlib
import logging

import pytest

from wgetcache.checksums import (
    ChecksumMismatchError,
    Checksums,
    compute_checksum,
    normalize_algorithm,
)
from wgetcache.errors import ConfigurationError, IntegrityError

CONTENT = b"hello"
MD5 = hashlib.md5(CONTENT).hexdigest()
SHA1 = hashlib.sha1(CONTENT).hexdigest()
SHA256 = hashlib.sha256(CONTENT).hexdigest()
SHA512 = hashlib.sha512(CONTENT).hexdigest()


@pytest.fixture
def sample_file(tmp_path):
    """Create a small file with known content."""
    path = tmp_path / "sample.txt"
    path.write_bytes(CONTENT)
    return path


class TestComputeChecksum:
    """Test digest computation."""

    def test_known_digests(self, sample_file):
        """Test digests match hashlib for every supported algorithm."""
        assert compute_checksum(sample_file, "md5") == MD5
        assert compute_checksum(sample_file, "sha1") == SHA1
        assert compute_checksum(sample_file, "sha256") == SHA256
        assert compute_checksum(sample_file, "sha512") == SHA512

    def test_default_is_sha256(self, sample_file):
        """Test sha256 is the default algorithm."""
        assert compute_checksum(sample_file) == SHA256

    def test_large_file_is_read_in_chunks(self, tmp_path):
        """Test files larger than one chunk hash correctly."""
        data = b"x" * 100_000
        path = tmp_path / "large.bin"
        path.write_bytes(data)

        assert compute_checksum(path, "sha1") == hashlib.sha1(data).hexdigest()

    def test_unsupported_algorithm(self, sample_file):
        """Test unknown algorithms are rejected."""
        with pytest.raises(ConfigurationError, match="Unsupported"):
            compute_checksum(sample_file, "crc32")

    def test_missing_file(self, tmp_path):
        """Test reading a missing file raises OSError."""
        with pytest.raises(OSError):
            compute_checksum(tmp_path / "missing.bin")


class TestNormalizeAlgorithm:
    """Test algorithm name normalization."""

    def test_spellings(self):
        """Test common spellings map to canonical names."""
        assert normalize_algorithm("SHA-256") == "sha256"
        assert normalize_algorithm("sha_512") == "sha512"
        assert normalize_algorithm(" MD5 ") == "md5"
        assert normalize_algorithm("SHA1") == "sha1"


class TestChecksums:
    """Test the checksum gate."""

    def test_empty_set_accepts_any_file(self, sample_file):
        """Test that no checksums means every file is valid."""
        checksums = Checksums()

        assert not checksums
        assert len(checksums) == 0
        checksums.validate(sample_file)
        assert checksums.is_valid(sample_file)

    def test_matching_digest(self, sample_file):
        """Test a matching digest validates."""
        assert Checksums(sha256=SHA256).is_valid(sample_file)

    def test_digest_is_case_insensitive(self, sample_file):
        """Test upper-case hex digests are accepted."""
        assert Checksums(md5=MD5.upper()).is_valid(sample_file)

    def test_mismatch_raises(self, sample_file):
        """Test a wrong digest raises ChecksumMismatchError with details."""
        checksums = Checksums(sha1="0" * 40)

        with pytest.raises(ChecksumMismatchError) as exc_info:
            checksums.validate(sample_file)

        error = exc_info.value
        assert isinstance(error, IntegrityError)
        assert error.algorithm == "sha1"
        assert error.expected == "0" * 40
        assert error.actual == SHA1
        assert error.path == sample_file
        assert not checksums.is_valid(sample_file)

    def test_all_digests_must_match(self, sample_file):
        """Test that one wrong digest among several fails validation."""
        checksums = Checksums(md5=MD5, sha256="f" * 64)

        assert not checksums.is_valid(sample_file)

    def test_multiple_digests_warn(self, sample_file, caplog):
        """Test supplying several digests logs a warning."""
        with caplog.at_level(logging.WARNING, logger="wgetcache.checksums"):
            checksums = Checksums(md5=MD5, sha1=SHA1, sha512=SHA512)

        assert "More than one checksum" in caplog.text
        assert checksums.is_valid(sample_file)

    def test_mapping_and_keywords_combine(self):
        """Test mapping entries and keyword digests are merged."""
        checksums = Checksums({"SHA-256": SHA256}, md5=MD5)

        assert checksums.expected == {"sha256": SHA256, "md5": MD5}

    def test_empty_values_are_ignored(self):
        """Test blank digests do not count as checksums."""
        assert not Checksums({"sha1": ""}, md5=None)

    def test_conflicting_digests(self):
        """Test the same algorithm with two different digests is rejected."""
        with pytest.raises(ConfigurationError, match="Conflicting"):
            Checksums({"sha256": SHA256, "SHA-256": "a" * 64})

    def test_unreadable_file_is_invalid(self, tmp_path):
        """Test a missing file is reported as invalid, not raised."""
        assert not Checksums(md5=MD5).is_valid(tmp_path / "missing.txt")
