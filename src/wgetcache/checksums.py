"""Checksum computation and validation for downloaded files."""

import hashlib
import logging
from pathlib import Path
from typing import Dict, Mapping, Optional, Union

from wgetcache.errors import ChecksumMismatchError, ConfigurationError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 8192

# Canonical name -> hashlib constructor name
SUPPORTED_ALGORITHMS = {
    "md5": "md5",
    "sha1": "sha1",
    "sha256": "sha256",
    "sha512": "sha512",
}


def normalize_algorithm(name: str) -> str:
    """Convert an algorithm name to its canonical spelling.

    Args:
        name: Algorithm name, e.g. 'SHA-256', 'sha256', 'MD5'

    Returns:
        Canonical lowercase name without dashes

    Raises:
        ConfigurationError: If the algorithm is not supported

    Examples:
        >>> normalize_algorithm('SHA-256')
        'sha256'
        >>> normalize_algorithm('md5')
        'md5'
    """
    canonical = name.strip().lower().replace("-", "").replace("_", "")
    if canonical not in SUPPORTED_ALGORITHMS:
        supported = ", ".join(SUPPORTED_ALGORITHMS)
        raise ConfigurationError(
            f"Unsupported checksum algorithm: {name}. Supported: {supported}"
        )
    return canonical


def compute_checksum(file_path: Union[str, Path], algorithm: str = "sha256") -> str:
    """Compute checksum for a file.

    Args:
        file_path: Path to file
        algorithm: Hash algorithm ('md5', 'sha1', 'sha256', 'sha512')

    Returns:
        Hex digest of checksum

    Raises:
        ConfigurationError: If algorithm not supported
        OSError: If the file cannot be read
    """
    hasher = hashlib.new(SUPPORTED_ALGORITHMS[normalize_algorithm(algorithm)])

    # Read file in chunks to handle large files
    with open(file_path, "rb") as f:
        while chunk := f.read(CHUNK_SIZE):
            hasher.update(chunk)

    return hasher.hexdigest()


class Checksums:
    """Set of expected digests a file has to satisfy.

    An empty set makes no integrity claim and every file is valid. With more
    than one digest the file is read once per algorithm.

    Examples:
        >>> checksums = Checksums(sha256='9f86d08...')
        >>> checksums.is_valid(Path('download.bin'))
        False
    """

    def __init__(
        self,
        mapping: Optional[Mapping[str, str]] = None,
        *,
        md5: Optional[str] = None,
        sha1: Optional[str] = None,
        sha256: Optional[str] = None,
        sha512: Optional[str] = None,
    ):
        """Collect expected digests.

        Args:
            mapping: Algorithm name -> expected hex digest
            md5: Expected MD5 digest
            sha1: Expected SHA-1 digest
            sha256: Expected SHA-256 digest
            sha512: Expected SHA-512 digest

        Raises:
            ConfigurationError: If an algorithm is unsupported or given twice
                with different digests
        """
        self._expected: Dict[str, str] = {}

        supplied = dict(mapping or {})
        for name, digest in (("md5", md5), ("sha1", sha1), ("sha256", sha256), ("sha512", sha512)):
            if digest is not None:
                supplied.setdefault(name, digest)

        for name, digest in supplied.items():
            if not digest:
                continue
            algorithm = normalize_algorithm(name)
            digest = digest.strip().lower()
            previous = self._expected.get(algorithm)
            if previous is not None and previous != digest:
                raise ConfigurationError(
                    f"Conflicting {algorithm} checksums supplied: {previous} and {digest}"
                )
            self._expected[algorithm] = digest

        if not self._expected:
            logger.debug("No checksums were supplied, skipping file validation")
        elif len(self._expected) > 1:
            logger.warning(
                "More than one checksum is supplied. This may be slow for big files. "
                "Consider using a single checksum."
            )

    @property
    def expected(self) -> Dict[str, str]:
        """Expected digests keyed by canonical algorithm name."""
        return dict(self._expected)

    def __bool__(self) -> bool:
        return bool(self._expected)

    def __len__(self) -> int:
        return len(self._expected)

    def __repr__(self) -> str:
        return f"Checksums({self._expected!r})"

    def validate(self, file_path: Union[str, Path]) -> None:
        """Check the file against every expected digest.

        Args:
            file_path: File to validate

        Raises:
            ChecksumMismatchError: On the first digest that does not match
            OSError: If the file cannot be read
        """
        for algorithm, expected in self._expected.items():
            actual = compute_checksum(file_path, algorithm)
            if actual != expected:
                raise ChecksumMismatchError(algorithm, expected, actual, Path(file_path))

    def is_valid(self, file_path: Union[str, Path]) -> bool:
        """Return True if the file matches every expected digest.

        A file that cannot be read is reported as invalid.
        """
        try:
            self.validate(file_path)
        except ChecksumMismatchError:
            return False
        except OSError as e:
            logger.debug(f"Could not read {file_path} for validation: {e}")
            return False
        return True


__all__ = [
    "CHUNK_SIZE",
    "ChecksumMismatchError",
    "Checksums",
    "SUPPORTED_ALGORITHMS",
    "compute_checksum",
    "normalize_algorithm",
]
