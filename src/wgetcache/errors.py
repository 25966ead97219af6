"""Exception hierarchy for wgetcache.

Every error raised by the package derives from :class:`WgetCacheError`, so
callers that only care about "the download did not happen" can catch that.
The subclasses tell the orchestrator how to react:

- :class:`ConfigurationError`: never retried.
- :class:`IntegrityError`: retried inside the fetch loop.
- :class:`TransientTransportError`: retried inside the fetch loop.
- :class:`PermanentTransportError`: stops the fetch loop immediately.
- :class:`LockTimeoutError`: soft unless ``fail_on_error`` is set.
- :class:`IncompatibleIndexError`: never escapes the cache index.
"""

from pathlib import Path
from typing import Optional


class WgetCacheError(Exception):
    """Base exception for wgetcache errors."""

    pass


class ConfigurationError(WgetCacheError):
    """Raised for invalid or conflicting settings."""

    pass


class IntegrityError(WgetCacheError):
    """Raised when a file does not match the expected content."""

    pass


class ChecksumMismatchError(IntegrityError):
    """Raised when a file digest differs from the expected digest."""

    def __init__(self, algorithm: str, expected: str, actual: str, path: Optional[Path] = None):
        self.algorithm = algorithm
        self.expected = expected
        self.actual = actual
        self.path = path
        where = f" for {path}" if path is not None else ""
        super().__init__(
            f"{algorithm} checksum mismatch{where}: expected <{expected}> was <{actual}>"
        )


class TransportError(WgetCacheError):
    """Base class for failures reported by a transport.

    Attributes:
        status_code: HTTP status code, or None for I/O level failures
        status_line: Reason phrase or short description
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        status_line: str = "",
    ):
        self.status_code = status_code
        self.status_line = status_line
        super().__init__(message)

    @classmethod
    def from_status(cls, status_code: int, status_line: str) -> "TransportError":
        return cls(
            f"Download failed with code {status_code}: {status_line}",
            status_code=status_code,
            status_line=status_line,
        )


class TransientTransportError(TransportError):
    """Connection, timeout and stream errors, and HTTP 5xx responses."""

    pass


class PermanentTransportError(TransportError):
    """HTTP 4xx responses and other non-retriable protocol failures."""

    pass


class LockTimeoutError(WgetCacheError):
    """Raised when a target lock cannot be acquired in time."""

    def __init__(self, path: Path, timeout: float):
        self.path = path
        self.timeout = timeout
        super().__init__(f"Could not acquire lock for file {path} in {timeout:g}s")


class IncompatibleIndexError(WgetCacheError):
    """Raised when the cache index file cannot be understood."""

    pass


class CacheInstallError(WgetCacheError):
    """Raised when a downloaded file cannot be stored in the cache."""

    pass


class DownloadFailedError(WgetCacheError):
    """Raised when a download could not be completed.

    Attributes:
        destination: Path that was supposed to receive the file
        attempts: Number of fetch attempts made
        cause: Last underlying error
    """

    def __init__(self, destination: Path, attempts: int, cause: Optional[BaseException]):
        self.destination = destination
        self.attempts = attempts
        self.cause = cause
        noun = "attempt" if attempts == 1 else "attempts"
        message = f"Could not get {destination} after {attempts} failed {noun}"
        if cause is not None:
            message += f": {cause}"
        super().__init__(message)
