"""wgetcache: Download files once, verify them, and reuse them from a shared cache."""

__version__ = "0.1.0"

from wgetcache.cache import DownloadCache
from wgetcache.checksums import Checksums, compute_checksum
from wgetcache.config import DownloadConfig, get_global_config, set_global_config
from wgetcache.errors import (
    CacheInstallError,
    ChecksumMismatchError,
    ConfigurationError,
    DownloadFailedError,
    IntegrityError,
    LockTimeoutError,
    PermanentTransportError,
    TransientTransportError,
    TransportError,
    WgetCacheError,
)
from wgetcache.wget import DownloadStatus, WGet, WGetRequest, WGetResult, download

__all__ = [
    "WGet",
    "WGetRequest",
    "WGetResult",
    "DownloadStatus",
    "download",
    "DownloadCache",
    "Checksums",
    "compute_checksum",
    "DownloadConfig",
    "get_global_config",
    "set_global_config",
    "WgetCacheError",
    "ConfigurationError",
    "IntegrityError",
    "ChecksumMismatchError",
    "TransportError",
    "TransientTransportError",
    "PermanentTransportError",
    "LockTimeoutError",
    "CacheInstallError",
    "DownloadFailedError",
    "__version__",
]
