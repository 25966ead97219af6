"""Download cache: stores fetched files keyed by their source URI."""

import errno
import hashlib
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

from wgetcache.cache.index import DEFAULT_INDEX_LOCK_TIMEOUT, FileBackedIndex, normalize_uri
from wgetcache.checksums import Checksums
from wgetcache.errors import CacheInstallError, ConfigurationError, LockTimeoutError
from wgetcache.utils import atomic_copy

logger = logging.getLogger(__name__)


class DownloadCache:
    """Shared on-disk cache of downloaded files.

    Files live directly in ``cache_dir`` as ``<file name>_<md5 of URI>`` and
    are looked up through a :class:`FileBackedIndex`. A cached file is only
    served when it still exists and matches the caller's checksums; anything
    else is reported as a cache miss.
    """

    def __init__(
        self,
        cache_dir: Union[str, Path],
        lock_timeout: float = DEFAULT_INDEX_LOCK_TIMEOUT,
    ):
        """Initialize the download cache.

        The directory itself is created on the first install.

        Args:
            cache_dir: Directory where cached files and the index are stored
            lock_timeout: Seconds to wait for the index file lock

        Raises:
            ConfigurationError: If cache_dir exists and is not a directory
        """
        self.cache_dir = Path(cache_dir).expanduser()
        if self.cache_dir.exists() and not self.cache_dir.is_dir():
            raise ConfigurationError(
                f"Cannot use {self.cache_dir} as cache directory: a file already exists there"
            )
        self.index = FileBackedIndex(self.cache_dir, lock_timeout=lock_timeout)

    @staticmethod
    def cache_file_name(uri: Union[str, object], file_name: str) -> str:
        """Get the file name used to store a download in the cache.

        Args:
            uri: Source URI
            file_name: Original file name

        Returns:
            ``<file_name>_<md5 hex of normalized uri>``

        Examples:
            >>> DownloadCache.cache_file_name('https://host:443/a.zip', 'a.zip')
            'a.zip_...'
        """
        digest = hashlib.md5(normalize_uri(uri).encode("utf-8")).hexdigest()
        return f"{file_name}_{digest}"

    def _get_entry(self, uri: Union[str, object], checksums: Checksums) -> Optional[Path]:
        """Resolve a URI to a cached file that is present and valid."""
        file_name = self.index.get(uri)
        if file_name is None:
            return None

        cache_path = self.cache_dir / file_name
        if not cache_path.is_file():
            logger.debug(f"Cached file {cache_path} for {uri} is missing")
            return None
        if not checksums.is_valid(cache_path):
            logger.debug(f"Cached file {cache_path} for {uri} does not match checksums")
            return None
        return cache_path

    def get_artifact(
        self, uri: Union[str, object], checksums: Optional[Checksums] = None
    ) -> Optional[Path]:
        """Get a cached file for a URI.

        Args:
            uri: Source URI
            checksums: Digests the cached file has to match

        Returns:
            Path to the cached file, or None if there is no valid cached copy
        """
        checksums = checksums if checksums is not None else Checksums()
        with self.index.lock:
            return self._get_entry(uri, checksums)

    def _ensure_cache_dir(self) -> None:
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
        except FileExistsError as e:
            raise ConfigurationError(
                f"Cannot use {self.cache_dir} as cache directory: a file already exists there"
            ) from e
        except OSError as e:
            raise CacheInstallError(f"Could not create cache directory {self.cache_dir}: {e}") from e

    def _copy_into_cache(self, source: Path, target: Path) -> None:
        """Copy source to target through a temp file and an atomic replace."""
        try:
            atomic_copy(source, target)
        except OSError as e:
            if e.errno == errno.ENOSPC:
                raise CacheInstallError(f"Disk full while writing {target} to cache") from e
            raise CacheInstallError(f"Cannot write cache file {target}: {e}") from e

    def install(
        self,
        uri: Union[str, object],
        source_file: Union[str, Path],
        checksums: Optional[Checksums] = None,
    ) -> Path:
        """Install a downloaded file into the cache.

        Does nothing if a valid entry for the URI already exists.

        Args:
            uri: Source URI of the file
            source_file: Downloaded file to copy into the cache
            checksums: Digests a pre-existing entry has to match

        Returns:
            Path to the cached file

        Raises:
            ConfigurationError: If the cache path is not a directory
            CacheInstallError: If the file or the index cannot be written
        """
        checksums = checksums if checksums is not None else Checksums()
        source = Path(source_file)
        self._ensure_cache_dir()

        with self.index.lock:
            existing = self._get_entry(uri, checksums)
            if existing is not None:
                logger.debug(f"{uri} is already cached at {existing}")
                return existing

            file_name = self.cache_file_name(uri, source.name)
            target = self.cache_dir / file_name
            self._copy_into_cache(source, target)

            try:
                self.index.put(uri, file_name)
            except (OSError, LockTimeoutError) as e:
                raise CacheInstallError(f"Cannot update cache index for {uri}: {e}") from e

        logger.debug(f"Cached {uri} as {target}")
        return target

    def list_entries(self) -> Dict[str, Dict[str, Any]]:
        """Get all index entries with the state of their files.

        Returns:
            Dict mapping normalized URI to file name, path, presence and size
        """
        result = {}
        for uri, file_name in sorted(self.index.entries().items()):
            path = self.cache_dir / file_name
            present = path.is_file()
            result[uri] = {
                "file_name": file_name,
                "path": str(path),
                "present": present,
                "size_bytes": path.stat().st_size if present else None,
            }
        return result
