"""Persistent URI -> cached file name index."""

import json
import logging
import os
import re
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, Optional, Union
from urllib.parse import urlsplit, urlunsplit

from filelock import FileLock, Timeout

from wgetcache.errors import IncompatibleIndexError, LockTimeoutError

logger = logging.getLogger(__name__)

INDEX_FILENAME = "index.json"
INDEX_VERSION = 1
DEFAULT_INDEX_LOCK_TIMEOUT = 30.0

DEFAULT_PORTS = {"http": 80, "https": 443, "ftp": 21}

# Out-of-band request annotations such as '{Accept-Encoding=gzip}' that some
# HTTP caches prepend to the request URI.
_ANNOTATION_PREFIX = re.compile(r"^(?:\{[^{}]*\})+")


def normalize_uri(uri: Union[str, object]) -> str:
    """Canonicalize a URI for use as a cache key.

    Leading annotation groups are removed, scheme and host are lower-cased and
    the port is dropped when it is the default port of the scheme. User info,
    path, query and fragment are kept as they are.

    Args:
        uri: URI string (or object whose str() is the URI)

    Returns:
        Normalized URI string

    Examples:
        >>> normalize_uri('https://Example.com:443/file.zip')
        'https://example.com/file.zip'
        >>> normalize_uri('{Accept-Encoding=gzip%2Cdeflate}https://host/get')
        'https://host/get'
        >>> normalize_uri('http://bill@host:8080/file.bin')
        'http://bill@host:8080/file.bin'
    """
    text = _ANNOTATION_PREFIX.sub("", str(uri).strip())
    parts = urlsplit(text)
    scheme = parts.scheme.lower()
    netloc = parts.netloc

    if netloc:
        userinfo, at, hostport = netloc.rpartition("@")
        port: Optional[str] = None
        if hostport.startswith("["):
            # IPv6 literal
            end = hostport.find("]")
            host = hostport[: end + 1]
            rest = hostport[end + 1 :]
            if rest.startswith(":"):
                port = rest[1:]
        elif ":" in hostport:
            host, _, port = hostport.rpartition(":")
        else:
            host = hostport

        if port is not None and (
            port == "" or (port.isdigit() and int(port) == DEFAULT_PORTS.get(scheme))
        ):
            port = None

        netloc = f"{userinfo}{at}{host.lower()}"
        if port is not None:
            netloc += f":{port}"

    return urlunsplit((scheme, netloc, parts.path, parts.query, parts.fragment))


class FileBackedIndex:
    """Index of cached files stored as ``index.json`` in the cache directory.

    Every read and write first reloads the file and merges entries the
    in-memory map does not know yet, so concurrent writers converge instead
    of overwriting each other. File access happens under an advisory
    :class:`filelock.FileLock`; callers coordinate threads with :attr:`lock`.

    An index that cannot be parsed is logged and treated as empty; it is
    rewritten on the next :meth:`put`.
    """

    def __init__(
        self,
        base_dir: Union[str, Path],
        lock_timeout: float = DEFAULT_INDEX_LOCK_TIMEOUT,
    ):
        """Initialize the index.

        Args:
            base_dir: Cache directory holding the index file
            lock_timeout: Seconds to wait for the index file lock
        """
        self.base_dir = Path(base_dir)
        self.index_path = self.base_dir / INDEX_FILENAME
        self.lock_path = self.base_dir / f"{INDEX_FILENAME}.lock"
        self.lock_timeout = lock_timeout
        self.lock = threading.RLock()
        self._entries: Dict[str, str] = {}
        self._file_lock = FileLock(str(self.lock_path), timeout=lock_timeout)

    @contextmanager
    def _locked_file(self) -> Iterator[None]:
        try:
            with self._file_lock:
                yield
        except Timeout as e:
            raise LockTimeoutError(self.index_path, self.lock_timeout) from e

    def _load(self) -> None:
        """Merge entries from the index file into memory.

        Raises:
            IncompatibleIndexError: If the file is not a readable index
        """
        try:
            with open(self.index_path, "r", encoding="utf-8") as f:
                raw = f.read()
        except FileNotFoundError:
            return

        if not raw.strip():
            return

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise IncompatibleIndexError(f"Index {self.index_path} is not valid JSON: {e}") from e

        if not isinstance(data, dict) or data.get("version") != INDEX_VERSION:
            raise IncompatibleIndexError(
                f"Index {self.index_path} has unsupported format "
                f"(expected version {INDEX_VERSION})"
            )

        entries = data.get("entries")
        if not isinstance(entries, dict):
            raise IncompatibleIndexError(f"Index {self.index_path} has no entries mapping")

        for uri, file_name in entries.items():
            if isinstance(uri, str) and isinstance(file_name, str):
                self._entries.setdefault(uri, file_name)

    def _reload(self) -> None:
        try:
            self._load()
        except IncompatibleIndexError as e:
            logger.warning(f"Could not load cache index, it will be rewritten: {e}")
        except OSError as e:
            logger.warning(f"Error while reading cache index {self.index_path}: {e}")

    def _save(self) -> None:
        """Write the in-memory map to the index file atomically."""
        payload = {"version": INDEX_VERSION, "entries": self._entries}
        fd, tmp_name = tempfile.mkstemp(
            dir=self.base_dir, prefix=f".{INDEX_FILENAME}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2, sort_keys=True)
            os.replace(tmp_name, self.index_path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise

    def get(self, uri: Union[str, object]) -> Optional[str]:
        """Look up the cached file name for a URI.

        Args:
            uri: Source URI (normalized before lookup)

        Returns:
            Cache-relative file name, or None if unknown
        """
        key = normalize_uri(uri)
        with self.lock:
            if self.base_dir.is_dir():
                try:
                    with self._locked_file():
                        self._reload()
                except LockTimeoutError as e:
                    logger.warning(f"{e}; using in-memory cache index")
            return self._entries.get(key)

    def put(self, uri: Union[str, object], file_name: str) -> None:
        """Record the cached file name for a URI and persist the index.

        Reload, update and save happen under one hold of the file lock.

        Args:
            uri: Source URI (normalized before storing)
            file_name: Cache-relative file name

        Raises:
            LockTimeoutError: If the index file lock cannot be acquired
            OSError: If the index file cannot be written
        """
        key = normalize_uri(uri)
        with self.lock:
            self.base_dir.mkdir(parents=True, exist_ok=True)
            with self._locked_file():
                self._reload()
                self._entries[key] = file_name
                self._save()

    def entries(self) -> Dict[str, str]:
        """Return all known entries after reloading the index file."""
        with self.lock:
            if self.base_dir.is_dir():
                try:
                    with self._locked_file():
                        self._reload()
                except LockTimeoutError as e:
                    logger.warning(f"{e}; using in-memory cache index")
            return dict(self._entries)
