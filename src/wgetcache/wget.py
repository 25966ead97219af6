"""Download orchestrator: fetch a URI once and reuse it from the cache.

A download goes through these steps while holding the lock for its
destination path:

1. An existing destination file is kept unless ``overwrite`` is set or
   ``always_verify_checksum`` finds it does not match.
2. The download cache is consulted (unless ``skip_cache``).
3. The transport is called up to ``retries`` times. Each attempt writes to a
   hidden ``.part`` file beside the destination which is then validated.
   Transient transport errors and checksum mismatches are retried,
   permanent transport errors end the loop.
4. The validated file replaces the destination and is installed in the cache.
"""

import logging
import os
import tempfile
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Iterable, Iterator, Optional, Union

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_none,
)

from wgetcache.cache import DownloadCache
from wgetcache.checksums import Checksums
from wgetcache.config import DEFAULT_CACHE_DIR
from wgetcache.errors import (
    ChecksumMismatchError,
    ConfigurationError,
    DownloadFailedError,
    IntegrityError,
    LockTimeoutError,
    TransientTransportError,
    TransportError,
    WgetCacheError,
)
from wgetcache.locks import TargetLockRegistry, get_lock_registry
from wgetcache.progress import ProgressReport, SilentProgressReport, notify
from wgetcache.transport import Credentials, RequestsTransport, Timeouts, Transport
from wgetcache.utils import (
    apply_file_permissions,
    atomic_copy,
    check_file_permissions,
    output_file_name,
)

logger = logging.getLogger(__name__)


class DownloadStatus(Enum):
    """Outcome of a download request."""

    DOWNLOADED = "downloaded"
    CACHED = "cached"
    EXISTING = "existing"
    SKIPPED = "skipped"
    FAILED = "failed"
    LOCK_TIMEOUT = "lock_timeout"


@dataclass
class WGetResult:
    """Result of :meth:`WGet.execute`.

    Attributes:
        status: What happened
        path: Destination file path (None when skipped)
        attempts: Number of fetch attempts made
        error: Error that was ignored because fail_on_error was off
    """

    status: DownloadStatus
    path: Optional[Path] = None
    attempts: int = 0
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        """True if the destination file is in place."""
        return self.status in (
            DownloadStatus.DOWNLOADED,
            DownloadStatus.CACHED,
            DownloadStatus.EXISTING,
        )


@dataclass
class WGetRequest:
    """Parameters of a single download.

    Checksums can be given as a mapping or through the per-algorithm fields;
    both are combined.
    """

    uri: str
    output_directory: Path = Path(".")
    output_file_name: Optional[str] = None
    checksums: Dict[str, str] = field(default_factory=dict)
    md5: Optional[str] = None
    sha1: Optional[str] = None
    sha256: Optional[str] = None
    sha512: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)
    username: Optional[str] = None
    password: Optional[str] = None
    token: Optional[str] = None
    retries: int = 2
    connect_timeout: float = 3.0
    read_timeout: float = 3.0
    max_lock_wait: float = 30.0
    retry_backoff: float = 0.0
    max_retry_wait: float = 10.0
    overwrite: bool = False
    skip_cache: bool = False
    cache_dir: Optional[Path] = None
    always_verify_checksum: bool = False
    fail_on_error: bool = True
    follow_redirects: bool = True
    insecure: bool = False
    offline: bool = False
    output_file_permissions: Optional[str] = None
    skip: bool = False

    def __post_init__(self):
        self.uri = str(self.uri)
        self.output_directory = Path(self.output_directory).expanduser()
        if self.cache_dir is not None:
            self.cache_dir = Path(self.cache_dir).expanduser()

    @property
    def destination(self) -> Path:
        """Path of the file to produce."""
        return self.output_directory / (self.output_file_name or output_file_name(self.uri))

    def validate(self) -> None:
        """Check parameters that can never lead to a download.

        Raises:
            ConfigurationError: On invalid or conflicting parameters
        """
        if self.retries < 1:
            raise ConfigurationError("retries must be at least 1")
        if self.token and (self.username or self.password):
            raise ConfigurationError("Specify either token or username/password, not both")
        if not (self.output_file_name or output_file_name(self.uri)):
            raise ConfigurationError(f"Cannot derive an output file name from {self.uri}")
        if self.destination.is_dir():
            raise ConfigurationError(f"Output file {self.destination} is a directory")
        check_file_permissions(self.output_file_permissions)
        if not self.skip_cache and self.cache_dir is not None:
            if self.cache_dir.exists() and not self.cache_dir.is_dir():
                raise ConfigurationError(f"cache_dir is not a directory: {self.cache_dir}")

    def build_checksums(self) -> Checksums:
        return Checksums(
            self.checksums,
            md5=self.md5,
            sha1=self.sha1,
            sha256=self.sha256,
            sha512=self.sha512,
        )

    def credentials(self) -> Optional[Credentials]:
        if not (self.username or self.token):
            return None
        return Credentials(username=self.username, password=self.password, token=self.token)

    def timeouts(self) -> Timeouts:
        return Timeouts(connect=self.connect_timeout, read=self.read_timeout)


def _read_stream(uri: str, chunks: Iterable[bytes]) -> Iterator[bytes]:
    """Iterate a response body, turning I/O errors into TransientTransportError."""
    try:
        for chunk in chunks:
            yield chunk
    except OSError as e:
        raise TransientTransportError(f"Error while reading {uri}: {e}") from e


class WGet:
    """Downloads files through the shared cache with retries.

    Examples:
        >>> wget = WGet()
        >>> result = wget.execute(WGetRequest(
        ...     uri='https://example.com/tool.tar.gz',
        ...     output_directory=Path('build'),
        ...     sha256='...',
        ... ))
        >>> result.status
        <DownloadStatus.DOWNLOADED: 'downloaded'>
    """

    def __init__(
        self,
        transport: Optional[Transport] = None,
        progress: Optional[ProgressReport] = None,
        locks: Optional[TargetLockRegistry] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        """Initialize the downloader.

        Args:
            transport: Transport used to fetch files (requests-based by default)
            progress: Progress reporter (debug logging by default)
            locks: Destination lock registry (process-wide by default)
            sleep: Function used to wait between attempts (time.sleep by default)
        """
        self.transport = transport if transport is not None else RequestsTransport()
        self.progress = progress if progress is not None else SilentProgressReport()
        self.locks = locks if locks is not None else get_lock_registry()
        self.sleep = sleep

    def execute(self, request: WGetRequest) -> WGetResult:
        """Make sure the requested file exists at its destination.

        Args:
            request: Download parameters

        Returns:
            WGetResult describing the outcome

        Raises:
            ConfigurationError: On invalid parameters
            LockTimeoutError: If the destination is locked too long and fail_on_error is set
            DownloadFailedError: If the file could not be fetched and fail_on_error is set
            CacheInstallError: If the downloaded file could not be cached
        """
        if request.skip:
            logger.info("wgetcache download skipped")
            return WGetResult(DownloadStatus.SKIPPED)

        request.validate()
        destination = request.destination
        checksums = request.build_checksums()

        cache = None
        if not request.skip_cache:
            cache = DownloadCache(
                request.cache_dir or DEFAULT_CACHE_DIR, lock_timeout=request.max_lock_wait
            )
            logger.debug(f"Cache is: {cache.cache_dir}")
        else:
            logger.debug("Cache is skipped")

        destination.parent.mkdir(parents=True, exist_ok=True)

        try:
            with self.locks.hold(destination, request.max_lock_wait):
                return self._execute_locked(request, destination, checksums, cache)
        except LockTimeoutError as e:
            if request.fail_on_error:
                raise
            logger.warning(str(e))
            return WGetResult(DownloadStatus.LOCK_TIMEOUT, destination, error=e)

    def _execute_locked(
        self,
        request: WGetRequest,
        destination: Path,
        checksums: Checksums,
        cache: Optional[DownloadCache],
    ) -> WGetResult:
        if destination.exists():
            checksum_match = True
            if request.always_verify_checksum:
                try:
                    checksums.validate(destination)
                except ChecksumMismatchError:
                    logger.warning(
                        f"The local version of file {destination.name} doesn't match the "
                        "expected checksum. You should consider checking the specified "
                        "checksum is correctly set."
                    )
                    checksum_match = False
                except OSError as e:
                    logger.warning(f"Could not verify local file {destination}: {e}")
                    checksum_match = False

            if not checksum_match or request.overwrite:
                destination.unlink()
            else:
                logger.info(f"File {destination} already exists, skipping")
                return WGetResult(DownloadStatus.EXISTING, destination)

        if cache is not None:
            cached = cache.get_artifact(request.uri, checksums)
            if cached is not None:
                logger.info(f"Got {destination.name} from cache {cached}")
                atomic_copy(cached, destination)
                apply_file_permissions(destination, request.output_file_permissions)
                return WGetResult(DownloadStatus.CACHED, destination)

        if request.offline:
            return self._give_up(
                request,
                destination,
                0,
                WgetCacheError(f"No cached copy of {request.uri} and offline mode is enabled"),
            )

        attempts = 0
        fd, part_name = tempfile.mkstemp(
            dir=destination.parent, prefix=f".{destination.name}.", suffix=".part"
        )
        os.close(fd)
        part = Path(part_name)
        try:
            try:
                for attempt in self._retrying(request):
                    with attempt:
                        attempts = attempt.retry_state.attempt_number
                        self._fetch_once(request, part, checksums)
            except (TransportError, IntegrityError) as e:
                return self._give_up(request, destination, attempts, e)

            os.replace(part, destination)
        finally:
            part.unlink(missing_ok=True)

        logger.info(f"Downloaded {request.uri} to {destination}")
        if cache is not None:
            cache.install(request.uri, destination, checksums)
        apply_file_permissions(destination, request.output_file_permissions)

        return WGetResult(DownloadStatus.DOWNLOADED, destination, attempts)

    def _retrying(self, request: WGetRequest) -> Retrying:
        if request.retry_backoff > 0:
            wait = wait_exponential(multiplier=request.retry_backoff, max=request.max_retry_wait)
        else:
            wait = wait_none()

        def log_retry(retry_state: RetryCallState) -> None:
            remaining = request.retries - retry_state.attempt_number
            logger.warning(f"{retry_state.outcome.exception()}. Retrying ({remaining} more)")

        kwargs = {}
        if self.sleep is not None:
            kwargs["sleep"] = self.sleep

        return Retrying(
            stop=stop_after_attempt(request.retries),
            wait=wait,
            retry=retry_if_exception_type((TransientTransportError, IntegrityError)),
            before_sleep=log_retry,
            reraise=True,
            **kwargs,
        )

    def _fetch_once(self, request: WGetRequest, part: Path, checksums: Checksums) -> None:
        """Run one fetch attempt into the part file and validate it.

        I/O errors raised by the transport become TransientTransportError;
        errors writing the part file propagate unchanged.
        """
        try:
            response = self.transport.fetch(
                request.uri,
                headers=request.headers,
                credentials=request.credentials(),
                timeouts=request.timeouts(),
                follow_redirects=request.follow_redirects,
                insecure=request.insecure,
            )
        except OSError as e:
            raise TransientTransportError(f"Could not fetch {request.uri}: {e}") from e

        try:
            notify(self.progress, "initiate", request.uri, response.total)
            with open(part, "wb") as out:
                for chunk in _read_stream(request.uri, response.chunks):
                    out.write(chunk)
                    notify(self.progress, "update", len(chunk))
        except TransportError as e:
            notify(self.progress, "error", e)
            raise
        finally:
            response.close()
        notify(self.progress, "completed")

        checksums.validate(part)

    def _give_up(
        self,
        request: WGetRequest,
        destination: Path,
        attempts: int,
        cause: BaseException,
    ) -> WGetResult:
        error = DownloadFailedError(destination, attempts, cause)
        if request.fail_on_error:
            raise error from cause
        logger.warning(f"{error}. Ignoring download failure(s).")
        return WGetResult(DownloadStatus.FAILED, destination, attempts, error)


def download(
    uri: str,
    output_directory: Union[str, Path] = ".",
    transport: Optional[Transport] = None,
    progress: Optional[ProgressReport] = None,
    **options,
) -> WGetResult:
    """Download a URI using the global configuration as defaults.

    Args:
        uri: URI to download
        output_directory: Directory receiving the file
        transport: Transport to use (requests-based by default)
        progress: Progress reporter
        **options: Any WGetRequest field

    Returns:
        WGetResult describing the outcome
    """
    from wgetcache.config import get_global_config

    request = get_global_config().request(uri, output_directory, **options)
    return WGet(transport=transport, progress=progress).execute(request)
