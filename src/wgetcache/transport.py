"""HTTP transport used by the downloader.

The orchestrator only depends on :class:`Transport`; :class:`RequestsTransport`
is the default implementation on top of :mod:`requests`. Proxies, TLS and
redirects are left to requests.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Iterator, Mapping, Optional

import requests
from requests.auth import HTTPBasicAuth

from wgetcache.errors import PermanentTransportError, TransientTransportError, TransportError

logger = logging.getLogger(__name__)

DOWNLOAD_CHUNK_SIZE = 8 * 1024
DEFAULT_TIMEOUT = 3.0


@dataclass(frozen=True)
class Credentials:
    """Authentication for a fetch: basic auth or a bearer token."""

    username: Optional[str] = None
    password: Optional[str] = None
    token: Optional[str] = None

    def __repr__(self) -> str:
        return f"Credentials(username={self.username!r}, password=***, token=***)"

    @property
    def empty(self) -> bool:
        return not (self.username or self.token)


@dataclass(frozen=True)
class Timeouts:
    """Connect and read timeouts in seconds."""

    connect: float = DEFAULT_TIMEOUT
    read: float = DEFAULT_TIMEOUT


@dataclass
class FetchResponse:
    """Body of a successful fetch.

    Attributes:
        chunks: Iterable of body chunks; may raise TransportError while iterating
        total: Content length in bytes, or -1 if unknown
        closer: Called once the body has been consumed or abandoned
    """

    chunks: Iterable[bytes]
    total: int = -1
    closer: Optional[Callable[[], None]] = None

    def close(self) -> None:
        if self.closer is not None:
            self.closer()


def classify_status(status_code: int, status_line: str) -> TransportError:
    """Build the error for a failed HTTP response.

    Codes of 500 and above are transient, everything else is permanent.

    Examples:
        >>> type(classify_status(503, 'Service Unavailable')).__name__
        'TransientTransportError'
        >>> type(classify_status(404, 'Not Found')).__name__
        'PermanentTransportError'
    """
    if status_code >= 500:
        return TransientTransportError.from_status(status_code, status_line)
    return PermanentTransportError.from_status(status_code, status_line)


class Transport(ABC):
    """Fetches the body of a URI."""

    @abstractmethod
    def fetch(
        self,
        uri: str,
        headers: Optional[Mapping[str, str]] = None,
        credentials: Optional[Credentials] = None,
        timeouts: Optional[Timeouts] = None,
        follow_redirects: bool = True,
        insecure: bool = False,
    ) -> FetchResponse:
        """Start downloading a URI.

        Args:
            uri: URI to fetch
            headers: Extra request headers
            credentials: Authentication to send
            timeouts: Connect and read timeouts
            follow_redirects: Whether redirects are followed
            insecure: Skip TLS certificate verification

        Returns:
            FetchResponse streaming the body

        Raises:
            TransientTransportError: On I/O failures and HTTP 5xx
            PermanentTransportError: On HTTP 4xx and refused redirects
        """
        pass


class RequestsTransport(Transport):
    """Transport backed by a :class:`requests.Session`."""

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        chunk_size: int = DOWNLOAD_CHUNK_SIZE,
    ):
        self.session = session if session is not None else requests.Session()
        self.chunk_size = chunk_size

    def close(self) -> None:
        self.session.close()

    def fetch(
        self,
        uri: str,
        headers: Optional[Mapping[str, str]] = None,
        credentials: Optional[Credentials] = None,
        timeouts: Optional[Timeouts] = None,
        follow_redirects: bool = True,
        insecure: bool = False,
    ) -> FetchResponse:
        request_headers: Dict[str, str] = dict(headers or {})
        timeouts = timeouts or Timeouts()
        auth = None
        if credentials is not None:
            if credentials.token:
                logger.debug("providing bearer token authentication")
                request_headers["Authorization"] = f"Bearer {credentials.token}"
            elif credentials.username:
                logger.debug(f"providing custom authentication for user {credentials.username}")
                auth = HTTPBasicAuth(credentials.username, credentials.password or "")

        try:
            response = self.session.get(
                uri,
                headers=request_headers,
                auth=auth,
                timeout=(timeouts.connect, timeouts.read),
                allow_redirects=follow_redirects,
                verify=not insecure,
                stream=True,
            )
        except requests.RequestException as e:
            raise TransientTransportError(f"Could not fetch {uri}: {e}") from e

        status = response.status_code
        reason = response.reason or ""
        if status >= 400:
            response.close()
            raise classify_status(status, reason)
        if 300 <= status < 400:
            response.close()
            raise PermanentTransportError.from_status(
                status,
                f"{reason}, Not downloading the resource because redirects are not followed",
            )

        total = -1
        length = response.headers.get("Content-Length")
        if length is not None and length.isdigit():
            total = int(length)

        return FetchResponse(self._iter_body(uri, response), total, response.close)

    def _iter_body(self, uri: str, response: requests.Response) -> Iterator[bytes]:
        try:
            for chunk in response.iter_content(chunk_size=self.chunk_size):
                if chunk:
                    yield chunk
        except (requests.RequestException, OSError) as e:
            raise TransientTransportError(f"Error while reading {uri}: {e}") from e
