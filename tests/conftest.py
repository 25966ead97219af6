"""Shared fixtures for wgetcache tests."""

import threading
import time
from typing import Dict, List, Mapping, Optional

import pytest

from wgetcache.config import set_global_config
from wgetcache.errors import PermanentTransportError, TransientTransportError
from wgetcache.transport import Credentials, FetchResponse, Timeouts, Transport


class BrokenStream:
    """Response body that fails after sending a prefix."""

    def __init__(self, prefix: bytes, error: Optional[BaseException] = None):
        self.prefix = prefix
        self.error = error if error is not None else TransientTransportError("Connection reset by peer")


class StubTransport(Transport):
    """Scripted transport.

    Each fetch takes the next item of ``responses`` (or of ``by_uri[uri]``):
    bytes are served as the body, exceptions are raised, and a BrokenStream
    raises its error (TransientTransportError by default) after its prefix.
    Once a script runs out the last item is repeated.
    """

    def __init__(
        self,
        responses: Optional[List] = None,
        by_uri: Optional[Dict[str, List]] = None,
        delay: float = 0.0,
        barrier: Optional[threading.Barrier] = None,
    ):
        self.responses = list(responses or [])
        self.by_uri = {uri: list(items) for uri, items in (by_uri or {}).items()}
        self.delay = delay
        self.barrier = barrier
        self.calls: List[Dict] = []
        self.closed = 0
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def _next(self, uri: str):
        script = self.by_uri.get(uri, self.responses)
        if not script:
            return PermanentTransportError.from_status(404, "Not Found")
        if len(script) > 1:
            return script.pop(0)
        return script[0]

    def _close(self):
        with self._lock:
            self.closed += 1

    def fetch(
        self,
        uri: str,
        headers: Optional[Mapping[str, str]] = None,
        credentials: Optional[Credentials] = None,
        timeouts: Optional[Timeouts] = None,
        follow_redirects: bool = True,
        insecure: bool = False,
    ) -> FetchResponse:
        with self._lock:
            self.calls.append(
                {
                    "uri": uri,
                    "headers": dict(headers or {}),
                    "credentials": credentials,
                    "timeouts": timeouts,
                    "follow_redirects": follow_redirects,
                    "insecure": insecure,
                }
            )
            item = self._next(uri)
            self.active += 1
            self.max_active = max(self.max_active, self.active)

        try:
            if self.barrier is not None:
                self.barrier.wait()
            if self.delay:
                time.sleep(self.delay)
        finally:
            with self._lock:
                self.active -= 1

        if isinstance(item, BaseException):
            raise item
        if isinstance(item, BrokenStream):
            return FetchResponse(self._broken(item), -1, self._close)
        chunks = [item[i : i + 4] for i in range(0, len(item), 4)]
        return FetchResponse(chunks, len(item), self._close)

    @staticmethod
    def _broken(stream: BrokenStream):
        yield stream.prefix
        raise stream.error


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch):
    """Keep WGETCACHE_* variables and the global config out of tests."""
    for name in (
        "WGETCACHE_CACHE_DIR",
        "WGETCACHE_RETRIES",
        "WGETCACHE_CONNECT_TIMEOUT",
        "WGETCACHE_READ_TIMEOUT",
        "WGETCACHE_MAX_LOCK_WAIT",
        "WGETCACHE_FAIL_ON_ERROR",
        "WGETCACHE_SKIP_CACHE",
        "WGETCACHE_OFFLINE",
    ):
        monkeypatch.delenv(name, raising=False)
    set_global_config(None)
    yield
    set_global_config(None)


@pytest.fixture
def cache_dir(tmp_path):
    """Cache directory that does not exist yet."""
    return tmp_path / "cache"


@pytest.fixture
def output_dir(tmp_path):
    """Download output directory."""
    path = tmp_path / "out"
    path.mkdir()
    return path
