"""Per-destination locks that serialize downloads to the same file."""

import logging
import os
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, Union

from wgetcache.errors import LockTimeoutError

logger = logging.getLogger(__name__)


class TargetLockRegistry:
    """Hands out one lock per absolute destination path.

    Locks are created on first use and kept for the lifetime of the registry.
    That is fine for short-lived tool runs; a long-running service that
    downloads to an unbounded set of paths will grow this map.
    """

    def __init__(self):
        self._locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    @staticmethod
    def _key(path: Union[str, Path]) -> str:
        return os.path.abspath(os.fspath(path))

    def lock_for(self, path: Union[str, Path]) -> threading.Lock:
        """Get the lock for a destination path, creating it if needed."""
        key = self._key(path)
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, path: Union[str, Path], timeout: float) -> Iterator[threading.Lock]:
        """Hold the lock for a destination path.

        Args:
            path: Destination file path
            timeout: Maximum seconds to wait; negative waits forever

        Raises:
            LockTimeoutError: If the lock is not acquired in time
        """
        lock = self.lock_for(path)
        if not lock.acquire(timeout=timeout if timeout >= 0 else -1):
            raise LockTimeoutError(Path(path), timeout)
        try:
            yield lock
        finally:
            lock.release()

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


_global_registry = TargetLockRegistry()


def get_lock_registry() -> TargetLockRegistry:
    """Get the process-wide lock registry."""
    return _global_registry
