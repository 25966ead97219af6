"""Progress reporting for downloads.

Reporters only observe a download. Errors raised by a reporter are logged
and dropped by :func:`notify` so they never change the outcome.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any

logger = logging.getLogger(__name__)

KBYTE = 1024


class ProgressReport(ABC):
    """Receives progress events for a single fetch attempt."""

    @abstractmethod
    def initiate(self, uri: str, total: int) -> None:
        """Called before the first byte is written.

        Args:
            uri: URI being downloaded
            total: Expected size in bytes, or -1 if unknown
        """
        pass

    @abstractmethod
    def update(self, bytes_read: int) -> None:
        """Called after each chunk with the chunk size."""
        pass

    @abstractmethod
    def completed(self) -> None:
        pass

    @abstractmethod
    def error(self, exc: BaseException) -> None:
        pass


class LoggingProgressReport(ProgressReport):
    """Logs progress at INFO level, in kilobytes for downloads of 1K or more."""

    def __init__(self, log: logging.Logger = logger):
        self.log = log
        self.total = -1
        self.done = 0
        self.unit = "b"

    def _format(self, amount: int) -> str:
        if self.unit == "K":
            return f"{amount // KBYTE}K"
        return str(amount)

    def initiate(self, uri: str, total: int) -> None:
        self.total = total
        self.done = 0
        self.unit = "K" if total >= KBYTE else "b"
        self.log.info(f"Downloading: {uri}")

    def update(self, bytes_read: int) -> None:
        self.done += bytes_read
        total = "?" if self.total < 0 else self._format(self.total)
        self.log.info(f"{self._format(self.done)}/{total}")

    def completed(self) -> None:
        self.log.info(f"downloaded {self._format(self.done)}")

    def error(self, exc: BaseException) -> None:
        self.log.error(f"Download error: {exc}")


class SilentProgressReport(ProgressReport):
    """Only logs the start and the outcome, at DEBUG level."""

    def __init__(self, log: logging.Logger = logger):
        self.log = log

    def initiate(self, uri: str, total: int) -> None:
        self.log.debug(f"Downloading: {uri}")

    def update(self, bytes_read: int) -> None:
        pass

    def completed(self) -> None:
        self.log.debug("Download completed")

    def error(self, exc: BaseException) -> None:
        self.log.debug(f"Download error: {exc}")


def notify(report: ProgressReport, event: str, *args: Any) -> None:
    """Deliver an event to a reporter, ignoring reporter failures.

    Args:
        report: Reporter to call
        event: Method name ('initiate', 'update', 'completed', 'error')
        *args: Arguments for the method
    """
    try:
        getattr(report, event)(*args)
    except Exception as e:
        logger.debug(f"Progress reporter {type(report).__name__}.{event} failed: {e}", exc_info=True)
