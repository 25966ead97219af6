"""Utility functions for wgetcache."""

import logging
import os
import shutil
import stat
import tempfile
from pathlib import Path
from typing import Optional, Union
from urllib.parse import urlsplit

from wgetcache.errors import ConfigurationError

logger = logging.getLogger(__name__)

# Permission operation granting execute to the file owner
SET_EXECUTABLE = "+x"


def output_file_name(uri: Union[str, object]) -> str:
    """Derive a local file name from a URI.

    Uses the last path segment, or the host name when the URI points at the
    root of a server.

    Args:
        uri: Source URI

    Returns:
        File name for the download

    Examples:
        >>> output_file_name('https://example.com/dist/tool-1.0.tar.gz')
        'tool-1.0.tar.gz'
        >>> output_file_name('https://example.com/')
        'example.com'
        >>> output_file_name('https://example.com/files/?page=2')
        'example.com'
    """
    parts = urlsplit(str(uri))
    name = parts.path.rsplit("/", 1)[-1]
    if not name:
        name = parts.hostname or ""
    return name


def format_bytes(size: Union[int, float, None]) -> str:
    """Format a byte count for display.

    Examples:
        >>> format_bytes(512)
        '512 B'
        >>> format_bytes(2048)
        '2.0 KB'
        >>> format_bytes(None)
        '-'
    """
    if size is None:
        return "-"
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024 or unit == "GB":
            if unit == "B":
                return f"{int(value)} B"
            return f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} GB"


def atomic_copy(source: Union[str, Path], target: Union[str, Path]) -> None:
    """Copy a file so that target is either untouched or complete.

    The data is written to a hidden temp file in the target directory and
    then moved over target with ``os.replace``.

    Args:
        source: File to copy
        target: Destination path (its directory must exist)

    Raises:
        OSError: If reading, writing or replacing fails; the temp file is removed
    """
    target = Path(target)
    fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".tmp")
    os.close(fd)
    try:
        shutil.copyfile(source, tmp_name)
        os.replace(tmp_name, target)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except OSError as cleanup_error:
            logger.warning(f"Failed to clean up temp file {tmp_name}: {cleanup_error}")
        raise


def check_file_permissions(operations: Optional[str]) -> None:
    """Reject permission operations that cannot be applied.

    Only ``+x`` (make the file executable) is supported.

    Raises:
        ConfigurationError: For any other operation
    """
    if operations is not None and SET_EXECUTABLE not in operations:
        raise ConfigurationError(f"Invalid output file permissions: {operations}")


def apply_file_permissions(path: Union[str, Path], operations: Optional[str]) -> None:
    """Apply permission operations to a downloaded file.

    Args:
        path: File to change
        operations: Permission operations, e.g. '+x'; None does nothing

    Raises:
        ConfigurationError: If the operations are not supported
        OSError: If the mode cannot be changed
    """
    if operations is None:
        return
    check_file_permissions(operations)

    mode = os.stat(path).st_mode
    os.chmod(path, stat.S_IMODE(mode) | stat.S_IXUSR)
    logger.debug(f"Applied ({operations}) permission to file {Path(path).absolute()}")
