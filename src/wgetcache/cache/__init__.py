"""Shared on-disk download cache.

Key components:
- DownloadCache: get/install cached downloads
- FileBackedIndex: persistent URI -> file name index
- normalize_uri: cache key canonicalization
"""

from wgetcache.cache.index import FileBackedIndex, normalize_uri
from wgetcache.cache.manager import DownloadCache

__all__ = [
    "DownloadCache",
    "FileBackedIndex",
    "normalize_uri",
]
