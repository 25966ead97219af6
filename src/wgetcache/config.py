"""Download configuration management."""

import json
import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Optional, Union

if TYPE_CHECKING:
    from wgetcache.wget import WGetRequest

logger = logging.getLogger(__name__)

DEFAULT_CACHE_DIR = Path.home() / ".wgetcache"
DEFAULT_CONFIG_PATH = DEFAULT_CACHE_DIR / "config.json"


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class DownloadConfig:
    """Default settings for downloads.

    Attributes:
        cache_dir: Shared download cache directory
        retries: Number of fetch attempts (at least 1)
        connect_timeout: Connect timeout in seconds
        read_timeout: Read timeout in seconds
        max_lock_wait: Seconds to wait for another download of the same file
        retry_backoff: Exponential backoff multiplier in seconds (0 = no wait)
        max_retry_wait: Upper bound for a single backoff wait in seconds
        fail_on_error: Raise on failures; if False, warn and continue without the file
        always_verify_checksum: Re-validate files that already exist at the destination
        skip_cache: Do not read from or write to the cache
        follow_redirects: Follow HTTP redirects
        offline: Never touch the network; only existing or cached files are used
    """

    cache_dir: Path = DEFAULT_CACHE_DIR
    retries: int = 2
    connect_timeout: float = 3.0
    read_timeout: float = 3.0
    max_lock_wait: float = 30.0
    retry_backoff: float = 0.0
    max_retry_wait: float = 10.0
    fail_on_error: bool = True
    always_verify_checksum: bool = False
    skip_cache: bool = False
    follow_redirects: bool = True
    offline: bool = False

    def __post_init__(self):
        """Ensure cache_dir is an expanded Path object."""
        if self.cache_dir is None:
            self.cache_dir = DEFAULT_CACHE_DIR
        self.cache_dir = Path(self.cache_dir).expanduser()

    def to_dict(self) -> Dict[str, Any]:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data["cache_dir"] = str(self.cache_dir)
        return data

    @classmethod
    def load(cls, config_path: Optional[Union[str, Path]] = None) -> "DownloadConfig":
        """Load configuration from file.

        Args:
            config_path: Path to config file. If None, uses default location.

        Returns:
            DownloadConfig instance (defaults if the file does not exist)
        """
        config_path = Path(config_path) if config_path is not None else DEFAULT_CONFIG_PATH

        if not config_path.exists():
            return cls()

        with open(config_path, "r") as f:
            data = json.load(f)

        known = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in data.items() if key in known})

    def save(self, config_path: Optional[Union[str, Path]] = None) -> None:
        """Save configuration to file.

        Args:
            config_path: Path to config file. If None, uses cache_dir/config.json.
        """
        config_path = Path(config_path) if config_path is not None else self.cache_dir / "config.json"
        config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(config_path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def from_env(cls, base: Optional["DownloadConfig"] = None) -> "DownloadConfig":
        """Create configuration from environment variables.

        Environment variables:
            WGETCACHE_CACHE_DIR: Cache directory path
            WGETCACHE_RETRIES: Number of attempts
            WGETCACHE_CONNECT_TIMEOUT / WGETCACHE_READ_TIMEOUT: Timeouts in seconds
            WGETCACHE_MAX_LOCK_WAIT: Lock wait in seconds
            WGETCACHE_FAIL_ON_ERROR: true/false
            WGETCACHE_SKIP_CACHE: true/false
            WGETCACHE_OFFLINE: true/false

        Args:
            base: Configuration to start from (defaults if None)

        Returns:
            DownloadConfig instance
        """
        config = cls(**{f.name: getattr(base, f.name) for f in fields(cls)}) if base else cls()

        if os.getenv("WGETCACHE_CACHE_DIR"):
            config.cache_dir = Path(os.environ["WGETCACHE_CACHE_DIR"]).expanduser()

        if os.getenv("WGETCACHE_RETRIES"):
            config.retries = int(os.environ["WGETCACHE_RETRIES"])

        if os.getenv("WGETCACHE_CONNECT_TIMEOUT"):
            config.connect_timeout = float(os.environ["WGETCACHE_CONNECT_TIMEOUT"])

        if os.getenv("WGETCACHE_READ_TIMEOUT"):
            config.read_timeout = float(os.environ["WGETCACHE_READ_TIMEOUT"])

        if os.getenv("WGETCACHE_MAX_LOCK_WAIT"):
            config.max_lock_wait = float(os.environ["WGETCACHE_MAX_LOCK_WAIT"])

        if os.getenv("WGETCACHE_FAIL_ON_ERROR"):
            config.fail_on_error = _env_bool(os.environ["WGETCACHE_FAIL_ON_ERROR"])

        if os.getenv("WGETCACHE_SKIP_CACHE"):
            config.skip_cache = _env_bool(os.environ["WGETCACHE_SKIP_CACHE"])

        if os.getenv("WGETCACHE_OFFLINE"):
            config.offline = _env_bool(os.environ["WGETCACHE_OFFLINE"])

        return config

    def request(
        self, uri: str, output_directory: Union[str, Path] = ".", **overrides: Any
    ) -> "WGetRequest":
        """Build a download request seeded with these defaults.

        Args:
            uri: URI to download
            output_directory: Directory receiving the file
            **overrides: Any other WGetRequest field

        Returns:
            WGetRequest instance
        """
        from wgetcache.wget import WGetRequest

        values = self.to_dict()
        values["cache_dir"] = self.cache_dir
        values.update(overrides)
        return WGetRequest(uri=uri, output_directory=Path(output_directory), **values)


# Global download configuration instance
_global_config: Optional[DownloadConfig] = None


def get_global_config() -> DownloadConfig:
    """Get global download configuration.

    Loaded from the default config file, with environment variables applied
    on top. An unreadable config file is ignored with a warning.
    """
    global _global_config
    if _global_config is None:
        try:
            base = DownloadConfig.load()
        except (ValueError, TypeError, AttributeError, OSError) as e:
            logger.warning(f"Ignoring unreadable config file {DEFAULT_CONFIG_PATH}: {e}")
            base = DownloadConfig()
        _global_config = DownloadConfig.from_env(base)
    return _global_config


def set_global_config(config: Optional[DownloadConfig]) -> None:
    """Set global download configuration (None resets to lazy loading)."""
    global _global_config
    _global_config = config
