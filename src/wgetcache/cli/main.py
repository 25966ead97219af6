"""Main CLI entry point for wgetcache.

Provides commands to download files through the cache and to inspect it.
"""

import logging
import sys
from pathlib import Path
from typing import Dict, Optional, Tuple

import click
from rich.console import Console
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    TextColumn,
    TransferSpeedColumn,
)
from rich.table import Table

from wgetcache import __version__
from wgetcache.cache import DownloadCache
from wgetcache.checksums import SUPPORTED_ALGORITHMS, Checksums, compute_checksum
from wgetcache.config import DownloadConfig
from wgetcache.progress import ProgressReport, SilentProgressReport
from wgetcache.transport import RequestsTransport, Transport
from wgetcache.utils import format_bytes
from wgetcache.wget import DownloadStatus, WGet

# Global console for Rich output
console = Console()


class RichProgressReport(ProgressReport):
    """Shows a rich progress bar for each fetch attempt."""

    def __init__(self, console: Console):
        self.console = console
        self.progress: Optional[Progress] = None
        self.task = None

    def initiate(self, uri: str, total: int) -> None:
        total_bytes = total if total >= 0 else None
        if self.progress is None:
            self.progress = Progress(
                TextColumn("[cyan]{task.description}"),
                BarColumn(),
                DownloadColumn(),
                TransferSpeedColumn(),
                console=self.console,
                transient=True,
            )
            self.progress.start()
            self.task = self.progress.add_task(uri.rsplit("/", 1)[-1] or uri, total=total_bytes)
        else:
            self.progress.reset(self.task, total=total_bytes)

    def update(self, bytes_read: int) -> None:
        if self.progress is not None:
            self.progress.advance(self.task, bytes_read)

    def _stop(self) -> None:
        if self.progress is not None:
            self.progress.stop()
            self.progress = None
            self.task = None

    def completed(self) -> None:
        self._stop()

    def error(self, exc: BaseException) -> None:
        self._stop()


def make_transport() -> Transport:
    return RequestsTransport()


def load_config(ctx_obj: Dict) -> DownloadConfig:
    """Build the effective configuration.

    Priority (highest first):
    1. --cache-dir flag
    2. WGETCACHE_* environment variables
    3. Config file (--config or ~/.wgetcache/config.json)

    Args:
        ctx_obj: CLI context object

    Returns:
        DownloadConfig instance
    """
    config = DownloadConfig.from_env(DownloadConfig.load(ctx_obj.get("config_path")))
    if ctx_obj.get("cache_dir"):
        config.cache_dir = Path(ctx_obj["cache_dir"]).expanduser()
    return config


def parse_headers(values: Tuple[str, ...]) -> Dict[str, str]:
    """Parse ``Name: value`` header options.

    Raises:
        click.BadParameter: If a header has no colon
    """
    headers = {}
    for value in values:
        name, sep, content = value.partition(":")
        if not sep or not name.strip():
            raise click.BadParameter(f"Expected 'Name: value', got '{value}'", param_hint="--header")
        headers[name.strip()] = content.strip()
    return headers


@click.group()
@click.option(
    "--cache-dir",
    type=click.Path(),
    help="Cache directory (default: ~/.wgetcache or WGETCACHE_CACHE_DIR env var)",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(),
    help="Path to a JSON config file (default: ~/.wgetcache/config.json)",
)
@click.option("--verbose", "-v", count=True, help="Increase log output (-v info, -vv debug)")
@click.version_option(version=__version__, prog_name="wgetcache")
@click.pass_context
def cli(ctx, cache_dir, config_path, verbose):
    """wgetcache - Download files once and reuse them from a shared cache."""
    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose > 1:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")

    ctx.ensure_object(dict)
    ctx.obj["cache_dir"] = cache_dir
    ctx.obj["config_path"] = config_path


# ==================== Download Commands ====================


@cli.command("get")
@click.argument("uri")
@click.option("--output-dir", "-o", type=click.Path(), default=".", help="Output directory")
@click.option("--name", "-n", help="Output file name (default: last segment of the URI)")
@click.option("--md5", help="Expected MD5 digest")
@click.option("--sha1", help="Expected SHA-1 digest")
@click.option("--sha256", help="Expected SHA-256 digest")
@click.option("--sha512", help="Expected SHA-512 digest")
@click.option(
    "--header",
    "-H",
    multiple=True,
    help="Extra request header 'Name: value' (can be used multiple times)",
)
@click.option("--retries", type=int, help="Number of attempts")
@click.option("--timeout", type=float, help="Connect and read timeout in seconds")
@click.option("--lock-wait", type=float, help="Seconds to wait for a concurrent download")
@click.option("--username", help="Basic auth user name")
@click.option("--password", help="Basic auth password")
@click.option("--token", help="Bearer token")
@click.option("--overwrite", is_flag=True, help="Replace an existing output file")
@click.option("--skip-cache", is_flag=True, help="Do not use the download cache")
@click.option("--always-verify", is_flag=True, help="Verify checksums of an existing output file")
@click.option("--no-fail-on-error", is_flag=True, help="Warn instead of failing")
@click.option("--offline", is_flag=True, help="Only use existing or cached files")
@click.option("--no-redirects", is_flag=True, help="Do not follow HTTP redirects")
@click.option("--insecure", is_flag=True, help="Skip TLS certificate verification")
@click.option(
    "--permissions",
    "output_file_permissions",
    help="Permission operations for the output file ('+x' makes it executable)",
)
@click.option("--quiet", "-q", is_flag=True, help="Do not show a progress bar")
@click.pass_context
def get(
    ctx,
    uri,
    output_dir,
    name,
    md5,
    sha1,
    sha256,
    sha512,
    header,
    retries,
    timeout,
    lock_wait,
    username,
    password,
    token,
    overwrite,
    skip_cache,
    always_verify,
    no_fail_on_error,
    offline,
    no_redirects,
    insecure,
    output_file_permissions,
    quiet,
):
    """Download a file, using the cache when possible.

    Example:
        wgetcache get https://example.com/tool.tar.gz -o build --sha256 <digest>
        wgetcache get https://example.com/data.csv -H "Accept: text/csv" --retries 5
    """
    try:
        config = load_config(ctx.obj)
        overrides = {
            "output_file_name": name,
            "md5": md5,
            "sha1": sha1,
            "sha256": sha256,
            "sha512": sha512,
            "headers": parse_headers(header),
            "username": username,
            "password": password,
            "token": token,
            "insecure": insecure,
            "output_file_permissions": output_file_permissions,
        }
        if retries is not None:
            overrides["retries"] = retries
        if timeout is not None:
            overrides["connect_timeout"] = timeout
            overrides["read_timeout"] = timeout
        if lock_wait is not None:
            overrides["max_lock_wait"] = lock_wait
        if overwrite:
            overrides["overwrite"] = True
        if skip_cache:
            overrides["skip_cache"] = True
        if always_verify:
            overrides["always_verify_checksum"] = True
        if no_fail_on_error:
            overrides["fail_on_error"] = False
        if offline:
            overrides["offline"] = True
        if no_redirects:
            overrides["follow_redirects"] = False

        request = config.request(uri, output_dir, **overrides)
        progress = SilentProgressReport() if quiet else RichProgressReport(console)
        result = WGet(transport=make_transport(), progress=progress).execute(request)

        if result.status == DownloadStatus.DOWNLOADED:
            console.print(f"[green]✓[/green] Downloaded {result.path}", soft_wrap=True)
            if result.attempts > 1:
                console.print(f"  Attempts: {result.attempts}")
        elif result.status == DownloadStatus.CACHED:
            console.print(f"[green]✓[/green] Copied {result.path} from cache", soft_wrap=True)
        elif result.status == DownloadStatus.EXISTING:
            console.print(f"[green]✓[/green] {result.path} already exists", soft_wrap=True)
        elif result.status == DownloadStatus.SKIPPED:
            console.print("[yellow]Download skipped[/yellow]")
        else:
            console.print(f"[yellow]![/yellow] Not downloaded: {result.error}", soft_wrap=True)

    except click.BadParameter:
        raise
    except Exception as e:
        console.print(f"[red]✗[/red] Error: {e}", style="red", soft_wrap=True)
        sys.exit(1)


@cli.command("digest")
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--algorithm",
    "-a",
    type=click.Choice(sorted(SUPPORTED_ALGORITHMS), case_sensitive=False),
    default="sha256",
    show_default=True,
    help="Digest algorithm",
)
def digest(file, algorithm):
    """Print the checksum of a file.

    Example:
        wgetcache digest tool.tar.gz -a sha512
    """
    try:
        console.print(f"{compute_checksum(file, algorithm)}  {file}", soft_wrap=True, highlight=False)
    except Exception as e:
        console.print(f"[red]✗[/red] Error: {e}", style="red")
        sys.exit(1)


# ==================== Cache Commands ====================


@cli.group()
@click.pass_context
def cache(ctx):
    """Inspect the download cache."""
    pass


@cache.command("path")
@click.pass_context
def cache_path(ctx):
    """Print the cache directory.

    Example:
        wgetcache cache path
    """
    try:
        config = load_config(ctx.obj)
        console.print(str(config.cache_dir), soft_wrap=True, highlight=False)
    except Exception as e:
        console.print(f"[red]✗[/red] Error: {e}", style="red")
        sys.exit(1)


@cache.command("list")
@click.pass_context
def cache_list(ctx):
    """List cached downloads.

    Example:
        wgetcache cache list
    """
    try:
        config = load_config(ctx.obj)
        entries = DownloadCache(config.cache_dir).list_entries()

        if not entries:
            console.print("[yellow]Cache is empty[/yellow]")
            return

        table = Table(title=f"Cached downloads ({len(entries)})")
        table.add_column("URI", style="cyan", overflow="fold")
        table.add_column("File", style="white", overflow="fold")
        table.add_column("Size", justify="right", style="green")
        table.add_column("Present", style="magenta")

        for uri, entry in entries.items():
            table.add_row(
                uri,
                entry["file_name"],
                format_bytes(entry["size_bytes"]),
                "yes" if entry["present"] else "[red]missing[/red]",
            )

        console.print(table)

    except Exception as e:
        console.print(f"[red]✗[/red] Error: {e}", style="red")
        sys.exit(1)


@cache.command("show")
@click.argument("uri")
@click.option("--md5", help="Expected MD5 digest")
@click.option("--sha1", help="Expected SHA-1 digest")
@click.option("--sha256", help="Expected SHA-256 digest")
@click.option("--sha512", help="Expected SHA-512 digest")
@click.pass_context
def cache_show(ctx, uri, md5, sha1, sha256, sha512):
    """Print the cached file for a URI.

    Fails if there is no cached copy or it does not match the given digests.

    Example:
        wgetcache cache show https://example.com/tool.tar.gz --sha256 <digest>
    """
    try:
        config = load_config(ctx.obj)
        checksums = Checksums(md5=md5, sha1=sha1, sha256=sha256, sha512=sha512)
        path = DownloadCache(config.cache_dir).get_artifact(uri, checksums)
    except Exception as e:
        console.print(f"[red]✗[/red] Error: {e}", style="red")
        sys.exit(1)

    if path is None:
        console.print(f"[red]✗[/red] No valid cached copy of {uri}", style="red", soft_wrap=True)
        sys.exit(1)
    console.print(str(path), soft_wrap=True, highlight=False)


if __name__ == "__main__":
    cli()
