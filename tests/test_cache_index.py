"""Unit tests for the cache index and URI normalization."""

import json
import logging
import threading

import pytest
from filelock import FileLock

from wgetcache.cache.index import INDEX_VERSION, FileBackedIndex, normalize_uri
from wgetcache.errors import LockTimeoutError


class TestNormalizeUri:
    """Test cache key canonicalization."""

    def test_default_ports_are_dropped(self):
        """Test default ports do not change the key."""
        assert normalize_uri("https://example.com:443/a.zip") == "https://example.com/a.zip"
        assert normalize_uri("http://example.com:80/a.zip") == "http://example.com/a.zip"
        assert normalize_uri("ftp://example.com:21/a.zip") == "ftp://example.com/a.zip"

    def test_other_ports_are_kept(self):
        """Test non-default ports stay part of the key."""
        assert normalize_uri("http://example.com:8080/a.zip") == "http://example.com:8080/a.zip"
        assert normalize_uri("https://example.com:80/a.zip") == "https://example.com:80/a.zip"

    def test_empty_port_is_dropped(self):
        """Test a trailing colon without port is removed."""
        assert normalize_uri("http://example.com:/a.zip") == "http://example.com/a.zip"

    def test_scheme_and_host_are_lowercased(self):
        """Test scheme and host are case-insensitive but the path is not."""
        assert normalize_uri("HTTPS://Example.COM/Dir/File.ZIP") == "https://example.com/Dir/File.ZIP"

    def test_annotation_prefix_is_removed(self):
        """Test leading '{...}' annotation groups are stripped."""
        assert (
            normalize_uri("{Accept-Encoding=gzip%2Cdeflate}https://host/get")
            == "https://host/get"
        )
        assert normalize_uri("{a=b}{c=d}http://host/x") == "http://host/x"

    def test_userinfo_query_and_fragment_are_kept(self):
        """Test the rest of the URI is preserved."""
        assert (
            normalize_uri("http://bill@Host:80/file.bin?v=1#top")
            == "http://bill@host/file.bin?v=1#top"
        )

    def test_ipv6_host(self):
        """Test IPv6 literals keep their brackets."""
        assert normalize_uri("http://[::1]:80/x") == "http://[::1]/x"
        assert normalize_uri("http://[::1]:8000/x") == "http://[::1]:8000/x"

    def test_idempotent(self):
        """Test normalizing twice gives the same key."""
        once = normalize_uri("HTTPS://Example.com:443/a?b=c")
        assert normalize_uri(once) == once


class TestFileBackedIndex:
    """Test persistence and merging of the index."""

    def test_get_unknown_uri(self, cache_dir):
        """Test unknown URIs return None without creating the directory."""
        index = FileBackedIndex(cache_dir)

        assert index.get("https://example.com/a.zip") is None
        assert not cache_dir.exists()

    def test_put_persists(self, cache_dir):
        """Test entries survive a new index instance."""
        FileBackedIndex(cache_dir).put("https://example.com/a.zip", "a.zip_123")

        index = FileBackedIndex(cache_dir)
        assert index.get("https://example.com/a.zip") == "a.zip_123"

        data = json.loads(index.index_path.read_text())
        assert data["version"] == INDEX_VERSION
        assert data["entries"] == {"https://example.com/a.zip": "a.zip_123"}

    def test_equivalent_uris_share_entry(self, cache_dir):
        """Test lookups go through URI normalization."""
        index = FileBackedIndex(cache_dir)
        index.put("https://Example.com:443/a.zip", "a.zip_123")

        assert index.get("https://example.com/a.zip") == "a.zip_123"
        assert index.get("{x=y}HTTPS://EXAMPLE.COM/a.zip") == "a.zip_123"

    def test_concurrent_writers_merge(self, cache_dir):
        """Test writes from another instance are merged, not overwritten."""
        first = FileBackedIndex(cache_dir)
        second = FileBackedIndex(cache_dir)
        assert first.get("https://example.com/a") is None
        assert second.get("https://example.com/b") is None

        first.put("https://example.com/a", "a_1")
        second.put("https://example.com/b", "b_2")

        assert FileBackedIndex(cache_dir).entries() == {
            "https://example.com/a": "a_1",
            "https://example.com/b": "b_2",
        }
        assert first.get("https://example.com/b") == "b_2"

    def test_threaded_puts_lose_nothing(self, cache_dir):
        """Test many threads adding distinct keys all end up in the file."""
        cache_dir.mkdir()
        errors = []

        def worker(i):
            try:
                FileBackedIndex(cache_dir).put(f"https://example.com/{i}", f"f{i}")
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        entries = FileBackedIndex(cache_dir).entries()
        assert entries == {f"https://example.com/{i}": f"f{i}" for i in range(8)}

    def test_corrupt_index_is_treated_as_empty(self, cache_dir, caplog):
        """Test an unreadable index logs a warning and is rewritten on put."""
        cache_dir.mkdir()
        (cache_dir / "index.json").write_text("not json{")
        index = FileBackedIndex(cache_dir)

        with caplog.at_level(logging.WARNING, logger="wgetcache.cache.index"):
            assert index.get("https://example.com/a") is None
        assert "Could not load cache index" in caplog.text

        index.put("https://example.com/a", "a_1")
        data = json.loads((cache_dir / "index.json").read_text())
        assert data == {"version": INDEX_VERSION, "entries": {"https://example.com/a": "a_1"}}

    def test_unsupported_version_is_treated_as_empty(self, cache_dir, caplog):
        """Test an index with a different version is ignored."""
        cache_dir.mkdir()
        (cache_dir / "index.json").write_text(
            json.dumps({"version": 99, "entries": {"https://example.com/a": "a_1"}})
        )

        with caplog.at_level(logging.WARNING, logger="wgetcache.cache.index"):
            assert FileBackedIndex(cache_dir).get("https://example.com/a") is None
        assert "unsupported format" in caplog.text

    def test_empty_index_file(self, cache_dir):
        """Test an empty index file counts as no entries."""
        cache_dir.mkdir()
        (cache_dir / "index.json").write_text("")

        assert FileBackedIndex(cache_dir).entries() == {}

    def test_get_falls_back_to_memory_when_locked(self, cache_dir, caplog):
        """Test a held file lock makes get use the in-memory map."""
        index = FileBackedIndex(cache_dir, lock_timeout=0.05)
        index.put("https://example.com/a", "a_1")

        with FileLock(str(index.lock_path)):
            with caplog.at_level(logging.WARNING, logger="wgetcache.cache.index"):
                assert index.get("https://example.com/a") == "a_1"
        assert "using in-memory cache index" in caplog.text

    def test_put_times_out_when_locked(self, cache_dir):
        """Test a held file lock makes put raise LockTimeoutError."""
        cache_dir.mkdir()
        index = FileBackedIndex(cache_dir, lock_timeout=0.05)

        with FileLock(str(index.lock_path)):
            with pytest.raises(LockTimeoutError):
                index.put("https://example.com/a", "a_1")

    def test_no_temp_files_left(self, cache_dir):
        """Test saving leaves only the index and its lock file."""
        index = FileBackedIndex(cache_dir)
        index.put("https://example.com/a", "a_1")
        index.put("https://example.com/b", "b_1")

        names = {p.name for p in cache_dir.iterdir()}
        assert names <= {"index.json", "index.json.lock"}
        assert "index.json" in names
