"""Tests for the raster cache."""

from __future__ import annotations

import hashlib
import sqlite3
import time
from datetime import date
from pathlib import Path

import pytest

from nightlighthub.cache import CacheStatus, RasterCache, build_cache_key
from nightlighthub.config import Config

DAY = date(2023, 1, 5)

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cache(tmp_path: Path) -> RasterCache:
    """Create a RasterCache with an isolated temporary directory."""
    return RasterCache(Config(cache_dir=tmp_path, cache_size_mb=10))


@pytest.fixture
def small_cache(tmp_path: Path) -> RasterCache:
    """Create a RasterCache with a 1 MB limit for eviction tests."""
    return RasterCache(Config(cache_dir=tmp_path, cache_size_mb=1))


# ---------------------------------------------------------------------------
# Cache keys
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestBuildCacheKey:
    def test_composite_key(self) -> None:
        key = build_cache_key("VNP46A2", "NTL", "abc123", DAY)
        parts = key.split(":")
        assert parts[:4] == ["VNP46A2", "NTL", "abc123", "2023-01-05"]
        assert parts[4] == hashlib.sha256(b"{}").hexdigest()

    def test_params_order_does_not_matter(self) -> None:
        a = build_cache_key("P", "V", "h", DAY, {"a": "1", "b": "2"})
        b = build_cache_key("P", "V", "h", DAY, {"b": "2", "a": "1"})
        assert a == b

    def test_different_dates_differ(self) -> None:
        assert build_cache_key("P", "V", "h", DAY) != build_cache_key(
            "P", "V", "h", date(2023, 1, 6)
        )


# ---------------------------------------------------------------------------
# Store / get
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestStoreAndGet:
    def test_store_then_get_returns_same_bytes(self, cache: RasterCache) -> None:
        cache.store("k1", "VNP46A2", DAY, b"payload")
        assert cache.get("k1") == b"payload"

    def test_get_missing_key_returns_none(self, cache: RasterCache) -> None:
        assert cache.get("nope") is None

    def test_payload_file_under_product_dir(
        self, cache: RasterCache, tmp_path: Path
    ) -> None:
        cache.store("k1", "VNP46A2", DAY, b"payload")
        digest = hashlib.sha256(b"k1").hexdigest()
        assert (tmp_path / "VNP46A2" / f"{digest}.bin").exists()

    def test_store_overwrites(self, cache: RasterCache) -> None:
        cache.store("k1", "VNP46A2", DAY, b"old")
        cache.store("k1", "VNP46A2", DAY, b"new")
        assert cache.get("k1") == b"new"
        assert cache.status().entry_count == 1

    def test_missing_file_is_a_miss(self, cache: RasterCache, tmp_path: Path) -> None:
        cache.store("k1", "VNP46A2", DAY, b"payload")
        for path in (tmp_path / "VNP46A2").iterdir():
            path.unlink()
        assert cache.get("k1") is None
        assert cache.status().entry_count == 0

    def test_get_updates_last_accessed_at(
        self, cache: RasterCache, tmp_path: Path
    ) -> None:
        cache.store("k1", "VNP46A2", DAY, b"payload")

        def _accessed() -> str:
            conn = sqlite3.connect(str(tmp_path / "index.db"))
            try:
                (value,) = conn.execute(
                    "SELECT last_accessed_at FROM rasters WHERE cache_key = 'k1'"
                ).fetchone()
            finally:
                conn.close()
            return str(value)

        before = _accessed()
        time.sleep(0.01)
        cache.get("k1")
        assert _accessed() > before


# ---------------------------------------------------------------------------
# Eviction, status, clear
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestEviction:
    def test_oldest_entries_evicted_when_over_limit(self, small_cache: RasterCache) -> None:
        blob = b"x" * 400_000
        for i in range(3):
            small_cache.store(f"k{i}", "VNP46A2", DAY, blob)
            time.sleep(0.01)

        assert small_cache.get("k0") is None
        assert small_cache.get("k2") == blob
        assert small_cache.status().total_size_bytes <= 1024 * 1024

    def test_recently_accessed_entries_survive(self, small_cache: RasterCache) -> None:
        blob = b"x" * 400_000
        small_cache.store("k0", "VNP46A2", DAY, blob)
        time.sleep(0.01)
        small_cache.store("k1", "VNP46A2", DAY, blob)
        time.sleep(0.01)
        small_cache.get("k0")
        time.sleep(0.01)
        small_cache.store("k2", "VNP46A2", DAY, blob)

        assert small_cache.get("k0") == blob
        assert small_cache.get("k1") is None


@pytest.mark.unit
class TestStatusAndClear:
    def test_status_counts(self, cache: RasterCache) -> None:
        cache.store("a", "VNP46A2", DAY, b"123")
        cache.store("b", "VNP46A3", DAY, b"45")
        status = cache.status()
        assert isinstance(status, CacheStatus)
        assert status.entry_count == 2
        assert status.total_size_bytes == 5

    def test_clear_removes_everything(self, cache: RasterCache, tmp_path: Path) -> None:
        cache.store("a", "VNP46A2", DAY, b"123")
        cache.clear()
        assert cache.status().entry_count == 0
        assert cache.get("a") is None
        assert not any((tmp_path / "VNP46A2").iterdir())


@pytest.mark.unit
class TestNeverRaises:
    def test_unwritable_cache_dir_degrades(self, tmp_path: Path) -> None:
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")
        cache = RasterCache(Config(cache_dir=blocker / "cache"))

        cache.store("k", "VNP46A2", DAY, b"payload")

        assert cache.get("k") is None
        assert cache.status() == CacheStatus(entry_count=0, total_size_bytes=0)
