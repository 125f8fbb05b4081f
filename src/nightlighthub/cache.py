"""On-disk cache for fetched Black Marble rasters.

An SQLite index maps cache keys to payload files under ``cache_dir``.
Archived granules do not change once published, so entries never
expire; the cache is bounded by size with least-recently-used eviction.
"""

from __future__ import annotations

import hashlib
import json
import logging
import sqlite3
from collections.abc import Iterator
from contextlib import closing, contextmanager
from dataclasses import dataclass
from datetime import date, datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from nightlighthub.config import Config

logger = logging.getLogger("nightlighthub")

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS rasters (
    cache_key TEXT PRIMARY KEY,
    product TEXT NOT NULL,
    acquisition_date TEXT NOT NULL,
    created_at TEXT NOT NULL,
    last_accessed_at TEXT NOT NULL,
    file_path TEXT NOT NULL,
    size_bytes INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_rasters_lru ON rasters(last_accessed_at);
"""


@dataclass
class CacheStatus:
    """Summary statistics for the cache.

    Example:
        >>> CacheStatus(entry_count=0, total_size_bytes=0)
        CacheStatus(entry_count=0, total_size_bytes=0)
    """

    __slots__ = ("entry_count", "total_size_bytes")

    entry_count: int
    total_size_bytes: int


def build_cache_key(
    product: str,
    variable: str,
    region_hash: str,
    day: date,
    params: dict[str, str] | None = None,
) -> str:
    """Build a deterministic cache key for one fetched date.

    Example:
        >>> build_cache_key("VNP46A2", "NTL", "abc", date(2023, 1, 5))  # doctest: +SKIP
        'VNP46A2:NTL:abc:2023-01-05:44136fa...'
    """
    params_json = json.dumps(params or {}, sort_keys=True)
    params_hash = hashlib.sha256(params_json.encode()).hexdigest()
    return f"{product}:{variable}:{region_hash}:{day.isoformat()}:{params_hash}"


class RasterCache:
    """Size-bounded cache of serialized rasters.

    Cache methods **never raise**: failures are logged as warnings and
    reported as a miss, so a broken cache only costs a re-download.

    Args:
        config: Provides ``cache_dir`` and ``cache_size_mb``.

    Example:
        >>> from nightlighthub.config import Config
        >>> cache = RasterCache(Config(cache_dir="/tmp/nlh-cache"))
        >>> cache.status().entry_count
        0
    """

    def __init__(self, config: Config) -> None:
        self._max_bytes = config.cache_size_mb * 1024 * 1024
        self._cache_dir = Path(config.cache_dir)
        self._db_path = self._cache_dir / "index.db"
        try:
            self._cache_dir.mkdir(parents=True, exist_ok=True)
            with self._connect() as conn:
                conn.executescript(_SCHEMA)
        except (sqlite3.Error, OSError) as exc:
            logger.warning("Cache initialization failed: %s", exc)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        with closing(sqlite3.connect(str(self._db_path), timeout=30)) as conn:
            with conn:
                yield conn

    def _path_for(self, cache_key: str, product: str) -> Path:
        digest = hashlib.sha256(cache_key.encode()).hexdigest()
        return self._cache_dir / product / f"{digest}.bin"

    def get(self, cache_key: str) -> bytes | None:
        """Return cached bytes for *cache_key*, or ``None`` on a miss."""
        try:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT file_path FROM rasters WHERE cache_key = ?",
                    (cache_key,),
                ).fetchone()
                if row is None:
                    return None

                path = Path(row[0])
                if not path.exists():
                    logger.warning(
                        "Cache file %s missing for key %s, dropping entry",
                        path,
                        cache_key,
                    )
                    conn.execute("DELETE FROM rasters WHERE cache_key = ?", (cache_key,))
                    return None

                payload = path.read_bytes()
                conn.execute(
                    "UPDATE rasters SET last_accessed_at = ? WHERE cache_key = ?",
                    (_now(), cache_key),
                )
                return payload
        except (sqlite3.Error, OSError) as exc:
            logger.warning("Cache lookup failed for key %s: %s", cache_key, exc)
            return None

    def store(self, cache_key: str, product: str, day: date, payload: bytes) -> None:
        """Write *payload* under *cache_key* and evict if over the limit."""
        try:
            path = self._path_for(cache_key, product)
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = path.with_suffix(".tmp")
            tmp_path.write_bytes(payload)
            tmp_path.replace(path)

            now = _now()
            with self._connect() as conn:
                conn.execute(
                    "INSERT OR REPLACE INTO rasters (cache_key, product, "
                    "acquisition_date, created_at, last_accessed_at, file_path, "
                    "size_bytes) VALUES (?, ?, ?, ?, ?, ?, ?)",
                    (
                        cache_key,
                        product,
                        day.isoformat(),
                        now,
                        now,
                        str(path),
                        len(payload),
                    ),
                )
            self._evict()
        except (sqlite3.Error, OSError) as exc:
            logger.warning("Cache store failed for key %s: %s", cache_key, exc)

    def _evict(self) -> None:
        with self._connect() as conn:
            (total,) = conn.execute(
                "SELECT COALESCE(SUM(size_bytes), 0) FROM rasters"
            ).fetchone()
            if total <= self._max_bytes:
                return

            rows = conn.execute(
                "SELECT cache_key, file_path, size_bytes FROM rasters "
                "ORDER BY last_accessed_at ASC"
            ).fetchall()
            evicted = 0
            for cache_key, file_path, size in rows:
                if total <= self._max_bytes:
                    break
                conn.execute("DELETE FROM rasters WHERE cache_key = ?", (cache_key,))
                Path(file_path).unlink(missing_ok=True)
                total -= size
                evicted += 1

        logger.info(
            "Cache eviction: removed %d entries to stay within %d bytes",
            evicted,
            self._max_bytes,
        )

    def status(self) -> CacheStatus:
        """Return entry count and total size; zeros on any error."""
        try:
            with self._connect() as conn:
                count, size = conn.execute(
                    "SELECT COUNT(*), COALESCE(SUM(size_bytes), 0) FROM rasters"
                ).fetchone()
            return CacheStatus(entry_count=count, total_size_bytes=size)
        except (sqlite3.Error, OSError) as exc:
            logger.warning("Cache status query failed: %s", exc)
            return CacheStatus(entry_count=0, total_size_bytes=0)

    def clear(self) -> None:
        """Remove every entry and its payload file."""
        try:
            with self._connect() as conn:
                paths = [row[0] for row in conn.execute("SELECT file_path FROM rasters")]
                conn.execute("DELETE FROM rasters")
            for file_path in paths:
                Path(file_path).unlink(missing_ok=True)
            logger.debug("Cache cleared (%d entries)", len(paths))
        except (sqlite3.Error, OSError) as exc:
            logger.warning("Cache clear failed: %s", exc)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()
