# src/cache/sqlite_store.py — v1
"""SQLite-based cache store (CACHE_BACKEND=sqlite).

Uses stdlib sqlite3, no external dependency. Metadata columns are kept
next to the JSON body so statistics can be computed without parsing
every snapshot.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

from pydantic import ValidationError

from fitscore.cache.base_cache_store import BaseCacheStore
from fitscore.cache.models import CacheRecord

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS subject_cache (
    key TEXT PRIMARY KEY,
    data TEXT NOT NULL,
    analysis_depth TEXT NOT NULL,
    cached_at TEXT NOT NULL,
    ttl_seconds INTEGER NOT NULL,
    schema_version INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_subject_cache_depth ON subject_cache(analysis_depth);
"""


class SqliteCacheStore(BaseCacheStore):
    """SQLite-backed cache store for single-host deployments."""

    def __init__(self, db_path: Path | str) -> None:
        self._db_path = Path(db_path).expanduser()
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._db_path))
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_SCHEMA)

    async def get(self, key: str) -> CacheRecord | None:
        """Retrieve a record by key."""
        row = self._conn.execute(
            "SELECT data FROM subject_cache WHERE key = ?", (key,)
        ).fetchone()
        if row is None:
            return None
        try:
            return CacheRecord.model_validate_json(row[0])
        except ValidationError as e:
            logger.warning("Failed to deserialize cache entry %s: %s", key, e)
            return None

    async def put(self, key: str, record: CacheRecord) -> None:
        """Store a record (upsert)."""
        meta = record.metadata
        self._conn.execute(
            """INSERT OR REPLACE INTO subject_cache
               (key, data, analysis_depth, cached_at, ttl_seconds, schema_version)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (
                key,
                record.model_dump_json(),
                meta.analysis_depth,
                meta.cached_at.isoformat(),
                meta.ttl_seconds,
                meta.schema_version,
            ),
        )
        self._conn.commit()

    async def delete(self, key: str) -> None:
        """Remove a record."""
        self._conn.execute("DELETE FROM subject_cache WHERE key = ?", (key,))
        self._conn.commit()

    async def list_entries(self) -> list[CacheRecord]:
        """List all cached records."""
        records: list[CacheRecord] = []
        for (data,) in self._conn.execute("SELECT data FROM subject_cache ORDER BY key"):
            try:
                records.append(CacheRecord.model_validate_json(data))
            except ValidationError:
                continue
        return records

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()
