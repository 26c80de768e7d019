# src/cache/json_store.py — v1
"""JSON file-based cache store (default CACHE_BACKEND=json).

Stores one JSON file per subject key under CACHE_ROOT.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from pydantic import ValidationError

from fitscore.cache.base_cache_store import BaseCacheStore
from fitscore.cache.models import CacheRecord

logger = logging.getLogger(__name__)


class JsonCacheStore(BaseCacheStore):
    """File-based cache store using JSON files."""

    def __init__(self, cache_root: Path | str) -> None:
        self._root = Path(cache_root).expanduser()
        self._root.mkdir(parents=True, exist_ok=True)

    async def get(self, key: str) -> CacheRecord | None:
        """Retrieve a record by key."""
        path = self._entry_path(key)
        if not path.exists():
            return None
        try:
            return CacheRecord.model_validate_json(path.read_text(encoding="utf-8"))
        except (ValidationError, ValueError) as e:
            logger.warning("Failed to read cache entry %s: %s", key, e)
            return None

    async def put(self, key: str, record: CacheRecord) -> None:
        """Store a record, replacing any previous file atomically."""
        path = self._entry_path(key)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(record.model_dump_json(indent=2), encoding="utf-8")
        tmp.replace(path)

    async def delete(self, key: str) -> None:
        """Remove a record."""
        path = self._entry_path(key)
        if path.exists():
            path.unlink()

    async def list_entries(self) -> list[CacheRecord]:
        """List all cached records, skipping unreadable files."""
        records: list[CacheRecord] = []
        if not self._root.is_dir():
            return records

        for path in sorted(self._root.glob("*.json")):
            try:
                records.append(
                    CacheRecord.model_validate_json(path.read_text(encoding="utf-8"))
                )
            except (ValidationError, ValueError, json.JSONDecodeError):
                logger.debug("Skipping unreadable cache file %s", path.name)
                continue

        return records

    def _entry_path(self, key: str) -> Path:
        """Return file path for a cache key."""
        safe_key = key.replace("/", "_").replace("\\", "_").replace(":", "_")
        return self._root / f"{safe_key}.json"
