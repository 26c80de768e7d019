# src/cache/redis_store.py — v1
"""Redis-based cache store (CACHE_BACKEND=redis).

Requires 'redis' package: pip install redis.
Suitable for multi-worker deployments sharing one cache.
"""

from __future__ import annotations

import logging

from pydantic import ValidationError

from fitscore.cache.base_cache_store import BaseCacheStore
from fitscore.cache.models import CacheRecord

logger = logging.getLogger(__name__)

_KEY_PREFIX = "fitscore:cache:"
_INDEX_KEY = "fitscore:cache:__index__"


class RedisCacheStore(BaseCacheStore):
    """Redis-backed cache store for distributed deployments.

    Redis-side expiry is set to the record's stored TTL as a backstop;
    the strategy service still applies the per-request depth TTL on read.
    """

    def __init__(self, redis_url: str) -> None:
        try:
            import redis
        except ImportError as e:
            raise ImportError(
                "redis package required: pip install redis"
            ) from e

        self._client = redis.Redis.from_url(redis_url, decode_responses=True)

    async def get(self, key: str) -> CacheRecord | None:
        """Retrieve a record by key."""
        data = self._client.get(f"{_KEY_PREFIX}{key}")
        if data is None:
            return None
        try:
            return CacheRecord.model_validate_json(data)
        except ValidationError as e:
            logger.warning("Failed to deserialize cache entry %s: %s", key, e)
            return None

    async def put(self, key: str, record: CacheRecord) -> None:
        """Store a record with a Redis TTL matching its metadata."""
        self._client.set(
            f"{_KEY_PREFIX}{key}",
            record.model_dump_json(),
            ex=record.metadata.ttl_seconds,
        )
        # Index of all keys for list_entries
        self._client.sadd(_INDEX_KEY, key)

    async def delete(self, key: str) -> None:
        """Remove a record."""
        self._client.delete(f"{_KEY_PREFIX}{key}")
        self._client.srem(_INDEX_KEY, key)

    async def list_entries(self) -> list[CacheRecord]:
        """List all cached records, pruning index members Redis already expired."""
        records: list[CacheRecord] = []
        for key in self._client.smembers(_INDEX_KEY):
            record = await self.get(key)
            if record is None:
                self._client.srem(_INDEX_KEY, key)
                continue
            records.append(record)
        return records

    def close(self) -> None:
        """Close the Redis connection."""
        self._client.close()
