# src/cache/base_cache_store.py — v1
"""Abstract cache store interface.

Stores are dumb key/value backends; TTL and invalidation policy live in
CacheStrategyService.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from fitscore.cache.models import CacheRecord


class BaseCacheStore(ABC):
    """Unified interface for cache storage backends."""

    @abstractmethod
    async def get(self, key: str) -> CacheRecord | None:
        """Retrieve a record by key."""

    @abstractmethod
    async def put(self, key: str, record: CacheRecord) -> None:
        """Store (overwrite) a record."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove a record; missing keys are ignored."""

    @abstractmethod
    async def list_entries(self) -> list[CacheRecord]:
        """List all cached records (for statistics)."""
