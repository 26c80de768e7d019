# src/cache/cache_factory.py — v2
"""Factories for cache store and strategy service instantiation."""

from __future__ import annotations

from fitscore.cache.base_cache_store import BaseCacheStore
from fitscore.cache.strategy import CacheStrategyService, InvalidationPolicy
from fitscore.config.settings import Settings


def create_cache_store(settings: Settings | None = None) -> BaseCacheStore:
    """Instantiate the configured cache backend.

    Args:
        settings: Application settings. Defaults to JSON backend.

    Returns:
        Configured BaseCacheStore implementation.
    """
    backend = "json" if settings is None else settings.cache_backend
    cache_root = "~/.fitscore/cache" if settings is None else str(settings.cache_root)

    if backend == "json":
        from fitscore.cache.json_store import JsonCacheStore
        return JsonCacheStore(cache_root=cache_root)

    if backend == "sqlite":
        from fitscore.cache.sqlite_store import SqliteCacheStore
        return SqliteCacheStore(db_path=f"{cache_root}/fitscore_cache.db")

    if backend == "redis":
        from fitscore.cache.redis_store import RedisCacheStore
        if settings is None or not settings.cache_redis_url:
            raise ValueError(
                "CACHE_REDIS_URL must be set when CACHE_BACKEND=redis"
            )
        return RedisCacheStore(redis_url=settings.cache_redis_url)

    raise ValueError(f"Unsupported cache backend: {backend!r}")


def create_cache_strategy(
    settings: Settings,
    store: BaseCacheStore | None = None,
) -> CacheStrategyService:
    """Build a CacheStrategyService from settings."""
    return CacheStrategyService(
        store=store or create_cache_store(settings),
        ttl_table=settings.cache_ttl_table,
        policy=InvalidationPolicy(
            count_change_threshold=settings.cache_count_change_threshold,
            text_similarity_threshold=settings.cache_text_similarity_threshold,
        ),
        schema_version=settings.cache_schema_version,
        stale_warning_s=settings.cache_stale_warning_s,
    )
