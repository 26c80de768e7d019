# src/cache/strategy.py — v1
"""Depth-tiered subject cache with heuristic invalidation.

Entries are keyed by normalized subject identifier plus schema version.
On read, the effective TTL is the smaller of the TTL stored with the
entry and the TTL of the depth being requested, so a snapshot cached by
a light run is only reused by an xray run while it is fresh enough for
xray. Expired and schema-mismatched entries are deleted on read.

Invalidation compares a fresh snapshot against the cached one:
tracked counts moving by more than a relative threshold, tracked text
fields drifting below a similarity threshold, or privacy / verification
flags flipping.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from fitscore.cache.base_cache_store import BaseCacheStore
from fitscore.cache.models import (
    CacheMetadata,
    CacheRecord,
    CacheStatistics,
    InvalidationReason,
)
from fitscore.config.settings import ConfigurationError
from fitscore.core.models import SubjectSnapshot, utcnow
from fitscore.core.similarity import text_similarity

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class InvalidationPolicy:
    """Thresholds and tracked fields for snapshot comparison."""

    count_change_threshold: float = 0.10
    text_similarity_threshold: float = 0.7
    count_fields: tuple[str, ...] = ("follower_count",)
    text_fields: tuple[str, ...] = ("bio",)


def normalize_identifier(identifier: str) -> str:
    """Strip whitespace and a leading '@', lowercase."""
    return identifier.strip().lstrip("@").lower()


def _normalize_text(value: str | None) -> str:
    return _WHITESPACE.sub(" ", (value or "").strip().lower())


def compare_snapshots(
    cached: SubjectSnapshot,
    fresh: SubjectSnapshot,
    policy: InvalidationPolicy,
) -> InvalidationReason | None:
    """Return the first reason the cached snapshot no longer matches, or None."""
    for field_name in policy.count_fields:
        old = getattr(cached, field_name) or 0
        new = getattr(fresh, field_name) or 0
        if old == 0:
            if new != 0:
                return InvalidationReason(
                    reason="count_change",
                    details=f"{field_name} changed from 0 to {new}",
                )
            continue
        change = abs(new - old) / old
        if change > policy.count_change_threshold:
            return InvalidationReason(
                reason="count_change",
                details=f"{field_name} changed by {change * 100:.1f}%",
            )

    for field_name in policy.text_fields:
        similarity = text_similarity(
            _normalize_text(getattr(cached, field_name)),
            _normalize_text(getattr(fresh, field_name)),
        )
        if similarity < policy.text_similarity_threshold:
            return InvalidationReason(
                reason="text_change",
                details=f"{field_name} similarity {similarity:.2f}",
            )

    if cached.is_private != fresh.is_private:
        state = "private" if fresh.is_private else "public"
        return InvalidationReason(
            reason="privacy_change", details=f"Account became {state}"
        )

    if cached.is_verified != fresh.is_verified:
        state = "verified" if fresh.is_verified else "unverified"
        return InvalidationReason(
            reason="verification_change", details=f"Account became {state}"
        )

    return None


class CacheStrategyService:
    """TTL- and heuristic-driven policy layer over a BaseCacheStore."""

    def __init__(
        self,
        store: BaseCacheStore,
        ttl_table: dict[str, int],
        policy: InvalidationPolicy | None = None,
        schema_version: int = 1,
        stale_warning_s: int = 72000,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._ttl_table = dict(ttl_table)
        self._policy = policy or InvalidationPolicy()
        self._schema_version = schema_version
        self._stale_warning_s = stale_warning_s
        self._clock = clock

    @property
    def policy(self) -> InvalidationPolicy:
        return self._policy

    def build_key(self, identifier: str) -> str:
        return f"subject:{normalize_identifier(identifier)}:v{self._schema_version}"

    def ttl_for(self, depth: str) -> int:
        ttl = self._ttl_table.get(depth)
        if ttl is None:
            raise ConfigurationError(
                f"No cache TTL configured for depth {depth!r}. "
                f"Available: {', '.join(sorted(self._ttl_table))}"
            )
        return ttl

    async def get(self, subject_key: str, depth: str) -> SubjectSnapshot | None:
        """Return the cached snapshot if it is fresh enough for this depth.

        Expired and schema-mismatched entries are deleted. Backend read
        failures are logged and treated as a miss.
        """
        record = await self._read(subject_key)
        if record is None:
            logger.debug("Cache miss for %s", subject_key)
            return None

        reason = self._staleness(record, depth)
        if reason is not None:
            await self.invalidate(subject_key, reason)
            return None

        age = self._age_seconds(record)
        if age > self._stale_warning_s:
            logger.warning(
                "Serving stale cache entry for %s (age %ds)",
                subject_key, int(age),
                extra={"data": {"key": subject_key, "age_seconds": int(age)}},
            )
        logger.debug("Cache hit for %s (age %ds)", subject_key, int(age))
        return record.snapshot

    async def set(self, subject_key: str, snapshot: SubjectSnapshot, depth: str) -> None:
        """Store a snapshot with the TTL of the depth that fetched it."""
        record = CacheRecord(
            key=subject_key,
            snapshot=snapshot,
            metadata=CacheMetadata(
                cached_at=self._clock(),
                ttl_seconds=self.ttl_for(depth),
                analysis_depth=depth,
                schema_version=self._schema_version,
            ),
        )
        await self._store.put(subject_key, record)
        logger.debug("Cached %s for %ss", subject_key, record.metadata.ttl_seconds)

    async def should_invalidate(
        self,
        subject_key: str,
        fresh_snapshot: SubjectSnapshot,
        depth: str,
    ) -> InvalidationReason | None:
        """Decide whether the cached entry must be dropped given fresh data."""
        record = await self._read(subject_key)
        if record is None:
            return None

        reason = self._staleness(record, depth)
        if reason is not None:
            return reason

        return compare_snapshots(record.snapshot, fresh_snapshot, self._policy)

    async def invalidate(
        self,
        subject_key: str,
        reason: InvalidationReason | None = None,
    ) -> None:
        """Delete an entry and log why."""
        reason = reason or InvalidationReason(reason="manual", details="Manual invalidation")
        await self._store.delete(subject_key)
        logger.info(
            "Invalidated cache entry %s: %s (%s)",
            subject_key, reason.reason, reason.details,
            extra={"data": {"key": subject_key, **reason.model_dump()}},
        )

    async def refresh(
        self,
        subject_key: str,
        fresh_snapshot: SubjectSnapshot,
        depth: str,
    ) -> InvalidationReason | None:
        """Compare against the cached entry, invalidate if needed, store fresh data."""
        reason = await self.should_invalidate(subject_key, fresh_snapshot, depth)
        if reason is not None:
            await self.invalidate(subject_key, reason)
        await self.set(subject_key, fresh_snapshot, depth)
        return reason

    async def statistics(self) -> CacheStatistics:
        records = await self._store.list_entries()
        if not records:
            return CacheStatistics()

        by_depth: dict[str, int] = {}
        total_age = 0.0
        for record in records:
            depth = record.metadata.analysis_depth
            by_depth[depth] = by_depth.get(depth, 0) + 1
            total_age += self._age_seconds(record)

        return CacheStatistics(
            total=len(records),
            by_depth=by_depth,
            avg_age_seconds=int(total_age / len(records)),
        )

    async def _read(self, subject_key: str) -> CacheRecord | None:
        try:
            return await self._store.get(subject_key)
        except Exception as e:
            logger.warning(
                "Cache read failed for %s: %s", subject_key, e,
                extra={"data": {"key": subject_key, "error": str(e)}},
            )
            return None

    def _staleness(self, record: CacheRecord, depth: str) -> InvalidationReason | None:
        meta = record.metadata
        if meta.schema_version != self._schema_version:
            return InvalidationReason(
                reason="schema_mismatch",
                details=f"Entry schema v{meta.schema_version}, expected v{self._schema_version}",
            )
        effective_ttl = min(meta.ttl_seconds, self.ttl_for(depth))
        age = self._age_seconds(record)
        if age > effective_ttl:
            return InvalidationReason(
                reason="ttl_expired",
                details=f"Age {int(age)}s exceeds TTL {effective_ttl}s for {depth}",
            )
        return None

    def _age_seconds(self, record: CacheRecord) -> float:
        return (self._clock() - record.metadata.cached_at).total_seconds()

