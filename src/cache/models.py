# src/cache/models.py — v1
"""Cache domain models: CacheMetadata, CacheRecord, InvalidationReason, CacheStatistics."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel

from fitscore.core.models import SubjectSnapshot

InvalidationKind = Literal[
    "ttl_expired",
    "count_change",
    "text_change",
    "privacy_change",
    "verification_change",
    "schema_mismatch",
    "manual",
]


class CacheMetadata(BaseModel):
    """Side metadata stored next to a cached snapshot body."""

    cached_at: datetime
    ttl_seconds: int
    analysis_depth: str
    schema_version: int


class CacheRecord(BaseModel):
    """Single cache entry: snapshot body plus metadata."""

    key: str
    snapshot: SubjectSnapshot
    metadata: CacheMetadata


class InvalidationReason(BaseModel):
    """Why a cached snapshot was (or should be) dropped."""

    reason: InvalidationKind
    details: str


class CacheStatistics(BaseModel):
    """Aggregate view over all cached entries."""

    total: int = 0
    by_depth: dict[str, int] = {}
    avg_age_seconds: int = 0
