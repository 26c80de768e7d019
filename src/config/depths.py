# src/config/depths.py — v1
"""Declarative analysis depth configuration.

One profile per depth tier: credit cost, fetch volume, default cache TTL
and the timing profile used to derive time-weighted progress
percentages. Adding a depth only requires a new entry in DEPTH_PROFILES.
"""

from __future__ import annotations

from dataclasses import dataclass

from fitscore.config.settings import ConfigurationError


@dataclass(frozen=True)
class TimingProfile:
    """Expected seconds spent in each phase of a run."""

    setup: float
    fetch: float
    score: float
    teardown: float

    @property
    def total(self) -> float:
        return self.setup + self.fetch + self.score + self.teardown


@dataclass(frozen=True)
class DepthProfile:
    """Static settings for one analysis depth."""

    name: str
    description: str
    credit_cost: int
    posts_limit: int
    cache_ttl_s: int
    timing: TimingProfile
    summary_sentences: str
    caption_truncate_length: int


DEPTH_PROFILES: dict[str, DepthProfile] = {
    "light": DepthProfile(
        name="light",
        description="Quick fit assessment with score and brief summary",
        credit_cost=1,
        posts_limit=12,
        cache_ttl_s=24 * 60 * 60,
        timing=TimingProfile(setup=1, fetch=8.5, score=15, teardown=1),
        summary_sentences="2-3",
        caption_truncate_length=200,
    ),
    "deep": DepthProfile(
        name="deep",
        description="Comprehensive profile assessment with detailed insights",
        credit_cost=3,
        posts_limit=12,
        cache_ttl_s=12 * 60 * 60,
        timing=TimingProfile(setup=1, fetch=8.5, score=45, teardown=1),
        summary_sentences="4-6",
        caption_truncate_length=400,
    ),
    "xray": DepthProfile(
        name="xray",
        description="Full audit of recent content and audience signals",
        credit_cost=5,
        posts_limit=24,
        cache_ttl_s=6 * 60 * 60,
        timing=TimingProfile(setup=1, fetch=10, score=25, teardown=1),
        summary_sentences="5-8",
        caption_truncate_length=600,
    ),
}


def get_depth_profile(depth: str) -> DepthProfile:
    """Return the profile for a depth name.

    Raises:
        ConfigurationError: If the depth is unknown.
    """
    profile = DEPTH_PROFILES.get(depth)
    if profile is None:
        raise ConfigurationError(
            f"Unknown analysis depth: {depth!r}. "
            f"Available: {', '.join(sorted(DEPTH_PROFILES))}"
        )
    return profile


def estimated_duration(depth: str, cache_hit: bool = False) -> float:
    """Expected wall time in seconds for a run at this depth."""
    timing = get_depth_profile(depth).timing
    fetch = 0.0 if cache_hit else timing.fetch
    return timing.setup + fetch + timing.score + timing.teardown
