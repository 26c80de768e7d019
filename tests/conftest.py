# tests/conftest.py — v2
"""Shared test fixtures for all unit and integration tests.

Provides sample snapshots and business contexts, in-memory collaborators,
a cache service on a temp JSON store and a fully wired workflow.
No external dependencies — all I/O is local or mocked.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
import pytest_asyncio

from fitscore.adapters.memory import (
    InMemoryBusinessContextLookup,
    InMemoryCreditsLedger,
    InMemoryLeadRepository,
    InMemoryRunRepository,
    StaticScoringAdapter,
    StaticSubjectFetcher,
)
from fitscore.cache.json_store import JsonCacheStore
from fitscore.cache.strategy import CacheStrategyService
from fitscore.checks.checks_factory import create_pre_analysis_checks
from fitscore.core.models import BusinessContext, Post, SubjectSnapshot, WorkflowParams
from fitscore.progress.broadcaster import BroadcastHub
from fitscore.progress.registry import ProgressActorRegistry
from fitscore.workflow.checkpoint import MemoryCheckpointStore
from fitscore.workflow.orchestrator import AnalysisWorkflow

TTL_TABLE = {"light": 86_400, "deep": 43_200, "xray": 21_600}


class FakeClock:
    """Settable clock for TTL tests."""

    def __init__(self, now: datetime | None = None) -> None:
        self.now = now or datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


# === FIXTURES: Sample data ===


@pytest.fixture
def sample_snapshot() -> SubjectSnapshot:
    """Public, unverified profile with 100K followers."""
    return SubjectSnapshot(
        username="coffee.lab",
        display_name="Coffee Lab",
        follower_count=100_000,
        following_count=350,
        post_count=812,
        bio="Specialty coffee roasters. Single origin beans shipped weekly.",
        external_url="https://coffeelab.example",
        is_verified=False,
        is_private=False,
        is_business_account=True,
        latest_posts=[
            Post(id="p1", caption="New Ethiopian roast is here", like_count=1200, comment_count=40),
            Post(id="p2", caption="Behind the scenes at the roastery", like_count=900, comment_count=22),
        ],
    )


@pytest.fixture
def business_context() -> BusinessContext:
    return BusinessContext(
        id="biz_001",
        account_id="acct_001",
        business_name="Brew Gear Co",
        business_one_liner="Manual brewing equipment for home baristas",
        target_audience="Specialty coffee creators",
        value_proposition="Pro-grade gear at home prices",
        min_followers=1_000,
        max_followers=1_000_000,
    )


@pytest.fixture
def workflow_params() -> WorkflowParams:
    return WorkflowParams(
        run_id="run_001",
        account_id="acct_001",
        business_context_id="biz_001",
        subject_identifier="coffee.lab",
        analysis_depth="light",
    )


# === FIXTURES: Services ===


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache_service(tmp_path: Path, fake_clock: FakeClock) -> CacheStrategyService:
    return CacheStrategyService(
        store=JsonCacheStore(tmp_path / "cache"),
        ttl_table=TTL_TABLE,
        clock=fake_clock,
    )


@pytest.fixture
def ledger() -> InMemoryCreditsLedger:
    return InMemoryCreditsLedger({"acct_001": 10})


@pytest.fixture
def runs() -> InMemoryRunRepository:
    return InMemoryRunRepository()


@pytest.fixture
def leads() -> InMemoryLeadRepository:
    return InMemoryLeadRepository()


@pytest.fixture
def contexts(business_context: BusinessContext) -> InMemoryBusinessContextLookup:
    return InMemoryBusinessContextLookup([business_context])


@pytest.fixture
def fetcher(sample_snapshot: SubjectSnapshot) -> StaticSubjectFetcher:
    return StaticSubjectFetcher(snapshots={"coffee.lab": sample_snapshot})


@pytest.fixture
def scorer() -> StaticScoringAdapter:
    return StaticScoringAdapter(score_value=82, summary="Strong fit for home-brewing gear.")


@pytest.fixture
def hub() -> BroadcastHub:
    return BroadcastHub()


@pytest_asyncio.fixture
async def progress_registry(hub: BroadcastHub):
    registry = ProgressActorRegistry(hub=hub, heartbeat_s=5.0)
    yield registry
    await registry.close_all()


@pytest.fixture
def checkpoints() -> MemoryCheckpointStore:
    return MemoryCheckpointStore()


@pytest.fixture
def workflow(
    ledger, contexts, leads, runs, fetcher, scorer, cache_service, progress_registry, checkpoints,
) -> AnalysisWorkflow:
    return AnalysisWorkflow(
        ledger=ledger,
        contexts=contexts,
        leads=leads,
        runs=runs,
        fetcher=fetcher,
        scorer=scorer,
        cache=cache_service,
        checks=create_pre_analysis_checks(),
        progress=progress_registry,
        checkpoints=checkpoints,
        retry_base_delay_s=0.0,
    )
