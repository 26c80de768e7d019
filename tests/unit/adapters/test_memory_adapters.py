# tests/unit/adapters/test_memory_adapters.py — v1
"""Tests for adapters/ — port ABCs and in-memory implementations."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from fitscore.adapters.memory import (
    InMemoryBusinessContextLookup,
    InMemoryCreditsLedger,
    InMemoryLeadRepository,
    InMemoryRunRepository,
    StaticSubjectFetcher,
)
from fitscore.adapters.ports import CreditsLedger, RunRepository
from fitscore.core.errors import InsufficientCreditsError, SubjectRestrictedError
from fitscore.core.models import Run


def _run(run_id: str, status: str = "pending", subject: str = "coffee.lab") -> Run:
    return Run(
        run_id=run_id, account_id="acct_001", business_context_id="biz_001",
        subject_identifier=subject, analysis_depth="light", status=status,
        started_at=datetime(2026, 3, 1, tzinfo=timezone.utc),
    )


class TestPorts:
    @pytest.mark.parametrize("port", [CreditsLedger, RunRepository])
    def test_abstract(self, port):
        with pytest.raises(TypeError):
            port()  # type: ignore[abstract]


class TestCreditsLedger:
    @pytest.mark.asyncio
    async def test_deduct_and_refund(self):
        ledger = InMemoryCreditsLedger({"acct_001": 5})
        assert await ledger.has_sufficient("acct_001", 5)
        await ledger.deduct("acct_001", 3, reference="run_1")
        await ledger.add("acct_001", 3, reference="run_1")
        assert ledger.balances["acct_001"] == 5

    @pytest.mark.asyncio
    async def test_operations_idempotent_per_reference(self):
        ledger = InMemoryCreditsLedger({"acct_001": 5})
        await ledger.deduct("acct_001", 3, reference="run_1")
        await ledger.deduct("acct_001", 3, reference="run_1")
        await ledger.add("acct_001", 3, reference="run_1")
        await ledger.add("acct_001", 3, reference="run_1")
        assert ledger.balances["acct_001"] == 5
        assert ledger.total("run_1", "deduct") == 3
        assert len(ledger.entries) == 2

    @pytest.mark.asyncio
    async def test_insufficient(self):
        ledger = InMemoryCreditsLedger({"acct_001": 1})
        assert not await ledger.has_sufficient("acct_001", 3)
        with pytest.raises(InsufficientCreditsError):
            await ledger.deduct("acct_001", 3, reference="run_1")
        assert ledger.balances["acct_001"] == 1


class TestLookupsAndRepositories:
    @pytest.mark.asyncio
    async def test_context_scoped_to_account(self, business_context):
        lookup = InMemoryBusinessContextLookup([business_context])
        assert await lookup.find_by_id("biz_001", "acct_001") is not None
        assert await lookup.find_by_id("biz_001", "acct_other") is None

    @pytest.mark.asyncio
    async def test_lead_upsert_keeps_id(self, sample_snapshot):
        leads = InMemoryLeadRepository()
        first = await leads.upsert("acct_001", "biz_001", "Coffee.Lab", sample_snapshot)
        second = await leads.upsert("acct_001", "biz_001", "coffee.lab", sample_snapshot)
        assert first == second
        assert len(leads.leads) == 1

    @pytest.mark.asyncio
    async def test_run_create_is_idempotent(self):
        runs = InMemoryRunRepository()
        await runs.create(_run("run_1"))
        again = await runs.create(_run("run_1", status="processing"))
        assert again.status == "pending"

    @pytest.mark.asyncio
    async def test_run_update_unknown(self):
        with pytest.raises(KeyError):
            await InMemoryRunRepository().update("nope", status="failed")

    @pytest.mark.asyncio
    async def test_returned_runs_are_copies(self):
        runs = InMemoryRunRepository()
        await runs.create(_run("run_1"))
        copy = await runs.get("run_1")
        copy.status = "failed"
        assert runs.runs["run_1"].status == "pending"

    @pytest.mark.asyncio
    async def test_find_active(self):
        runs = InMemoryRunRepository()
        await runs.create(_run("run_1"))
        await runs.create(_run("run_2", status="complete"))
        await runs.create(_run("run_3", subject="other"))
        active = await runs.find_active("acct_001", "biz_001", "COFFEE.LAB")
        assert [r.run_id for r in active] == ["run_1"]


class TestStaticSubjectFetcher:
    @pytest.mark.asyncio
    async def test_normalizes_identifier(self, sample_snapshot):
        fetcher = StaticSubjectFetcher(snapshots={"coffee.lab": sample_snapshot})
        assert await fetcher.fetch("@Coffee.Lab", "light") is sample_snapshot
        assert await fetcher.fetch("nobody", "light") is None
        assert fetcher.calls == ["coffee.lab", "nobody"]

    @pytest.mark.asyncio
    async def test_raises_configured_error(self):
        fetcher = StaticSubjectFetcher(errors={"locked": SubjectRestrictedError("private")})
        with pytest.raises(SubjectRestrictedError):
            await fetcher.fetch("locked", "light")
