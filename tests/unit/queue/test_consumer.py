# tests/unit/queue/test_consumer.py — v1
"""Tests for queue/consumer.py — ack / retry / give-up decisions."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from fitscore.adapters.memory import InMemoryRunRepository
from fitscore.core.errors import (
    DuplicateRunError,
    InfrastructureError,
    MalformedMessageError,
    StepRetryExhausted,
)
from fitscore.core.models import Run, WorkflowResult
from fitscore.progress.registry import ProgressActorRegistry
from fitscore.queue.consumer import AnalysisQueueConsumer


@dataclass
class FakeDelivery:
    body: Any
    attempts: int = 1
    acked: bool = False
    retry_delay: float | None = None

    def ack(self) -> None:
        self.acked = True

    def retry(self, delay_seconds: float) -> None:
        self.retry_delay = delay_seconds


def _body(run_id: str = "run_001") -> dict[str, Any]:
    return {
        "run_id": run_id,
        "account_id": "acct_001",
        "business_context_id": "biz_001",
        "subject_identifier": "coffee.lab",
        "analysis_depth": "light",
    }


@pytest.fixture
def repo() -> InMemoryRunRepository:
    return InMemoryRunRepository()


@pytest.fixture
def registry() -> ProgressActorRegistry:
    return ProgressActorRegistry()


@pytest.fixture
def workflow() -> MagicMock:
    workflow = MagicMock()
    workflow.execute = AsyncMock(
        return_value=WorkflowResult(success=True, run_id="run_001", status="complete")
    )
    return workflow


@pytest.fixture
def consumer(workflow, repo, registry) -> AnalysisQueueConsumer:
    return AnalysisQueueConsumer(workflow, repo, registry, max_attempts=3, base_delay_s=10.0)


async def _seed_run(repo: InMemoryRunRepository, status: str = "processing") -> None:
    await repo.create(Run(
        run_id="run_001", account_id="acct_001", business_context_id="biz_001",
        subject_identifier="coffee.lab", analysis_depth="light", status=status,
    ))


class TestConsumer:
    @pytest.mark.asyncio
    async def test_success_acks(self, consumer, workflow):
        delivery = FakeDelivery(_body())
        await consumer.handle([delivery])
        assert delivery.acked is True
        assert delivery.retry_delay is None
        params = workflow.execute.await_args.args[0]
        assert params.run_id == "run_001"
        assert not hasattr(params, "delivery_attempt")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(("attempts", "delay"), [(1, 20.0), (2, 40.0)])
    async def test_retriable_error_redelivered(self, consumer, workflow, attempts, delay):
        workflow.execute.side_effect = InfrastructureError("db down")
        delivery = FakeDelivery(_body(), attempts=attempts)
        await consumer.handle([delivery])
        assert delivery.retry_delay == delay
        assert delivery.acked is False

    @pytest.mark.asyncio
    async def test_last_attempt_marks_failed(self, consumer, workflow, repo, registry):
        await _seed_run(repo)
        actor = registry.get("run_001")
        await actor.initialize("acct_001", "coffee.lab", "light")
        workflow.execute.side_effect = InfrastructureError("db down")
        delivery = FakeDelivery(_body(), attempts=3)

        await consumer.handle([delivery])

        assert delivery.acked is True
        assert delivery.retry_delay is None
        run = repo.runs["run_001"]
        assert run.status == "failed"
        assert run.error_message == "db down"
        state = await actor.get()
        assert state is not None and state.status == "failed"
        await registry.close_all()

    @pytest.mark.asyncio
    async def test_non_retriable_error_acked(self, consumer, workflow, repo):
        await _seed_run(repo, status="failed")
        workflow.execute.side_effect = DuplicateRunError("coffee.lab", "run_000")
        delivery = FakeDelivery(_body())
        await consumer.handle([delivery])
        assert delivery.acked is True
        assert delivery.retry_delay is None
        assert repo.runs["run_001"].status == "failed"
        assert repo.runs["run_001"].error_message is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("attempts", [1, 3])
    async def test_error_before_any_write_fails_pending_run(
        self, consumer, workflow, repo, attempts, caplog,
    ):
        await _seed_run(repo, status="pending")
        workflow.execute.side_effect = MalformedMessageError("Unknown analysis depth 'ultra'")
        delivery = FakeDelivery(_body(), attempts=attempts)

        with caplog.at_level(logging.ERROR, logger="fitscore.queue.consumer"):
            await consumer.handle([delivery])

        assert delivery.acked is True
        assert delivery.retry_delay is None
        run = repo.runs["run_001"]
        assert run.status == "failed"
        assert run.error_message == "Unknown analysis depth 'ultra'"
        assert await repo.find_active("acct_001", "biz_001", "coffee.lab") == []
        codes = [
            getattr(r, "data", {}).get("code")
            for r in caplog.records if r.levelno == logging.ERROR
        ]
        assert "malformed_message" in codes

    @pytest.mark.asyncio
    async def test_exhausted_step_retries_not_redelivered(self, consumer, workflow):
        workflow.execute.side_effect = StepRetryExhausted("score", 2, TimeoutError())
        delivery = FakeDelivery(_body())
        await consumer.handle([delivery])
        assert delivery.acked is True

    @pytest.mark.asyncio
    async def test_malformed_with_run_id_marks_failed(self, consumer, workflow, repo):
        await _seed_run(repo, status="pending")
        delivery = FakeDelivery({"run_id": "run_001", "account_id": "acct_001"})
        await consumer.handle([delivery])
        assert delivery.acked is True
        workflow.execute.assert_not_awaited()
        assert repo.runs["run_001"].status == "failed"
        assert repo.runs["run_001"].error_message == "Malformed queue message"

    @pytest.mark.asyncio
    async def test_malformed_without_run_id(self, consumer, workflow):
        delivery = FakeDelivery("not a dict")
        await consumer.handle([delivery])
        assert delivery.acked is True
        workflow.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_batch_processed_in_order(self, consumer, workflow):
        deliveries = [FakeDelivery(_body(f"run_{i}")) for i in range(3)]
        await consumer.handle(deliveries)
        assert [c.args[0].run_id for c in workflow.execute.await_args_list] == [
            "run_0", "run_1", "run_2",
        ]
        assert all(d.acked for d in deliveries)


class TestMarkFailed:
    @pytest.mark.asyncio
    async def test_terminal_run_untouched(self, consumer, repo):
        await _seed_run(repo, status="complete")
        await consumer.mark_failed("run_001", "late")
        assert repo.runs["run_001"].status == "complete"

    @pytest.mark.asyncio
    async def test_unknown_run(self, consumer, repo):
        await consumer.mark_failed("run_missing", "boom")
        assert repo.runs == {}

    @pytest.mark.asyncio
    async def test_repository_error_logged(self, workflow, registry):
        repo = MagicMock()
        repo.get = AsyncMock(side_effect=ConnectionError("db gone"))
        consumer = AnalysisQueueConsumer(workflow, repo, registry)
        await consumer.mark_failed("run_001", "boom")
        repo.get.assert_awaited_once_with("run_001")
