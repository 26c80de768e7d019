# tests/unit/progress/test_actor.py — v1
"""Tests for progress/actor.py and progress/registry.py."""

from __future__ import annotations

import asyncio
import json

import pytest

from fitscore.core.errors import (
    ProgressNotInitializedError,
    ProgressStateError,
    RunCancelledError,
)
from fitscore.progress.actor import ProgressActor
from fitscore.progress.broadcaster import BroadcastHub, QueueConnection
from fitscore.progress.registry import ProgressActorRegistry


async def _started(actor: ProgressActor) -> ProgressActor:
    await actor.initialize("acct_001", "coffee.lab", "light", total_steps=11)
    return actor


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_initialize(self):
        actor = ProgressActor("run_1")
        state = await actor.initialize("acct_001", "coffee.lab", "light", total_steps=11)
        assert state.status == "pending"
        assert state.progress == 0
        assert state.total_steps == 11
        await actor.close()

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self):
        actor = await _started(ProgressActor("run_1"))
        await actor.update(40, "Fetching")
        state = await actor.initialize("acct_001", "coffee.lab", "light")
        assert state.progress == 40
        await actor.close()

    @pytest.mark.asyncio
    async def test_update_before_initialize_raises(self):
        actor = ProgressActor("run_1")
        with pytest.raises(ProgressNotInitializedError):
            await actor.update(10, "Fetching")
        await actor.close()

    @pytest.mark.asyncio
    async def test_get_before_initialize(self):
        actor = ProgressActor("run_1")
        assert await actor.get() is None
        await actor.close()

    @pytest.mark.asyncio
    async def test_progress_is_monotonic(self):
        actor = await _started(ProgressActor("run_1"))
        await actor.update(50, "Scoring")
        state = await actor.update(30, "Back again")
        assert state.progress == 50
        assert state.current_step == "Back again"
        assert state.status == "processing"
        await actor.close()

    @pytest.mark.asyncio
    async def test_update_clamped_below_100(self):
        actor = await _started(ProgressActor("run_1"))
        state = await actor.update(150, "Almost")
        assert state.progress == 99
        state = await actor.update(-5, "Negative")
        assert state.progress == 99
        await actor.close()

    @pytest.mark.asyncio
    async def test_update_rejects_terminal_status(self):
        actor = await _started(ProgressActor("run_1"))
        with pytest.raises(ProgressStateError):
            await actor.update(50, "Done?", status="complete")
        await actor.close()

    @pytest.mark.asyncio
    async def test_complete_sets_100(self):
        actor = await _started(ProgressActor("run_1"))
        await actor.update(90, "Finalizing")
        state = await actor.complete({"score": 82})
        assert state.status == "complete"
        assert state.progress == 100
        assert state.result_digest == {"score": 82}
        assert state.completed_at is not None
        again = await actor.complete()
        assert again.result_digest == {"score": 82}
        await actor.close()

    @pytest.mark.asyncio
    async def test_update_after_complete_raises(self):
        actor = await _started(ProgressActor("run_1"))
        await actor.complete()
        with pytest.raises(ProgressStateError):
            await actor.update(10, "Late")
        await actor.close()

    @pytest.mark.asyncio
    async def test_fail_records_message(self):
        actor = await _started(ProgressActor("run_1"))
        state = await actor.fail("score failed: boom")
        assert state.status == "failed"
        assert state.error_message == "score failed: boom"
        with pytest.raises(ProgressStateError):
            await actor.complete()
        await actor.close()

    @pytest.mark.asyncio
    async def test_fail_after_complete_ignored(self):
        actor = await _started(ProgressActor("run_1"))
        await actor.complete()
        state = await actor.fail("late failure")
        assert state.status == "complete"
        assert state.error_message is None
        await actor.close()


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_then_update_raises(self):
        actor = await _started(ProgressActor("run_1"))
        await actor.update(30, "Fetching")
        state = await actor.cancel()
        assert state.status == "cancelled"
        assert state.progress == 30
        with pytest.raises(RunCancelledError):
            await actor.update(40, "Scoring")
        with pytest.raises(RunCancelledError):
            await actor.complete()
        await actor.close()

    @pytest.mark.asyncio
    async def test_cancel_is_idempotent(self):
        actor = await _started(ProgressActor("run_1"))
        first = await actor.cancel()
        second = await actor.cancel()
        assert first.status == second.status == "cancelled"
        await actor.close()

    @pytest.mark.asyncio
    async def test_cancel_after_complete_raises(self):
        actor = await _started(ProgressActor("run_1"))
        await actor.complete()
        with pytest.raises(ProgressStateError):
            await actor.cancel()
        await actor.close()

    @pytest.mark.asyncio
    async def test_cancel_after_fail_is_noop(self):
        actor = await _started(ProgressActor("run_1"))
        await actor.fail("boom")
        state = await actor.cancel()
        assert state.status == "failed"
        await actor.close()


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_concurrent_updates_are_serialized(self):
        actor = await _started(ProgressActor("run_1"))
        await asyncio.gather(*(actor.update(p, f"step {p}") for p in range(1, 60)))
        state = await actor.get()
        assert state is not None
        assert state.progress == 59
        await actor.close()


class TestSubscribe:
    @pytest.mark.asyncio
    async def test_subscribe_before_initialize_raises(self):
        actor = ProgressActor("run_1")
        with pytest.raises(ProgressNotInitializedError):
            await actor.subscribe().__anext__()

    @pytest.mark.asyncio
    async def test_ready_then_updates_then_terminal(self):
        actor = await _started(ProgressActor("run_1", heartbeat_s=5.0))
        stream = actor.subscribe()
        ready = await stream.__anext__()
        assert ready.kind == "ready"
        assert ready.state is not None and ready.state.progress == 0

        await actor.update(25, "Fetching")
        event = await stream.__anext__()
        assert event.kind == "progress"
        assert event.state is not None and event.state.progress == 25

        await actor.complete()
        final = await stream.__anext__()
        assert final.kind == "complete"
        with pytest.raises(StopAsyncIteration):
            await stream.__anext__()
        await actor.close()

    @pytest.mark.asyncio
    async def test_terminal_state_ends_after_ready(self):
        actor = await _started(ProgressActor("run_1"))
        await actor.cancel()
        events = [e async for e in actor.subscribe()]
        assert [e.kind for e in events] == ["ready"]
        assert events[0].state is not None and events[0].state.status == "cancelled"
        await actor.close()

    @pytest.mark.asyncio
    async def test_heartbeat_on_silence(self):
        actor = await _started(ProgressActor("run_1", heartbeat_s=0.01))
        stream = actor.subscribe()
        await stream.__anext__()
        heartbeat = await stream.__anext__()
        assert heartbeat.kind == "heartbeat"
        assert heartbeat.state is None
        await stream.aclose()
        await actor.close()


class TestExpiry:
    @pytest.mark.asyncio
    async def test_state_expires_after_ttl(self):
        expired: list[str] = []
        actor = ProgressActor("run_1", ttl_s=0.05, on_expire=expired.append)
        await _started(actor)
        await asyncio.sleep(0.15)
        assert expired == ["run_1"]
        with pytest.raises(ProgressNotInitializedError):
            await actor.get()
        await actor.close()

    @pytest.mark.asyncio
    async def test_expiry_ends_subscription(self):
        actor = ProgressActor("run_1", ttl_s=0.05, heartbeat_s=5.0)
        await _started(actor)
        events = [e.kind async for e in actor.subscribe()]
        assert events == ["ready"]
        await actor.close()


class TestBroadcastIntegration:
    @pytest.mark.asyncio
    async def test_transitions_reach_account_connections(self):
        hub = BroadcastHub()
        connection = QueueConnection()
        hub.for_account("acct_001").connect(connection)
        actor = ProgressActor("run_1", hub=hub)
        await _started(actor)
        await actor.update(20, "Fetching")

        first = await connection.receive()
        second = await connection.receive()
        assert first["type"] == "progress"
        assert first["payload"]["status"] == "pending"
        assert second["payload"]["progress"] == 20
        assert second["run_id"] == "run_1"
        await actor.close()

    @pytest.mark.asyncio
    async def test_slow_connection_does_not_block_updates(self):
        release = asyncio.Event()
        received: list[str] = []

        class _SlowConnection:
            async def send(self, message: str) -> None:
                await release.wait()
                received.append(message)

        hub = BroadcastHub()
        hub.for_account("acct_001").connect(_SlowConnection())
        actor = ProgressActor("run_1", hub=hub)
        await _started(actor)

        state = await asyncio.wait_for(actor.update(30, "Scoring"), timeout=1.0)
        assert state.progress == 30
        await asyncio.wait_for(actor.complete({"score": 80}), timeout=1.0)
        assert received == []

        release.set()
        await asyncio.wait_for(actor.flush(), timeout=1.0)
        assert [json.loads(m)["type"] for m in received] == ["progress", "progress", "complete"]
        await actor.close()


class TestRegistry:
    @pytest.mark.asyncio
    async def test_get_creates_once(self):
        registry = ProgressActorRegistry()
        assert registry.peek("run_1") is None
        actor = registry.get("run_1")
        assert registry.get("run_1") is actor
        assert registry.peek("run_1") is actor
        assert registry.active_runs == ["run_1"]
        await registry.close_all()
        assert registry.active_runs == []

    @pytest.mark.asyncio
    async def test_expired_actor_forgotten(self):
        registry = ProgressActorRegistry(ttl_s=0.05, heartbeat_s=0.01)
        await _started(registry.get("run_1"))
        await asyncio.sleep(0.15)
        assert registry.peek("run_1") is None
        fresh = registry.get("run_1")
        assert await fresh.get() is None
        await registry.close_all()
