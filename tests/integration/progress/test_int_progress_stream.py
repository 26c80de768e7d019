# tests/integration/progress/test_int_progress_stream.py — v1
"""A subscriber streams a live run from 'ready' to 'complete' as SSE frames."""

from __future__ import annotations

import asyncio
import json

import pytest

from fitscore.progress.sse import sse_stream


class TestProgressStream:
    @pytest.mark.asyncio
    async def test_stream_follows_run(self, workflow, workflow_params, progress_registry):
        actor = progress_registry.get("run_001")
        await actor.initialize("acct_001", "coffee.lab", "light", total_steps=11)

        frames: list[str] = []

        async def consume() -> None:
            async for frame in sse_stream(actor.subscribe()):
                frames.append(frame)

        consumer = asyncio.create_task(consume())
        await asyncio.sleep(0)
        result = await workflow.execute(workflow_params)
        await asyncio.wait_for(consumer, timeout=2.0)

        assert result.success is True
        assert frames[0].startswith("event: ready\n")
        assert frames[-1].startswith("event: complete\n")
        progress = [
            json.loads(f.split("data: ", 1)[1])["progress"]
            for f in frames if f.startswith("event:")
        ]
        assert progress == sorted(progress)
        assert progress[-1] == 100
