# src/progress/sse.py — v1
"""Server-Sent-Events rendering of progress streams."""

from __future__ import annotations

from collections.abc import AsyncIterator

from fitscore.progress.models import ProgressEvent

HEARTBEAT_FRAME = ": heartbeat\n\n"


def format_event(event: ProgressEvent) -> str:
    """Render one event as an SSE frame; heartbeats become comment frames."""
    if event.kind == "heartbeat" or event.state is None:
        return HEARTBEAT_FRAME
    return f"event: {event.kind}\ndata: {event.state.model_dump_json()}\n\n"


async def sse_stream(events: AsyncIterator[ProgressEvent]) -> AsyncIterator[str]:
    """Adapt a subscription iterator into SSE frames."""
    async for event in events:
        yield format_event(event)
