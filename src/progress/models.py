# src/progress/models.py — v1
"""Progress streaming models: per-run events and account broadcast messages."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from fitscore.core.models import ProgressState, utcnow

ProgressEventKind = Literal["ready", "progress", "complete", "failed", "cancelled", "heartbeat"]

TERMINAL_EVENT_KINDS: frozenset[str] = frozenset({"complete", "failed", "cancelled"})


class ProgressEvent(BaseModel):
    """One item of a subscription stream. Heartbeats carry no state."""

    kind: ProgressEventKind
    run_id: str
    state: ProgressState | None = None
    emitted_at: datetime = Field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.kind in TERMINAL_EVENT_KINDS


class BroadcastMessage(BaseModel):
    """Message fanned out to every connection of an account."""

    run_id: str
    type: str
    payload: dict[str, Any] = Field(default_factory=dict)
