# src/logging/context.py — v1
"""Contextual logging support: attach run_id, account_id and step to log records.

The orchestrator sets the run context once per execution and the step
context on every step transition; JsonFormatter reads them back.
"""

from __future__ import annotations

import contextvars
from dataclasses import dataclass
from typing import Any

# Set per-run execution; asyncio tasks inherit a copy on creation.
_run_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "run_id", default=None
)
_account_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "account_id", default=None
)
_step: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "step", default=None
)


@dataclass
class LogContext:
    """Immutable snapshot of current logging context."""

    run_id: str | None = None
    account_id: str | None = None
    step: str | None = None

    def as_dict(self) -> dict[str, Any]:
        """Return non-None fields as dict for JSON log injection."""
        return {k: v for k, v in self.__dict__.items() if v is not None}


def get_context() -> LogContext:
    """Snapshot current context variables."""
    return LogContext(
        run_id=_run_id.get(),
        account_id=_account_id.get(),
        step=_step.get(),
    )


def set_run_context(run_id: str, account_id: str) -> None:
    """Set run-level context (called once per workflow execution)."""
    _run_id.set(run_id)
    _account_id.set(account_id)


def set_step_context(step: str | None) -> None:
    """Set step-level context (called per workflow step)."""
    _step.set(step)


def clear_context() -> None:
    """Reset all context variables."""
    _run_id.set(None)
    _account_id.set(None)
    _step.set(None)
