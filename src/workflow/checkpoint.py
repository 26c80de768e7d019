# src/workflow/checkpoint.py — v1
"""Per-run step checkpoints.

After each completed step the orchestrator stores the step's output
under the run_id. A redelivered run reuses stored outputs instead of
re-executing steps. Markers record side effects that must happen at most
once: credits_deducted, refund_issued, terminal.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from fitscore.core.models import utcnow

logger = logging.getLogger(__name__)

CREDITS_DEDUCTED = "credits_deducted"
REFUND_ISSUED = "refund_issued"
TERMINAL = "terminal"


class RunCheckpoint(BaseModel):
    """Durable progress of one run through the workflow."""

    run_id: str
    steps: dict[str, Any] = Field(default_factory=dict)
    markers: list[str] = Field(default_factory=list)
    outcome: dict[str, Any] | None = None
    updated_at: datetime = Field(default_factory=utcnow)

    def has_step(self, step: str) -> bool:
        return step in self.steps

    def record_step(self, step: str, output: Any = None) -> None:
        self.steps[step] = output
        self.updated_at = utcnow()

    def has_marker(self, marker: str) -> bool:
        return marker in self.markers

    def mark(self, marker: str) -> None:
        if marker not in self.markers:
            self.markers.append(marker)
        self.updated_at = utcnow()


class CheckpointStore(ABC):
    """Storage of RunCheckpoint records keyed by run_id."""

    @abstractmethod
    async def load(self, run_id: str) -> RunCheckpoint | None:
        """Return the checkpoint of a run, or None if it never started."""

    @abstractmethod
    async def save(self, checkpoint: RunCheckpoint) -> None:
        """Persist (overwrite) a checkpoint."""

    @abstractmethod
    async def delete(self, run_id: str) -> None:
        """Remove a checkpoint; missing runs are ignored."""

    async def load_or_create(self, run_id: str) -> RunCheckpoint:
        return await self.load(run_id) or RunCheckpoint(run_id=run_id)


class MemoryCheckpointStore(CheckpointStore):
    """Process-local checkpoints (CHECKPOINT_BACKEND=memory)."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    async def load(self, run_id: str) -> RunCheckpoint | None:
        raw = self._data.get(run_id)
        return RunCheckpoint.model_validate_json(raw) if raw is not None else None

    async def save(self, checkpoint: RunCheckpoint) -> None:
        self._data[checkpoint.run_id] = checkpoint.model_dump_json()

    async def delete(self, run_id: str) -> None:
        self._data.pop(run_id, None)


class JsonCheckpointStore(CheckpointStore):
    """One JSON file per run under CHECKPOINT_ROOT (CHECKPOINT_BACKEND=json)."""

    def __init__(self, root: Path | str) -> None:
        self._root = Path(root).expanduser()
        self._root.mkdir(parents=True, exist_ok=True)

    async def load(self, run_id: str) -> RunCheckpoint | None:
        path = self._path(run_id)
        if not path.exists():
            return None
        try:
            return RunCheckpoint.model_validate_json(path.read_text(encoding="utf-8"))
        except ValidationError as e:
            logger.error("Corrupt checkpoint for run %s: %s", run_id, e)
            raise

    async def save(self, checkpoint: RunCheckpoint) -> None:
        path = self._path(checkpoint.run_id)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(checkpoint.model_dump_json(indent=2), encoding="utf-8")
        tmp.replace(path)

    async def delete(self, run_id: str) -> None:
        path = self._path(run_id)
        if path.exists():
            path.unlink()

    def _path(self, run_id: str) -> Path:
        safe = run_id.replace("/", "_").replace("\\", "_")
        return self._root / f"{safe}.json"


def create_checkpoint_store(backend: str = "memory", root: Path | str | None = None) -> CheckpointStore:
    """Instantiate the configured checkpoint backend."""
    if backend == "memory":
        return MemoryCheckpointStore()
    if backend == "json":
        if root is None:
            raise ValueError("CHECKPOINT_ROOT must be set when CHECKPOINT_BACKEND=json")
        return JsonCheckpointStore(root)
    raise ValueError(f"Unsupported checkpoint backend: {backend!r}")
