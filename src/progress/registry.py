# src/progress/registry.py — v1
"""Addressing of progress actors by run_id.

get(run_id) returns the run's actor, creating it on first use. Actors
remove themselves from the registry when their state expires.
"""

from __future__ import annotations

import logging

from fitscore.progress.actor import DEFAULT_HEARTBEAT_S, DEFAULT_TTL_S, ProgressActor
from fitscore.progress.broadcaster import BroadcastHub

logger = logging.getLogger(__name__)


class ProgressActorRegistry:
    """In-process directory of ProgressActor instances."""

    def __init__(
        self,
        hub: BroadcastHub | None = None,
        ttl_s: float = DEFAULT_TTL_S,
        heartbeat_s: float = DEFAULT_HEARTBEAT_S,
    ) -> None:
        self.hub = hub
        self._ttl_s = ttl_s
        self._heartbeat_s = heartbeat_s
        self._actors: dict[str, ProgressActor] = {}

    def get(self, run_id: str) -> ProgressActor:
        actor = self._actors.get(run_id)
        if actor is None:
            actor = ProgressActor(
                run_id,
                hub=self.hub,
                ttl_s=self._ttl_s,
                heartbeat_s=self._heartbeat_s,
                on_expire=self._forget,
            )
            self._actors[run_id] = actor
        return actor

    def peek(self, run_id: str) -> ProgressActor | None:
        """Return the actor only if it already exists."""
        return self._actors.get(run_id)

    @property
    def active_runs(self) -> list[str]:
        return sorted(self._actors)

    async def close_all(self) -> None:
        for actor in list(self._actors.values()):
            await actor.close()
        self._actors.clear()

    def _forget(self, run_id: str) -> None:
        self._actors.pop(run_id, None)
        logger.debug("Progress actor for run %s removed (%d active)", run_id, len(self._actors))
