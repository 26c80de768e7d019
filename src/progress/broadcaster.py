# src/progress/broadcaster.py — v1
"""Account-scoped fan-out of progress updates.

One AccountBroadcaster per account multiplexes updates of all its runs
over any number of open client connections. A connection may restrict
itself to a set of run_ids (per-run sub-topics). Connections whose send
fails are pruned on the spot.

BroadcastHub maps account_id to its broadcaster (one topic per account).
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Protocol

from fitscore.progress.models import BroadcastMessage

logger = logging.getLogger(__name__)


class Connection(Protocol):
    """Anything that can push a text frame to a client."""

    async def send(self, message: str) -> None: ...


class QueueConnection:
    """In-process connection backed by an asyncio.Queue (local runs, tests)."""

    def __init__(self) -> None:
        self.messages: asyncio.Queue[str] = asyncio.Queue()
        self.closed = False

    async def send(self, message: str) -> None:
        if self.closed:
            raise ConnectionError("Connection closed")
        self.messages.put_nowait(message)

    async def receive(self) -> dict:
        return json.loads(await self.messages.get())

    def close(self) -> None:
        self.closed = True


@dataclass
class _Subscription:
    connection: Connection
    run_ids: set[str] | None = field(default=None)

    def wants(self, run_id: str) -> bool:
        return self.run_ids is None or run_id in self.run_ids


class AccountBroadcaster:
    """Fan-out of run updates to every connection of one account."""

    def __init__(self, account_id: str) -> None:
        self.account_id = account_id
        self._subscriptions: dict[str, _Subscription] = {}

    @property
    def connection_count(self) -> int:
        return len(self._subscriptions)

    def connect(self, connection: Connection, run_ids: list[str] | None = None) -> str:
        """Register a connection, optionally filtered to some runs. Returns its id."""
        connection_id = uuid.uuid4().hex
        self._subscriptions[connection_id] = _Subscription(
            connection=connection,
            run_ids=set(run_ids) if run_ids is not None else None,
        )
        logger.debug(
            "Account %s: connection %s opened (%d open)",
            self.account_id, connection_id, len(self._subscriptions),
        )
        return connection_id

    def disconnect(self, connection_id: str) -> None:
        self._subscriptions.pop(connection_id, None)

    def subscribe_runs(self, connection_id: str, run_ids: list[str] | None) -> None:
        """Replace a connection's run filter; None means all runs."""
        subscription = self._subscriptions.get(connection_id)
        if subscription is not None:
            subscription.run_ids = set(run_ids) if run_ids is not None else None

    async def broadcast(self, message: BroadcastMessage) -> dict[str, int]:
        """Send a message to every interested connection.

        Returns:
            {"delivered": n, "failed": m}; failed connections are removed.
        """
        frame = message.model_dump_json()
        delivered = 0
        failed: list[str] = []

        for connection_id, subscription in list(self._subscriptions.items()):
            if not subscription.wants(message.run_id):
                continue
            try:
                await subscription.connection.send(frame)
                delivered += 1
            except Exception as exc:
                logger.warning(
                    "Account %s: dropping connection %s after send failure: %s",
                    self.account_id, connection_id, exc,
                )
                failed.append(connection_id)

        for connection_id in failed:
            self._subscriptions.pop(connection_id, None)

        return {"delivered": delivered, "failed": len(failed)}

    def handle_client_message(self, connection_id: str, raw: str) -> str | None:
        """Handle a client frame. Returns the reply frame, if any.

        Supported: {"type": "ping"} -> {"type": "pong"};
        {"type": "subscribe", "run_ids": [...]} updates the run filter.
        """
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.debug("Ignoring non-JSON client message on %s", connection_id)
            return None
        if not isinstance(data, dict):
            return None

        msg_type = data.get("type")
        if msg_type == "ping":
            return json.dumps({"type": "pong"})
        if msg_type == "subscribe":
            self.subscribe_runs(connection_id, data.get("run_ids"))
            return json.dumps({"type": "subscribed", "run_ids": data.get("run_ids")})
        return None


class BroadcastHub:
    """Registry of AccountBroadcaster instances keyed by account_id."""

    def __init__(self) -> None:
        self._broadcasters: dict[str, AccountBroadcaster] = {}

    def for_account(self, account_id: str) -> AccountBroadcaster:
        broadcaster = self._broadcasters.get(account_id)
        if broadcaster is None:
            broadcaster = AccountBroadcaster(account_id)
            self._broadcasters[account_id] = broadcaster
        return broadcaster

    async def publish(self, account_id: str, message: BroadcastMessage) -> dict[str, int]:
        broadcaster = self._broadcasters.get(account_id)
        if broadcaster is None:
            return {"delivered": 0, "failed": 0}
        return await broadcaster.broadcast(message)

    def prune_idle(self) -> int:
        """Forget broadcasters without connections. Returns how many were removed."""
        idle = [a for a, b in self._broadcasters.items() if b.connection_count == 0]
        for account_id in idle:
            del self._broadcasters[account_id]
        return len(idle)
