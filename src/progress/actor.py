# src/progress/actor.py — v1
"""Per-run progress actor.

Each run owns one ProgressActor. Every call is put on the actor's
asyncio mailbox and applied by a single worker task, so all mutations
of one run's ProgressState are serialized without a shared lock.

Transitions are pushed to local subscribers and, when a BroadcastHub is
configured, to the account's broadcaster with the full state as payload.
Broadcasts go through an ordered outbox drained by a separate publisher
task, so a slow connection never holds up the mailbox.
State is dropped ttl_s after initialize() whatever the status.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

from fitscore.core.errors import (
    ProgressNotInitializedError,
    ProgressStateError,
    RunCancelledError,
    error_fields,
)
from fitscore.core.models import TERMINAL_STATUSES, ProgressState, RunStatus, utcnow
from fitscore.progress.broadcaster import BroadcastHub
from fitscore.progress.models import BroadcastMessage, ProgressEvent, ProgressEventKind

logger = logging.getLogger(__name__)

DEFAULT_TTL_S = 24 * 60 * 60
DEFAULT_HEARTBEAT_S = 15.0

_Handler = Callable[..., Awaitable[Any]]


class ProgressActor:
    """Single-writer owner of one run's ProgressState.

    Args:
        run_id: Run this actor belongs to.
        hub: Optional account broadcast hub.
        ttl_s: Seconds after initialize() before the state self-deletes.
        heartbeat_s: Idle seconds before a subscription yields a heartbeat.
        on_expire: Called with run_id once the state has been deleted.
    """

    def __init__(
        self,
        run_id: str,
        hub: BroadcastHub | None = None,
        ttl_s: float = DEFAULT_TTL_S,
        heartbeat_s: float = DEFAULT_HEARTBEAT_S,
        on_expire: Callable[[str], None] | None = None,
    ) -> None:
        self.run_id = run_id
        self._hub = hub
        self._ttl_s = ttl_s
        self._heartbeat_s = heartbeat_s
        self._on_expire = on_expire
        self._state: ProgressState | None = None
        self._mailbox: asyncio.Queue[tuple[_Handler, tuple[Any, ...], asyncio.Future | None]] = (
            asyncio.Queue()
        )
        self._worker: asyncio.Task | None = None
        self._expiry: asyncio.TimerHandle | None = None
        self._subscribers: list[asyncio.Queue[ProgressEvent | None]] = []
        self._outbox: asyncio.Queue[tuple[str, BroadcastMessage]] = asyncio.Queue()
        self._publisher: asyncio.Task | None = None
        self._closed = False

    # --- Public control surface ---

    async def initialize(
        self,
        account_id: str,
        subject_identifier: str,
        analysis_depth: str,
        total_steps: int = 0,
    ) -> ProgressState:
        return await self._call(
            self._do_initialize, account_id, subject_identifier, analysis_depth, total_steps
        )

    async def get(self) -> ProgressState | None:
        return await self._call(self._do_get)

    async def update(
        self,
        progress: int,
        current_step: str,
        status: RunStatus | None = None,
    ) -> ProgressState:
        """Advance progress.

        Raises:
            RunCancelledError: The run was cancelled.
            ProgressStateError: The run already completed or failed.
        """
        return await self._call(self._do_update, progress, current_step, status)

    async def cancel(self) -> ProgressState:
        return await self._call(self._do_cancel)

    async def complete(self, result_digest: dict[str, Any] | None = None) -> ProgressState:
        return await self._call(self._do_complete, result_digest or {})

    async def fail(self, message: str) -> ProgressState:
        return await self._call(self._do_fail, message)

    async def subscribe(self) -> AsyncIterator[ProgressEvent]:
        """Stream the current snapshot as 'ready', then every transition.

        Yields a 'heartbeat' after heartbeat_s of silence. The stream ends
        after a terminal event or when the state expires.
        """
        if self._state is None:
            raise ProgressNotInitializedError(f"No progress state for run {self.run_id}")

        queue: asyncio.Queue[ProgressEvent | None] = asyncio.Queue()
        self._subscribers.append(queue)
        try:
            ready = ProgressEvent(kind="ready", run_id=self.run_id, state=self._state.model_copy())
            yield ready
            if self._state.is_terminal:
                return

            while True:
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=self._heartbeat_s)
                except asyncio.TimeoutError:
                    yield ProgressEvent(kind="heartbeat", run_id=self.run_id)
                    continue
                if event is None:
                    return
                yield event
                if event.is_terminal:
                    return
        finally:
            if queue in self._subscribers:
                self._subscribers.remove(queue)

    async def close(self) -> None:
        """Stop the worker and the expiry timer; open subscriptions end."""
        self._closed = True
        if self._expiry is not None:
            self._expiry.cancel()
            self._expiry = None
        self._close_subscribers()
        for task in (self._worker, self._publisher):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._worker = None
        self._publisher = None

    async def flush(self) -> None:
        """Wait until every queued broadcast has been handed to the hub."""
        if self._publisher is not None and not self._publisher.done():
            await self._outbox.join()

    # --- Mailbox ---

    async def _call(self, handler: _Handler, *args: Any) -> Any:
        if self._closed:
            raise ProgressNotInitializedError(f"Progress actor for run {self.run_id} is closed")
        self._ensure_worker()
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._mailbox.put_nowait((handler, args, future))
        return await future

    def _ensure_worker(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(
                self._run_mailbox(), name=f"progress-actor-{self.run_id}"
            )

    async def _run_mailbox(self) -> None:
        while not self._closed:
            handler, args, future = await self._mailbox.get()
            try:
                result = await handler(*args)
            except Exception as exc:
                if future is not None and not future.done():
                    future.set_exception(exc)
                else:
                    logger.error("Progress actor %s: %s failed: %s", self.run_id, handler.__name__, exc)
            else:
                if future is not None and not future.done():
                    future.set_result(result)
        self._drain_mailbox()

    # --- Handlers (run on the worker only) ---

    def _require_state(self) -> ProgressState:
        if self._state is None:
            raise ProgressNotInitializedError(f"No progress state for run {self.run_id}")
        return self._state

    async def _do_initialize(
        self,
        account_id: str,
        subject_identifier: str,
        analysis_depth: str,
        total_steps: int,
    ) -> ProgressState:
        if self._state is not None:
            logger.debug("Progress for run %s already initialized", self.run_id)
            return self._state.model_copy()

        now = utcnow()
        self._state = ProgressState(
            run_id=self.run_id,
            account_id=account_id,
            subject_identifier=subject_identifier,
            analysis_depth=analysis_depth,
            status="pending",
            progress=0,
            total_steps=total_steps,
            started_at=now,
            updated_at=now,
        )
        self._schedule_expiry()
        await self._emit("progress")
        return self._state.model_copy()

    async def _do_get(self) -> ProgressState | None:
        return self._state.model_copy() if self._state is not None else None

    async def _do_update(
        self, progress: int, current_step: str, status: RunStatus | None
    ) -> ProgressState:
        state = self._require_state()
        if state.status == "cancelled":
            raise RunCancelledError(f"Run {self.run_id} was cancelled")
        if state.status in TERMINAL_STATUSES:
            raise ProgressStateError(
                f"Cannot update run {self.run_id}: already {state.status}"
            )
        if status is not None and status in TERMINAL_STATUSES:
            raise ProgressStateError(
                f"Terminal status {status!r} must go through complete/fail/cancel"
            )

        state.progress = max(state.progress, min(max(progress, 0), 99))
        state.current_step = current_step
        state.status = status or "processing"
        state.updated_at = utcnow()
        await self._emit("progress")
        return state.model_copy()

    async def _do_cancel(self) -> ProgressState:
        state = self._require_state()
        if state.status == "complete":
            raise ProgressStateError(f"Cannot cancel run {self.run_id}: already complete")
        if state.status in ("cancelled", "failed"):
            return state.model_copy()

        now = utcnow()
        state.status = "cancelled"
        state.current_step = "Cancelled"
        state.updated_at = now
        state.completed_at = now
        logger.info("Run %s cancelled at %d%%", self.run_id, state.progress)
        await self._emit("cancelled")
        return state.model_copy()

    async def _do_complete(self, result_digest: dict[str, Any]) -> ProgressState:
        state = self._require_state()
        if state.status == "cancelled":
            raise RunCancelledError(f"Run {self.run_id} was cancelled")
        if state.status == "failed":
            raise ProgressStateError(f"Cannot complete run {self.run_id}: already failed")
        if state.status == "complete":
            return state.model_copy()

        now = utcnow()
        state.status = "complete"
        state.progress = 100
        state.current_step = "Complete"
        state.result_digest = result_digest
        state.updated_at = now
        state.completed_at = now
        await self._emit("complete")
        return state.model_copy()

    async def _do_fail(self, message: str) -> ProgressState:
        state = self._require_state()
        if state.status in TERMINAL_STATUSES:
            logger.debug(
                "Ignoring fail() for run %s: already %s", self.run_id, state.status
            )
            return state.model_copy()

        now = utcnow()
        state.status = "failed"
        state.error_message = message
        state.updated_at = now
        state.completed_at = now
        await self._emit("failed")
        return state.model_copy()

    async def _do_expire(self) -> None:
        self._state = None
        self._expiry = None
        self._closed = True
        self._close_subscribers()
        if self._publisher is not None:
            self._publisher.cancel()
            self._publisher = None
        logger.debug("Progress state for run %s expired", self.run_id)
        if self._on_expire is not None:
            self._on_expire(self.run_id)

    # --- Internals ---

    def _schedule_expiry(self) -> None:
        loop = asyncio.get_running_loop()
        self._expiry = loop.call_later(
            self._ttl_s,
            lambda: self._mailbox.put_nowait((self._do_expire, (), None)),
        )

    def _drain_mailbox(self) -> None:
        while not self._mailbox.empty():
            _, _, future = self._mailbox.get_nowait()
            if future is not None and not future.done():
                future.set_exception(
                    ProgressNotInitializedError(f"Progress state for run {self.run_id} expired")
                )

    def _close_subscribers(self) -> None:
        for queue in self._subscribers:
            queue.put_nowait(None)

    async def _emit(self, kind: ProgressEventKind) -> None:
        state = self._require_state()
        event = ProgressEvent(kind=kind, run_id=self.run_id, state=state.model_copy())
        for queue in self._subscribers:
            queue.put_nowait(event)

        if self._hub is not None:
            self._outbox.put_nowait((
                state.account_id,
                BroadcastMessage(
                    run_id=self.run_id,
                    type=kind,
                    payload=state.model_dump(mode="json"),
                ),
            ))
            if self._publisher is None or self._publisher.done():
                self._publisher = asyncio.get_running_loop().create_task(
                    self._run_publisher(), name=f"progress-publisher-{self.run_id}"
                )

    async def _run_publisher(self) -> None:
        while True:
            account_id, message = await self._outbox.get()
            try:
                await self._hub.publish(account_id, message)
            except Exception as exc:
                logger.error(
                    "Progress actor %s: broadcast of %s failed", self.run_id, message.type,
                    extra={"data": error_fields(exc)},
                )
            finally:
                self._outbox.task_done()
