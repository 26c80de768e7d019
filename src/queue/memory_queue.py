# src/queue/memory_queue.py — v1
"""In-process queue transport with attempt counting and delayed redelivery.

Used for local runs and tests in place of a managed queue.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel

from fitscore.queue.consumer import AnalysisQueueConsumer

logger = logging.getLogger(__name__)


@dataclass
class MemoryDelivery:
    """A message handed to the consumer; exactly one of ack/retry settles it."""

    queue: InMemoryQueue
    body: Any
    attempts: int = 1
    settled: str | None = field(default=None)

    def ack(self) -> None:
        self._settle("acked")
        self.queue.acked.append(self.body)

    def retry(self, delay_seconds: float) -> None:
        self._settle("retried")
        self.queue.schedule_redelivery(self.body, self.attempts + 1, delay_seconds)

    def _settle(self, outcome: str) -> None:
        if self.settled is not None:
            raise RuntimeError(f"Delivery already {self.settled}")
        self.settled = outcome


class InMemoryQueue:
    """asyncio.Queue-backed transport."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[tuple[Any, int]] = asyncio.Queue()
        self._timers: list[asyncio.TimerHandle] = []
        self.acked: list[Any] = []
        self.redeliveries: list[tuple[Any, int, float]] = []

    def send(self, message: BaseModel | dict[str, Any]) -> None:
        body = message.model_dump(mode="json") if isinstance(message, BaseModel) else message
        self._queue.put_nowait((body, 1))

    def schedule_redelivery(self, body: Any, attempts: int, delay_seconds: float) -> None:
        self.redeliveries.append((body, attempts, delay_seconds))
        loop = asyncio.get_running_loop()
        self._timers.append(
            loop.call_later(delay_seconds, self._queue.put_nowait, (body, attempts))
        )

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def receive_batch(self, max_messages: int = 10, timeout: float = 1.0) -> list[MemoryDelivery]:
        """Wait up to timeout for one message, then drain up to max_messages."""
        try:
            body, attempts = await asyncio.wait_for(self._queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return []

        batch = [MemoryDelivery(queue=self, body=body, attempts=attempts)]
        while len(batch) < max_messages and not self._queue.empty():
            body, attempts = self._queue.get_nowait()
            batch.append(MemoryDelivery(queue=self, body=body, attempts=attempts))
        return batch

    def close(self) -> None:
        for timer in self._timers:
            timer.cancel()
        self._timers.clear()


async def run_consumer(
    queue: InMemoryQueue,
    consumer: AnalysisQueueConsumer,
    stop_event: asyncio.Event,
    batch_size: int = 10,
    poll_interval_s: float = 1.0,
) -> int:
    """Poll the queue until stop_event is set. Returns the number of messages handled."""
    handled = 0
    while not stop_event.is_set():
        batch = await queue.receive_batch(batch_size, timeout=poll_interval_s)
        if not batch:
            continue
        await consumer.handle(batch)
        handled += len(batch)
    logger.info("Consumer stopped after %d message(s)", handled)
    return handled
