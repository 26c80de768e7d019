# src/queue/consumer.py — v1
"""At-least-once queue consumer driving the analysis workflow.

Per delivery:
  - success: ack
  - non-retriable error: mark the run failed unless it is already
    terminal, then ack
  - retriable error with attempts left: retry after base_delay * 2^attempts
  - retriable error on the last attempt: write 'failed' to the Run
    repository and the progress actor directly, then ack
  - malformed body: log, mark the run failed if a run_id is recoverable, ack
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from pydantic import ValidationError

from fitscore.adapters.ports import RunRepository
from fitscore.core.errors import ContractError, error_fields, is_retriable
from fitscore.core.models import QueueMessage, utcnow
from fitscore.logging.context import clear_context, set_run_context
from fitscore.progress.registry import ProgressActorRegistry
from fitscore.workflow.orchestrator import AnalysisWorkflow

logger = logging.getLogger(__name__)


class Delivery(Protocol):
    """One message as handed over by a queue transport."""

    body: Any
    attempts: int

    def ack(self) -> None: ...

    def retry(self, delay_seconds: float) -> None: ...


class AnalysisQueueConsumer:
    """Consume run requests and execute them with AnalysisWorkflow.

    Args:
        workflow: Workflow executing each run.
        runs: Run repository for terminal-failure writes.
        progress: Progress actor registry for terminal-failure writes.
        max_attempts: Deliveries before a run is given up.
        base_delay_s: Base of the exponential redelivery delay.
    """

    def __init__(
        self,
        workflow: AnalysisWorkflow,
        runs: RunRepository,
        progress: ProgressActorRegistry,
        max_attempts: int = 3,
        base_delay_s: float = 10.0,
    ) -> None:
        self._workflow = workflow
        self._runs = runs
        self._progress = progress
        self._max_attempts = max_attempts
        self._base_delay_s = base_delay_s

    async def handle(self, batch: list[Delivery]) -> None:
        logger.info("Processing batch of %d message(s)", len(batch))
        for delivery in batch:
            await self._process(delivery)

    async def _process(self, delivery: Delivery) -> None:
        try:
            message = QueueMessage.model_validate(delivery.body)
        except ValidationError as e:
            await self._reject_malformed(delivery, e)
            return

        message.delivery_attempt = delivery.attempts
        set_run_context(message.run_id, message.account_id)
        try:
            logger.info(
                "Processing %s analysis for @%s (attempt %d)",
                message.analysis_depth, message.subject_identifier, delivery.attempts,
            )
            try:
                result = await self._workflow.execute(message.to_params())
            except Exception as exc:
                await self._on_error(delivery, message, exc)
                return

            delivery.ack()
            logger.info(
                "Run finished with status %s", result.status,
                extra={"data": {"status": result.status, "score": result.artifacts.get("score")}},
            )
        finally:
            clear_context()

    async def _on_error(self, delivery: Delivery, message: QueueMessage, exc: Exception) -> None:
        fields = error_fields(exc)

        if not is_retriable(exc):
            if isinstance(exc, ContractError):
                logger.error(
                    "Run ended with contract error: %s", fields["message"],
                    exc_info=exc, extra={"data": fields},
                )
            else:
                logger.info(
                    "Run ended with non-retriable error: %s", fields["message"],
                    extra={"data": fields},
                )
            # The workflow may have raised before writing any state.
            await self.mark_failed(message.run_id, fields["message"])
            delivery.ack()
            return

        if delivery.attempts < self._max_attempts:
            delay = self._base_delay_s * (2 ** delivery.attempts)
            logger.warning(
                "Run failed (attempt %d/%d), redelivering in %.0fs",
                delivery.attempts, self._max_attempts, delay,
                extra={"data": fields},
            )
            delivery.retry(delay_seconds=delay)
            return

        logger.error(
            "Max attempts exceeded for run %s: %s", message.run_id, fields["message"],
            extra={"data": fields},
        )
        await self.mark_failed(message.run_id, fields["message"])
        delivery.ack()

    async def _reject_malformed(self, delivery: Delivery, error: ValidationError) -> None:
        body = delivery.body if isinstance(delivery.body, dict) else {}
        run_id = body.get("run_id") if isinstance(body.get("run_id"), str) else None
        logger.error(
            "Malformed queue message: %s", error,
            extra={"data": {
                "kind": "contract",
                "code": "malformed_message",
                "errors": error.errors(include_url=False),
                "run_id": run_id,
            }},
        )
        if run_id:
            await self.mark_failed(run_id, "Malformed queue message")
        delivery.ack()

    async def mark_failed(self, run_id: str, message: str) -> None:
        """Write terminal failure straight to the repository and progress actor."""
        try:
            run = await self._runs.get(run_id)
            if run is None:
                logger.warning("Cannot mark unknown run %s failed", run_id)
            elif run.is_terminal:
                logger.info("Run %s already %s", run_id, run.status)
            else:
                await self._runs.update(
                    run_id, status="failed", error_message=message, completed_at=utcnow()
                )
        except Exception as e:
            logger.error(
                "Failed to mark run %s failed", run_id, extra={"data": error_fields(e)}
            )

        actor = self._progress.peek(run_id)
        if actor is None:
            return
        try:
            await actor.fail(message)
        except Exception as e:
            logger.error(
                "Failed to write failed progress for run %s", run_id,
                extra={"data": error_fields(e)},
            )
