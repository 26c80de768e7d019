# src/workflow/retry.py — v1
"""Per-step retry policy with exponential backoff.

Billing and duplicate checks never retry; persistence and progress
actor calls retry a few times; fetch and scoring retry at most once.
Only errors classified retriable by the error taxonomy are retried.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable

from fitscore.core.errors import StepRetryExhausted, error_fields, is_retriable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryConfig:
    """Retry configuration for one step."""

    max_retries: int
    base_delay_s: float = 0.5
    backoff_factor: float = 2.0
    jitter: bool = True


NO_RETRY = RetryConfig(max_retries=0)
PERSISTENCE_RETRY = RetryConfig(max_retries=3)
ACTOR_RETRY = RetryConfig(max_retries=2)

STEP_POLICIES: dict[str, RetryConfig] = {
    "init_progress": ACTOR_RETRY,
    "check_duplicate": NO_RETRY,
    "deduct_credits": NO_RETRY,
    "load_context": PERSISTENCE_RETRY,
    "check_cache": NO_RETRY,
    "fetch_subject": RetryConfig(max_retries=1, base_delay_s=2.0),
    "run_checks": NO_RETRY,
    "score": RetryConfig(max_retries=1, base_delay_s=1.0),
    "persist_lead": PERSISTENCE_RETRY,
    "persist_result": PERSISTENCE_RETRY,
    "finalize_progress": ACTOR_RETRY,
    "progress_update": ACTOR_RETRY,
    "refund_credits": NO_RETRY,
    "fail_progress": ACTOR_RETRY,
    "run_record": PERSISTENCE_RETRY,
}


def policy_for(step: str, base_delay_s: float | None = None) -> RetryConfig:
    """Policy for a step, with the configured base delay when given."""
    config = STEP_POLICIES.get(step, NO_RETRY)
    if base_delay_s is not None and config.max_retries > 0:
        config = replace(config, base_delay_s=base_delay_s)
    return config


def _compute_delay(config: RetryConfig, attempt: int) -> float:
    """Compute delay for a given attempt (0-based)."""
    delay = config.base_delay_s * (config.backoff_factor ** attempt)
    if config.jitter:
        delay *= 0.5 + random.random()  # noqa: S311
    return delay


async def with_step_retry(
    fn: Callable[..., Awaitable[Any]],
    *args: Any,
    step: str,
    config: RetryConfig | None = None,
    **kwargs: Any,
) -> Any:
    """Execute an async step callable under its retry policy.

    Non-retriable errors propagate unchanged on the first failure.

    Raises:
        StepRetryExhausted: A retriable error persisted past max_retries.
    """
    config = config or policy_for(step)
    attempts = 0

    while True:
        try:
            return await fn(*args, **kwargs)
        except Exception as e:
            attempts += 1
            if not is_retriable(e):
                raise
            if attempts > config.max_retries:
                if config.max_retries == 0:
                    raise
                raise StepRetryExhausted(step, attempts, e) from e

            delay = _compute_delay(config, attempts - 1)
            retry_after = getattr(e, "retry_after_s", None)
            if retry_after:
                delay = max(delay, retry_after)
            logger.warning(
                "Step '%s' failed (attempt %d/%d), retrying in %.1fs",
                step, attempts, config.max_retries + 1, delay,
                extra={"data": {"step": step, **error_fields(e)}},
            )
            await asyncio.sleep(delay)
