# src/api/facade.py — v2
"""Public API facade — wiring of the analysis pipeline.

Usage:
    from fitscore.api.facade import build_pipeline, submit_analysis
    pipeline = build_pipeline(settings, ledger=..., contexts=..., ...)
    run = await submit_analysis(pipeline, request)
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from fitscore.adapters.ports import (
    BusinessContextLookup,
    CreditsLedger,
    LeadRepository,
    RunRepository,
    ScoringAdapter,
    SubjectFetcher,
)
from fitscore.api.models import AnalysisRequest
from fitscore.cache.base_cache_store import BaseCacheStore
from fitscore.cache.cache_factory import create_cache_strategy
from fitscore.cache.strategy import CacheStrategyService
from fitscore.checks.checks_factory import create_pre_analysis_checks
from fitscore.checks.runner import PreAnalysisChecks
from fitscore.config.depths import get_depth_profile
from fitscore.config.settings import Settings
from fitscore.core.errors import DuplicateRunError
from fitscore.core.models import QueueMessage, Run
from fitscore.progress.broadcaster import BroadcastHub
from fitscore.progress.registry import ProgressActorRegistry
from fitscore.queue.consumer import AnalysisQueueConsumer
from fitscore.queue.memory_queue import InMemoryQueue
from fitscore.scoring.llm_scorer import LLMScoringAdapter
from fitscore.workflow.checkpoint import CheckpointStore, create_checkpoint_store
from fitscore.workflow.orchestrator import AnalysisWorkflow

logger = logging.getLogger(__name__)


@dataclass
class Pipeline:
    """All long-lived services of one process."""

    settings: Settings
    runs: RunRepository
    cache: CacheStrategyService
    checks: PreAnalysisChecks
    hub: BroadcastHub
    progress: ProgressActorRegistry
    checkpoints: CheckpointStore
    workflow: AnalysisWorkflow
    consumer: AnalysisQueueConsumer
    queue: InMemoryQueue


def build_pipeline(
    settings: Settings | None = None,
    *,
    ledger: CreditsLedger,
    contexts: BusinessContextLookup,
    leads: LeadRepository,
    runs: RunRepository,
    fetcher: SubjectFetcher,
    scorer: ScoringAdapter | None = None,
    cache_store: BaseCacheStore | None = None,
) -> Pipeline:
    """Wire every component from settings and the given collaborators.

    Args:
        settings: Global settings. Loaded from .env if None.
        scorer: Scoring adapter. Defaults to LLMScoringAdapter.
        cache_store: Cache backend. Defaults to the configured backend.
    """
    settings = settings or Settings()

    cache = create_cache_strategy(settings, store=cache_store)
    checks = create_pre_analysis_checks(settings)
    hub = BroadcastHub()
    progress = ProgressActorRegistry(
        hub=hub,
        ttl_s=settings.progress_ttl_s,
        heartbeat_s=settings.progress_heartbeat_s,
    )
    checkpoints = create_checkpoint_store(settings.checkpoint_backend, settings.checkpoint_root)
    scorer = scorer or LLMScoringAdapter(
        api_key=settings.anthropic_api_key,
        models=settings.scoring_models,
        max_tokens=settings.scoring_max_tokens,
        temperature=settings.scoring_temperature,
    )

    workflow = AnalysisWorkflow(
        ledger=ledger,
        contexts=contexts,
        leads=leads,
        runs=runs,
        fetcher=fetcher,
        scorer=scorer,
        cache=cache,
        checks=checks,
        progress=progress,
        checkpoints=checkpoints,
        retry_base_delay_s=settings.workflow_retry_base_delay_s,
    )
    consumer = AnalysisQueueConsumer(
        workflow=workflow,
        runs=runs,
        progress=progress,
        max_attempts=settings.queue_max_attempts,
        base_delay_s=settings.queue_base_delay_s,
    )

    return Pipeline(
        settings=settings,
        runs=runs,
        cache=cache,
        checks=checks,
        hub=hub,
        progress=progress,
        checkpoints=checkpoints,
        workflow=workflow,
        consumer=consumer,
        queue=InMemoryQueue(),
    )


async def submit_analysis(pipeline: Pipeline, request: AnalysisRequest) -> Run:
    """Accept a request: create the pending Run and enqueue it.

    Raises:
        DuplicateRunError: A run for the same subject is still active.
    """
    active = await pipeline.runs.find_active(
        request.account_id, request.business_context_id, request.subject_identifier
    )
    if active:
        raise DuplicateRunError(request.subject_identifier, active[0].run_id)

    run = await pipeline.runs.create(
        Run(
            run_id=_generate_run_id(),
            account_id=request.account_id,
            business_context_id=request.business_context_id,
            subject_identifier=request.subject_identifier,
            analysis_depth=request.analysis_depth,
            status="pending",
            credits_cost=get_depth_profile(request.analysis_depth).credit_cost,
        )
    )
    pipeline.queue.send(
        QueueMessage(
            run_id=run.run_id,
            account_id=run.account_id,
            business_context_id=run.business_context_id,
            subject_identifier=run.subject_identifier,
            analysis_depth=run.analysis_depth,
            requested_at=run.started_at,
        )
    )
    logger.info(
        "Queued %s analysis for @%s (run %s)",
        run.analysis_depth, run.subject_identifier, run.run_id,
    )
    return run


def _generate_run_id() -> str:
    return uuid.uuid4().hex
