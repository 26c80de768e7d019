# src/workflow/orchestrator.py — v1
"""Analysis workflow — multi-step state machine for one run.

Steps, in order:
  init_progress -> check_duplicate -> deduct_credits -> load_context ->
  check_cache -> [fetch_subject] -> run_checks -> score ->
  persist_lead -> persist_result -> finalize_progress

Any error sends the run down the failure path: one refund attempt when
credits were charged, one terminal progress write and one terminal Run
write, then the error is re-raised. Once the run is recorded terminal a
retriable error is re-raised wrapped in the non-retriable
StepRetryExhausted, so the queue acks instead of redelivering.
A cancelled run is marked cancelled
and returns an unsuccessful WorkflowResult without a refund.

Each completed step is checkpointed by run_id. A redelivered run skips
completed steps and reuses their outputs; the credits_deducted,
refund_issued and terminal markers keep billing and the failure path
idempotent.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from fitscore.adapters.ports import (
    BusinessContextLookup,
    CreditsLedger,
    LeadRepository,
    RunRepository,
    ScoringAdapter,
    SubjectFetcher,
)
from fitscore.cache.strategy import CacheStrategyService
from fitscore.checks.models import CheckContext, CheckResult, UpstreamSignal
from fitscore.checks.runner import PreAnalysisChecks
from fitscore.config.depths import DEPTH_PROFILES, DepthProfile
from fitscore.core.errors import (
    BusinessContextNotFoundError,
    ContractError,
    DuplicateRunError,
    InsufficientCreditsError,
    MalformedMessageError,
    PreAnalysisCheckFailed,
    ProgressStateError,
    RunAlreadyFinishedError,
    RunCancelledError,
    StepRetryExhausted,
    SubjectNotFoundError,
    SubjectRestrictedError,
    error_fields,
    is_retriable,
)
from fitscore.core.models import (
    BusinessContext,
    Run,
    RunResult,
    ScoreResult,
    SubjectSnapshot,
    WorkflowParams,
    WorkflowResult,
    utcnow,
)
from fitscore.logging.context import clear_context, set_run_context, set_step_context
from fitscore.progress.actor import ProgressActor
from fitscore.progress.registry import ProgressActorRegistry
from fitscore.workflow import steps
from fitscore.workflow.checkpoint import (
    CREDITS_DEDUCTED,
    REFUND_ISSUED,
    TERMINAL,
    CheckpointStore,
    MemoryCheckpointStore,
    RunCheckpoint,
)
from fitscore.workflow.retry import policy_for, with_step_retry

logger = logging.getLogger(__name__)


@dataclass
class _RunState:
    """Mutable per-execution state threaded through the steps."""

    params: WorkflowParams
    profile: DepthProfile
    checkpoint: RunCheckpoint
    actor: ProgressActor
    schedule: dict[str, steps.StepProgress] = field(default_factory=dict)
    current_step: str = steps.INIT_PROGRESS
    run: Run | None = None


class AnalysisWorkflow:
    """Execute the analysis pipeline for one run.

    Args:
        ledger: Credits ledger.
        contexts: Business context lookup.
        leads: Lead repository.
        runs: Run repository.
        fetcher: Subject data fetcher.
        scorer: Scoring adapter.
        cache: Subject cache policy service.
        checks: Pre-analysis checks chain.
        progress: Progress actor registry.
        checkpoints: Step checkpoint store (in-memory by default).
        retry_base_delay_s: Overrides the base delay of every retrying step.
    """

    def __init__(
        self,
        *,
        ledger: CreditsLedger,
        contexts: BusinessContextLookup,
        leads: LeadRepository,
        runs: RunRepository,
        fetcher: SubjectFetcher,
        scorer: ScoringAdapter,
        cache: CacheStrategyService,
        checks: PreAnalysisChecks,
        progress: ProgressActorRegistry,
        checkpoints: CheckpointStore | None = None,
        retry_base_delay_s: float | None = None,
    ) -> None:
        self._ledger = ledger
        self._contexts = contexts
        self._leads = leads
        self._runs = runs
        self._fetcher = fetcher
        self._scorer = scorer
        self._cache = cache
        self._checks = checks
        self._progress = progress
        self._checkpoints = checkpoints or MemoryCheckpointStore()
        self._retry_base_delay_s = retry_base_delay_s

    async def execute(self, params: WorkflowParams) -> WorkflowResult:
        """Run (or resume) the workflow for params.run_id.

        Returns:
            WorkflowResult; success=False with status 'cancelled' when the
            run was cancelled mid-flight.

        Raises:
            AnalysisError subclasses after the failure path has run.
            StepRetryExhausted: A retriable error ended the run.
            RunAlreadyFinishedError: The run already ended in failure.
        """
        set_run_context(params.run_id, params.account_id)
        try:
            profile = DEPTH_PROFILES.get(params.analysis_depth)
            if profile is None:
                raise MalformedMessageError(
                    f"Unknown analysis depth {params.analysis_depth!r}"
                )

            checkpoint = await self._checkpoints.load_or_create(params.run_id)
            if checkpoint.has_marker(TERMINAL):
                return self._replay_outcome(checkpoint)

            state = _RunState(
                params=params,
                profile=profile,
                checkpoint=checkpoint,
                actor=self._progress.get(params.run_id),
                schedule=steps.progress_schedule(params.analysis_depth),
            )
            logger.info(
                "Starting run for @%s (%s)", params.subject_identifier, params.analysis_depth,
                extra={"data": {"resumed_steps": sorted(checkpoint.steps)}},
            )

            try:
                return await self._run_steps(state)
            except RunCancelledError:
                return await self._handle_cancel(state)
            except Exception as exc:
                await self._handle_failure(state, exc)
                # Compensated and terminal: a redelivery could do no work.
                if is_retriable(exc) and state.checkpoint.has_marker(TERMINAL):
                    raise StepRetryExhausted(state.current_step, 1, exc) from exc
                raise
        finally:
            clear_context()

    # --- Step sequence ---

    async def _run_steps(self, state: _RunState) -> WorkflowResult:
        params = state.params

        await self._init_progress(state)

        await self._step(state, steps.CHECK_DUPLICATE, self._check_duplicate, state)
        await self._step(state, steps.DEDUCT_CREDITS, self._deduct_credits, state)

        context = BusinessContext.model_validate(
            await self._step(state, steps.LOAD_CONTEXT, self._load_context, params)
        )

        cache_out = await self._step(state, steps.CHECK_CACHE, self._check_cache, params)
        cache_hit = cache_out["hit"]
        if cache_hit:
            state.schedule = steps.progress_schedule(params.analysis_depth, cache_hit=True)
            fetch_out = {"snapshot": cache_out["snapshot"], "upstream": None}
        else:
            fetch_out = await self._step(state, steps.FETCH_SUBJECT, self._fetch_subject, params)

        snapshot = (
            SubjectSnapshot.model_validate(fetch_out["snapshot"])
            if fetch_out["snapshot"] is not None else None
        )
        upstream = (
            UpstreamSignal.model_validate(fetch_out["upstream"])
            if fetch_out["upstream"] is not None else None
        )

        await self._step(
            state, steps.RUN_CHECKS, self._run_checks, params, snapshot, context, upstream
        )
        if snapshot is None:
            raise PreAnalysisCheckFailed(
                CheckResult(
                    check_name=steps.RUN_CHECKS,
                    passed=False,
                    reason="No profile data returned",
                    result_type="not_found",
                    score_override=0,
                    should_refund=True,
                )
            )

        score = ScoreResult.model_validate(
            await self._step(state, steps.SCORE, self._score, params, context, snapshot)
        )

        lead_out = await self._step(
            state, steps.PERSIST_LEAD, self._persist_lead, params, snapshot
        )
        lead_id = lead_out["lead_id"]

        run_result = RunResult(
            lead_id=lead_id,
            score=score.score,
            summary=score.summary,
            model=score.model,
            cost_usd=score.cost_usd,
            input_tokens=score.input_tokens,
            output_tokens=score.output_tokens,
        )
        await self._step(state, steps.PERSIST_RESULT, self._persist_result, params, run_result)

        artifacts = {
            "lead_id": lead_id,
            "score": score.score,
            "summary": score.summary,
            "cache_hit": cache_hit,
            "result_type": None,
            "model": score.model,
            "cost_usd": score.cost_usd,
        }
        await self._step(state, steps.FINALIZE_PROGRESS, self._finalize_progress, state, artifacts)

        result = WorkflowResult(
            success=True, run_id=params.run_id, status="complete", artifacts=artifacts
        )
        await self._retrying(
            "run_record", self._runs.update, params.run_id,
            status="complete", completed_at=utcnow(),
        )
        await self._mark_terminal(state, result)
        logger.info(
            "Run complete: score %d%s", score.score, " (cache hit)" if cache_hit else "",
            extra={"data": {"lead_id": lead_id, "score": score.score, "cache_hit": cache_hit}},
        )
        return result

    async def _step(
        self,
        state: _RunState,
        name: str,
        fn: Callable[..., Awaitable[Any]],
        *args: Any,
    ) -> Any:
        """Run one step under its retry policy, or replay its checkpointed output."""
        if state.checkpoint.has_step(name):
            logger.debug("Step '%s' already completed, reusing output", name)
            return state.checkpoint.steps[name]

        state.current_step = name
        set_step_context(name)
        await self._report_progress(state, name)

        output = await self._retrying(name, fn, *args)

        state.checkpoint.record_step(name, output)
        await self._checkpoints.save(state.checkpoint)
        logger.debug("Step '%s' complete", name)
        return output

    async def _retrying(self, step: str, fn: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> Any:
        return await with_step_retry(
            fn, *args, step=step,
            config=policy_for(step, self._retry_base_delay_s), **kwargs,
        )

    async def _report_progress(self, state: _RunState, name: str) -> None:
        if name == steps.FINALIZE_PROGRESS:
            return
        entry = state.schedule[name]
        await self._retrying(
            "progress_update", state.actor.update, entry.percentage, entry.description, "processing"
        )

    # --- Steps ---

    async def _init_progress(self, state: _RunState) -> None:
        """Initialize the actor and the Run record. Safe to repeat on re-entry."""
        params = state.params
        state.current_step = steps.INIT_PROGRESS
        set_step_context(steps.INIT_PROGRESS)

        await self._retrying(
            steps.INIT_PROGRESS, state.actor.initialize,
            params.account_id, params.subject_identifier, params.analysis_depth,
            len(steps.STEP_ORDER),
        )

        run = await self._retrying("run_record", self._runs.get, params.run_id)
        if run is None:
            run = await self._retrying(
                "run_record", self._runs.create,
                Run(
                    run_id=params.run_id,
                    account_id=params.account_id,
                    business_context_id=params.business_context_id,
                    subject_identifier=params.subject_identifier,
                    analysis_depth=params.analysis_depth,
                    status="processing",
                    credits_cost=state.profile.credit_cost,
                    started_at=params.requested_at,
                ),
            )
        elif run.status == "pending":
            run = await self._retrying(
                "run_record", self._runs.update, params.run_id,
                status="processing", credits_cost=state.profile.credit_cost,
            )
        state.run = run

        if not state.checkpoint.has_step(steps.INIT_PROGRESS):
            state.checkpoint.record_step(steps.INIT_PROGRESS, {"started_at": run.started_at.isoformat()})
            await self._checkpoints.save(state.checkpoint)

    async def _check_duplicate(self, state: _RunState) -> dict[str, Any]:
        """Reject the run when an older non-terminal run exists for the same tuple."""
        params = state.params
        if state.run is None:
            raise ProgressStateError(f"run {params.run_id} has no record before duplicate check")
        me = (state.run.started_at, params.run_id)

        active = await self._runs.find_active(
            params.account_id, params.business_context_id, params.subject_identifier
        )
        older = sorted(
            (r for r in active if r.run_id != params.run_id and (r.started_at, r.run_id) < me),
            key=lambda r: (r.started_at, r.run_id),
        )
        if older:
            raise DuplicateRunError(params.subject_identifier, older[0].run_id)
        return {"active": len(active)}

    async def _deduct_credits(self, state: _RunState) -> dict[str, Any]:
        params = state.params
        cost = state.profile.credit_cost
        if state.checkpoint.has_marker(CREDITS_DEDUCTED):
            return {"charged": cost}

        if not await self._ledger.has_sufficient(params.account_id, cost):
            raise InsufficientCreditsError(params.account_id, cost)

        await self._ledger.deduct(
            params.account_id, cost,
            reference=params.run_id,
            description=f"{params.analysis_depth} analysis of @{params.subject_identifier}",
        )
        state.checkpoint.mark(CREDITS_DEDUCTED)
        await self._checkpoints.save(state.checkpoint)
        logger.info("Deducted %d credit(s)", cost, extra={"data": {"credits": cost}})
        return {"charged": cost}

    async def _load_context(self, params: WorkflowParams) -> dict[str, Any]:
        context = await self._contexts.find_by_id(params.business_context_id, params.account_id)
        if context is None:
            raise BusinessContextNotFoundError(
                f"Business context {params.business_context_id} not found"
            )
        return context.model_dump(mode="json")

    async def _check_cache(self, params: WorkflowParams) -> dict[str, Any]:
        key = self._cache.build_key(params.subject_identifier)
        snapshot = await self._cache.get(key, params.analysis_depth)
        return {
            "hit": snapshot is not None,
            "snapshot": snapshot.model_dump(mode="json") if snapshot is not None else None,
        }

    async def _fetch_subject(self, params: WorkflowParams) -> dict[str, Any]:
        """Fetch fresh data; not-found and restricted answers become check signals."""
        upstream: UpstreamSignal | None = None
        snapshot: SubjectSnapshot | None = None
        try:
            snapshot = await self._fetcher.fetch(params.subject_identifier, params.analysis_depth)
        except SubjectNotFoundError as e:
            upstream = UpstreamSignal(kind="not_found", error=e.code, description=e.message)
        except SubjectRestrictedError as e:
            upstream = UpstreamSignal(kind="restricted", error=e.code, description=e.message)

        if snapshot is not None:
            key = self._cache.build_key(params.subject_identifier)
            try:
                await self._cache.refresh(key, snapshot, params.analysis_depth)
            except Exception as e:
                logger.warning(
                    "Cache write failed for %s", key,
                    extra={"data": {"key": key, **error_fields(e)}},
                )

        return {
            "snapshot": snapshot.model_dump(mode="json") if snapshot is not None else None,
            "upstream": upstream.model_dump(mode="json") if upstream is not None else None,
        }

    async def _run_checks(
        self,
        params: WorkflowParams,
        snapshot: SubjectSnapshot | None,
        context: BusinessContext,
        upstream: UpstreamSignal | None,
    ) -> dict[str, Any]:
        summary = await self._checks.run_checks(
            CheckContext(
                subject_identifier=params.subject_identifier,
                analysis_depth=params.analysis_depth,
                snapshot=snapshot,
                business_context=context,
                upstream=upstream,
            )
        )
        if summary.failed_check is not None:
            raise PreAnalysisCheckFailed(summary.failed_check)
        return summary.model_dump(mode="json")

    async def _score(
        self,
        params: WorkflowParams,
        context: BusinessContext,
        snapshot: SubjectSnapshot,
    ) -> dict[str, Any]:
        result = await self._scorer.score(context, snapshot, params.analysis_depth)
        return result.model_dump(mode="json")

    async def _persist_lead(self, params: WorkflowParams, snapshot: SubjectSnapshot) -> dict[str, Any]:
        lead_id = await self._leads.upsert(
            params.account_id, params.business_context_id, params.subject_identifier, snapshot
        )
        return {"lead_id": lead_id}

    async def _persist_result(self, params: WorkflowParams, result: RunResult) -> dict[str, Any]:
        await self._runs.update(params.run_id, result=result)
        return {"saved": True}

    async def _finalize_progress(self, state: _RunState, artifacts: dict[str, Any]) -> dict[str, Any]:
        await state.actor.complete(artifacts)
        return {"completed": True}

    # --- Failure and cancellation ---

    async def _handle_failure(self, state: _RunState, exc: Exception) -> None:
        """Refund once, write terminal progress and Run state once."""
        params = state.params
        checkpoint = state.checkpoint
        if checkpoint.has_marker(TERMINAL):
            return

        step = state.current_step
        fields = error_fields(exc)
        message = f"{step} failed: {fields['message']}"
        set_step_context(step)
        logger.error(
            "Run failed at step '%s': %s", step, fields["message"],
            exc_info=isinstance(exc, ContractError),
            extra={"data": {"step": step, **fields}},
        )

        check_result: CheckResult | None = (
            exc.result if isinstance(exc, PreAnalysisCheckFailed) else None
        )
        refund_due = check_result.should_refund if check_result is not None else True
        if refund_due:
            await self._refund(state, f"Refund: {message}")

        run_result = None
        if check_result is not None:
            run_result = RunResult(
                score=check_result.score_override or 0,
                summary=check_result.summary or "",
                result_type=check_result.result_type,
                check_name=check_result.check_name,
            )
            message = check_result.summary or message

        try:
            await self._retrying("fail_progress", state.actor.fail, message)
        except Exception as e:
            logger.error("Could not write failed progress", extra={"data": error_fields(e)})

        try:
            await self._retrying(
                "run_record", self._runs.update, params.run_id,
                status="failed", completed_at=utcnow(),
                error_message=message, result=run_result,
            )
        except Exception as e:
            logger.error("Could not write failed run", extra={"data": error_fields(e)})

        outcome = WorkflowResult(
            success=False,
            run_id=params.run_id,
            status="failed",
            artifacts={
                "error": fields,
                "step": step,
                "result_type": run_result.result_type if run_result else None,
                "score": run_result.score if run_result else None,
                "summary": run_result.summary if run_result else None,
            },
        )
        try:
            await self._mark_terminal(state, outcome)
        except Exception as e:
            logger.error("Could not checkpoint failed run", extra={"data": error_fields(e)})

    async def _refund(self, state: _RunState, description: str) -> None:
        """Best-effort single refund; skipped when nothing was charged."""
        params = state.params
        checkpoint = state.checkpoint
        if not checkpoint.has_marker(CREDITS_DEDUCTED) or checkpoint.has_marker(REFUND_ISSUED):
            return
        cost = state.profile.credit_cost
        try:
            await self._ledger.add(
                params.account_id, cost, reference=params.run_id, description=description
            )
        except Exception as e:
            logger.error(
                "Refund of %d credit(s) failed", cost,
                extra={"data": {"credits": cost, **error_fields(e)}},
            )
            return
        checkpoint.mark(REFUND_ISSUED)
        await self._checkpoints.save(checkpoint)
        logger.info("Refunded %d credit(s)", cost, extra={"data": {"credits": cost}})

    async def _handle_cancel(self, state: _RunState) -> WorkflowResult:
        params = state.params
        logger.info("Run cancelled during step '%s'", state.current_step)
        result = WorkflowResult(
            success=False,
            run_id=params.run_id,
            status="cancelled",
            artifacts={"step": state.current_step},
        )
        await self._retrying(
            "run_record", self._runs.update, params.run_id,
            status="cancelled", completed_at=utcnow(), error_message="Cancelled by user",
        )
        await self._mark_terminal(state, result)
        return result

    async def _mark_terminal(self, state: _RunState, outcome: WorkflowResult) -> None:
        state.checkpoint.outcome = outcome.model_dump(mode="json")
        state.checkpoint.mark(TERMINAL)
        await self._checkpoints.save(state.checkpoint)

    def _replay_outcome(self, checkpoint: RunCheckpoint) -> WorkflowResult:
        """Return the recorded outcome of a finished run without side effects."""
        outcome = WorkflowResult.model_validate(checkpoint.outcome or {
            "success": False, "run_id": checkpoint.run_id, "status": "failed",
        })
        if outcome.status == "failed":
            raise RunAlreadyFinishedError(f"Run {checkpoint.run_id} already failed")
        logger.info("Run already %s, returning recorded outcome", outcome.status)
        return outcome
