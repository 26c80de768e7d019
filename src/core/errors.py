# src/core/errors.py — v1
"""Error taxonomy for the analysis pipeline.

Three families drive retry and compensation decisions:

- UserConditionError: caused by the request or the subject (no credits,
  duplicate run, subject not found / private / out of bounds). Never
  retried; refunded only if a charge already happened.
- InfrastructureError: transient adapter failures (timeouts, rate limits,
  upstream 5xx). Retried a bounded number of times at step level.
- ContractError: programming or protocol violations (missing progress
  state, malformed message). Always fatal, always logged in full.

Every error carries ``kind``, ``code`` and ``retriable`` so it can be
serialized field by field with error_fields().
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from fitscore.checks.models import CheckResult


class AnalysisError(Exception):
    """Base class for all pipeline errors."""

    kind: str = "internal"
    code: str = "analysis_error"
    retriable: bool = False

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


# --- User conditions ---


class UserConditionError(AnalysisError):
    kind = "user_condition"
    code = "user_condition"


class InsufficientCreditsError(UserConditionError):
    code = "insufficient_credits"

    def __init__(self, account_id: str, required: int) -> None:
        super().__init__(
            f"Insufficient credits: account {account_id} needs {required}"
        )
        self.account_id = account_id
        self.required = required


class DuplicateRunError(UserConditionError):
    code = "duplicate_run"

    def __init__(self, subject_identifier: str, existing_run_id: str) -> None:
        super().__init__(
            f"Analysis already in progress for {subject_identifier} "
            f"(run {existing_run_id})"
        )
        self.existing_run_id = existing_run_id


class BusinessContextNotFoundError(UserConditionError):
    code = "business_context_not_found"


class SubjectNotFoundError(UserConditionError):
    """Upstream reports the subject does not exist."""

    code = "subject_not_found"


class SubjectRestrictedError(UserConditionError):
    """Upstream reports the subject's content is not accessible."""

    code = "subject_restricted"


class PreAnalysisCheckFailed(UserConditionError):
    """A pre-analysis check rejected the subject before scoring."""

    code = "pre_analysis_check_failed"

    def __init__(self, result: CheckResult) -> None:
        super().__init__(result.reason or f"Check {result.check_name} failed")
        self.result = result


# --- Infrastructure ---


class InfrastructureError(AnalysisError):
    kind = "infrastructure"
    code = "infrastructure"
    retriable = True


class RateLimitedError(InfrastructureError):
    code = "rate_limited"

    def __init__(self, message: str, retry_after_s: float | None = None) -> None:
        super().__init__(message)
        self.retry_after_s = retry_after_s


class StepTimeoutError(InfrastructureError):
    code = "step_timeout"


class StepRetryExhausted(InfrastructureError):
    """All step-level retries failed; the run has been compensated."""

    code = "step_retry_exhausted"
    retriable = False

    def __init__(self, step: str, attempts: int, last_error: BaseException) -> None:
        super().__init__(
            f"Step '{step}' failed after {attempts} attempts: {last_error}"
        )
        self.step = step
        self.attempts = attempts
        self.last_error = last_error


# --- Contract violations ---


class ContractError(AnalysisError):
    kind = "contract"
    code = "contract"


class ProgressNotInitializedError(ContractError):
    code = "progress_not_initialized"


class ProgressStateError(ContractError):
    code = "invalid_progress_transition"


class MalformedMessageError(ContractError):
    code = "malformed_message"


class RunAlreadyFinishedError(ContractError):
    """Re-entry of a run whose terminal state is already recorded."""

    code = "run_already_finished"


# --- Cancellation ---


class RunCancelledError(AnalysisError):
    kind = "cancelled"
    code = "run_cancelled"


def error_kind(exc: BaseException) -> str:
    """Return the taxonomy kind; unknown exceptions count as infrastructure."""
    if isinstance(exc, AnalysisError):
        return exc.kind
    return "infrastructure"


def is_retriable(exc: BaseException) -> bool:
    """Whether a step-level retry may help."""
    if isinstance(exc, AnalysisError):
        return exc.retriable
    return True


def error_fields(exc: BaseException) -> dict[str, Any]:
    """Serialize an exception into flat log fields."""
    if isinstance(exc, AnalysisError):
        return {"message": exc.message, "kind": exc.kind, "code": exc.code}
    return {
        "message": str(exc) or type(exc).__name__,
        "kind": "infrastructure",
        "code": type(exc).__name__,
    }
