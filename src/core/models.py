# src/core/models.py — v1
"""Core domain models shared across the pipeline.

Run, ProgressState, SubjectSnapshot, BusinessContext, ScoreResult and
the queue/workflow envelopes. Cache- and check-specific models live in
their own packages.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field

RunStatus = Literal["pending", "processing", "complete", "failed", "cancelled"]

TERMINAL_STATUSES: frozenset[str] = frozenset({"complete", "failed", "cancelled"})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Post(BaseModel):
    """A recent post of the subject."""

    id: str
    caption: str = ""
    like_count: int = 0
    comment_count: int = 0
    timestamp: datetime | None = None


class SubjectSnapshot(BaseModel):
    """Fetched attributes of the subject (social profile) being scored."""

    username: str
    display_name: str = ""
    follower_count: int = 0
    following_count: int = 0
    post_count: int = 0
    bio: str = ""
    external_url: str | None = None
    profile_pic_url: str = ""
    is_verified: bool = False
    is_private: bool = False
    is_business_account: bool = False
    latest_posts: list[Post] = Field(default_factory=list)
    fetched_at: datetime = Field(default_factory=utcnow)


class BusinessContext(BaseModel):
    """Targeting criteria of the business requesting the score."""

    id: str
    account_id: str
    business_name: str
    business_one_liner: str = ""
    target_audience: str = ""
    value_proposition: str = ""
    min_followers: int | None = None
    max_followers: int | None = None
    extra: dict[str, Any] = Field(default_factory=dict)


class ScoreResult(BaseModel):
    """Output of the scoring adapter."""

    score: int = Field(ge=0, le=100)
    summary: str
    cost_usd: float = 0.0
    input_tokens: int = 0
    output_tokens: int = 0
    model: str = ""


class RunResult(BaseModel):
    """Result stored on a Run once it reaches a terminal state."""

    lead_id: str | None = None
    score: int = 0
    summary: str = ""
    result_type: str | None = None
    check_name: str | None = None
    model: str = ""
    cost_usd: float = 0.0
    input_tokens: int = 0
    output_tokens: int = 0


class Run(BaseModel):
    """One end-to-end execution of the pipeline for a subject and requester."""

    run_id: str
    account_id: str
    business_context_id: str
    subject_identifier: str
    analysis_depth: str
    status: RunStatus = "pending"
    credits_cost: int = 0
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None
    error_message: str | None = None
    result: RunResult | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class ProgressState(BaseModel):
    """Live progress record owned by one run's progress actor."""

    run_id: str
    account_id: str
    subject_identifier: str
    analysis_depth: str
    status: RunStatus = "pending"
    progress: int = Field(default=0, ge=0, le=100)
    current_step: str = "Initializing analysis"
    total_steps: int = 0
    started_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None
    error_message: str | None = None
    result_digest: dict[str, Any] | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class WorkflowParams(BaseModel):
    """Invocation payload of the analysis workflow."""

    run_id: str
    account_id: str
    business_context_id: str
    subject_identifier: str
    analysis_depth: str = "light"
    requested_at: datetime = Field(default_factory=utcnow)


class WorkflowResult(BaseModel):
    """Return value of AnalysisWorkflow.execute()."""

    success: bool
    run_id: str
    status: RunStatus
    artifacts: dict[str, Any] = Field(default_factory=dict)


class QueueMessage(WorkflowParams):
    """Queue envelope for a run request."""

    delivery_attempt: int = 1

    def to_params(self) -> WorkflowParams:
        return WorkflowParams(**self.model_dump(exclude={"delivery_attempt"}))
