# src/checks/models.py — v1
"""Pre-analysis check models: context passed in, per-check result, run summary."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

from fitscore.core.models import BusinessContext, SubjectSnapshot

CheckResultType = Literal["not_found", "private", "out_of_bounds"]


class UpstreamSignal(BaseModel):
    """Error reported by the fetch adapter instead of a snapshot."""

    kind: Literal["not_found", "restricted", "error"] = "error"
    error: str = ""
    description: str | None = None


class CheckContext(BaseModel):
    """Everything a check may look at. Snapshot is None when the fetch yielded nothing."""

    subject_identifier: str
    analysis_depth: str = "light"
    snapshot: SubjectSnapshot | None = None
    business_context: BusinessContext | None = None
    upstream: UpstreamSignal | None = None


class CheckResult(BaseModel):
    """Outcome of a single check."""

    check_name: str
    passed: bool
    reason: str | None = None
    result_type: CheckResultType | None = None
    summary: str | None = None
    score_override: int | None = None
    should_refund: bool = False


class ChecksSummary(BaseModel):
    """Aggregate outcome of a chain run."""

    all_passed: bool
    failed_check: CheckResult | None = None
    results: list[CheckResult] = Field(default_factory=list)
    checks_run: int = 0
    duration_ms: int = 0
