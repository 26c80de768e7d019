# src/workflow/steps.py — v1
"""Workflow step names and time-weighted progress schedules.

Percentages are derived from a depth's TimingProfile so that progress
tracks wall time: setup steps share the setup slice, fetch and score
take their own slices, persistence steps creep toward 98 and only
finalize reaches 100. On a cache hit the fetch time drops out of the
total and the schedule is recomputed, so scoring gets the freed weight.
"""

from __future__ import annotations

from dataclasses import dataclass, replace

from fitscore.config.depths import TimingProfile, get_depth_profile

INIT_PROGRESS = "init_progress"
CHECK_DUPLICATE = "check_duplicate"
DEDUCT_CREDITS = "deduct_credits"
LOAD_CONTEXT = "load_context"
CHECK_CACHE = "check_cache"
FETCH_SUBJECT = "fetch_subject"
RUN_CHECKS = "run_checks"
SCORE = "score"
PERSIST_LEAD = "persist_lead"
PERSIST_RESULT = "persist_result"
FINALIZE_PROGRESS = "finalize_progress"

STEP_ORDER: tuple[str, ...] = (
    INIT_PROGRESS,
    CHECK_DUPLICATE,
    DEDUCT_CREDITS,
    LOAD_CONTEXT,
    CHECK_CACHE,
    FETCH_SUBJECT,
    RUN_CHECKS,
    SCORE,
    PERSIST_LEAD,
    PERSIST_RESULT,
    FINALIZE_PROGRESS,
)

STEP_DESCRIPTIONS: dict[str, str] = {
    INIT_PROGRESS: "Initializing analysis",
    CHECK_DUPLICATE: "Checking for duplicate analyses",
    DEDUCT_CREDITS: "Verifying credits",
    LOAD_CONTEXT: "Loading business profile",
    CHECK_CACHE: "Checking cache",
    FETCH_SUBJECT: "Fetching profile data",
    RUN_CHECKS: "Validating profile",
    SCORE: "Running AI analysis",
    PERSIST_LEAD: "Saving lead data",
    PERSIST_RESULT: "Saving analysis results",
    FINALIZE_PROGRESS: "Complete",
}


@dataclass(frozen=True)
class StepProgress:
    step: str
    percentage: int
    description: str


def compute_schedule(timing: TimingProfile) -> dict[str, StepProgress]:
    """Map every step to its progress percentage for a timing profile."""
    total = timing.total
    setup_w = timing.setup / total
    fetch_w = timing.fetch / total
    score_w = timing.score / total

    fetch_pct = round((setup_w + fetch_w) * 100)
    # Capped so persistence steps still have room below 100.
    score_pct = min(96, round((setup_w + fetch_w + score_w) * 100))
    lead_pct = min(97, score_pct + 2)

    percentages = {
        INIT_PROGRESS: 0,
        CHECK_DUPLICATE: round(setup_w * 100 * 0.2),
        DEDUCT_CREDITS: round(setup_w * 100 * 0.4),
        LOAD_CONTEXT: round(setup_w * 100 * 0.6),
        CHECK_CACHE: round(setup_w * 100),
        FETCH_SUBJECT: fetch_pct,
        RUN_CHECKS: fetch_pct,
        SCORE: score_pct,
        PERSIST_LEAD: lead_pct,
        PERSIST_RESULT: min(98, lead_pct + 1),
        FINALIZE_PROGRESS: 100,
    }
    return {
        step: StepProgress(step=step, percentage=pct, description=STEP_DESCRIPTIONS[step])
        for step, pct in percentages.items()
    }


def progress_schedule(depth: str, cache_hit: bool = False) -> dict[str, StepProgress]:
    """Schedule for a depth; cache_hit removes fetch time from the profile."""
    timing = get_depth_profile(depth).timing
    if cache_hit:
        timing = replace(timing, fetch=0.0)
    return compute_schedule(timing)
