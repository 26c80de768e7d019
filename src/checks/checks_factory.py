# src/checks/checks_factory.py — v1
"""Factory for the default pre-analysis checks chain."""

from __future__ import annotations

from fitscore.checks.builtin.subject_not_found import SubjectNotFoundCheck
from fitscore.checks.builtin.subject_restricted import SubjectRestrictedCheck
from fitscore.checks.builtin.target_bounds import TargetBoundsCheck
from fitscore.checks.runner import PreAnalysisChecks
from fitscore.config.settings import Settings


def create_pre_analysis_checks(settings: Settings | None = None) -> PreAnalysisChecks:
    """Build the chain with all built-in checks registered."""
    continue_on_failure = settings.checks_continue_on_failure if settings else False
    return PreAnalysisChecks(
        checks=[SubjectNotFoundCheck(), SubjectRestrictedCheck(), TargetBoundsCheck()],
        continue_on_failure=continue_on_failure,
    )
