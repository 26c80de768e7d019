# src/checks/base_check.py — v1
"""Standard interface for pre-analysis checks.

Checks run after the subject snapshot is available and before scoring.
A failing check supplies the terminal result of the run (summary, score
override, result type) and says whether the charge is refunded.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from fitscore.checks.models import CheckContext, CheckResult


class BaseCheck(ABC):
    """Interface for all pre-analysis checks."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique check identifier (e.g., 'subject_restricted')."""

    @property
    @abstractmethod
    def priority(self) -> int:
        """Lower runs first."""

    @property
    def description(self) -> str:
        return ""

    @abstractmethod
    async def run(self, context: CheckContext) -> CheckResult:
        """Evaluate the check against the context."""

    def passed(self) -> CheckResult:
        return CheckResult(check_name=self.name, passed=True)


def format_count(value: int) -> str:
    """Format large counts for summaries: 1234 -> '1.2K', 5_600_000 -> '5.6M'."""
    if value >= 1_000_000_000:
        return f"{value / 1_000_000_000:.1f}B"
    if value >= 1_000_000:
        return f"{value / 1_000_000:.1f}M"
    if value >= 1_000:
        return f"{value / 1_000:.1f}K"
    return str(value)
