# src/checks/runner.py — v1
"""Pre-analysis checks chain.

Runs registered checks in ascending priority order against a
CheckContext. Fail-fast by default: the first failing check ends the
chain. With continue_on_failure every check runs and the first failure
is still reported as failed_check.

A check that raises is treated as passed (fail-open) and the error is
recorded as its reason; a broken check never blocks an analysis.
"""

from __future__ import annotations

import logging
import time
from typing import Any

from fitscore.checks.base_check import BaseCheck
from fitscore.checks.models import CheckContext, CheckResult, ChecksSummary

logger = logging.getLogger(__name__)


class PreAnalysisChecks:
    """Priority-ordered registry and runner of pre-analysis checks.

    Args:
        checks: Initial checks to register.
        continue_on_failure: Run every check even after one fails.
    """

    def __init__(
        self,
        checks: list[BaseCheck] | None = None,
        continue_on_failure: bool = False,
    ) -> None:
        self._checks: list[BaseCheck] = []
        self.continue_on_failure = continue_on_failure
        for check in checks or []:
            self.register(check)

    def register(self, check: BaseCheck) -> None:
        """Add a check; a name already registered is ignored."""
        if any(c.name == check.name for c in self._checks):
            logger.warning("Check '%s' already registered, ignoring", check.name)
            return
        self._checks.append(check)
        self._checks.sort(key=lambda c: c.priority)
        logger.debug("Registered check '%s' (priority %d)", check.name, check.priority)

    def registered_checks(self) -> list[dict[str, Any]]:
        return [
            {"name": c.name, "priority": c.priority, "description": c.description}
            for c in self._checks
        ]

    def clear(self) -> None:
        self._checks.clear()

    async def run_checks(self, context: CheckContext) -> ChecksSummary:
        """Run checks in priority order.

        Returns:
            ChecksSummary with every result produced and the first failure.
        """
        start_ns = time.monotonic_ns()
        results: list[CheckResult] = []
        failed_check: CheckResult | None = None

        for check in self._checks:
            result = await self._run_one(check, context)
            results.append(result)

            if result.passed:
                continue

            if failed_check is None:
                failed_check = result
            logger.info(
                "Check '%s' failed for @%s: %s",
                check.name, context.subject_identifier, result.reason,
                extra={"data": {"check": check.name, "result_type": result.result_type}},
            )
            if not self.continue_on_failure:
                break

        duration_ms = (time.monotonic_ns() - start_ns) // 1_000_000
        return ChecksSummary(
            all_passed=failed_check is None,
            failed_check=failed_check,
            results=results,
            checks_run=len(results),
            duration_ms=duration_ms,
        )

    async def _run_one(self, check: BaseCheck, context: CheckContext) -> CheckResult:
        try:
            return await check.run(context)
        except Exception as exc:
            logger.warning(
                "Check '%s' raised, treating as passed: %s", check.name, exc,
                extra={"data": {"check": check.name, "error": str(exc)}},
            )
            return CheckResult(
                check_name=check.name,
                passed=True,
                reason=f"Check error: {exc}",
                should_refund=False,
            )
