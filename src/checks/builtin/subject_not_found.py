# src/checks/builtin/subject_not_found.py — v1
"""Reject subjects that do not exist upstream.

Triggered by an upstream error whose text matches a not-found pattern,
or by a fetch that returned no snapshot at all.
"""

from __future__ import annotations

import logging

from fitscore.checks.base_check import BaseCheck
from fitscore.checks.models import CheckContext, CheckResult, UpstreamSignal

logger = logging.getLogger(__name__)

NOT_FOUND_PATTERNS: tuple[str, ...] = (
    "not_found",
    "does not exist",
    "user not found",
    "page not found",
    "account deleted",
    "account suspended",
)


def is_not_found(signal: UpstreamSignal) -> bool:
    """Whether the upstream error or its description matches a not-found pattern."""
    for text in (signal.error, signal.description):
        if text and any(p in text.lower() for p in NOT_FOUND_PATTERNS):
            return True
    return False


class SubjectNotFoundCheck(BaseCheck):
    name = "subject_not_found"
    priority = 5
    description = "Checks that the subject exists upstream"

    async def run(self, context: CheckContext) -> CheckResult:
        subject = context.subject_identifier

        if context.upstream is not None and is_not_found(context.upstream):
            logger.info("Subject @%s not found upstream", subject)
            return CheckResult(
                check_name=self.name,
                passed=False,
                reason=context.upstream.description or context.upstream.error or "Subject not found",
                result_type="not_found",
                summary=(
                    f"This profile (@{subject}) does not exist or is no longer "
                    "available. The account may have been deleted, suspended, "
                    "or the username may have changed."
                ),
                score_override=0,
                should_refund=True,
            )

        if context.snapshot is None:
            logger.info("Subject @%s returned no data", subject)
            return CheckResult(
                check_name=self.name,
                passed=False,
                reason="No profile data returned",
                result_type="not_found",
                summary=(
                    f"Unable to find profile @{subject}. The account may not "
                    "exist, or there was an issue retrieving the profile data."
                ),
                score_override=0,
                should_refund=True,
            )

        return self.passed()
