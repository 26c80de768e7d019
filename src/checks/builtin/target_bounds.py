# src/checks/builtin/target_bounds.py — v1
"""Reject subjects whose follower count falls outside the business's target range.

Bounds that are absent or not positive are ignored.
"""

from __future__ import annotations

import logging

from fitscore.checks.base_check import BaseCheck, format_count
from fitscore.checks.models import CheckContext, CheckResult

logger = logging.getLogger(__name__)


class TargetBoundsCheck(BaseCheck):
    name = "target_bounds"
    priority = 15
    description = "Checks the follower count against the target min/max bounds"

    async def run(self, context: CheckContext) -> CheckResult:
        snapshot = context.snapshot
        business = context.business_context
        if snapshot is None or business is None:
            return self.passed()

        subject = context.subject_identifier
        followers = snapshot.follower_count
        max_followers = business.max_followers
        min_followers = business.min_followers

        if max_followers is not None and max_followers > 0 and followers > max_followers:
            logger.info(
                "Subject @%s above max followers: %d > %d", subject, followers, max_followers
            )
            return self._out_of_bounds(
                subject,
                reason=(
                    f"Follower count ({format_count(followers)}) exceeds target "
                    f"maximum ({format_count(max_followers)})"
                ),
                detail=f"exceeds your target maximum of {format_count(max_followers)}",
                followers=followers,
            )

        if min_followers is not None and min_followers > 0 and followers < min_followers:
            logger.info(
                "Subject @%s below min followers: %d < %d", subject, followers, min_followers
            )
            return self._out_of_bounds(
                subject,
                reason=(
                    f"Follower count ({format_count(followers)}) below target "
                    f"minimum ({format_count(min_followers)})"
                ),
                detail=f"is below your target minimum of {format_count(min_followers)}",
                followers=followers,
            )

        return self.passed()

    def _out_of_bounds(
        self, subject: str, reason: str, detail: str, followers: int
    ) -> CheckResult:
        return CheckResult(
            check_name=self.name,
            passed=False,
            reason=reason,
            result_type="out_of_bounds",
            summary=(
                f"This account (@{subject}) has {format_count(followers)} "
                f"followers, which {detail} followers. The profile is outside "
                "your target range and was skipped. Your credits have been refunded."
            ),
            score_override=0,
            should_refund=True,
        )
