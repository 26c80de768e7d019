# src/checks/builtin/subject_restricted.py — v1
"""Reject private subjects whose content cannot be analyzed."""

from __future__ import annotations

import logging

from fitscore.checks.base_check import BaseCheck
from fitscore.checks.models import CheckContext, CheckResult

logger = logging.getLogger(__name__)


class SubjectRestrictedCheck(BaseCheck):
    name = "subject_restricted"
    priority = 10
    description = "Checks whether the subject's content is private"

    async def run(self, context: CheckContext) -> CheckResult:
        restricted = (
            context.snapshot.is_private
            if context.snapshot is not None
            else context.upstream is not None and context.upstream.kind == "restricted"
        )
        if not restricted:
            return self.passed()

        subject = context.subject_identifier
        logger.info("Subject @%s is private", subject)
        return CheckResult(
            check_name=self.name,
            passed=False,
            reason="Profile is set to private",
            result_type="private",
            summary=(
                f"This account (@{subject}) is private. Posts and detailed "
                "profile information are not publicly accessible, so the "
                "content cannot be analyzed."
            ),
            score_override=0,
            should_refund=True,
        )
