# src/adapters/memory.py — v1
"""In-process implementations of every collaborator port.

Used by the CLI for local runs and throughout the test suite.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

from fitscore.adapters.ports import (
    BusinessContextLookup,
    CreditsLedger,
    LeadRepository,
    RunRepository,
    ScoringAdapter,
    SubjectFetcher,
)
from fitscore.core.errors import InsufficientCreditsError
from fitscore.core.models import (
    TERMINAL_STATUSES,
    BusinessContext,
    Run,
    ScoreResult,
    SubjectSnapshot,
)

logger = logging.getLogger(__name__)


@dataclass
class LedgerEntry:
    account_id: str
    amount: int
    operation: str
    reference: str
    description: str = ""


class InMemoryCreditsLedger(CreditsLedger):
    """Balances in a dict; each (reference, operation) is applied once."""

    def __init__(self, balances: dict[str, int] | None = None) -> None:
        self.balances: dict[str, int] = dict(balances or {})
        self.entries: list[LedgerEntry] = []

    async def has_sufficient(self, account_id: str, amount: int) -> bool:
        return self.balances.get(account_id, 0) >= amount

    async def deduct(
        self, account_id: str, amount: int, reference: str, description: str = ""
    ) -> None:
        if self._seen(reference, "deduct"):
            logger.debug("Deduction %s already applied", reference)
            return
        if self.balances.get(account_id, 0) < amount:
            raise InsufficientCreditsError(account_id, amount)
        self.balances[account_id] = self.balances.get(account_id, 0) - amount
        self.entries.append(LedgerEntry(account_id, -amount, "deduct", reference, description))

    async def add(
        self, account_id: str, amount: int, reference: str, description: str = ""
    ) -> None:
        if self._seen(reference, "add"):
            logger.debug("Credit %s already applied", reference)
            return
        self.balances[account_id] = self.balances.get(account_id, 0) + amount
        self.entries.append(LedgerEntry(account_id, amount, "add", reference, description))

    def total(self, reference: str, operation: str) -> int:
        return sum(
            abs(e.amount) for e in self.entries
            if e.reference == reference and e.operation == operation
        )

    def _seen(self, reference: str, operation: str) -> bool:
        return any(e.reference == reference and e.operation == operation for e in self.entries)


class InMemoryBusinessContextLookup(BusinessContextLookup):
    def __init__(self, contexts: list[BusinessContext] | None = None) -> None:
        self._contexts = {c.id: c for c in contexts or []}

    def add(self, context: BusinessContext) -> None:
        self._contexts[context.id] = context

    async def find_by_id(
        self, business_context_id: str, account_id: str
    ) -> BusinessContext | None:
        context = self._contexts.get(business_context_id)
        if context is None or context.account_id != account_id:
            return None
        return context


class InMemoryLeadRepository(LeadRepository):
    def __init__(self) -> None:
        self.leads: dict[tuple[str, str, str], dict[str, Any]] = {}

    async def upsert(
        self,
        account_id: str,
        business_context_id: str,
        subject_identifier: str,
        snapshot: SubjectSnapshot | None,
    ) -> str:
        key = (account_id, business_context_id, subject_identifier.lower())
        existing = self.leads.get(key)
        lead_id = existing["lead_id"] if existing else uuid.uuid4().hex
        self.leads[key] = {"lead_id": lead_id, "snapshot": snapshot}
        return lead_id


class InMemoryRunRepository(RunRepository):
    def __init__(self) -> None:
        self.runs: dict[str, Run] = {}

    async def create(self, run: Run) -> Run:
        existing = self.runs.get(run.run_id)
        if existing is not None:
            return existing.model_copy()
        self.runs[run.run_id] = run.model_copy()
        return run.model_copy()

    async def get(self, run_id: str) -> Run | None:
        run = self.runs.get(run_id)
        return run.model_copy() if run is not None else None

    async def update(self, run_id: str, **fields: Any) -> Run:
        run = self.runs.get(run_id)
        if run is None:
            raise KeyError(run_id)
        updated = run.model_copy(update=fields)
        self.runs[run_id] = updated
        return updated.model_copy()

    async def find_active(
        self, account_id: str, business_context_id: str, subject_identifier: str
    ) -> list[Run]:
        subject = subject_identifier.lower()
        return [
            r.model_copy() for r in self.runs.values()
            if r.account_id == account_id
            and r.business_context_id == business_context_id
            and r.subject_identifier.lower() == subject
            and r.status not in TERMINAL_STATUSES
        ]


@dataclass
class StaticSubjectFetcher(SubjectFetcher):
    """Serves preset snapshots; identifiers mapped to an exception raise it."""

    snapshots: dict[str, SubjectSnapshot] = field(default_factory=dict)
    errors: dict[str, Exception] = field(default_factory=dict)
    calls: list[str] = field(default_factory=list)

    async def fetch(self, identifier: str, depth: str) -> SubjectSnapshot | None:
        key = identifier.strip().lstrip("@").lower()
        self.calls.append(key)
        if key in self.errors:
            raise self.errors[key]
        return self.snapshots.get(key)


@dataclass
class StaticScoringAdapter(ScoringAdapter):
    """Returns a fixed score; useful where model output is irrelevant."""

    score_value: int = 75
    summary: str = "Strong fit for the target audience."
    calls: int = 0

    async def score(
        self,
        business_context: BusinessContext,
        snapshot: SubjectSnapshot,
        depth: str,
    ) -> ScoreResult:
        self.calls += 1
        return ScoreResult(score=self.score_value, summary=self.summary, model="static")
