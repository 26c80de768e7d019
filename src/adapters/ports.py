# src/adapters/ports.py — v1
"""Interfaces of the collaborators the workflow talks to.

Concrete implementations (database, ledger service, scraper, model
provider) live outside this package; adapters.memory provides
in-process versions for local runs and tests.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from fitscore.core.models import (
    BusinessContext,
    Run,
    ScoreResult,
    SubjectSnapshot,
)


class CreditsLedger(ABC):
    """Account credit balance.

    deduct() and add() carry a reference (the run_id); implementations
    must apply a given (reference, operation) pair at most once.
    """

    @abstractmethod
    async def has_sufficient(self, account_id: str, amount: int) -> bool:
        """Whether the balance covers amount."""

    @abstractmethod
    async def deduct(
        self, account_id: str, amount: int, reference: str, description: str = ""
    ) -> None:
        """Charge credits. Raises InsufficientCreditsError if the balance is too low."""

    @abstractmethod
    async def add(
        self, account_id: str, amount: int, reference: str, description: str = ""
    ) -> None:
        """Credit the account (refunds)."""


class BusinessContextLookup(ABC):
    @abstractmethod
    async def find_by_id(
        self, business_context_id: str, account_id: str
    ) -> BusinessContext | None:
        """Return the business context owned by account_id, or None."""


class LeadRepository(ABC):
    @abstractmethod
    async def upsert(
        self,
        account_id: str,
        business_context_id: str,
        subject_identifier: str,
        snapshot: SubjectSnapshot | None,
    ) -> str:
        """Insert or update the lead for this tuple. Returns the lead_id."""


class RunRepository(ABC):
    @abstractmethod
    async def create(self, run: Run) -> Run:
        """Insert a run; an existing run_id is returned unchanged."""

    @abstractmethod
    async def get(self, run_id: str) -> Run | None:
        """Return a run or None."""

    @abstractmethod
    async def update(self, run_id: str, **fields: Any) -> Run:
        """Apply field updates. Raises KeyError for an unknown run_id."""

    @abstractmethod
    async def find_active(
        self, account_id: str, business_context_id: str, subject_identifier: str
    ) -> list[Run]:
        """Non-terminal runs for the tuple."""


class SubjectFetcher(ABC):
    @abstractmethod
    async def fetch(self, identifier: str, depth: str) -> SubjectSnapshot | None:
        """Fetch fresh subject data.

        Raises:
            SubjectNotFoundError: Upstream says the subject does not exist.
            SubjectRestrictedError: Upstream refuses access to the subject.
            RateLimitedError: Upstream throttled the request.
        """


class ScoringAdapter(ABC):
    @abstractmethod
    async def score(
        self,
        business_context: BusinessContext,
        snapshot: SubjectSnapshot,
        depth: str,
    ) -> ScoreResult:
        """Score the subject's fit for the business."""
