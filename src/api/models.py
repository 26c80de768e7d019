# src/api/models.py — v1
"""API-level models: AnalysisRequest (caller input) and its identifier parsing."""

from __future__ import annotations

import re
from urllib.parse import urlparse

from pydantic import BaseModel, field_validator

from fitscore.config.depths import DEPTH_PROFILES

_INVALID_CHARS = re.compile(r"[^a-z0-9._]")


def extract_username(value: str) -> str:
    """Normalize '@Name', 'name' or a profile URL into a bare lowercase username."""
    cleaned = value.strip().lstrip("@").lower()
    if "instagram.com" in cleaned:
        if "://" not in cleaned:
            cleaned = f"https://{cleaned}"
        segments = [s for s in urlparse(cleaned).path.split("/") if s]
        return segments[0] if segments else ""
    return _INVALID_CHARS.sub("", cleaned)


class AnalysisRequest(BaseModel):
    """Request to score a subject for a business."""

    account_id: str
    business_context_id: str
    subject_identifier: str
    analysis_depth: str = "light"

    @field_validator("subject_identifier")
    @classmethod
    def normalize_subject(cls, v: str) -> str:
        username = extract_username(v)
        if not username:
            raise ValueError(f"Cannot extract a username from {v!r}")
        return username

    @field_validator("analysis_depth")
    @classmethod
    def validate_depth(cls, v: str) -> str:
        if v not in DEPTH_PROFILES:
            raise ValueError(
                f"Unknown analysis depth {v!r}; expected one of {sorted(DEPTH_PROFILES)}"
            )
        return v
