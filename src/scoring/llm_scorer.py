# src/scoring/llm_scorer.py — v1
"""Anthropic-backed scoring adapter.

Builds a depth-specific prompt from the business context and subject
snapshot, forces a single tool call so the model answers with JSON
matching FitAssessment, and clamps the score to [0, 100].
"""

from __future__ import annotations

import logging
import time
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from fitscore.adapters.ports import ScoringAdapter
from fitscore.config.depths import get_depth_profile
from fitscore.core.errors import InfrastructureError, RateLimitedError, StepTimeoutError
from fitscore.core.models import BusinessContext, ScoreResult, SubjectSnapshot

logger = logging.getLogger(__name__)

_TOOL_NAME = "fit_assessment"

# USD per 1M tokens (input, output)
MODEL_PRICING: dict[str, tuple[float, float]] = {
    "claude-3-5-haiku-20241022": (0.80, 4.0),
    "claude-haiku-4-5-20251001": (1.0, 5.0),
    "claude-sonnet-4-20250514": (3.0, 15.0),
}


class FitAssessment(BaseModel):
    """Structured answer requested from the model."""

    overall_score: int = Field(description="Fit score from 0 to 100")
    summary_text: str = Field(description="Assessment of the profile's fit")


def estimate_cost(model: str, input_tokens: int, output_tokens: int) -> float:
    prices = MODEL_PRICING.get(model)
    if prices is None:
        return 0.0
    return (input_tokens * prices[0] + output_tokens * prices[1]) / 1_000_000


def clamp_score(value: int | float) -> int:
    return max(0, min(100, int(round(value))))


def build_system_prompt(depth: str) -> str:
    profile = get_depth_profile(depth)
    return (
        "You assess how well a social media profile fits a business's "
        "ideal customer or partner profile. Score from 0 (no fit) to 100 "
        f"(perfect fit) and write a {profile.summary_sentences} sentence "
        "summary grounded in the profile data. Be specific and do not "
        "invent facts that are not in the data."
    )


def build_user_prompt(
    business: BusinessContext,
    snapshot: SubjectSnapshot,
    depth: str,
) -> str:
    profile = get_depth_profile(depth)
    lines = [
        "# Business",
        f"Name: {business.business_name}",
    ]
    if business.business_one_liner:
        lines.append(f"About: {business.business_one_liner}")
    if business.target_audience:
        lines.append(f"Target audience: {business.target_audience}")
    if business.value_proposition:
        lines.append(f"Value proposition: {business.value_proposition}")

    lines += [
        "",
        "# Profile",
        f"Username: @{snapshot.username}",
        f"Display name: {snapshot.display_name or '-'}",
        f"Followers: {snapshot.follower_count} | Following: {snapshot.following_count}"
        f" | Posts: {snapshot.post_count}",
        f"Verified: {'yes' if snapshot.is_verified else 'no'}"
        f" | Business account: {'yes' if snapshot.is_business_account else 'no'}",
        f"Bio: {snapshot.bio or '-'}",
    ]
    if snapshot.external_url:
        lines.append(f"Link: {snapshot.external_url}")

    posts = snapshot.latest_posts[: profile.posts_limit]
    if posts:
        lines += ["", f"# Recent posts ({len(posts)})"]
        for post in posts:
            caption = post.caption[: profile.caption_truncate_length].replace("\n", " ")
            lines.append(
                f"- {caption or '(no caption)'} [likes {post.like_count}, comments {post.comment_count}]"
            )

    return "\n".join(lines)


class LLMScoringAdapter(ScoringAdapter):
    """ScoringAdapter using the Anthropic Messages API.

    Args:
        api_key: Anthropic API key.
        models: Model name per depth.
        max_tokens: Completion budget.
        temperature: Sampling temperature.
        client: Pre-built AsyncAnthropic-compatible client.
    """

    def __init__(
        self,
        api_key: str = "",
        models: dict[str, str] | None = None,
        max_tokens: int = 1200,
        temperature: float = 0.2,
        client: Any = None,
    ) -> None:
        self._api_key = api_key
        self._models = models or {}
        self._max_tokens = max_tokens
        self._temperature = temperature
        self.__client = client

    @property
    def _client(self):
        """Lazy-init Anthropic client (only on first API call)."""
        if self.__client is None:
            try:
                import anthropic
            except ImportError as e:
                raise ImportError(
                    "anthropic package required: pip install anthropic"
                ) from e
            self.__client = anthropic.AsyncAnthropic(api_key=self._api_key or None)
        return self.__client

    def model_for(self, depth: str) -> str:
        return self._models.get(depth, "claude-sonnet-4-20250514")

    async def score(
        self,
        business_context: BusinessContext,
        snapshot: SubjectSnapshot,
        depth: str,
    ) -> ScoreResult:
        model = self.model_for(depth)
        kwargs: dict[str, Any] = {
            "model": model,
            "max_tokens": self._max_tokens,
            "temperature": self._temperature,
            "system": build_system_prompt(depth),
            "messages": [
                {"role": "user", "content": build_user_prompt(business_context, snapshot, depth)}
            ],
            "tools": [
                {
                    "name": _TOOL_NAME,
                    "description": "Return the fit assessment",
                    "input_schema": FitAssessment.model_json_schema(),
                }
            ],
            "tool_choice": {"type": "tool", "name": _TOOL_NAME},
        }

        start = time.monotonic()
        response = await self._create(kwargs)
        latency_ms = int((time.monotonic() - start) * 1000)

        assessment = self._parse(response)
        input_tokens = response.usage.input_tokens
        output_tokens = response.usage.output_tokens
        result = ScoreResult(
            score=clamp_score(assessment.overall_score),
            summary=assessment.summary_text.strip(),
            cost_usd=estimate_cost(model, input_tokens, output_tokens),
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            model=getattr(response, "model", model) or model,
        )
        logger.info(
            "Scored @%s: %d (%s, %dms)", snapshot.username, result.score, model, latency_ms,
            extra={"data": {
                "model": model,
                "input_tokens": input_tokens,
                "output_tokens": output_tokens,
                "cost_usd": result.cost_usd,
                "latency_ms": latency_ms,
            }},
        )
        return result

    async def _create(self, kwargs: dict[str, Any]) -> Any:
        """Call the API, mapping SDK errors onto the pipeline taxonomy."""
        import anthropic

        try:
            return await self._client.messages.create(**kwargs)
        except anthropic.RateLimitError as e:
            raise RateLimitedError(
                f"Scoring rate limited: {e}", retry_after_s=_retry_after(e.response)
            ) from e
        except anthropic.APITimeoutError as e:
            raise StepTimeoutError(f"Scoring timed out: {e}") from e
        except (anthropic.APIConnectionError, anthropic.InternalServerError) as e:
            raise InfrastructureError(f"Scoring provider unavailable: {e}") from e

    def _parse(self, response: Any) -> FitAssessment:
        for block in response.content:
            if getattr(block, "type", None) == "tool_use" and block.name == _TOOL_NAME:
                try:
                    return FitAssessment.model_validate(block.input)
                except ValidationError as e:
                    raise InfrastructureError(f"Invalid scoring output: {e}") from e
        raise InfrastructureError("Scoring response contained no assessment")


def _retry_after(response: Any) -> float | None:
    """Seconds from a Retry-After header, when given as a number."""
    value = response.headers.get("retry-after") if response is not None else None
    try:
        return float(value) if value else None
    except ValueError:
        return None
