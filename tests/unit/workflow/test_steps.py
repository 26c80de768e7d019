# tests/unit/workflow/test_steps.py — v1
"""Tests for workflow/steps.py — time-weighted progress schedules."""

from __future__ import annotations

import pytest

from fitscore.config.depths import DEPTH_PROFILES, TimingProfile
from fitscore.config.settings import ConfigurationError
from fitscore.workflow.steps import (
    FETCH_SUBJECT,
    FINALIZE_PROGRESS,
    INIT_PROGRESS,
    SCORE,
    STEP_DESCRIPTIONS,
    STEP_ORDER,
    compute_schedule,
    progress_schedule,
)


class TestStepOrder:
    def test_eleven_steps(self):
        assert len(STEP_ORDER) == 11
        assert STEP_ORDER[0] == INIT_PROGRESS
        assert STEP_ORDER[-1] == FINALIZE_PROGRESS

    def test_every_step_described(self):
        assert set(STEP_DESCRIPTIONS) == set(STEP_ORDER)


class TestSchedule:
    @pytest.mark.parametrize("depth", sorted(DEPTH_PROFILES))
    @pytest.mark.parametrize("cache_hit", [False, True])
    def test_monotonic_from_0_to_100(self, depth, cache_hit):
        schedule = progress_schedule(depth, cache_hit=cache_hit)
        percentages = [schedule[step].percentage for step in STEP_ORDER]
        assert percentages[0] == 0
        assert percentages[-1] == 100
        assert percentages == sorted(percentages)
        assert max(percentages[:-1]) < 100

    def test_light_values(self):
        schedule = progress_schedule("light")
        # setup 1, fetch 8.5, score 15, teardown 1
        assert schedule[FETCH_SUBJECT].percentage == 37
        assert schedule[SCORE].percentage == 96

    def test_cache_hit_shifts_weight_to_scoring(self):
        miss = progress_schedule("light")
        hit = progress_schedule("light", cache_hit=True)
        assert hit[FETCH_SUBJECT].percentage < miss[FETCH_SUBJECT].percentage
        miss_score_slice = miss[SCORE].percentage - miss[FETCH_SUBJECT].percentage
        hit_score_slice = hit[SCORE].percentage - hit[FETCH_SUBJECT].percentage
        assert hit_score_slice > miss_score_slice

    def test_descriptions_attached(self):
        schedule = compute_schedule(TimingProfile(setup=1, fetch=1, score=1, teardown=1))
        assert schedule[SCORE].description == "Running AI analysis"
        assert schedule[SCORE].step == SCORE

    def test_unknown_depth(self):
        with pytest.raises(ConfigurationError):
            progress_schedule("ultra")
