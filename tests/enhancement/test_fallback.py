"""Tests for the deterministic rule-based fallbacks."""

from __future__ import annotations

import datetime as dt

import pytest

from goal_tracker.enhancement.fallback import (
    BREAKDOWN_FALLBACK_REASONING,
    breakdown_fallback,
    goal_enhancement_fallback,
    task_analysis_fallback,
    tools_fallback,
    weeks_until,
)
from goal_tracker.enhancement.schemas import GoalEnhancementRequest
from goal_tracker.models.goal import GoalCategory

TODAY = dt.date(2025, 1, 1)


def _request(category: GoalCategory, deadline: dt.date) -> GoalEnhancementRequest:
    return GoalEnhancementRequest(
        title="Learn X", description="", category=category, deadline=deadline
    )


class TestGoalEnhancementFallback:
    def test_same_input_same_output(self):
        req = _request(GoalCategory.LEARNING, dt.date(2025, 6, 1))
        first = goal_enhancement_fallback(req, today=TODAY)
        second = goal_enhancement_fallback(req, today=TODAY)
        assert first == second

    def test_three_actions_with_positive_impact(self):
        result = goal_enhancement_fallback(
            _request(GoalCategory.HEALTH, dt.date(2025, 6, 1)), today=TODAY
        )
        assert len(result.actions) == 3
        assert all(a.impact > 0 for a in result.actions)
        assert result.actions[0].title == "Consult with healthcare professional"

    def test_milestones_filtered_by_weeks_remaining(self):
        # 2025-01-01 -> 2025-03-01 is 59 days, 8 whole weeks
        result = goal_enhancement_fallback(
            _request(GoalCategory.LEARNING, dt.date(2025, 3, 1)), today=TODAY
        )
        assert [m.title for m in result.milestones] == [
            "Complete foundational materials",
            "Finish first practical project",
        ]

    def test_all_milestones_fit_long_deadline(self):
        deadline = dt.date(2025, 6, 1)
        result = goal_enhancement_fallback(_request(GoalCategory.LEARNING, deadline), today=TODAY)
        assert len(result.milestones) == 4
        assert all(m.target_date <= deadline for m in result.milestones)

    def test_past_deadline_yields_no_milestones(self):
        result = goal_enhancement_fallback(
            _request(GoalCategory.BUSINESS, dt.date(2024, 12, 1)), today=TODAY
        )
        assert result.milestones == []
        assert len(result.actions) == 3

    def test_insight_mentions_counts(self):
        result = goal_enhancement_fallback(
            _request(GoalCategory.PERSONAL, dt.date(2025, 2, 1)), today=TODAY
        )
        assert "3 actionable steps" in result.ai_insight
        assert f"{len(result.milestones)} key milestones" in result.ai_insight


@pytest.mark.parametrize(
    ("deadline", "weeks"),
    [(dt.date(2025, 1, 8), 1), (dt.date(2025, 1, 7), 0), (dt.date(2024, 12, 31), -1)],
)
def test_weeks_until_floors(deadline, weeks):
    assert weeks_until(deadline, TODAY) == weeks


class TestBreakdownFallback:
    def test_four_generic_steps(self):
        result = breakdown_fallback("Write report")
        assert [s.category for s in result.sub_actions] == [
            "research",
            "planning",
            "execution",
            "review",
        ]
        assert [s.estimated_minutes for s in result.sub_actions] == [20, 15, 45, 10]
        assert all('"Write report"' in s.title for s in result.sub_actions)
        assert result.reasoning == BREAKDOWN_FALLBACK_REASONING


def test_task_analysis_fallback_is_fixed():
    assert task_analysis_fallback() == task_analysis_fallback()
    assert task_analysis_fallback().complexity.level == 6


def test_tools_fallback_bundle():
    bundle = tools_fallback()
    assert bundle.inspiration.author == "Walt Disney"
    assert bundle.focus_session.duration == 25
    assert len(bundle.habits) == 1
