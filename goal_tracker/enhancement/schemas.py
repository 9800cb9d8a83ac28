"""Versioned schemas for the enhancement service boundary.

Every payload crossing the boundary is validated against one of these
models. JSON on the wire is camelCase (``estimatedMinutes``,
``aiInsight``); Python code uses snake_case attributes.

Results are wrapped in ``Enhanced`` so a caller always knows which kind of
result it holds, which schema version produced it, and whether it came
from the LLM or from the rule-based fallback.
"""

from __future__ import annotations

import datetime as dt
from enum import StrEnum
from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from goal_tracker.models.goal import GoalCategory

SCHEMA_VERSION = 1


class EnhancementKind(StrEnum):
    GOAL_ENHANCEMENT = "goal_enhancement"
    ACTION_BREAKDOWN = "action_breakdown"
    TASK_ANALYSIS = "task_analysis"
    TIME_ESTIMATE = "time_estimate"
    TOOL_BUNDLE = "tool_bundle"


class EnhancementSource(StrEnum):
    AI = "ai"
    FALLBACK = "fallback"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --------------------------------------------------------------------------- #
# Requests
# --------------------------------------------------------------------------- #


class GoalContext(CamelModel):
    """Ambient goal information passed along with action-level requests."""

    goal_title: str
    goal_category: GoalCategory | None = None


class GoalEnhancementRequest(CamelModel):
    title: str
    description: str = ""
    category: GoalCategory
    deadline: dt.date


class BreakdownRequest(CamelModel):
    title: str
    depth_level: int = Field(ge=0)
    notes: str | None = None
    goal_context: GoalContext | None = None


class TimeEstimateRequest(CamelModel):
    title: str
    impact: int
    depth_level: int = Field(default=0, ge=0)
    notes: str | None = None
    goal_context: GoalContext | None = None


class TaskInput(CamelModel):
    title: str = Field(min_length=1, max_length=500)
    type: str = "action"
    impact: int | None = None
    date: dt.date | None = None


class GoalSummary(CamelModel):
    title: str
    description: str = ""
    category: GoalCategory | str = GoalCategory.PERSONAL
    progress: int = 0


class TaskAnalysisRequest(CamelModel):
    task: TaskInput
    context: GoalContext | None = None
    prior_goals: list[GoalSummary] = Field(default_factory=list)


class ToolsRequest(CamelModel):
    goals: list[GoalSummary] = Field(min_length=1)


# --------------------------------------------------------------------------- #
# Responses
# --------------------------------------------------------------------------- #


class SuggestedAction(CamelModel):
    title: str = Field(min_length=1, max_length=500)
    impact: int = Field(ge=1, le=100)
    category: str | None = None


class SuggestedMilestone(CamelModel):
    title: str = Field(min_length=1, max_length=500)
    description: str = ""
    target_date: dt.date | None = None


class GoalEnhancement(CamelModel):
    actions: list[SuggestedAction] = Field(min_length=3, max_length=5)
    milestones: list[SuggestedMilestone] = Field(default_factory=list, max_length=4)
    ai_insight: str = ""


class SubAction(CamelModel):
    title: str = Field(min_length=1, max_length=500)
    description: str = ""
    estimated_minutes: int = Field(ge=1, le=24 * 60)
    category: str = "execution"
    tools: list[str] = Field(default_factory=list)
    deliverable: str = ""


class ActionBreakdown(CamelModel):
    sub_actions: list[SubAction] = Field(min_length=3, max_length=5)
    reasoning: str = ""


class TimeEstimate(CamelModel):
    estimated_minutes: int = Field(ge=1, le=100_000)


class Complexity(CamelModel):
    level: int = Field(ge=1, le=10)
    reasoning: str = ""
    skills: list[str] = Field(default_factory=list)
    challenges: list[str] = Field(default_factory=list)
    success_factors: list[str] = Field(default_factory=list)


class Strategy(CamelModel):
    priority: str = "Medium"
    fit_with_goals: str = ""
    dependencies: list[str] = Field(default_factory=list)
    roi: str = ""


class Collaboration(CamelModel):
    helpful_skills: list[str] = Field(default_factory=list)
    collaborator_types: list[str] = Field(default_factory=list)
    communities: list[str] = Field(default_factory=list)
    mentor_profile: str = ""


class ResourceHints(CamelModel):
    tools: list[str] = Field(default_factory=list)
    learning: list[str] = Field(default_factory=list)
    communities: list[str] = Field(default_factory=list)
    experts: list[str] = Field(default_factory=list)


class SimilarTopics(CamelModel):
    categories: list[str] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)
    industries: list[str] = Field(default_factory=list)
    project_types: list[str] = Field(default_factory=list)


class TaskAnalysis(CamelModel):
    complexity: Complexity
    strategy: Strategy
    collaboration: Collaboration
    resources: ResourceHints
    similar_topics: SimilarTopics
    summary: str = ""
    time_estimate: str = ""
    difficulty_tips: list[str] = Field(default_factory=list)


class Inspiration(CamelModel):
    quote: str
    author: str
    context: str = ""


class DopamineBoost(CamelModel):
    title: str
    technique: str
    duration: str
    description: str = ""


class FocusSession(CamelModel):
    title: str
    method: str
    duration: int = Field(ge=1, description="Minutes")
    steps: list[str] = Field(default_factory=list)


class Resource(CamelModel):
    title: str
    type: str = "book"
    summary: str = ""
    key_takeaways: list[str] = Field(default_factory=list)
    relevance: str = ""


class Habit(CamelModel):
    title: str
    frequency: str
    description: str = ""
    scientific_basis: str = ""


class ToolBundle(CamelModel):
    inspiration: Inspiration
    dopamine_boost: DopamineBoost
    focus_session: FocusSession
    resources: list[Resource] = Field(default_factory=list)
    habits: list[Habit] = Field(default_factory=list)


PayloadT = TypeVar("PayloadT", bound=BaseModel)


class Enhanced(CamelModel, Generic[PayloadT]):
    """Tagged envelope around an enhancement payload."""

    version: int = SCHEMA_VERSION
    kind: EnhancementKind
    source: EnhancementSource
    payload: PayloadT

    @property
    def is_fallback(self) -> bool:
        return self.source == EnhancementSource.FALLBACK
