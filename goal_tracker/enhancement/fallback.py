"""Rule-based fallbacks used when the LLM is unavailable or replies badly.

Everything here is deterministic: the same input (and the same ``today``)
always yields the same output. No I/O, no randomness, no clock reads.

Goal enhancement picks from a small per-category catalog. Unknown
categories use the personal catalog. A milestone suggestion is kept only
if its week offset fits in the whole weeks left before the deadline.
"""

from __future__ import annotations

import datetime as dt
from typing import NamedTuple

from goal_tracker.enhancement.schemas import (
    ActionBreakdown,
    Collaboration,
    Complexity,
    DopamineBoost,
    FocusSession,
    GoalEnhancement,
    GoalEnhancementRequest,
    Habit,
    Inspiration,
    Resource,
    ResourceHints,
    SimilarTopics,
    Strategy,
    SubAction,
    SuggestedAction,
    SuggestedMilestone,
    TaskAnalysis,
    ToolBundle,
)
from goal_tracker.models.goal import GoalCategory

FALLBACK_ACTION_COUNT = 3
BREAKDOWN_FALLBACK_REASONING = "Generated fallback breakdown due to API unavailability"


class _CatalogAction(NamedTuple):
    title: str
    impact: int


class _CatalogMilestone(NamedTuple):
    title: str
    weeks: int


ACTION_CATALOG: dict[GoalCategory, tuple[_CatalogAction, ...]] = {
    GoalCategory.BUSINESS: (
        _CatalogAction("Conduct market research", 20),
        _CatalogAction("Create detailed project plan", 25),
        _CatalogAction("Set up tracking metrics", 15),
        _CatalogAction("Identify key stakeholders", 20),
        _CatalogAction("Develop MVP or prototype", 30),
    ),
    GoalCategory.LEARNING: (
        _CatalogAction("Set daily study schedule", 25),
        _CatalogAction("Find online courses or resources", 20),
        _CatalogAction("Join relevant communities", 15),
        _CatalogAction("Practice with hands-on projects", 30),
        _CatalogAction("Take progress assessments", 15),
    ),
    GoalCategory.HEALTH: (
        _CatalogAction("Consult with healthcare professional", 25),
        _CatalogAction("Create workout routine", 30),
        _CatalogAction("Plan nutrition strategy", 25),
        _CatalogAction("Set up progress tracking", 15),
        _CatalogAction("Find accountability partner", 20),
    ),
    GoalCategory.PERSONAL: (
        _CatalogAction("Define specific outcomes", 20),
        _CatalogAction("Break down into weekly goals", 25),
        _CatalogAction("Identify potential obstacles", 15),
        _CatalogAction("Create reward system", 10),
        _CatalogAction("Schedule regular check-ins", 20),
    ),
}

MILESTONE_CATALOG: dict[GoalCategory, tuple[_CatalogMilestone, ...]] = {
    GoalCategory.BUSINESS: (
        _CatalogMilestone("Complete initial planning phase", 2),
        _CatalogMilestone("Achieve first major deliverable", 6),
        _CatalogMilestone("Reach 50% completion", 12),
        _CatalogMilestone("Final review and optimization", 20),
    ),
    GoalCategory.LEARNING: (
        _CatalogMilestone("Complete foundational materials", 4),
        _CatalogMilestone("Finish first practical project", 8),
        _CatalogMilestone("Pass intermediate assessment", 12),
        _CatalogMilestone("Demonstrate mastery", 16),
    ),
    GoalCategory.HEALTH: (
        _CatalogMilestone("Establish baseline measurements", 1),
        _CatalogMilestone("See initial improvements", 4),
        _CatalogMilestone("Reach halfway point", 12),
        _CatalogMilestone("Achieve target goal", 24),
    ),
    GoalCategory.PERSONAL: (
        _CatalogMilestone("Set up systems and habits", 2),
        _CatalogMilestone("Show consistent progress", 6),
        _CatalogMilestone("Overcome major challenges", 12),
        _CatalogMilestone("Achieve desired outcome", 20),
    ),
}


def weeks_until(deadline: dt.date, today: dt.date) -> int:
    """Whole weeks between today and the deadline (floor; negative if past)."""
    return (deadline - today).days // 7


def _catalog_category(category: str) -> GoalCategory:
    try:
        return GoalCategory(category)
    except ValueError:
        return GoalCategory.PERSONAL


def goal_enhancement_fallback(request: GoalEnhancementRequest, *, today: dt.date) -> GoalEnhancement:
    category = _catalog_category(request.category)
    actions = [
        SuggestedAction(title=item.title, impact=item.impact)
        for item in ACTION_CATALOG[category][:FALLBACK_ACTION_COUNT]
    ]
    remaining = weeks_until(request.deadline, today)
    milestones = [
        SuggestedMilestone(
            title=item.title,
            target_date=today + dt.timedelta(weeks=item.weeks),
        )
        for item in MILESTONE_CATALOG[category]
        if item.weeks <= remaining
    ]
    insight = (
        f'Based on your {category} goal "{request.title}", I\'ve suggested '
        f"{len(actions)} actionable steps and {len(milestones)} key milestones "
        "to help you succeed."
    )
    return GoalEnhancement(actions=actions, milestones=milestones, ai_insight=insight)


def breakdown_fallback(title: str) -> ActionBreakdown:
    """Generic research -> plan -> execute -> review breakdown."""
    steps = (
        (
            f'Research requirements for "{title}"',
            "Gather information and understand what needs to be done",
            20,
            "research",
        ),
        (
            f'Plan approach for "{title}"',
            "Create a detailed plan and gather necessary resources",
            15,
            "planning",
        ),
        (
            f'Execute the main work for "{title}"',
            "Perform the core activities required",
            45,
            "execution",
        ),
        (
            f'Review and finalize "{title}"',
            "Check quality and make any necessary adjustments",
            10,
            "review",
        ),
    )
    return ActionBreakdown(
        sub_actions=[
            SubAction(
                title=step_title,
                description=description,
                estimated_minutes=minutes,
                category=category,
            )
            for step_title, description, minutes, category in steps
        ],
        reasoning=BREAKDOWN_FALLBACK_REASONING,
    )


def task_analysis_fallback() -> TaskAnalysis:
    return TaskAnalysis(
        complexity=Complexity(
            level=6,
            reasoning="This appears to be a moderately complex task requiring research and analysis skills.",
            skills=["Research", "Analysis", "Communication"],
            challenges=["Time management", "Information overload"],
            success_factors=["Systematic approach", "Clear documentation"],
        ),
        strategy=Strategy(
            priority="Medium",
            fit_with_goals="This task supports your overall goal progression.",
            dependencies=["Gather initial requirements", "Allocate sufficient time"],
            roi="Moderate - Will provide valuable insights",
        ),
        collaboration=Collaboration(
            helpful_skills=["Domain expertise", "Research experience", "Analytical skills"],
            collaborator_types=["Industry experts", "Researchers", "Colleagues"],
            communities=["Professional networks", "Industry forums", "LinkedIn groups"],
            mentor_profile="Someone with relevant industry experience",
        ),
        resources=ResourceHints(
            tools=["Google", "LinkedIn", "Industry reports", "Research databases"],
            learning=["Online courses", "Industry blogs", "Professional articles"],
            communities=["Professional associations", "Industry forums"],
            experts=["Industry thought leaders", "Professional contacts"],
        ),
        similar_topics=SimilarTopics(
            categories=["Research", "Analysis", "Planning"],
            keywords=["research", "analysis", "strategy"],
            industries=["Technology", "Business", "Consulting"],
            project_types=["Research projects", "Analysis tasks", "Strategic planning"],
        ),
        summary=(
            "This task requires careful planning and execution. Consider breaking "
            "it down into smaller, manageable steps."
        ),
        time_estimate="4-6 hours",
        difficulty_tips=["Start with an outline", "Gather resources first", "Set realistic timelines"],
    )


def tools_fallback() -> ToolBundle:
    return ToolBundle(
        inspiration=Inspiration(
            quote="The way to get started is to quit talking and begin doing.",
            author="Walt Disney",
            context=(
                "Taking action is the first step toward achieving any goal. Your "
                "goals require consistent effort and execution."
            ),
        ),
        dopamine_boost=DopamineBoost(
            title="Victory Visualization",
            technique="Mental rehearsal",
            duration="5 minutes",
            description=(
                "Close your eyes and vividly imagine completing your goal. Feel the "
                "emotions, see the details, and experience the satisfaction."
            ),
        ),
        focus_session=FocusSession(
            title="Deep Work Block",
            method="Pomodoro + Single-tasking",
            duration=25,
            steps=[
                "Choose one specific task related to your goal",
                "Eliminate all distractions (phone, notifications, etc.)",
                "Set timer for 25 minutes and work with complete focus",
                "Take a 5-minute break to recharge",
                "Repeat for 2-4 cycles for maximum productivity",
            ],
        ),
        resources=[
            Resource(
                title="Deep Work by Cal Newport",
                type="book",
                summary=(
                    "A guide to focused success in a distracted world, showing how to "
                    "cultivate the ability to focus on cognitively demanding tasks."
                ),
                key_takeaways=[
                    "Deep work is becoming increasingly rare and valuable",
                    "Structured approaches to concentration improve output quality",
                    "Elimination of shallow work maximizes meaningful progress",
                ],
                relevance=(
                    "Essential for making consistent progress on complex goals "
                    "requiring sustained attention."
                ),
            )
        ],
        habits=[
            Habit(
                title="Morning Goal Review",
                frequency="Daily",
                description=(
                    "Spend 5 minutes each morning reviewing your goals and planning "
                    "the day's most important task."
                ),
                scientific_basis=(
                    "Research shows that implementation intentions (if-then planning) "
                    "increase goal achievement by 2-3x."
                ),
            )
        ],
    )
