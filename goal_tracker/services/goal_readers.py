"""Goal read strategies.

``GET /goals`` reads through a ``GoalReader``. Regular callers get the
stored-data reader. The configured demo account gets a fixed showcase
data set that never touches the database. The choice is made once per
request by ``select_goal_reader``; ``GoalService`` itself has no demo
branch.
"""

from __future__ import annotations

import datetime as dt
import uuid
from typing import Protocol

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from goal_tracker.config import Settings
from goal_tracker.core.action_tree import ActionNode, FlatAction, build_tree
from goal_tracker.models.goal import Goal, GoalCategory
from goal_tracker.models.milestone import Milestone
from goal_tracker.services.goal_service import GoalService, GoalView, MilestoneView

log = structlog.get_logger(__name__)

# Stable ids so demo clients can keep references across reloads
_DEMO_NAMESPACE = uuid.UUID("5b0d3c52-4a8e-4a59-9a53-7f0f6c1e2d11")


def _demo_id(name: str) -> uuid.UUID:
    return uuid.uuid5(_DEMO_NAMESPACE, name)


class GoalReader(Protocol):
    async def list_goals(self, user_id: uuid.UUID) -> list[GoalView]: ...


class StoredGoalReader:
    """Reads the caller's goals from the database."""

    def __init__(self, service: GoalService) -> None:
        self._service = service

    async def list_goals(self, user_id: uuid.UUID) -> list[GoalView]:
        return await self._service.list_goals(user_id)


class DemoGoalReader:
    """Returns the built-in showcase goals for the demo account."""

    async def list_goals(self, user_id: uuid.UUID) -> list[GoalView]:
        log.debug("goal_readers.demo_goals_served", user_id=str(user_id))
        return [_startup_goal(user_id), _ml_goal(user_id)]


def _demo_actions(
    goal_key: str, items: list[tuple[str, str, bool, dt.date, int]]
) -> list[ActionNode]:
    records = [
        FlatAction(
            key=str(_demo_id(key)),
            id=str(_demo_id(key)),
            title=title,
            completed=completed,
            date=date,
            impact=impact,
            level=0,
            is_expanded=False,
        )
        for key, title, completed, date, impact in items
    ]
    return build_tree(records, scope=f"demo:{goal_key}").roots


def _demo_milestone(
    goal_id: uuid.UUID,
    key: str,
    title: str,
    completed: bool,
    date: dt.date,
    position: int,
) -> MilestoneView:
    return MilestoneView(
        milestone=Milestone(
            id=_demo_id(key),
            goal_id=goal_id,
            title=title,
            completed=completed,
            date=date,
            is_expanded=False,
            position=position,
        )
    )


def _startup_goal(user_id: uuid.UUID) -> GoalView:
    goal_id = _demo_id("test-1")
    goal = Goal(
        id=goal_id,
        user_id=user_id,
        title="Launch EdTech Startup",
        description=(
            "Create an innovative educational technology platform that "
            "revolutionizes online learning"
        ),
        category=str(GoalCategory.BUSINESS),
        progress=35,
        target=100,
        deadline=dt.date(2024, 12, 31),
    )
    return GoalView(
        goal=goal,
        actions=_demo_actions(
            "test-1",
            [
                ("action-1", "Conduct market research on existing EdTech solutions", True, dt.date(2024, 1, 15), 25),
                ("action-2", "Develop MVP prototype", False, dt.date(2024, 2, 28), 40),
                ("action-3", "Secure initial funding round", False, dt.date(2024, 4, 30), 35),
            ],
        ),
        milestones=[
            _demo_milestone(goal_id, "milestone-1", "Complete Product Design", True, dt.date(2024, 1, 31), 0),
            _demo_milestone(goal_id, "milestone-2", "Beta Launch", False, dt.date(2024, 6, 15), 1),
        ],
    )


def _ml_goal(user_id: uuid.UUID) -> GoalView:
    goal = Goal(
        id=_demo_id("test-2"),
        user_id=user_id,
        title="Master Machine Learning",
        description="Become proficient in ML algorithms and deep learning frameworks",
        category=str(GoalCategory.LEARNING),
        progress=60,
        target=100,
        deadline=dt.date(2024, 8, 15),
    )
    return GoalView(
        goal=goal,
        actions=_demo_actions(
            "test-2",
            [
                ("action-4", "Complete Andrew Ng's ML Course", True, dt.date(2024, 1, 20), 30),
                ("action-5", "Build 3 ML projects", False, dt.date(2024, 3, 15), 40),
            ],
        ),
    )


def is_demo_user(email: str | None, settings: Settings) -> bool:
    if not email or not settings.demo_user_email:
        return False
    return email.strip().lower() == settings.demo_user_email.strip().lower()


def select_goal_reader(email: str | None, db: AsyncSession, settings: Settings) -> GoalReader:
    """Pick the read strategy for the caller."""
    if is_demo_user(email, settings):
        return DemoGoalReader()
    return StoredGoalReader(GoalService(db, orphan_policy=settings.orphan_policy))
