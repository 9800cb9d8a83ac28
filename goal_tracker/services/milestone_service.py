"""Milestone service: dated checkpoints inside a goal.

Milestones are always reached through the goal that owns them, so every
query joins to ``goals`` and filters on the caller's user id.
"""

from __future__ import annotations

import datetime as dt
import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from goal_tracker.config import OrphanPolicy
from goal_tracker.models.action import MilestoneAction
from goal_tracker.models.goal import Goal
from goal_tracker.models.milestone import Milestone
from goal_tracker.services.action_service import ActionScope, NewAction, load_forests
from goal_tracker.services.goal_service import GoalNotFoundError, MilestoneView

log = structlog.get_logger(__name__)

# API field name -> column name
PATCHABLE_MILESTONE_FIELDS: dict[str, str] = {
    "title": "title",
    "description": "description",
    "completed": "completed",
    "date": "date",
    "expanded": "is_expanded",
}


class MilestoneNotFoundError(Exception):
    """Raised when a milestone does not exist or is not accessible."""


@dataclass
class NewMilestone:
    title: str
    date: dt.date
    description: str | None = None
    completed: bool = False
    expanded: bool | None = None
    actions: list[NewAction] = field(default_factory=list)


class MilestoneService:
    """Service for the milestones of a goal."""

    def __init__(
        self,
        db: AsyncSession,
        *,
        orphan_policy: OrphanPolicy = OrphanPolicy.PROMOTE,
    ) -> None:
        self._db = db
        self._orphan_policy = orphan_policy

    async def _owned_goal(self, goal_id: uuid.UUID, user_id: uuid.UUID) -> Goal:
        result = await self._db.execute(
            select(Goal).where(Goal.id == goal_id, Goal.user_id == user_id)
        )
        goal = result.scalar_one_or_none()
        if goal is None:
            raise GoalNotFoundError(f"Goal {goal_id} not found")
        return goal

    async def _owned_milestone(self, milestone_id: uuid.UUID, user_id: uuid.UUID) -> Milestone:
        result = await self._db.execute(
            select(Milestone)
            .join(Goal, Milestone.goal_id == Goal.id)
            .where(Milestone.id == milestone_id, Goal.user_id == user_id)
        )
        milestone = result.scalar_one_or_none()
        if milestone is None:
            raise MilestoneNotFoundError(f"Milestone {milestone_id} not found")
        return milestone

    async def _views(self, milestones: Sequence[Milestone]) -> list[MilestoneView]:
        forests = await load_forests(
            self._db,
            ActionScope.MILESTONE,
            [m.id for m in milestones],
            orphan_policy=self._orphan_policy,
        )
        return [
            MilestoneView(
                milestone=m,
                actions=forests[m.id].roots,
                orphans=forests[m.id].orphans,
            )
            for m in milestones
        ]

    async def list_milestones(self, goal_id: uuid.UUID, user_id: uuid.UUID) -> list[MilestoneView]:
        """Return a goal's milestones in creation order, with their action trees.

        Raises:
            GoalNotFoundError: If the goal does not exist or belongs to a different user
        """
        await self._owned_goal(goal_id, user_id)
        result = await self._db.execute(
            select(Milestone)
            .where(Milestone.goal_id == goal_id)
            .order_by(Milestone.position.asc(), Milestone.created_at.asc())
        )
        return await self._views(list(result.scalars().all()))

    async def add_milestones(
        self,
        goal_id: uuid.UUID,
        user_id: uuid.UUID,
        items: Sequence[NewMilestone],
    ) -> list[MilestoneView]:
        """Insert milestones, each optionally with a flat list of root actions.

        Raises:
            GoalNotFoundError: If the goal does not exist or belongs to a different user
        """
        await self._owned_goal(goal_id, user_id)
        result = await self._db.execute(
            select(func.max(Milestone.position)).where(Milestone.goal_id == goal_id)
        )
        current = result.scalar_one_or_none()
        position = 0 if current is None else current + 1

        created: list[Milestone] = []
        for item in items:
            milestone = Milestone(
                goal_id=goal_id,
                title=item.title,
                description=item.description,
                completed=item.completed,
                date=item.date,
                is_expanded=item.expanded,
                position=position,
            )
            self._db.add(milestone)
            position += 1
            created.append(milestone)
        # milestone rows must exist before their actions reference them
        await self._db.flush()

        for milestone, item in zip(created, items):
            for action_position, action in enumerate(item.actions):
                level = action.level
                if level is None:
                    level = ActionScope.MILESTONE.default_level
                self._db.add(
                    MilestoneAction(
                        milestone_id=milestone.id,
                        title=action.title,
                        completed=action.completed,
                        date=action.date,
                        impact=action.impact,
                        level=level,
                        is_expanded=action.expanded,
                        notes=action.notes,
                        estimated_time=action.estimated_time,
                        actual_time=action.actual_time,
                        position=action_position,
                    )
                )
        await self._db.flush()

        log.info(
            "milestone_service.add_milestones",
            goal_id=str(goal_id),
            count=len(created),
        )
        return await self._views(created)

    async def update_milestone(
        self,
        milestone_id: uuid.UUID,
        user_id: uuid.UUID,
        changes: Mapping[str, Any],
    ) -> Milestone:
        """Apply a partial update restricted to the whitelisted fields.

        Raises:
            MilestoneNotFoundError: If the milestone is missing or not the caller's
            ValueError: If ``changes`` names a field outside the whitelist
        """
        unknown = set(changes) - set(PATCHABLE_MILESTONE_FIELDS)
        if unknown:
            raise ValueError(f"Fields not updatable: {sorted(unknown)}")

        milestone = await self._owned_milestone(milestone_id, user_id)
        for name, value in changes.items():
            setattr(milestone, PATCHABLE_MILESTONE_FIELDS[name], value)
        milestone.updated_at = dt.datetime.now(dt.UTC)
        await self._db.flush()

        log.info(
            "milestone_service.update_milestone",
            milestone_id=str(milestone_id),
            fields=sorted(changes),
        )
        return milestone
