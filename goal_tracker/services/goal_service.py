"""Goal service: the goal aggregate store.

Every operation is scoped to the requesting user. A goal id that does not
exist and a goal owned by someone else both raise ``GoalNotFoundError``;
the API renders both as the same 404.

Reads return ``GoalView`` aggregates: the goal row, its action forest and
its milestones, each with its own action forest. Trees are assembled by
``core.action_tree.build_tree`` from flat rows loaded in one query per
table.

Deleting a goal relies on ON DELETE CASCADE foreign keys; the request's
session commits or rolls back the whole cascade as one transaction.
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
from goal_tracker.core.action_tree import ActionNode, TreeBuildResult
from goal_tracker.enhancement.client import EnhancementClient, EnhancementError
from goal_tracker.enhancement.fallback import goal_enhancement_fallback
from goal_tracker.enhancement.schemas import (
    EnhancementSource,
    GoalEnhancement,
    GoalEnhancementRequest,
)
from goal_tracker.models.action import Action
from goal_tracker.models.goal import DEFAULT_TARGET, Goal, GoalCategory
from goal_tracker.models.milestone import Milestone
from goal_tracker.services.action_service import ActionScope, ActionService, load_forests

log = structlog.get_logger(__name__)

UPDATABLE_GOAL_FIELDS = frozenset(
    {"title", "description", "category", "deadline", "progress", "target"}
)

# Spacing for suggested milestones that come back without a target date
_MILESTONE_SPACING_WEEKS = 4


class GoalNotFoundError(Exception):
    """Raised when a requested goal does not exist or is not accessible."""


@dataclass
class MilestoneView:
    milestone: Milestone
    actions: list[ActionNode] = field(default_factory=list)
    orphans: list[str] = field(default_factory=list)


@dataclass
class GoalView:
    goal: Goal
    actions: list[ActionNode] = field(default_factory=list)
    milestones: list[MilestoneView] = field(default_factory=list)
    orphans: list[str] = field(default_factory=list)


@dataclass
class GoalEnhancementResult:
    view: GoalView
    ai_insight: str
    source: EnhancementSource
    actions_added: int
    milestones_added: int


class GoalService:
    """Service for goals and their owned collections."""

    def __init__(
        self,
        db: AsyncSession,
        *,
        orphan_policy: OrphanPolicy = OrphanPolicy.PROMOTE,
    ) -> None:
        """Initialise goal service with database session.

        Args:
            db: Async database session
            orphan_policy: Placement of actions whose parent is missing
        """
        self._db = db
        self._orphan_policy = orphan_policy

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #

    async def list_goals(self, user_id: uuid.UUID) -> list[GoalView]:
        """Return all goals of a user, newest first, with their trees."""
        result = await self._db.execute(
            select(Goal)
            .where(Goal.user_id == user_id)
            .order_by(Goal.created_at.desc(), Goal.id.desc())
        )
        goals = list(result.scalars().all())
        views = await self._assemble(goals)

        log.debug(
            "goal_service.list_goals",
            user_id=str(user_id),
            count=len(views),
        )
        return views

    async def get_goal(self, goal_id: uuid.UUID, user_id: uuid.UUID) -> GoalView:
        """Return one goal with its trees.

        Raises:
            GoalNotFoundError: If the goal does not exist or belongs to a different user
        """
        goal = await self.get_owned_goal(goal_id, user_id)
        views = await self._assemble([goal])
        return views[0]

    async def get_owned_goal(self, goal_id: uuid.UUID, user_id: uuid.UUID) -> Goal:
        """Return the bare goal row after an ownership check."""
        result = await self._db.execute(
            select(Goal).where(Goal.id == goal_id, Goal.user_id == user_id)
        )
        goal = result.scalar_one_or_none()
        if goal is None:
            raise GoalNotFoundError(f"Goal {goal_id} not found")
        return goal

    async def _assemble(self, goals: Sequence[Goal]) -> list[GoalView]:
        if not goals:
            return []
        goal_ids = [goal.id for goal in goals]

        action_forests = await load_forests(
            self._db, ActionScope.GOAL, goal_ids, orphan_policy=self._orphan_policy
        )

        result = await self._db.execute(
            select(Milestone)
            .where(Milestone.goal_id.in_(goal_ids))
            .order_by(Milestone.position.asc(), Milestone.created_at.asc())
        )
        milestones = list(result.scalars().all())
        milestone_forests = await load_forests(
            self._db,
            ActionScope.MILESTONE,
            [m.id for m in milestones],
            orphan_policy=self._orphan_policy,
        )

        milestones_by_goal: dict[uuid.UUID, list[MilestoneView]] = {gid: [] for gid in goal_ids}
        for milestone in milestones:
            forest = milestone_forests.get(milestone.id, TreeBuildResult())
            milestones_by_goal[milestone.goal_id].append(
                MilestoneView(
                    milestone=milestone,
                    actions=forest.roots,
                    orphans=forest.orphans,
                )
            )

        views: list[GoalView] = []
        for goal in goals:
            forest = action_forests.get(goal.id, TreeBuildResult())
            views.append(
                GoalView(
                    goal=goal,
                    actions=forest.roots,
                    milestones=milestones_by_goal[goal.id],
                    orphans=forest.orphans,
                )
            )
        return views

    # ------------------------------------------------------------------ #
    # Writes
    # ------------------------------------------------------------------ #

    async def create_goal(
        self,
        user_id: uuid.UUID,
        *,
        title: str,
        description: str,
        category: GoalCategory,
        deadline: dt.date,
        target: int | None = None,
    ) -> Goal:
        """Create a goal with no actions or milestones.

        Enhancement is a separate call; creation never depends on it.
        """
        goal = Goal(
            user_id=user_id,
            title=title,
            description=description,
            category=str(category),
            deadline=deadline,
            progress=0,
            target=target if target is not None else DEFAULT_TARGET,
        )
        self._db.add(goal)
        await self._db.flush()

        log.info(
            "goal_service.create_goal",
            user_id=str(user_id),
            goal_id=str(goal.id),
            category=str(category),
        )
        return goal

    async def update_goal(
        self,
        goal_id: uuid.UUID,
        user_id: uuid.UUID,
        changes: Mapping[str, Any],
    ) -> Goal:
        """Apply a partial update restricted to the whitelisted fields.

        Raises:
            GoalNotFoundError: If the goal does not exist or belongs to a different user
            ValueError: If ``changes`` names a field outside the whitelist
        """
        unknown = set(changes) - UPDATABLE_GOAL_FIELDS
        if unknown:
            raise ValueError(f"Fields not updatable: {sorted(unknown)}")

        goal = await self.get_owned_goal(goal_id, user_id)
        for name, value in changes.items():
            setattr(goal, name, str(value) if name == "category" else value)
        goal.updated_at = dt.datetime.now(dt.UTC)
        await self._db.flush()

        log.info(
            "goal_service.update_goal",
            goal_id=str(goal_id),
            fields=sorted(changes),
        )
        return goal

    async def delete_goal(self, goal_id: uuid.UUID, user_id: uuid.UUID) -> None:
        """Delete a goal; actions, milestones and milestone actions cascade.

        Raises:
            GoalNotFoundError: If the goal does not exist or belongs to a different user
        """
        goal = await self.get_owned_goal(goal_id, user_id)
        await self._db.delete(goal)
        await self._db.flush()

        log.info("goal_service.delete_goal", goal_id=str(goal_id), user_id=str(user_id))

    # ------------------------------------------------------------------ #
    # Enhancement
    # ------------------------------------------------------------------ #

    async def enhance_goal(
        self,
        goal_id: uuid.UUID,
        user_id: uuid.UUID,
        enhancement: EnhancementClient,
        *,
        today: dt.date,
    ) -> GoalEnhancementResult:
        """Add suggested root actions and milestones to a goal.

        Uses the enhancement service and degrades to the category catalog on
        any enhancement failure, so this never fails because of the LLM.
        Every suggested date is clamped to the goal deadline.
        """
        goal = await self.get_owned_goal(goal_id, user_id)
        request = GoalEnhancementRequest(
            title=goal.title,
            description=goal.description,
            category=_coerce_category(goal.category),
            deadline=goal.deadline,
        )

        suggestion: GoalEnhancement
        try:
            suggestion = await enhancement.enhance_goal(request)
            source = EnhancementSource.AI
        except EnhancementError as exc:
            log.warning(
                "goal_service.enhance_fallback",
                goal_id=str(goal_id),
                error_type=type(exc).__name__,
                error=str(exc),
            )
            suggestion = goal_enhancement_fallback(request, today=today)
            source = EnhancementSource.FALLBACK

        action_position = await self._next_position(Action.position, Action.goal_id, goal.id)
        for i, item in enumerate(suggestion.actions):
            self._db.add(
                Action(
                    goal_id=goal.id,
                    title=item.title,
                    date=min(today + dt.timedelta(weeks=i + 1), goal.deadline),
                    impact=item.impact,
                    level=0,
                    is_expanded=False,
                    position=action_position + i,
                )
            )

        milestone_position = await self._next_position(
            Milestone.position, Milestone.goal_id, goal.id
        )
        for i, item in enumerate(suggestion.milestones):
            target = item.target_date or today + dt.timedelta(
                weeks=_MILESTONE_SPACING_WEEKS * (i + 1)
            )
            self._db.add(
                Milestone(
                    goal_id=goal.id,
                    title=item.title,
                    description=item.description or None,
                    date=min(target, goal.deadline),
                    is_expanded=False,
                    position=milestone_position + i,
                )
            )
        await self._db.flush()

        await ActionService(self._db, orphan_policy=self._orphan_policy).refresh_goal_progress(goal)

        log.info(
            "goal_service.enhance_goal",
            goal_id=str(goal_id),
            source=str(source),
            actions=len(suggestion.actions),
            milestones=len(suggestion.milestones),
        )
        view = (await self._assemble([goal]))[0]
        return GoalEnhancementResult(
            view=view,
            ai_insight=suggestion.ai_insight,
            source=source,
            actions_added=len(suggestion.actions),
            milestones_added=len(suggestion.milestones),
        )

    async def _next_position(self, position_col: Any, owner_col: Any, owner_id: uuid.UUID) -> int:
        result = await self._db.execute(
            select(func.max(position_col)).where(owner_col == owner_id)
        )
        current = result.scalar_one_or_none()
        return 0 if current is None else current + 1


def _coerce_category(value: str) -> GoalCategory:
    try:
        return GoalCategory(value)
    except ValueError:
        return GoalCategory.PERSONAL
