"""Action service: persistence for goal actions and milestone actions.

Both scopes share one code path; ``ActionScope`` picks the table, the
owning column and the default level for rows without a stored one.

Every public method takes the caller's ``user_id`` and resolves ownership
through the goal that ultimately owns the row. A row that does not exist
and a row owned by someone else raise the same ``ActionNotFoundError`` /
``ScopeNotFoundError`` so the API cannot leak existence.

Tree-level work (breakdown, estimation) runs on immutable trees via
``ActionMutationEngine``; this service loads the tree, hands it over, and
writes back only the rows the engine changed.
"""

from __future__ import annotations

import datetime as dt
import uuid
from collections import Counter, defaultdict
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import Any, cast

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from goal_tracker.config import OrphanPolicy
from goal_tracker.core.action_tree import (
    ActionNode,
    FlatAction,
    TreeBuildResult,
    build_tree,
    flatten_tree,
)
from goal_tracker.core.mutation import apply_update, compute_progress, find_node, iter_nodes
from goal_tracker.enhancement.schemas import GoalContext
from goal_tracker.models.action import Action, MilestoneAction
from goal_tracker.models.goal import Goal
from goal_tracker.models.milestone import Milestone
from goal_tracker.services.mutation_engine import (
    ActionMutationEngine,
    BreakdownOutcome,
    BulkEstimateOutcome,
)

log = structlog.get_logger(__name__)

ActionRow = Action | MilestoneAction


class ActionScope(StrEnum):
    GOAL = "goal"
    MILESTONE = "milestone"

    @property
    def model(self) -> type[Action] | type[MilestoneAction]:
        return Action if self is ActionScope.GOAL else MilestoneAction

    @property
    def owner_attr(self) -> str:
        return "goal_id" if self is ActionScope.GOAL else "milestone_id"

    @property
    def default_level(self) -> int:
        # Milestone actions sit one level below the milestone itself
        return 0 if self is ActionScope.GOAL else 1


class ActionNotFoundError(Exception):
    """Raised when an action does not exist or is not accessible."""


class ScopeNotFoundError(Exception):
    """Raised when the owning goal or milestone does not exist or is not accessible."""


class DuplicateActionError(ValueError):
    """Raised when a saved tree repeats an action id."""


# Row attribute names keyed by their API / tree field names.
PATCHABLE_ACTION_FIELDS: dict[str, str] = {
    "title": "title",
    "completed": "completed",
    "date": "date",
    "impact": "impact",
    "level": "level",
    "expanded": "is_expanded",
    "notes": "notes",
    "estimated_time": "estimated_time",
    "actual_time": "actual_time",
    "time_generated": "time_generated",
}


@dataclass
class NewAction:
    """Input for a single action insert."""

    title: str
    date: dt.date
    impact: int = 10
    completed: bool = False
    level: int | None = None
    expanded: bool | None = None
    notes: str | None = None
    estimated_time: int | None = None
    actual_time: int | None = None
    parent_id: uuid.UUID | None = None


@dataclass
class SaveTreeResult:
    tree: TreeBuildResult
    inserted: int = 0
    updated: int = 0
    skipped: list[str] = field(default_factory=list)


async def load_forests(
    db: AsyncSession,
    scope: ActionScope,
    owner_ids: Iterable[uuid.UUID],
    *,
    orphan_policy: OrphanPolicy = OrphanPolicy.PROMOTE,
) -> dict[uuid.UUID, TreeBuildResult]:
    """Load and assemble the action forests of many owners in one query."""
    ids = list(owner_ids)
    if not ids:
        return {}
    model = scope.model
    owner_col = getattr(model, scope.owner_attr)
    result = await db.execute(
        select(model)
        .where(owner_col.in_(ids))
        .order_by(model.position.asc(), model.created_at.asc())
    )
    grouped: dict[uuid.UUID, list[FlatAction]] = defaultdict(list)
    for row in result.scalars().all():
        grouped[getattr(row, scope.owner_attr)].append(FlatAction.from_row(row))

    return {
        owner_id: build_tree(
            grouped.get(owner_id, []),
            default_level=scope.default_level,
            orphan_policy=orphan_policy,
            scope=f"{scope}:{owner_id}",
        )
        for owner_id in ids
    }


class ActionService:
    """Service for action trees in either scope."""

    def __init__(
        self,
        db: AsyncSession,
        *,
        orphan_policy: OrphanPolicy = OrphanPolicy.PROMOTE,
        engine: ActionMutationEngine | None = None,
    ) -> None:
        self._db = db
        self._orphan_policy = orphan_policy
        self._engine = engine

    # ------------------------------------------------------------------ #
    # Ownership
    # ------------------------------------------------------------------ #

    async def _owned_goal(self, goal_id: uuid.UUID, user_id: uuid.UUID) -> Goal:
        result = await self._db.execute(
            select(Goal).where(Goal.id == goal_id, Goal.user_id == user_id)
        )
        goal = result.scalar_one_or_none()
        if goal is None:
            raise ScopeNotFoundError(f"Goal {goal_id} not found")
        return goal

    async def _owning_goal(
        self, scope: ActionScope, owner_id: uuid.UUID, user_id: uuid.UUID
    ) -> Goal:
        """Return the goal behind a scope owner, checking it belongs to the user."""
        if scope is ActionScope.GOAL:
            return await self._owned_goal(owner_id, user_id)
        result = await self._db.execute(
            select(Goal)
            .join(Milestone, Milestone.goal_id == Goal.id)
            .where(Milestone.id == owner_id, Goal.user_id == user_id)
        )
        goal = result.scalar_one_or_none()
        if goal is None:
            raise ScopeNotFoundError(f"Milestone {owner_id} not found")
        return goal

    async def _owned_row(
        self, scope: ActionScope, action_id: uuid.UUID, user_id: uuid.UUID
    ) -> tuple[ActionRow, Goal]:
        model = scope.model
        if scope is ActionScope.GOAL:
            stmt = (
                select(model, Goal)
                .join(Goal, Action.goal_id == Goal.id)
                .where(model.id == action_id, Goal.user_id == user_id)
            )
        else:
            stmt = (
                select(model, Goal)
                .join(Milestone, MilestoneAction.milestone_id == Milestone.id)
                .join(Goal, Milestone.goal_id == Goal.id)
                .where(model.id == action_id, Goal.user_id == user_id)
            )
        row = (await self._db.execute(stmt)).one_or_none()
        if row is None:
            raise ActionNotFoundError(f"Action {action_id} not found")
        return row[0], row[1]

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #

    async def _scope_rows(self, scope: ActionScope, owner_id: uuid.UUID) -> list[ActionRow]:
        model = scope.model
        owner_col = getattr(model, scope.owner_attr)
        result = await self._db.execute(
            select(model)
            .where(owner_col == owner_id)
            .order_by(model.position.asc(), model.created_at.asc())
        )
        return list(result.scalars().all())

    def _build(
        self, scope: ActionScope, owner_id: uuid.UUID, rows: Sequence[ActionRow]
    ) -> TreeBuildResult:
        return build_tree(
            (FlatAction.from_row(row) for row in rows),
            default_level=scope.default_level,
            orphan_policy=self._orphan_policy,
            scope=f"{scope}:{owner_id}",
        )

    async def list_tree(
        self, scope: ActionScope, owner_id: uuid.UUID, user_id: uuid.UUID
    ) -> TreeBuildResult:
        """Return the assembled action forest of one goal or milestone."""
        await self._owning_goal(scope, owner_id, user_id)
        rows = await self._scope_rows(scope, owner_id)
        return self._build(scope, owner_id, rows)

    # ------------------------------------------------------------------ #
    # Writes
    # ------------------------------------------------------------------ #

    async def _next_position(self, scope: ActionScope, owner_id: uuid.UUID) -> int:
        model = scope.model
        owner_col = getattr(model, scope.owner_attr)
        result = await self._db.execute(
            select(func.max(model.position)).where(owner_col == owner_id)
        )
        current = result.scalar_one_or_none()
        return 0 if current is None else current + 1

    async def add_action(
        self,
        scope: ActionScope,
        owner_id: uuid.UUID,
        user_id: uuid.UUID,
        data: NewAction,
    ) -> ActionRow:
        """Insert one action at the end of its scope.

        A ``parent_id`` must name an action in the same scope.

        Raises:
            ScopeNotFoundError: If the owner is missing or not the caller's.
            ActionNotFoundError: If the parent is not in this scope.
        """
        goal = await self._owning_goal(scope, owner_id, user_id)
        model = scope.model

        level = data.level
        if data.parent_id is not None:
            parent, _ = await self._owned_row(scope, data.parent_id, user_id)
            if getattr(parent, scope.owner_attr) != owner_id:
                raise ActionNotFoundError(f"Action {data.parent_id} not found")
            if level is None:
                level = (parent.level if parent.level is not None else scope.default_level) + 1

        row = model(
            **{scope.owner_attr: owner_id},
            parent_id=data.parent_id,
            title=data.title,
            completed=data.completed,
            date=data.date,
            impact=data.impact,
            level=level if level is not None else scope.default_level,
            is_expanded=data.expanded,
            notes=data.notes,
            estimated_time=data.estimated_time,
            actual_time=data.actual_time,
            position=await self._next_position(scope, owner_id),
        )
        self._db.add(row)
        await self._db.flush()

        if scope is ActionScope.GOAL and row.parent_id is None:
            await self.refresh_goal_progress(goal)

        log.info(
            "action_service.add_action",
            scope=str(scope),
            owner_id=str(owner_id),
            action_id=str(row.id),
        )
        return row

    async def save_tree(
        self,
        scope: ActionScope,
        owner_id: uuid.UUID,
        user_id: uuid.UUID,
        roots: Sequence[ActionNode],
    ) -> SaveTreeResult:
        """Persist a locally mutated forest.

        Nodes whose id is a row of this scope are updated, new nodes
        (``persisted=False``) are inserted and get a fresh id. Ids that
        belong to some other scope are skipped along with their subtrees.

        Raises:
            ScopeNotFoundError: If the owner is missing or not the caller's.
            DuplicateActionError: If a node id occurs more than once in
                ``roots``. Nothing is written in that case.
        """
        records = flatten_tree(roots)
        counts = Counter(record.key for record in records)
        duplicates = sorted(key for key, count in counts.items() if count > 1)
        if duplicates:
            raise DuplicateActionError(f"Action ids repeated in tree: {duplicates}")

        goal = await self._owning_goal(scope, owner_id, user_id)
        model = scope.model
        rows = {str(row.id): row for row in await self._scope_rows(scope, owner_id)}
        position = await self._next_position(scope, owner_id)

        placed: dict[str, tuple[ActionRow, str | None]] = {}
        skipped: list[str] = []
        inserted = updated = 0

        for record in records:
            if record.parent_key is not None and record.parent_key not in placed:
                # parent was skipped
                skipped.append(record.key)
                continue

            if record.id is not None:
                row = rows.get(record.id)
                if row is None:
                    log.warning(
                        "action_service.foreign_action_skipped",
                        scope=str(scope),
                        owner_id=str(owner_id),
                        action_id=record.id,
                    )
                    skipped.append(record.key)
                    continue
                self._apply_record(row, record)
                updated += 1
            else:
                row = model(
                    **{scope.owner_attr: owner_id},
                    parent_id=None,
                    title=record.title,
                    date=record.date or dt.date.today(),
                    position=position,
                )
                self._apply_record(row, record)
                self._db.add(row)
                position += 1
                inserted += 1
            placed[record.key] = (row, record.parent_key)

        # New rows must exist before anything points at them
        await self._db.flush()
        for row, parent_key in placed.values():
            row.parent_id = placed[parent_key][0].id if parent_key is not None else None
        await self._db.flush()
        if scope is ActionScope.GOAL:
            await self.refresh_goal_progress(goal)

        log.info(
            "action_service.save_tree",
            scope=str(scope),
            owner_id=str(owner_id),
            inserted=inserted,
            updated=updated,
            skipped=len(skipped),
        )
        tree = self._build(scope, owner_id, await self._scope_rows(scope, owner_id))
        return SaveTreeResult(tree=tree, inserted=inserted, updated=updated, skipped=skipped)

    @staticmethod
    def _apply_record(row: ActionRow, record: FlatAction) -> None:
        row.title = record.title
        row.completed = record.completed
        if record.date is not None:
            row.date = record.date
        row.impact = record.impact
        row.level = record.level
        row.is_expanded = record.is_expanded
        row.notes = record.notes
        row.estimated_time = record.estimated_time
        row.actual_time = record.actual_time
        row.time_generated = record.time_generated

    async def update_action(
        self,
        scope: ActionScope,
        action_id: uuid.UUID,
        user_id: uuid.UUID,
        changes: Mapping[str, Any],
    ) -> ActionRow:
        """Apply a partial update. Only whitelisted fields are accepted.

        Raises:
            ActionNotFoundError: If the action is missing or not the caller's.
            ValueError: If ``changes`` names a field outside the whitelist.
        """
        unknown = set(changes) - set(PATCHABLE_ACTION_FIELDS)
        if unknown:
            raise ValueError(f"Fields not updatable: {sorted(unknown)}")

        row, goal = await self._owned_row(scope, action_id, user_id)
        for name, value in changes.items():
            setattr(row, PATCHABLE_ACTION_FIELDS[name], value)
        await self._db.flush()

        if scope is ActionScope.GOAL and row.parent_id is None and "completed" in changes:
            await self.refresh_goal_progress(goal)

        log.info(
            "action_service.update_action",
            scope=str(scope),
            action_id=str(action_id),
            fields=sorted(changes),
        )
        return row

    async def toggle_action(
        self, scope: ActionScope, action_id: uuid.UUID, user_id: uuid.UUID
    ) -> tuple[ActionRow, int | None]:
        """Flip ``completed`` on one action.

        Returns the row and the goal's new progress when a goal root action
        changed, otherwise None. Parents and children keep their state.
        """
        row, goal = await self._owned_row(scope, action_id, user_id)
        row.completed = not row.completed
        await self._db.flush()

        progress: int | None = None
        if scope is ActionScope.GOAL and row.parent_id is None:
            progress = await self.refresh_goal_progress(goal)

        log.info(
            "action_service.toggle_action",
            scope=str(scope),
            action_id=str(action_id),
            completed=row.completed,
        )
        return row, progress

    async def refresh_goal_progress(self, goal: Goal) -> int:
        """Recompute goal progress from its root actions.

        Promoted orphans are not root actions and do not count.
        """
        rows = await self._scope_rows(ActionScope.GOAL, goal.id)
        roots = [row for row in rows if row.parent_id is None]
        if not roots:
            return goal.progress
        tree = self._build(ActionScope.GOAL, goal.id, roots)
        goal.progress = compute_progress([node for node in tree.roots if not node.orphaned])
        goal.updated_at = dt.datetime.now(dt.UTC)
        await self._db.flush()
        log.debug("action_service.progress_refreshed", goal_id=str(goal.id), progress=goal.progress)
        return goal.progress

    # ------------------------------------------------------------------ #
    # Engine-backed operations
    # ------------------------------------------------------------------ #

    def _require_engine(self) -> ActionMutationEngine:
        if self._engine is None:
            raise RuntimeError("ActionService was created without a mutation engine")
        return self._engine

    async def _load_for_engine(
        self, scope: ActionScope, action_id: uuid.UUID, user_id: uuid.UUID
    ) -> tuple[ActionRow, Goal, dict[str, ActionRow], list[ActionNode]]:
        row, goal = await self._owned_row(scope, action_id, user_id)
        owner_id = getattr(row, scope.owner_attr)
        rows = await self._scope_rows(scope, owner_id)
        tree = self._build(scope, owner_id, rows)
        return row, goal, {str(r.id): r for r in rows}, tree.roots

    @staticmethod
    def _context(goal: Goal) -> GoalContext:
        return GoalContext(goal_title=goal.title, goal_category=goal.category)

    async def breakdown(
        self, scope: ActionScope, action_id: uuid.UUID, user_id: uuid.UUID
    ) -> BreakdownOutcome:
        """Break an action down, or toggle it when it already has children.

        New children are inserted and their tree ids are replaced with the
        row ids before the outcome is returned.

        Raises:
            ActionNotFoundError: If the action is missing or not the caller's.
            BreakdownNotAllowedError: If the action is at the depth ceiling.
        """
        engine = self._require_engine()
        row, goal, rows, roots = await self._load_for_engine(scope, action_id, user_id)
        outcome = await engine.breakdown(roots, str(row.id), self._context(goal))

        row.is_expanded = outcome.node.expanded
        if outcome.created:
            owner_id = getattr(row, scope.owner_attr)
            position = await self._next_position(scope, owner_id)
            persisted: list[ActionNode] = []
            for child in outcome.created:
                child_row = scope.model(
                    **{scope.owner_attr: owner_id},
                    parent_id=row.id,
                    title=child.title,
                    date=child.date or dt.date.today(),
                    impact=child.impact,
                    level=child.level,
                    is_expanded=child.expanded,
                    notes=child.notes,
                    position=position,
                )
                self._db.add(child_row)
                position += 1
                persisted.append(replace(child, id=str(child_row.id), persisted=True))
            outcome.created = persisted
            outcome.nodes = apply_update(outcome.nodes, str(row.id), {"children": persisted})
            outcome.node = find_node(outcome.nodes, str(row.id)) or outcome.node
        await self._db.flush()

        log.info(
            "action_service.breakdown",
            scope=str(scope),
            action_id=str(action_id),
            created=len(outcome.created),
            toggled=outcome.toggled,
        )
        return outcome

    async def estimate(
        self, scope: ActionScope, action_id: uuid.UUID, user_id: uuid.UUID
    ) -> tuple[ActionRow, int]:
        """Estimate one action and store the result.

        Raises:
            ActionNotFoundError: If the action is missing or not the caller's.
            EnhancementError: If no estimate could be produced. Nothing is
                written in that case.
        """
        engine = self._require_engine()
        row, goal, _, roots = await self._load_for_engine(scope, action_id, user_id)
        _, minutes = await engine.estimate_time(roots, str(row.id), self._context(goal))
        row.estimated_time = minutes
        row.time_generated = True
        await self._db.flush()
        return row, minutes

    async def estimate_all(
        self,
        scope: ActionScope,
        user_id: uuid.UUID,
        *,
        action_id: uuid.UUID | None = None,
        owner_id: uuid.UUID | None = None,
    ) -> BulkEstimateOutcome:
        """Estimate every action lacking one under ``action_id``, or in the whole scope.

        Exactly one of ``action_id`` / ``owner_id`` must be given.
        """
        if (action_id is None) == (owner_id is None):
            raise ValueError("Pass exactly one of action_id or owner_id")
        engine = self._require_engine()

        root_id: str | None = None
        if owner_id is not None:
            goal = await self._owning_goal(scope, owner_id, user_id)
            scope_rows = await self._scope_rows(scope, owner_id)
            rows = {str(r.id): r for r in scope_rows}
            roots = self._build(scope, owner_id, scope_rows).roots
        else:
            row, goal, rows, roots = await self._load_for_engine(
                scope, cast(uuid.UUID, action_id), user_id
            )
            root_id = str(row.id)

        outcome = await engine.estimate_all(roots, root_id, self._context(goal))
        for node in iter_nodes(outcome.nodes):
            if node.id not in outcome.estimated:
                continue
            target = rows.get(node.id)
            if target is not None:
                target.estimated_time = node.estimated_time
                target.time_generated = node.time_generated
        await self._db.flush()
        return outcome
