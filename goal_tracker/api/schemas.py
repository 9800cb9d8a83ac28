"""Request/response models shared by the goal, action and milestone routers.

JSON is camelCase on the wire (``isExpanded``, ``subActions``,
``estimatedTime``); both camelCase and snake_case are accepted on input.
"""

from __future__ import annotations

import datetime as dt
import uuid
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from goal_tracker.core.action_tree import ActionNode
from goal_tracker.models.action import DEFAULT_IMPACT
from goal_tracker.models.goal import GoalCategory
from goal_tracker.services.goal_service import GoalView, MilestoneView


class ApiModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


def _is_uuid(value: str) -> bool:
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return True


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------


class ActionResponse(ApiModel):
    id: str
    parent_id: str | None = None
    title: str
    completed: bool
    date: dt.date | None
    impact: int
    level: int
    is_expanded: bool
    notes: str | None = None
    estimated_time: int | None = None
    actual_time: int | None = None
    time_generated: bool = False
    orphaned: bool = False
    sub_actions: list[ActionResponse] = Field(default_factory=list)

    @classmethod
    def from_node(cls, node: ActionNode) -> ActionResponse:
        return cls(
            id=node.id,
            parent_id=node.parent_id,
            title=node.title,
            completed=node.completed,
            date=node.date,
            impact=node.impact,
            level=node.level,
            is_expanded=node.expanded,
            notes=node.notes,
            estimated_time=node.estimated_time,
            actual_time=node.actual_time,
            time_generated=node.time_generated,
            orphaned=node.orphaned,
            sub_actions=[cls.from_node(child) for child in node.children],
        )

    @classmethod
    def from_row(cls, row: Any, *, default_level: int = 0) -> ActionResponse:
        """Single row without children (patch/toggle/estimate responses)."""
        return cls(
            id=str(row.id),
            parent_id=str(row.parent_id) if row.parent_id is not None else None,
            title=row.title,
            completed=row.completed,
            date=row.date,
            impact=row.impact,
            level=row.level if row.level is not None else default_level,
            is_expanded=bool(row.is_expanded),
            notes=row.notes,
            estimated_time=row.estimated_time,
            actual_time=row.actual_time,
            time_generated=row.time_generated,
        )


class ActionInput(ApiModel):
    """One node of a client-side tree sent back for saving.

    A UUID ``id`` marks an existing row. Any other id (or none) marks a new
    node, e.g. one minted locally by a breakdown.
    """

    id: str | None = None
    title: str = Field(..., min_length=1, max_length=500)
    completed: bool = False
    date: dt.date | None = None
    impact: int = Field(default=DEFAULT_IMPACT, ge=0)
    level: int | None = Field(default=None, ge=0)
    is_expanded: bool = False
    notes: str | None = None
    estimated_time: int | None = Field(default=None, ge=0)
    actual_time: int | None = Field(default=None, ge=0)
    time_generated: bool = False
    sub_actions: list[ActionInput] = Field(default_factory=list)

    def to_node(self, *, level: int, parent_id: str | None = None) -> ActionNode:
        persisted = self.id is not None and _is_uuid(self.id)
        node_id = self.id if self.id else f"new-{uuid.uuid4().hex}"
        node_level = self.level if self.level is not None else level
        return ActionNode(
            id=node_id,
            title=self.title,
            completed=self.completed,
            date=self.date,
            impact=self.impact,
            level=node_level,
            expanded=self.is_expanded,
            notes=self.notes,
            estimated_time=self.estimated_time,
            actual_time=self.actual_time,
            time_generated=self.time_generated,
            parent_id=parent_id,
            children=tuple(
                child.to_node(level=node_level + 1, parent_id=node_id)
                for child in self.sub_actions
            ),
            persisted=persisted,
        )


# ---------------------------------------------------------------------------
# Milestones and goals
# ---------------------------------------------------------------------------


class MilestoneResponse(ApiModel):
    id: uuid.UUID
    goal_id: uuid.UUID
    title: str
    description: str | None = None
    completed: bool
    date: dt.date
    is_expanded: bool
    actions: list[ActionResponse] = Field(default_factory=list)
    orphans: list[str] = Field(default_factory=list)

    @classmethod
    def from_view(cls, view: MilestoneView) -> MilestoneResponse:
        m = view.milestone
        return cls(
            id=m.id,
            goal_id=m.goal_id,
            title=m.title,
            description=m.description,
            completed=m.completed,
            date=m.date,
            is_expanded=bool(m.is_expanded),
            actions=[ActionResponse.from_node(node) for node in view.actions],
            orphans=view.orphans,
        )


class GoalResponse(ApiModel):
    id: uuid.UUID
    title: str
    description: str
    category: GoalCategory | str
    progress: int
    target: int
    deadline: dt.date
    created_at: dt.datetime
    updated_at: dt.datetime
    actions: list[ActionResponse] = Field(default_factory=list)
    milestones: list[MilestoneResponse] = Field(default_factory=list)
    orphans: list[str] = Field(default_factory=list)

    @classmethod
    def from_view(cls, view: GoalView) -> GoalResponse:
        g = view.goal
        return cls(
            id=g.id,
            title=g.title,
            description=g.description,
            category=g.category,
            progress=g.progress,
            target=g.target,
            deadline=g.deadline,
            created_at=g.created_at,
            updated_at=g.updated_at,
            actions=[ActionResponse.from_node(node) for node in view.actions],
            milestones=[MilestoneResponse.from_view(m) for m in view.milestones],
            orphans=view.orphans,
        )
