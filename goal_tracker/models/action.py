"""Action models.

Goal actions and milestone actions share one shape and live in two tables:
``actions`` (scoped to a goal) and ``milestone_actions`` (scoped to a
milestone). Each row may point at a parent row in the same table; the
self-referencing FK cascades, so deleting a node removes its subtree.

``is_expanded`` is nullable on purpose: NULL means "never set", which the
tree builder treats differently from an explicit collapse (False).

``position`` records insertion order within the owning scope. Reads order
by it so children come back in creation order.
"""

from __future__ import annotations

import datetime as dt
import uuid
from typing import Any

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, declared_attr, mapped_column

from goal_tracker.database import Base

DEFAULT_IMPACT = 10


class ActionColumnsMixin:
    """Columns common to goal actions and milestone actions."""

    __tablename__: str

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)

    @declared_attr
    def parent_id(cls) -> Mapped[uuid.UUID | None]:
        return mapped_column(
            ForeignKey(f"{cls.__tablename__}.id", ondelete="CASCADE"),
            nullable=True,
            comment="Parent action in the same scope; NULL for roots",
        )

    title: Mapped[str] = mapped_column(String(500), nullable=False)
    completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    impact: Mapped[int] = mapped_column(Integer, nullable=False, default=DEFAULT_IMPACT)
    level: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
        comment="Stored depth; authoritative, never recomputed from the parent chain",
    )
    is_expanded: Mapped[bool | None] = mapped_column(
        Boolean,
        nullable=True,
        comment="NULL = unset, False = explicitly collapsed",
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    estimated_time: Mapped[int | None] = mapped_column(
        Integer, nullable=True, comment="Minutes"
    )
    actual_time: Mapped[int | None] = mapped_column(
        Integer, nullable=True, comment="Minutes"
    )
    time_generated: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="True when estimated_time came from the enhancement service",
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: dt.datetime.now(dt.UTC),
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: dt.datetime.now(dt.UTC),
        onupdate=lambda: dt.datetime.now(dt.UTC),
    )

    def __init__(self, **kwargs: Any) -> None:
        kwargs.setdefault("id", uuid.uuid4())
        kwargs.setdefault("completed", False)
        kwargs.setdefault("impact", DEFAULT_IMPACT)
        kwargs.setdefault("time_generated", False)
        kwargs.setdefault("position", 0)
        now = dt.datetime.now(dt.UTC)
        kwargs.setdefault("created_at", now)
        kwargs.setdefault("updated_at", now)
        super().__init__(**kwargs)  # type: ignore[call-arg]

    def __repr__(self) -> str:
        return (
            f"<{type(self).__name__} id={self.id} title={self.title!r} "
            f"level={self.level} parent={self.parent_id}>"
        )


class Action(ActionColumnsMixin, Base):
    """An action owned directly by a goal."""

    __tablename__ = "actions"

    goal_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("goals.id", ondelete="CASCADE"),
        nullable=False,
    )

    __table_args__ = (
        Index("ix_actions_goal_position", "goal_id", "position"),
        Index("ix_actions_parent_id", "parent_id"),
    )


class MilestoneAction(ActionColumnsMixin, Base):
    """An action owned by a milestone."""

    __tablename__ = "milestone_actions"

    milestone_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("milestones.id", ondelete="CASCADE"),
        nullable=False,
    )

    __table_args__ = (
        Index("ix_milestone_actions_milestone_position", "milestone_id", "position"),
        Index("ix_milestone_actions_parent_id", "parent_id"),
    )
