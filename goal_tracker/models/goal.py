"""Goal model.

A goal is the aggregate root: it owns a forest of root actions and a list of
milestones (each milestone owning its own action forest). Deleting a goal
removes everything underneath it through ON DELETE CASCADE foreign keys.

``progress`` is derived from root-action completion once actions exist; the
API still allows setting it directly for goals without actions.
"""

from __future__ import annotations

import uuid
from datetime import UTC, date, datetime
from enum import StrEnum
from typing import Any

from sqlalchemy import Date, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from goal_tracker.database import Base


class GoalCategory(StrEnum):
    BUSINESS = "business"
    PERSONAL = "personal"
    HEALTH = "health"
    LEARNING = "learning"


DEFAULT_TARGET = 100


class Goal(Base):
    __tablename__ = "goals"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
        comment="Goal primary key",
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        comment="Owning user - every query must filter on this column",
    )

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")

    category: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        comment="business | personal | health | learning",
    )

    progress: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default="0",
        comment="0-100, recomputed from root action completion",
    )
    target: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=DEFAULT_TARGET,
        server_default=str(DEFAULT_TARGET),
    )
    deadline: Mapped[date] = mapped_column(Date, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        comment="UTC timestamp of goal creation",
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
        comment="UTC timestamp of last modification",
    )

    __table_args__ = (
        Index("ix_goals_user_created", "user_id", "created_at"),
    )

    def __init__(self, **kwargs: Any) -> None:
        kwargs.setdefault("id", uuid.uuid4())
        kwargs.setdefault("progress", 0)
        kwargs.setdefault("target", DEFAULT_TARGET)
        kwargs.setdefault("description", "")
        now = datetime.now(UTC)
        kwargs.setdefault("created_at", now)
        kwargs.setdefault("updated_at", now)
        super().__init__(**kwargs)

    def __repr__(self) -> str:
        return f"<Goal id={self.id} title={self.title!r} progress={self.progress}>"
