"""Initial goal tracker schema.

Revision ID: 001
Revises:
Create Date: 2026-10-19

Tables:
  users              identity provider subject, JIT provisioned
  goals              owned by a user
  actions            goal-scoped action forest (self-referencing parent_id)
  milestones         dated checkpoints within a goal
  milestone_actions  milestone-scoped action forest (self-referencing parent_id)
  tools_snapshots    one generated tool bundle per user

Notes:
  - Every child FK is ON DELETE CASCADE: deleting a goal removes its
    actions, milestones and milestone actions in the same transaction.
  - category stored as VARCHAR to avoid PostgreSQL enum migration pain.
  - is_expanded is nullable: NULL means never set, False means collapsed.
"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _action_columns(table: str) -> list[sa.Column]:
    """Columns shared by actions and milestone_actions."""
    return [
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column(
            "parent_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey(f"{table}.id", ondelete="CASCADE"),
            nullable=True,
            comment="Parent action in the same scope; NULL for roots",
        ),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("impact", sa.Integer(), nullable=False, server_default="10"),
        sa.Column(
            "level",
            sa.Integer(),
            nullable=True,
            comment="Stored depth; authoritative, never recomputed from the parent chain",
        ),
        sa.Column(
            "is_expanded",
            sa.Boolean(),
            nullable=True,
            comment="NULL = unset, False = explicitly collapsed",
        ),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("estimated_time", sa.Integer(), nullable=True, comment="Minutes"),
        sa.Column("actual_time", sa.Integer(), nullable=True, comment="Minutes"),
        sa.Column(
            "time_generated",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
            comment="True when estimated_time came from the enhancement service",
        ),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column(
            "external_id",
            sa.String(512),
            nullable=False,
            comment="Identity provider 'sub' claim",
        ),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("display_name", sa.String(255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_users_external_id", "users", ["external_id"], unique=True)
    op.create_index("ix_users_email", "users", ["email"])

    op.create_table(
        "goals",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            primary_key=True,
            nullable=False,
            comment="Goal primary key",
        ),
        sa.Column(
            "user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
            comment="Owning user - every query must filter on this column",
        ),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column(
            "category",
            sa.String(32),
            nullable=False,
            comment="business | personal | health | learning",
        ),
        sa.Column(
            "progress",
            sa.Integer(),
            nullable=False,
            server_default="0",
            comment="0-100, recomputed from root action completion",
        ),
        sa.Column("target", sa.Integer(), nullable=False, server_default="100"),
        sa.Column("deadline", sa.Date(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            comment="UTC timestamp of goal creation",
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            comment="UTC timestamp of last modification",
        ),
    )
    op.create_index("ix_goals_user_created", "goals", ["user_id", "created_at"])

    op.create_table(
        "actions",
        *_action_columns("actions"),
        sa.Column(
            "goal_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("goals.id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    op.create_index("ix_actions_goal_position", "actions", ["goal_id", "position"])
    op.create_index("ix_actions_parent_id", "actions", ["parent_id"])

    op.create_table(
        "milestones",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column(
            "goal_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("goals.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("date", sa.Date(), nullable=False, comment="Target date"),
        sa.Column("is_expanded", sa.Boolean(), nullable=True),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_milestones_goal_position", "milestones", ["goal_id", "position"])

    op.create_table(
        "milestone_actions",
        *_action_columns("milestone_actions"),
        sa.Column(
            "milestone_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("milestones.id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    op.create_index(
        "ix_milestone_actions_milestone_position",
        "milestone_actions",
        ["milestone_id", "position"],
    )
    op.create_index("ix_milestone_actions_parent_id", "milestone_actions", ["parent_id"])

    op.create_table(
        "tools_snapshots",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column(
            "user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
            comment="One snapshot per user",
        ),
        sa.Column(
            "tools_data",
            postgresql.JSONB(),
            nullable=False,
            comment="Generated tool bundle (quote, focus session, resources, habits)",
        ),
        sa.Column(
            "goals_snapshot",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
            comment="Goals the bundle was generated from",
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("tools_snapshots")
    op.drop_index("ix_milestone_actions_parent_id", table_name="milestone_actions")
    op.drop_index("ix_milestone_actions_milestone_position", table_name="milestone_actions")
    op.drop_table("milestone_actions")
    op.drop_index("ix_milestones_goal_position", table_name="milestones")
    op.drop_table("milestones")
    op.drop_index("ix_actions_parent_id", table_name="actions")
    op.drop_index("ix_actions_goal_position", table_name="actions")
    op.drop_table("actions")
    op.drop_index("ix_goals_user_created", table_name="goals")
    op.drop_table("goals")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_index("ix_users_external_id", table_name="users")
    op.drop_table("users")
