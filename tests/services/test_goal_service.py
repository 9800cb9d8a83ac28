"""Tests for GoalService against an in-memory SQLite database.

Covers CRUD with per-user isolation, cascade delete, aggregate reads and
goal enhancement (AI and fallback paths).
"""

from __future__ import annotations

import datetime as dt
import json
import uuid

import pytest
from sqlalchemy import func, select

from goal_tracker.config import OrphanPolicy
from goal_tracker.enhancement.client import EnhancementClient
from goal_tracker.enhancement.schemas import EnhancementSource
from goal_tracker.models import Action, Milestone, MilestoneAction
from goal_tracker.models.goal import GoalCategory
from goal_tracker.services.action_service import ActionScope, ActionService, NewAction
from goal_tracker.services.goal_service import GoalNotFoundError, GoalService
from goal_tracker.services.milestone_service import MilestoneService, NewMilestone
from tests.conftest import scripted_client

TODAY = dt.date(2025, 1, 1)
DEADLINE = dt.date(2025, 6, 1)


@pytest.fixture
def service(db_session) -> GoalService:
    return GoalService(db_session)


async def _goal(service: GoalService, user_id: uuid.UUID, **kwargs):
    kwargs.setdefault("title", "Learn X")
    kwargs.setdefault("description", "desc")
    kwargs.setdefault("category", GoalCategory.LEARNING)
    kwargs.setdefault("deadline", DEADLINE)
    return await service.create_goal(user_id, **kwargs)


async def _count(db, model) -> int:
    return (await db.execute(select(func.count()).select_from(model))).scalar_one()


class TestCreateGoal:
    async def test_defaults(self, service, user_a):
        goal = await _goal(service, user_a.id)
        assert goal.progress == 0
        assert goal.target == 100
        assert goal.category == "learning"
        assert isinstance(goal.id, uuid.UUID)

    async def test_new_goal_has_empty_collections(self, service, user_a):
        goal = await _goal(service, user_a.id)
        view = await service.get_goal(goal.id, user_a.id)
        assert view.actions == []
        assert view.milestones == []


class TestReads:
    async def test_list_is_newest_first_and_per_user(self, service, db_session, user_a, user_b):
        older = await _goal(service, user_a.id, title="older")
        newer = await _goal(service, user_a.id, title="newer")
        await _goal(service, user_b.id, title="theirs")
        older.created_at = dt.datetime(2024, 1, 1, tzinfo=dt.UTC)
        newer.created_at = dt.datetime(2024, 6, 1, tzinfo=dt.UTC)
        await db_session.flush()

        views = await service.list_goals(user_a.id)
        assert [v.goal.title for v in views] == ["newer", "older"]

    async def test_get_other_users_goal_is_not_found(self, service, user_a, user_b):
        goal = await _goal(service, user_a.id)
        with pytest.raises(GoalNotFoundError):
            await service.get_goal(goal.id, user_b.id)

    async def test_get_missing_goal_is_not_found(self, service, user_a):
        with pytest.raises(GoalNotFoundError):
            await service.get_goal(uuid.uuid4(), user_a.id)

    async def test_aggregate_includes_trees(self, service, db_session, user_a):
        goal = await _goal(service, user_a.id)
        actions = ActionService(db_session)
        root = await actions.add_action(
            ActionScope.GOAL, goal.id, user_a.id, NewAction(title="root", date=TODAY)
        )
        await actions.add_action(
            ActionScope.GOAL,
            goal.id,
            user_a.id,
            NewAction(title="child", date=TODAY, parent_id=root.id),
        )
        await MilestoneService(db_session).add_milestones(
            goal.id,
            user_a.id,
            [NewMilestone(title="M1", date=TODAY, actions=[NewAction(title="m-a", date=TODAY)])],
        )

        view = await service.get_goal(goal.id, user_a.id)
        assert [n.title for n in view.actions] == ["root"]
        assert [c.title for c in view.actions[0].children] == ["child"]
        assert view.actions[0].expanded is True
        assert [m.milestone.title for m in view.milestones] == ["M1"]
        assert view.milestones[0].actions[0].level == 1

    async def test_orphans_are_reported(self, service, db_session, user_a):
        goal = await _goal(service, user_a.id)
        other = await _goal(service, user_a.id, title="other")
        foreign = Action(goal_id=other.id, title="elsewhere", date=TODAY, level=0)
        db_session.add(foreign)
        await db_session.flush()
        stray = Action(goal_id=goal.id, parent_id=foreign.id, title="stray", date=TODAY, level=1)
        db_session.add(stray)
        await db_session.flush()

        view = await service.get_goal(goal.id, user_a.id)
        assert view.orphans == [str(stray.id)]
        assert view.actions[0].orphaned is True

        dropping = GoalService(db_session, orphan_policy=OrphanPolicy.DROP)
        view = await dropping.get_goal(goal.id, user_a.id)
        assert view.actions == []
        assert view.orphans == [str(stray.id)]


class TestUpdateGoal:
    async def test_updates_whitelisted_fields(self, service, user_a):
        goal = await _goal(service, user_a.id)
        updated = await service.update_goal(
            goal.id, user_a.id, {"title": "New", "category": GoalCategory.HEALTH}
        )
        assert updated.title == "New"
        assert updated.category == "health"

    async def test_rejects_unknown_fields(self, service, user_a):
        goal = await _goal(service, user_a.id)
        with pytest.raises(ValueError, match="user_id"):
            await service.update_goal(goal.id, user_a.id, {"user_id": uuid.uuid4()})

    async def test_other_user_cannot_update(self, service, user_a, user_b):
        goal = await _goal(service, user_a.id)
        with pytest.raises(GoalNotFoundError):
            await service.update_goal(goal.id, user_b.id, {"title": "hijack"})
        assert goal.title == "Learn X"


class TestDeleteGoal:
    async def test_delete_cascades(self, service, db_session, user_a):
        goal = await _goal(service, user_a.id)
        actions = ActionService(db_session)
        root = await actions.add_action(
            ActionScope.GOAL, goal.id, user_a.id, NewAction(title="root", date=TODAY)
        )
        await actions.add_action(
            ActionScope.GOAL, goal.id, user_a.id, NewAction(title="c", date=TODAY, parent_id=root.id)
        )
        await MilestoneService(db_session).add_milestones(
            goal.id,
            user_a.id,
            [NewMilestone(title="M", date=TODAY, actions=[NewAction(title="ma", date=TODAY)])],
        )

        await service.delete_goal(goal.id, user_a.id)

        assert await _count(db_session, Action) == 0
        assert await _count(db_session, Milestone) == 0
        assert await _count(db_session, MilestoneAction) == 0
        with pytest.raises(GoalNotFoundError):
            await service.get_goal(goal.id, user_a.id)

    async def test_other_user_cannot_delete(self, service, user_a, user_b):
        goal = await _goal(service, user_a.id)
        with pytest.raises(GoalNotFoundError):
            await service.delete_goal(goal.id, user_b.id)
        assert (await service.get_goal(goal.id, user_a.id)).goal.id == goal.id


class TestEnhanceGoal:
    async def test_fallback_adds_catalog_actions_and_milestones(self, service, user_a):
        goal = await _goal(service, user_a.id)
        result = await service.enhance_goal(
            goal.id, user_a.id, EnhancementClient(None), today=TODAY
        )

        assert result.source == EnhancementSource.FALLBACK
        assert result.actions_added == 3
        assert result.milestones_added == 4
        view = result.view
        assert [a.title for a in view.actions] == [
            "Set daily study schedule",
            "Find online courses or resources",
            "Join relevant communities",
        ]
        assert [a.date for a in view.actions] == [
            dt.date(2025, 1, 8),
            dt.date(2025, 1, 15),
            dt.date(2025, 1, 22),
        ]
        assert all(m.milestone.date <= DEADLINE for m in view.milestones)
        assert view.goal.progress == 0

    async def test_ai_dates_are_clamped_to_deadline(self, service, user_a):
        goal = await _goal(service, user_a.id, deadline=dt.date(2025, 1, 10))
        reply = {
            "actions": [{"title": f"step {i}", "impact": 20} for i in range(4)],
            "milestones": [
                {"title": "late", "targetDate": "2026-01-01"},
                {"title": "undated"},
            ],
            "aiInsight": "Go!",
        }
        client, _ = scripted_client(json.dumps(reply))

        result = await service.enhance_goal(goal.id, user_a.id, client, today=TODAY)

        assert result.source == EnhancementSource.AI
        assert result.ai_insight == "Go!"
        assert len(result.view.actions) == 4
        assert all(a.date <= dt.date(2025, 1, 10) for a in result.view.actions)
        assert [m.milestone.date for m in result.view.milestones] == [
            dt.date(2025, 1, 10),
            dt.date(2025, 1, 10),
        ]

    async def test_invalid_ai_reply_falls_back(self, service, user_a):
        goal = await _goal(service, user_a.id)
        client, _ = scripted_client('{"actions": []}')
        result = await service.enhance_goal(goal.id, user_a.id, client, today=TODAY)
        assert result.source == EnhancementSource.FALLBACK
        assert result.actions_added == 3

    async def test_enhance_appends_after_existing_actions(self, service, db_session, user_a):
        goal = await _goal(service, user_a.id)
        await ActionService(db_session).add_action(
            ActionScope.GOAL,
            goal.id,
            user_a.id,
            NewAction(title="mine", date=TODAY, completed=True),
        )
        result = await service.enhance_goal(
            goal.id, user_a.id, EnhancementClient(None), today=TODAY
        )
        assert result.view.actions[0].title == "mine"
        assert len(result.view.actions) == 4
        assert result.view.goal.progress == 25

    async def test_other_user_cannot_enhance(self, service, user_a, user_b):
        goal = await _goal(service, user_a.id)
        with pytest.raises(GoalNotFoundError):
            await service.enhance_goal(goal.id, user_b.id, EnhancementClient(None), today=TODAY)
