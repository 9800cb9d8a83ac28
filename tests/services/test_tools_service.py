"""Tests for tool generation and the per-user tools snapshot."""

from __future__ import annotations

import json

from goal_tracker.enhancement.client import EnhancementClient
from goal_tracker.enhancement.fallback import tools_fallback
from goal_tracker.enhancement.schemas import EnhancementSource, GoalSummary
from goal_tracker.services.tools_service import ToolsService, generate_tools
from tests.conftest import scripted_client

GOALS = [GoalSummary(title="Run a marathon", category="health", progress=20)]


def _ai_bundle() -> dict:
    bundle = tools_fallback().model_dump(mode="json", by_alias=True)
    bundle["inspiration"] = {"quote": "Keep going.", "author": "Coach"}
    return bundle


class TestGenerateTools:
    async def test_ai_bundle(self):
        client, llm = scripted_client(json.dumps(_ai_bundle()))
        result = await generate_tools(client, GOALS)

        assert result.source == EnhancementSource.AI
        assert result.payload.inspiration.author == "Coach"
        assert "Run a marathon" in llm.calls[0][-1]["content"]

    async def test_disabled_client_falls_back(self):
        result = await generate_tools(EnhancementClient(None), GOALS)
        assert result.source == EnhancementSource.FALLBACK
        assert result.is_fallback is True
        assert result.payload == tools_fallback()

    async def test_garbage_reply_falls_back(self):
        client, _ = scripted_client("I cannot help with that")
        result = await generate_tools(client, GOALS)
        assert result.source == EnhancementSource.FALLBACK


class TestSnapshot:
    async def test_save_creates_then_overwrites(self, db_session, user_a):
        service = ToolsService(db_session)

        first, created = await service.save_snapshot(user_a.id, tools_fallback(), GOALS)
        assert created is True
        assert first.tools_data["inspiration"]["author"] == "Walt Disney"
        assert first.goals_snapshot == [GOALS[0].model_dump(mode="json", by_alias=True)]

        second, created = await service.save_snapshot(user_a.id, tools_fallback(), [])
        assert created is False
        assert second.id == first.id
        assert second.goals_snapshot == []

    async def test_snapshots_are_per_user(self, db_session, user_a, user_b):
        service = ToolsService(db_session)
        await service.save_snapshot(user_a.id, tools_fallback(), GOALS)
        assert await service.get_snapshot(user_b.id) is None

    async def test_delete(self, db_session, user_a):
        service = ToolsService(db_session)
        await service.save_snapshot(user_a.id, tools_fallback(), GOALS)

        assert await service.delete_snapshot(user_a.id) is True
        assert await service.get_snapshot(user_a.id) is None
        assert await service.delete_snapshot(user_a.id) is False
