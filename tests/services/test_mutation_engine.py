"""Tests for ActionMutationEngine (breakdown and estimation on in-memory trees)."""

from __future__ import annotations

import datetime as dt
import json

import pytest

from goal_tracker.core.action_tree import ActionNode
from goal_tracker.core.mutation import find_node
from goal_tracker.enhancement.client import EnhancementError
from goal_tracker.enhancement.llm import LLMError
from goal_tracker.enhancement.schemas import EnhancementSource
from goal_tracker.services.mutation_engine import (
    ActionMutationEngine,
    BreakdownNotAllowedError,
    NodeNotInTreeError,
)
from tests.conftest import scripted_client

NOW = dt.datetime(2025, 2, 3, 9, 30, tzinfo=dt.UTC)

BREAKDOWN_REPLY = json.dumps(
    {
        "subActions": [
            {"title": "Pick venue", "estimatedMinutes": 20, "tools": ["Maps"]},
            {"title": "Book venue", "estimatedMinutes": 15, "deliverable": "Confirmation"},
            {"title": "Send invites", "description": "Email everyone", "estimatedMinutes": 25},
        ],
        "reasoning": "Venue first",
    }
)


def _engine(reply, *, max_depth: int = 3):
    client, llm = scripted_client(reply)
    return ActionMutationEngine(client, max_depth=max_depth, clock=lambda: NOW), llm


def _forest() -> list[ActionNode]:
    deep = ActionNode(id="deep", title="deep", level=3, parent_id="mid")
    mid = ActionNode(id="mid", title="mid", level=2, parent_id="root", children=(deep,), expanded=True)
    return [
        ActionNode(id="root", title="Plan party", level=0, children=(mid,), expanded=True),
        ActionNode(id="leaf", title="Buy cake", level=0, estimated_time=30),
        ActionNode(id="solo", title="Clean up", level=0),
    ]


class TestBreakdown:
    async def test_creates_children_from_ai_reply(self):
        engine, llm = _engine(BREAKDOWN_REPLY)
        outcome = await engine.breakdown(_forest(), "solo")

        assert outcome.source == EnhancementSource.AI
        assert outcome.reasoning == "Venue first"
        assert [c.title for c in outcome.created] == ["Pick venue", "Book venue", "Send invites"]
        assert all(c.level == 1 and not c.persisted for c in outcome.created)
        assert all(c.parent_id == "solo" and c.date == NOW.date() for c in outcome.created)
        assert [c.impact for c in outcome.created] == [20, 15, 25]
        assert outcome.created[0].notes == "Tools: Maps"
        assert outcome.created[1].notes == "Deliverable: Confirmation"
        assert outcome.node.expanded is True
        assert find_node(outcome.nodes, "solo").children == tuple(outcome.created)
        assert len(llm.calls) == 1

    async def test_minted_ids_are_unique(self):
        engine, _ = _engine(BREAKDOWN_REPLY)
        outcome = await engine.breakdown(_forest(), "solo")
        assert len({c.id for c in outcome.created}) == 3

    async def test_falls_back_on_enhancement_failure(self):
        engine, _ = _engine(LLMError("down"))
        outcome = await engine.breakdown(_forest(), "solo")
        assert outcome.source == EnhancementSource.FALLBACK
        assert len(outcome.created) == 4
        assert outcome.created[0].title == 'Research requirements for "Clean up"'

    async def test_second_breakdown_only_toggles(self):
        engine, llm = _engine(BREAKDOWN_REPLY)
        first = await engine.breakdown(_forest(), "solo")
        second = await engine.breakdown(first.nodes, "solo")

        assert second.toggled is True
        assert second.created == []
        assert second.node.expanded is False
        assert second.node.children == first.node.children
        assert len(llm.calls) == 1

    async def test_depth_three_is_refused(self):
        engine, llm = _engine(BREAKDOWN_REPLY)
        with pytest.raises(BreakdownNotAllowedError):
            await engine.breakdown(_forest(), "deep")
        assert llm.calls == []

    async def test_depth_two_is_allowed(self):
        forest = [ActionNode(id="two", title="two", level=2)]
        engine, _ = _engine(BREAKDOWN_REPLY)
        outcome = await engine.breakdown(forest, "two")
        assert all(c.level == 3 for c in outcome.created)

    async def test_unknown_node(self):
        engine, _ = _engine(BREAKDOWN_REPLY)
        with pytest.raises(NodeNotInTreeError):
            await engine.breakdown(_forest(), "ghost")

    async def test_siblings_untouched(self):
        forest = _forest()
        engine, _ = _engine(BREAKDOWN_REPLY)
        outcome = await engine.breakdown(forest, "solo")
        assert outcome.nodes[0] is forest[0]
        assert outcome.nodes[1] is forest[1]


class TestEstimate:
    async def test_estimate_sets_minutes_and_flag(self):
        engine, _ = _engine('{"estimatedMinutes": 50}')
        nodes, minutes = await engine.estimate_time(_forest(), "solo")
        assert minutes == 50
        node = find_node(nodes, "solo")
        assert node.estimated_time == 50
        assert node.time_generated is True

    async def test_estimate_failure_propagates(self):
        engine, _ = _engine("not json")
        with pytest.raises(EnhancementError):
            await engine.estimate_time(_forest(), "solo")


class TestEstimateAll:
    async def test_collects_failures_without_aborting(self):
        def reply(messages):
            prompt = messages[-1]["content"]
            if '"mid"' in prompt:
                return LLMError("flaky")
            return '{"estimatedMinutes": 10}'

        engine, _ = _engine(reply)
        outcome = await engine.estimate_all(_forest(), "root")

        assert set(outcome.estimated) == {"root", "deep"}
        assert [f.node_id for f in outcome.failures] == ["mid"]
        assert outcome.total_minutes == 20
        assert find_node(outcome.nodes, "mid").estimated_time is None

    async def test_whole_forest_skips_existing_estimates(self):
        engine, llm = _engine('{"estimatedMinutes": 5}')
        outcome = await engine.estimate_all(_forest())

        assert "leaf" in outcome.skipped
        assert "leaf" not in outcome.estimated
        assert len(llm.calls) == 4
        # 4 new estimates of 5 plus the existing 30
        assert outcome.total_minutes == 50

    async def test_unknown_root(self):
        engine, _ = _engine('{"estimatedMinutes": 5}')
        with pytest.raises(NodeNotInTreeError):
            await engine.estimate_all(_forest(), "ghost")
