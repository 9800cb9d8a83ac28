"""Tests for the goals API (/api/v1/goals).

Coverage:
- Create returns a goal with empty trees
- Enhance adds catalog actions and milestones inside the deadline
- Per-user isolation: another user's goal is indistinguishable from a missing one
- Delete cascades to actions and milestones
- Auth and validation errors
- Demo account gets the showcase goals
"""

from __future__ import annotations

import datetime as dt
import json
import uuid

import httpx

from goal_tracker.api.deps import get_enhancement_client
from tests.conftest import FIXED_TODAY, GOAL_PAYLOAD, create_goal, scripted_client


class TestCreateAndRead:
    async def test_create_returns_empty_goal(self, client_a):
        goal = await create_goal(client_a)

        assert goal["title"] == "Learn X"
        assert goal["category"] == "learning"
        assert goal["progress"] == 0
        assert goal["target"] == 100
        assert goal["actions"] == []
        assert goal["milestones"] == []
        assert "createdAt" in goal

    async def test_list_contains_created_goal(self, client_a):
        goal = await create_goal(client_a)
        resp = await client_a.get("/api/v1/goals")
        assert resp.status_code == 200
        assert [g["id"] for g in resp.json()] == [goal["id"]]

    async def test_get_one(self, client_a):
        goal = await create_goal(client_a)
        resp = await client_a.get(f"/api/v1/goals/{goal['id']}")
        assert resp.status_code == 200
        assert resp.json()["id"] == goal["id"]

    async def test_missing_goal_is_404(self, client_a):
        resp = await client_a.get(f"/api/v1/goals/{uuid.uuid4()}")
        assert resp.status_code == 404


class TestEnhance:
    async def test_fallback_enhancement_end_to_end(self, client_a):
        goal = await create_goal(client_a)

        resp = await client_a.post(f"/api/v1/goals/{goal['id']}/enhance")

        assert resp.status_code == 200
        body = resp.json()
        assert body["source"] == "fallback"
        assert body["actionsAdded"] == 3
        assert body["aiInsight"]
        enhanced = body["goal"]
        deadline = dt.date.fromisoformat(GOAL_PAYLOAD["deadline"])
        assert len(enhanced["actions"]) == 3
        assert all(a["impact"] > 0 for a in enhanced["actions"])
        assert all(
            FIXED_TODAY < dt.date.fromisoformat(a["date"]) <= deadline for a in enhanced["actions"]
        )
        assert len(enhanced["milestones"]) == 4
        assert all(dt.date.fromisoformat(m["date"]) <= deadline for m in enhanced["milestones"])

        # persisted, not just returned
        stored = (await client_a.get(f"/api/v1/goals/{goal['id']}")).json()
        assert len(stored["actions"]) == 3
        assert len(stored["milestones"]) == 4

    async def test_ai_enhancement(self, test_app, client_a):
        reply = {
            "actions": [{"title": f"Step {i}", "impact": 30} for i in range(3)],
            "milestones": [{"title": "Halfway", "targetDate": "2025-03-01"}],
            "aiInsight": "Small steps.",
        }
        enhancement, _ = scripted_client(json.dumps(reply))
        test_app.dependency_overrides[get_enhancement_client] = lambda: enhancement
        goal = await create_goal(client_a)

        resp = await client_a.post(f"/api/v1/goals/{goal['id']}/enhance")

        body = resp.json()
        assert body["source"] == "ai"
        assert body["aiInsight"] == "Small steps."
        assert [a["title"] for a in body["goal"]["actions"]] == ["Step 0", "Step 1", "Step 2"]
        assert body["goal"]["milestones"][0]["date"] == "2025-03-01"

    async def test_other_user_cannot_enhance(self, client_a, client_b):
        goal = await create_goal(client_a)
        resp = await client_b.post(f"/api/v1/goals/{goal['id']}/enhance")
        assert resp.status_code == 404


class TestOwnership:
    async def test_other_user_sees_404_everywhere(self, client_a, client_b):
        goal = await create_goal(client_a)
        url = f"/api/v1/goals/{goal['id']}"

        assert (await client_b.get(url)).status_code == 404
        assert (await client_b.put(url, json={"title": "Mine now"})).status_code == 404
        assert (await client_b.delete(url)).status_code == 404
        assert (await client_b.get("/api/v1/goals")).json() == []

        unchanged = (await client_a.get(url)).json()
        assert unchanged["title"] == "Learn X"

    async def test_not_found_bodies_match(self, client_a, client_b):
        goal = await create_goal(client_a)
        foreign = await client_b.get(f"/api/v1/goals/{goal['id']}")
        missing = await client_b.get(f"/api/v1/goals/{uuid.uuid4()}")
        assert foreign.status_code == missing.status_code == 404
        assert set(foreign.json()) == set(missing.json()) == {"detail"}


class TestUpdateAndDelete:
    async def test_partial_update(self, client_a):
        goal = await create_goal(client_a)
        resp = await client_a.put(
            f"/api/v1/goals/{goal['id']}", json={"title": "Learn Y", "progress": 30}
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["title"] == "Learn Y"
        assert body["progress"] == 30
        assert body["description"] == GOAL_PAYLOAD["description"]

    async def test_progress_out_of_range_is_422(self, client_a):
        goal = await create_goal(client_a)
        resp = await client_a.put(f"/api/v1/goals/{goal['id']}", json={"progress": 150})
        assert resp.status_code == 422

    async def test_delete_removes_goal_and_trees(self, client_a):
        goal = await create_goal(client_a)
        await client_a.post(f"/api/v1/goals/{goal['id']}/enhance")

        resp = await client_a.delete(f"/api/v1/goals/{goal['id']}")

        assert resp.status_code == 204
        assert (await client_a.get(f"/api/v1/goals/{goal['id']}")).status_code == 404
        assert (await client_a.get(f"/api/v1/goals/{goal['id']}/actions")).status_code == 404


class TestErrors:
    async def test_requires_token(self, client):
        assert (await client.get("/api/v1/goals")).status_code == 401
        assert (await client.post("/api/v1/goals", json=GOAL_PAYLOAD)).status_code == 401

    async def test_garbage_token_is_401(self, test_app):
        transport = httpx.ASGITransport(app=test_app)
        async with httpx.AsyncClient(
            transport=transport,
            base_url="http://testserver",
            headers={"Authorization": "Bearer not-a-jwt"},
        ) as ac:
            assert (await ac.get("/api/v1/goals")).status_code == 401

    async def test_missing_field_is_422(self, client_a):
        payload = {k: v for k, v in GOAL_PAYLOAD.items() if k != "deadline"}
        resp = await client_a.post("/api/v1/goals", json=payload)
        assert resp.status_code == 422

    async def test_unknown_category_is_422(self, client_a):
        resp = await client_a.post("/api/v1/goals", json={**GOAL_PAYLOAD, "category": "hobby"})
        assert resp.status_code == 422


class TestDemoAccount:
    async def test_demo_user_gets_showcase_goals(self, client_demo):
        resp = await client_demo.get("/api/v1/goals")
        assert resp.status_code == 200
        titles = [g["title"] for g in resp.json()]
        assert titles == ["Launch EdTech Startup", "Master Machine Learning"]

    async def test_demo_list_ignores_stored_goals(self, client_demo):
        await create_goal(client_demo)
        resp = await client_demo.get("/api/v1/goals")
        assert len(resp.json()) == 2
