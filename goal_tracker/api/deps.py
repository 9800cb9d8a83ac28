"""Shared FastAPI dependencies for the enhancement capability.

The ``EnhancementClient`` lives on ``app.state`` (built in
``main.lifespan``). Routes never construct one themselves, and tests swap
it through ``app.dependency_overrides[get_enhancement_client]``.
"""

from __future__ import annotations

import datetime as dt

from fastapi import Depends, Request

from goal_tracker.config import Settings, get_settings
from goal_tracker.enhancement.client import EnhancementClient
from goal_tracker.services.mutation_engine import ActionMutationEngine


def get_enhancement_client(request: Request) -> EnhancementClient:
    client: EnhancementClient | None = getattr(request.app.state, "enhancement", None)
    if client is None:
        # App started without lifespan (e.g. bare TestClient); run without LLM
        client = EnhancementClient(None)
        request.app.state.enhancement = client
    return client


def get_today() -> dt.date:
    """Current UTC date. Overridden in tests for deterministic dates."""
    return dt.datetime.now(dt.UTC).date()


def get_mutation_engine(
    enhancement: EnhancementClient = Depends(get_enhancement_client),
    settings: Settings = Depends(get_settings),
) -> ActionMutationEngine:
    return ActionMutationEngine(enhancement, max_depth=settings.breakdown_max_depth)
