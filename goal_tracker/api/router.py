"""Main API router - aggregates all sub-routers.

All routes are versioned under /api/v1 except health checks.
"""

from __future__ import annotations

from fastapi import APIRouter

from goal_tracker.api import analysis, goals, health, milestones, tools
from goal_tracker.api.actions import goal_actions_router, milestone_actions_router

# Public router (no auth required)
public_router = APIRouter()
public_router.include_router(health.router)

# Versioned API router
api_v1_router = APIRouter(prefix="/api/v1")
api_v1_router.include_router(goals.router)
api_v1_router.include_router(goal_actions_router)
api_v1_router.include_router(milestones.router)
api_v1_router.include_router(milestone_actions_router)
api_v1_router.include_router(analysis.router)
api_v1_router.include_router(tools.router)
