"""Milestone API endpoints.

GET    /api/v1/goals/{id}/milestones   - A goal's milestones with their action trees
POST   /api/v1/goals/{id}/milestones   - Add one or more milestones
PATCH  /api/v1/milestones/{id}         - Partial update

Milestone actions are served by ``api.actions.milestone_actions_router``.
"""

from __future__ import annotations

import datetime as dt
import uuid

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import Field
from sqlalchemy.ext.asyncio import AsyncSession

from goal_tracker.api.schemas import ApiModel, MilestoneResponse
from goal_tracker.auth.dependencies import AuthenticatedUser, get_current_user
from goal_tracker.config import Settings, get_settings
from goal_tracker.database import get_db_session
from goal_tracker.models.action import DEFAULT_IMPACT
from goal_tracker.services.action_service import NewAction
from goal_tracker.services.goal_service import GoalNotFoundError, MilestoneView
from goal_tracker.services.milestone_service import (
    MilestoneNotFoundError,
    MilestoneService,
    NewMilestone,
)

log = structlog.get_logger(__name__)

router = APIRouter(tags=["milestones"])


class MilestoneActionInput(ApiModel):
    title: str = Field(..., min_length=1, max_length=500)
    date: dt.date
    impact: int = Field(default=DEFAULT_IMPACT, ge=0)
    completed: bool = False
    level: int | None = Field(default=None, ge=0)
    is_expanded: bool | None = None
    notes: str | None = None


class CreateMilestoneRequest(ApiModel):
    title: str = Field(..., min_length=1, max_length=500)
    date: dt.date
    description: str | None = None
    completed: bool = False
    is_expanded: bool | None = None
    actions: list[MilestoneActionInput] = Field(default_factory=list)


class CreateMilestonesRequest(ApiModel):
    milestones: list[CreateMilestoneRequest] = Field(..., min_length=1)


class UpdateMilestoneRequest(ApiModel):
    title: str | None = Field(default=None, min_length=1, max_length=500)
    description: str | None = None
    completed: bool | None = None
    date: dt.date | None = None
    is_expanded: bool | None = None


def _goal_not_found(goal_id: uuid.UUID) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"Goal {goal_id} not found",
    )


@router.get("/goals/{goal_id}/milestones", response_model=list[MilestoneResponse])
async def list_milestones(
    goal_id: uuid.UUID,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_settings),
) -> list[MilestoneResponse]:
    service = MilestoneService(db, orphan_policy=settings.orphan_policy)
    try:
        views = await service.list_milestones(goal_id, current_user.id)
    except GoalNotFoundError:
        raise _goal_not_found(goal_id)
    return [MilestoneResponse.from_view(v) for v in views]


@router.post(
    "/goals/{goal_id}/milestones",
    response_model=list[MilestoneResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_milestones(
    goal_id: uuid.UUID,
    request: CreateMilestonesRequest,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_settings),
) -> list[MilestoneResponse]:
    """Add milestones, each optionally carrying a flat list of actions."""
    items = [
        NewMilestone(
            title=m.title,
            date=m.date,
            description=m.description,
            completed=m.completed,
            expanded=m.is_expanded,
            actions=[
                NewAction(
                    title=a.title,
                    date=a.date,
                    impact=a.impact,
                    completed=a.completed,
                    level=a.level,
                    expanded=a.is_expanded,
                    notes=a.notes,
                )
                for a in m.actions
            ],
        )
        for m in request.milestones
    ]
    service = MilestoneService(db, orphan_policy=settings.orphan_policy)
    try:
        views = await service.add_milestones(goal_id, current_user.id, items)
    except GoalNotFoundError:
        raise _goal_not_found(goal_id)

    log.info("milestones.created", goal_id=str(goal_id), count=len(views))
    return [MilestoneResponse.from_view(v) for v in views]


@router.patch("/milestones/{milestone_id}", response_model=MilestoneResponse)
async def update_milestone(
    milestone_id: uuid.UUID,
    request: UpdateMilestoneRequest,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_settings),
) -> MilestoneResponse:
    changes = request.model_dump(exclude_unset=True)
    if "is_expanded" in changes:
        changes["expanded"] = changes.pop("is_expanded")
    for required in ("title", "completed", "date"):
        if required in changes and changes[required] is None:
            del changes[required]

    service = MilestoneService(db, orphan_policy=settings.orphan_policy)
    try:
        milestone = await service.update_milestone(milestone_id, current_user.id, changes)
    except MilestoneNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Milestone {milestone_id} not found",
        )
    return MilestoneResponse.from_view(MilestoneView(milestone=milestone))
