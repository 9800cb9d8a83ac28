"""Goals API endpoints.

GET    /api/v1/goals                   - List the caller's goals (newest first)
POST   /api/v1/goals                   - Create a goal
GET    /api/v1/goals/{id}              - Get one goal with its trees
PUT    /api/v1/goals/{id}              - Update whitelisted fields
DELETE /api/v1/goals/{id}              - Delete a goal and everything under it
POST   /api/v1/goals/{id}/enhance      - Add suggested actions and milestones

A goal that does not exist and a goal owned by another user both return
404 with the same body.
"""

from __future__ import annotations

import datetime as dt
import uuid

import structlog
from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import Field
from sqlalchemy.ext.asyncio import AsyncSession

from goal_tracker.api.deps import get_enhancement_client, get_today
from goal_tracker.api.schemas import ApiModel, GoalResponse
from goal_tracker.auth.dependencies import AuthenticatedUser, get_current_user
from goal_tracker.config import Settings, get_settings
from goal_tracker.database import get_db_session
from goal_tracker.enhancement.client import EnhancementClient
from goal_tracker.enhancement.schemas import EnhancementSource
from goal_tracker.models.goal import GoalCategory
from goal_tracker.services.goal_readers import select_goal_reader
from goal_tracker.services.goal_service import GoalNotFoundError, GoalService, GoalView

log = structlog.get_logger(__name__)

router = APIRouter(prefix="/goals", tags=["goals"])


# ---------------------------------------------------------------------------
# Request / Response schemas
# ---------------------------------------------------------------------------


class CreateGoalRequest(ApiModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., max_length=4096)
    category: GoalCategory
    deadline: dt.date
    target: int | None = Field(default=None, ge=1)


class UpdateGoalRequest(ApiModel):
    title: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=4096)
    category: GoalCategory | None = None
    deadline: dt.date | None = None
    progress: int | None = Field(default=None, ge=0, le=100)
    target: int | None = Field(default=None, ge=1)


class EnhanceGoalResponse(ApiModel):
    goal: GoalResponse
    ai_insight: str
    source: EnhancementSource
    actions_added: int
    milestones_added: int


def _not_found(goal_id: uuid.UUID) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"Goal {goal_id} not found",
    )


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("", response_model=list[GoalResponse])
async def list_goals(
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_settings),
) -> list[GoalResponse]:
    """List the caller's goals with their action and milestone trees."""
    reader = select_goal_reader(current_user.email, db, settings)
    views = await reader.list_goals(current_user.id)

    log.info(
        "goals.list",
        user_id=str(current_user.id),
        reader=type(reader).__name__,
        count=len(views),
    )
    return [GoalResponse.from_view(v) for v in views]


@router.post("", response_model=GoalResponse, status_code=status.HTTP_201_CREATED)
async def create_goal(
    request: CreateGoalRequest,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_settings),
) -> GoalResponse:
    """Create a goal with empty actions and milestones.

    Enhancement is a separate call (``POST /goals/{id}/enhance``).
    """
    service = GoalService(db, orphan_policy=settings.orphan_policy)
    goal = await service.create_goal(
        current_user.id,
        title=request.title,
        description=request.description,
        category=request.category,
        deadline=request.deadline,
        target=request.target,
    )

    log.info("goals.created", user_id=str(current_user.id), goal_id=str(goal.id))
    return GoalResponse.from_view(GoalView(goal=goal))


@router.get("/{goal_id}", response_model=GoalResponse)
async def get_goal(
    goal_id: uuid.UUID,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_settings),
) -> GoalResponse:
    service = GoalService(db, orphan_policy=settings.orphan_policy)
    try:
        view = await service.get_goal(goal_id, current_user.id)
    except GoalNotFoundError:
        raise _not_found(goal_id)
    return GoalResponse.from_view(view)


@router.put("/{goal_id}", response_model=GoalResponse)
async def update_goal(
    goal_id: uuid.UUID,
    request: UpdateGoalRequest,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_settings),
) -> GoalResponse:
    """Update only the fields present in the body."""
    changes = request.model_dump(exclude_unset=True, exclude_none=True)
    service = GoalService(db, orphan_policy=settings.orphan_policy)
    try:
        await service.update_goal(goal_id, current_user.id, changes)
        view = await service.get_goal(goal_id, current_user.id)
    except GoalNotFoundError:
        raise _not_found(goal_id)

    log.info(
        "goals.updated",
        user_id=str(current_user.id),
        goal_id=str(goal_id),
        fields=sorted(changes),
    )
    return GoalResponse.from_view(view)


@router.delete("/{goal_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_goal(
    goal_id: uuid.UUID,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> Response:
    """Delete a goal. Actions, milestones and milestone actions go with it."""
    service = GoalService(db)
    try:
        await service.delete_goal(goal_id, current_user.id)
    except GoalNotFoundError:
        raise _not_found(goal_id)

    log.info("goals.deleted", user_id=str(current_user.id), goal_id=str(goal_id))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{goal_id}/enhance", response_model=EnhanceGoalResponse)
async def enhance_goal(
    goal_id: uuid.UUID,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_settings),
    enhancement: EnhancementClient = Depends(get_enhancement_client),
    today: dt.date = Depends(get_today),
) -> EnhanceGoalResponse:
    """Add suggested root actions and milestones.

    Falls back to the built-in catalog when the enhancement service fails,
    so this endpoint does not fail because of the LLM.
    """
    service = GoalService(db, orphan_policy=settings.orphan_policy)
    try:
        result = await service.enhance_goal(goal_id, current_user.id, enhancement, today=today)
    except GoalNotFoundError:
        raise _not_found(goal_id)

    log.info(
        "goals.enhanced",
        user_id=str(current_user.id),
        goal_id=str(goal_id),
        source=str(result.source),
    )
    return EnhanceGoalResponse(
        goal=GoalResponse.from_view(result.view),
        ai_insight=result.ai_insight,
        source=result.source,
        actions_added=result.actions_added,
        milestones_added=result.milestones_added,
    )
