"""Productivity tools endpoints.

GET    /api/v1/tools            - The caller's saved tool bundle, if any
POST   /api/v1/tools            - Save (create or overwrite) a tool bundle
DELETE /api/v1/tools            - Remove the saved bundle
POST   /api/v1/tools/generate   - Generate a bundle (AI or fallback), not saved
"""

from __future__ import annotations

import datetime as dt

import structlog
from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import Field
from sqlalchemy.ext.asyncio import AsyncSession

from goal_tracker.api.deps import get_enhancement_client
from goal_tracker.api.schemas import ApiModel
from goal_tracker.auth.dependencies import AuthenticatedUser, get_current_user
from goal_tracker.config import Settings, get_settings
from goal_tracker.database import get_db_session
from goal_tracker.enhancement.client import EnhancementClient
from goal_tracker.enhancement.schemas import Enhanced, GoalSummary, ToolBundle
from goal_tracker.services.goal_service import GoalService
from goal_tracker.services.tools_service import ToolsService, generate_tools

log = structlog.get_logger(__name__)

router = APIRouter(prefix="/tools", tags=["tools"])


class ToolsSnapshotResponse(ApiModel):
    tools: ToolBundle | None = None
    has_tools: bool
    last_updated: dt.datetime | None = None


class SaveToolsRequest(ApiModel):
    tools: ToolBundle
    goals: list[GoalSummary] = Field(default_factory=list)


class SaveToolsResponse(ApiModel):
    tools: ToolBundle
    action: str


class GenerateToolsRequest(ApiModel):
    goals: list[GoalSummary] = Field(default_factory=list)


@router.get("", response_model=ToolsSnapshotResponse)
async def get_tools(
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> ToolsSnapshotResponse:
    snapshot = await ToolsService(db).get_snapshot(current_user.id)
    if snapshot is None:
        return ToolsSnapshotResponse(has_tools=False)
    return ToolsSnapshotResponse(
        tools=ToolBundle.model_validate(snapshot.tools_data),
        has_tools=True,
        last_updated=snapshot.updated_at,
    )


@router.post("", response_model=SaveToolsResponse)
async def save_tools(
    request: SaveToolsRequest,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> SaveToolsResponse:
    """Store the bundle as the caller's single snapshot."""
    _, created = await ToolsService(db).save_snapshot(
        current_user.id, request.tools, request.goals
    )
    return SaveToolsResponse(tools=request.tools, action="created" if created else "updated")


@router.delete("", status_code=status.HTTP_204_NO_CONTENT)
async def delete_tools(
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> Response:
    await ToolsService(db).delete_snapshot(current_user.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/generate", response_model=Enhanced[ToolBundle])
async def generate(
    request: GenerateToolsRequest,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_settings),
    enhancement: EnhancementClient = Depends(get_enhancement_client),
) -> Enhanced[ToolBundle]:
    """Generate a bundle from the supplied goals, or the caller's stored goals.

    Returns 422 when there are no goals to work from.
    """
    goals = list(request.goals)
    if not goals:
        views = await GoalService(db, orphan_policy=settings.orphan_policy).list_goals(
            current_user.id
        )
        goals = [
            GoalSummary(
                title=v.goal.title,
                description=v.goal.description,
                category=v.goal.category,
                progress=v.goal.progress,
            )
            for v in views
        ]
    if not goals:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="No goals provided",
        )

    result = await generate_tools(enhancement, goals)
    log.info(
        "tools.generated",
        user_id=str(current_user.id),
        goals=len(goals),
        source=str(result.source),
    )
    return result
