"""Task analysis endpoint.

POST /api/v1/analyze-task - Complexity, strategy and resource insights for one task

Read-only: nothing is persisted. Enhancement failures return the fixed
fallback analysis with ``source="fallback"``.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends

from goal_tracker.api.deps import get_enhancement_client
from goal_tracker.auth.dependencies import AuthenticatedUser, get_current_user
from goal_tracker.enhancement.client import EnhancementClient
from goal_tracker.enhancement.schemas import Enhanced, TaskAnalysis, TaskAnalysisRequest
from goal_tracker.services.analysis_service import analyze_task as run_analysis

log = structlog.get_logger(__name__)

router = APIRouter(tags=["analysis"])


@router.post("/analyze-task", response_model=Enhanced[TaskAnalysis])
async def analyze_task(
    request: TaskAnalysisRequest,
    current_user: AuthenticatedUser = Depends(get_current_user),
    enhancement: EnhancementClient = Depends(get_enhancement_client),
) -> Enhanced[TaskAnalysis]:
    result = await run_analysis(enhancement, request)
    log.info(
        "analysis.task_analyzed",
        user_id=str(current_user.id),
        source=str(result.source),
    )
    return result
