"""Task analysis: read-only insights for a single action or milestone."""

from __future__ import annotations

import structlog

from goal_tracker.enhancement.client import EnhancementClient, EnhancementError
from goal_tracker.enhancement.fallback import task_analysis_fallback
from goal_tracker.enhancement.schemas import (
    Enhanced,
    EnhancementKind,
    EnhancementSource,
    TaskAnalysis,
    TaskAnalysisRequest,
)

log = structlog.get_logger(__name__)


async def analyze_task(
    enhancement: EnhancementClient,
    request: TaskAnalysisRequest,
) -> Enhanced[TaskAnalysis]:
    """Analyze a task, degrading to the fixed analysis on any LLM failure.

    Nothing is persisted.
    """
    try:
        analysis = await enhancement.analyze_task(request)
        source = EnhancementSource.AI
    except EnhancementError as exc:
        log.warning(
            "analysis_service.fallback",
            task=request.task.title,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        analysis = task_analysis_fallback()
        source = EnhancementSource.FALLBACK

    return Enhanced[TaskAnalysis](
        kind=EnhancementKind.TASK_ANALYSIS,
        source=source,
        payload=analysis,
    )
