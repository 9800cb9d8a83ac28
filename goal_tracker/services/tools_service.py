"""Productivity tools: generation and the per-user snapshot.

Generation is stateless: it asks the enhancement service for a tool
bundle built from the supplied goals and falls back to the fixed bundle on
any failure. Saving is a separate call that overwrites the user's single
snapshot row.
"""

from __future__ import annotations

import datetime as dt
import uuid
from collections.abc import Sequence

import structlog
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from goal_tracker.enhancement.client import EnhancementClient, EnhancementError
from goal_tracker.enhancement.fallback import tools_fallback
from goal_tracker.enhancement.schemas import (
    Enhanced,
    EnhancementKind,
    EnhancementSource,
    GoalSummary,
    ToolBundle,
    ToolsRequest,
)
from goal_tracker.models.tools_snapshot import ToolsSnapshot

log = structlog.get_logger(__name__)


async def generate_tools(
    enhancement: EnhancementClient,
    goals: Sequence[GoalSummary],
) -> Enhanced[ToolBundle]:
    """Generate a tool bundle for the given goals. Never raises on LLM failure."""
    request = ToolsRequest(goals=list(goals))
    try:
        bundle = await enhancement.generate_tools(request)
        source = EnhancementSource.AI
    except EnhancementError as exc:
        log.warning(
            "tools_service.generate_fallback",
            error_type=type(exc).__name__,
            error=str(exc),
        )
        bundle = tools_fallback()
        source = EnhancementSource.FALLBACK
    return Enhanced[ToolBundle](
        kind=EnhancementKind.TOOL_BUNDLE,
        source=source,
        payload=bundle,
    )


class ToolsService:
    """Service for the per-user tools snapshot."""

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def get_snapshot(self, user_id: uuid.UUID) -> ToolsSnapshot | None:
        result = await self._db.execute(
            select(ToolsSnapshot).where(ToolsSnapshot.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def save_snapshot(
        self,
        user_id: uuid.UUID,
        tools: ToolBundle,
        goals: Sequence[GoalSummary],
    ) -> tuple[ToolsSnapshot, bool]:
        """Create or overwrite the user's snapshot.

        Returns:
            The snapshot and True if it was created, False if updated.
        """
        tools_data = tools.model_dump(mode="json", by_alias=True)
        goals_data = [g.model_dump(mode="json", by_alias=True) for g in goals]

        snapshot = await self.get_snapshot(user_id)
        created = snapshot is None
        if snapshot is None:
            snapshot = ToolsSnapshot(
                user_id=user_id,
                tools_data=tools_data,
                goals_snapshot=goals_data,
            )
            self._db.add(snapshot)
        else:
            snapshot.tools_data = tools_data
            snapshot.goals_snapshot = goals_data
            snapshot.updated_at = dt.datetime.now(dt.UTC)
        await self._db.flush()

        log.info(
            "tools_service.save_snapshot",
            user_id=str(user_id),
            action="created" if created else "updated",
        )
        return snapshot, created

    async def delete_snapshot(self, user_id: uuid.UUID) -> bool:
        """Remove the user's snapshot. Returns False if there was none."""
        result = await self._db.execute(
            delete(ToolsSnapshot).where(ToolsSnapshot.user_id == user_id)
        )
        deleted = (result.rowcount or 0) > 0
        log.info("tools_service.delete_snapshot", user_id=str(user_id), deleted=deleted)
        return deleted
