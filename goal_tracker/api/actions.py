"""Action tree API endpoints.

Goal actions and milestone actions expose the same operations; the
routers are built by ``make_action_router`` for each ``ActionScope``.

Goal scope:
GET    /api/v1/goals/{id}/actions              - Action tree of a goal
POST   /api/v1/goals/{id}/actions              - Add one action
PUT    /api/v1/goals/{id}/actions              - Save a locally edited tree
POST   /api/v1/goals/{id}/actions/estimate     - Estimate every action lacking one
PATCH  /api/v1/actions/{id}                    - Partial update
POST   /api/v1/actions/{id}/toggle             - Flip completion
POST   /api/v1/actions/{id}/breakdown          - Generate sub-actions or expand/collapse
POST   /api/v1/actions/{id}/estimate           - Estimate one action
POST   /api/v1/actions/{id}/estimate-all       - Estimate a subtree

Milestone scope: the same under /milestones/{id}/actions and
/milestone-actions/{id}.
"""

from __future__ import annotations

import datetime as dt
import uuid

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import Field
from sqlalchemy.ext.asyncio import AsyncSession

from goal_tracker.api.deps import get_mutation_engine
from goal_tracker.api.schemas import ActionInput, ActionResponse, ApiModel
from goal_tracker.auth.dependencies import AuthenticatedUser, get_current_user
from goal_tracker.config import Settings, get_settings
from goal_tracker.core.action_tree import TreeBuildResult
from goal_tracker.database import get_db_session
from goal_tracker.enhancement.client import EnhancementError
from goal_tracker.enhancement.schemas import EnhancementSource
from goal_tracker.models.action import DEFAULT_IMPACT
from goal_tracker.services.action_service import (
    ActionNotFoundError,
    ActionScope,
    ActionService,
    DuplicateActionError,
    NewAction,
    ScopeNotFoundError,
)
from goal_tracker.services.mutation_engine import (
    ActionMutationEngine,
    BreakdownNotAllowedError,
    BulkEstimateOutcome,
    NodeNotInTreeError,
)

log = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Request / Response schemas
# ---------------------------------------------------------------------------


class CreateActionRequest(ApiModel):
    title: str = Field(..., min_length=1, max_length=500)
    date: dt.date
    impact: int = Field(default=DEFAULT_IMPACT, ge=0)
    completed: bool = False
    parent_id: uuid.UUID | None = None
    level: int | None = Field(default=None, ge=0)
    is_expanded: bool | None = None
    notes: str | None = None
    estimated_time: int | None = Field(default=None, ge=0)
    actual_time: int | None = Field(default=None, ge=0)


class UpdateActionRequest(ApiModel):
    title: str | None = Field(default=None, min_length=1, max_length=500)
    completed: bool | None = None
    date: dt.date | None = None
    impact: int | None = Field(default=None, ge=0)
    level: int | None = Field(default=None, ge=0)
    is_expanded: bool | None = None
    notes: str | None = None
    estimated_time: int | None = Field(default=None, ge=0)
    actual_time: int | None = Field(default=None, ge=0)
    time_generated: bool | None = None


class SaveTreeRequest(ApiModel):
    actions: list[ActionInput]


class ActionTreeResponse(ApiModel):
    actions: list[ActionResponse]
    orphans: list[str] = Field(default_factory=list)


class SaveTreeResponse(ActionTreeResponse):
    inserted: int
    updated: int
    skipped: list[str] = Field(default_factory=list)


class ToggleResponse(ApiModel):
    action: ActionResponse
    goal_progress: int | None = None


class BreakdownResponse(ApiModel):
    action: ActionResponse
    created: list[ActionResponse] = Field(default_factory=list)
    toggled: bool
    source: EnhancementSource | None = None
    reasoning: str = ""


class EstimateResponse(ApiModel):
    action: ActionResponse
    estimated_minutes: int


class EstimateFailureResponse(ApiModel):
    node_id: str
    error: str


class BulkEstimateResponse(ApiModel):
    estimated: dict[str, int]
    skipped: list[str]
    failures: list[EstimateFailureResponse]
    total_minutes: int
    actions: list[ActionResponse]


def _tree_response(tree: TreeBuildResult) -> ActionTreeResponse:
    return ActionTreeResponse(
        actions=[ActionResponse.from_node(node) for node in tree.roots],
        orphans=tree.orphans,
    )


def _bulk_response(outcome: BulkEstimateOutcome) -> BulkEstimateResponse:
    return BulkEstimateResponse(
        estimated=outcome.estimated,
        skipped=outcome.skipped,
        failures=[
            EstimateFailureResponse(node_id=f.node_id, error=f.error) for f in outcome.failures
        ],
        total_minutes=outcome.total_minutes,
        actions=[ActionResponse.from_node(node) for node in outcome.nodes],
    )


def _action_not_found(action_id: uuid.UUID) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"Action {action_id} not found",
    )


def _scope_not_found(scope: ActionScope, owner_id: uuid.UUID) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"{str(scope).capitalize()} {owner_id} not found",
    )


# ---------------------------------------------------------------------------
# Router factory
# ---------------------------------------------------------------------------


def make_action_router(
    scope: ActionScope,
    *,
    collection_path: str,
    item_path: str,
    tag: str,
) -> APIRouter:
    """Build the action endpoints for one scope.

    ``collection_path`` must contain ``{owner_id}`` and ``item_path`` must
    contain ``{action_id}``.
    """
    router = APIRouter(tags=[tag])

    def _service(
        db: AsyncSession,
        settings: Settings,
        engine: ActionMutationEngine | None = None,
    ) -> ActionService:
        return ActionService(db, orphan_policy=settings.orphan_policy, engine=engine)

    @router.get(collection_path, response_model=ActionTreeResponse, name=f"{scope}_list_actions")
    async def list_actions(
        owner_id: uuid.UUID,
        current_user: AuthenticatedUser = Depends(get_current_user),
        db: AsyncSession = Depends(get_db_session),
        settings: Settings = Depends(get_settings),
    ) -> ActionTreeResponse:
        try:
            tree = await _service(db, settings).list_tree(scope, owner_id, current_user.id)
        except ScopeNotFoundError:
            raise _scope_not_found(scope, owner_id)
        return _tree_response(tree)

    @router.post(
        collection_path,
        response_model=ActionResponse,
        status_code=status.HTTP_201_CREATED,
        name=f"{scope}_create_action",
    )
    async def create_action(
        owner_id: uuid.UUID,
        request: CreateActionRequest,
        current_user: AuthenticatedUser = Depends(get_current_user),
        db: AsyncSession = Depends(get_db_session),
        settings: Settings = Depends(get_settings),
    ) -> ActionResponse:
        data = NewAction(
            title=request.title,
            date=request.date,
            impact=request.impact,
            completed=request.completed,
            level=request.level,
            expanded=request.is_expanded,
            notes=request.notes,
            estimated_time=request.estimated_time,
            actual_time=request.actual_time,
            parent_id=request.parent_id,
        )
        try:
            row = await _service(db, settings).add_action(scope, owner_id, current_user.id, data)
        except ScopeNotFoundError:
            raise _scope_not_found(scope, owner_id)
        except ActionNotFoundError:
            raise _action_not_found(request.parent_id or owner_id)

        log.info("actions.created", scope=str(scope), action_id=str(row.id))
        return ActionResponse.from_row(row, default_level=scope.default_level)

    @router.put(collection_path, response_model=SaveTreeResponse, name=f"{scope}_save_actions")
    async def save_actions(
        owner_id: uuid.UUID,
        request: SaveTreeRequest,
        current_user: AuthenticatedUser = Depends(get_current_user),
        db: AsyncSession = Depends(get_db_session),
        settings: Settings = Depends(get_settings),
    ) -> SaveTreeResponse:
        """Persist a tree edited on the client: update known ids, insert new nodes."""
        roots = [item.to_node(level=scope.default_level) for item in request.actions]
        try:
            result = await _service(db, settings).save_tree(
                scope, owner_id, current_user.id, roots
            )
        except ScopeNotFoundError:
            raise _scope_not_found(scope, owner_id)
        except DuplicateActionError as exc:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)
            )

        tree = _tree_response(result.tree)
        return SaveTreeResponse(
            actions=tree.actions,
            orphans=tree.orphans,
            inserted=result.inserted,
            updated=result.updated,
            skipped=result.skipped,
        )

    @router.post(
        f"{collection_path}/estimate",
        response_model=BulkEstimateResponse,
        name=f"{scope}_estimate_scope",
    )
    async def estimate_scope(
        owner_id: uuid.UUID,
        current_user: AuthenticatedUser = Depends(get_current_user),
        db: AsyncSession = Depends(get_db_session),
        settings: Settings = Depends(get_settings),
        engine: ActionMutationEngine = Depends(get_mutation_engine),
    ) -> BulkEstimateResponse:
        """Estimate every action in the scope that has no estimate yet."""
        try:
            outcome = await _service(db, settings, engine).estimate_all(
                scope, current_user.id, owner_id=owner_id
            )
        except ScopeNotFoundError:
            raise _scope_not_found(scope, owner_id)
        return _bulk_response(outcome)

    @router.patch(item_path, response_model=ActionResponse, name=f"{scope}_update_action")
    async def update_action(
        action_id: uuid.UUID,
        request: UpdateActionRequest,
        current_user: AuthenticatedUser = Depends(get_current_user),
        db: AsyncSession = Depends(get_db_session),
        settings: Settings = Depends(get_settings),
    ) -> ActionResponse:
        changes = request.model_dump(exclude_unset=True)
        if "is_expanded" in changes:
            changes["expanded"] = changes.pop("is_expanded")
        # title/completed/impact/time_generated are NOT NULL columns
        for required in ("title", "completed", "date", "impact", "time_generated"):
            if required in changes and changes[required] is None:
                del changes[required]
        try:
            row = await _service(db, settings).update_action(
                scope, action_id, current_user.id, changes
            )
        except ActionNotFoundError:
            raise _action_not_found(action_id)
        return ActionResponse.from_row(row, default_level=scope.default_level)

    @router.post(f"{item_path}/toggle", response_model=ToggleResponse, name=f"{scope}_toggle_action")
    async def toggle_action(
        action_id: uuid.UUID,
        current_user: AuthenticatedUser = Depends(get_current_user),
        db: AsyncSession = Depends(get_db_session),
        settings: Settings = Depends(get_settings),
    ) -> ToggleResponse:
        """Flip completion on exactly this action."""
        try:
            row, progress = await _service(db, settings).toggle_action(
                scope, action_id, current_user.id
            )
        except ActionNotFoundError:
            raise _action_not_found(action_id)
        return ToggleResponse(
            action=ActionResponse.from_row(row, default_level=scope.default_level),
            goal_progress=progress,
        )

    @router.post(
        f"{item_path}/breakdown",
        response_model=BreakdownResponse,
        name=f"{scope}_breakdown_action",
    )
    async def breakdown_action(
        action_id: uuid.UUID,
        current_user: AuthenticatedUser = Depends(get_current_user),
        db: AsyncSession = Depends(get_db_session),
        settings: Settings = Depends(get_settings),
        engine: ActionMutationEngine = Depends(get_mutation_engine),
    ) -> BreakdownResponse:
        """Generate 3-5 sub-actions, or expand/collapse existing ones.

        Enhancement failures fall back to a generic four-step breakdown.
        """
        try:
            outcome = await _service(db, settings, engine).breakdown(
                scope, action_id, current_user.id
            )
        except (ActionNotFoundError, NodeNotInTreeError):
            raise _action_not_found(action_id)
        except BreakdownNotAllowedError as exc:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))

        return BreakdownResponse(
            action=ActionResponse.from_node(outcome.node),
            created=[ActionResponse.from_node(node) for node in outcome.created],
            toggled=outcome.toggled,
            source=outcome.source,
            reasoning=outcome.reasoning,
        )

    @router.post(
        f"{item_path}/estimate",
        response_model=EstimateResponse,
        name=f"{scope}_estimate_action",
    )
    async def estimate_action(
        action_id: uuid.UUID,
        current_user: AuthenticatedUser = Depends(get_current_user),
        db: AsyncSession = Depends(get_db_session),
        settings: Settings = Depends(get_settings),
        engine: ActionMutationEngine = Depends(get_mutation_engine),
    ) -> EstimateResponse:
        """Estimate one action. There is no fallback: failures return 502."""
        try:
            row, minutes = await _service(db, settings, engine).estimate(
                scope, action_id, current_user.id
            )
        except (ActionNotFoundError, NodeNotInTreeError):
            raise _action_not_found(action_id)
        except EnhancementError as exc:
            log.warning(
                "actions.estimate_failed",
                scope=str(scope),
                action_id=str(action_id),
                error_type=type(exc).__name__,
            )
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail="Time estimate unavailable",
            )
        return EstimateResponse(
            action=ActionResponse.from_row(row, default_level=scope.default_level),
            estimated_minutes=minutes,
        )

    @router.post(
        f"{item_path}/estimate-all",
        response_model=BulkEstimateResponse,
        name=f"{scope}_estimate_subtree",
    )
    async def estimate_subtree(
        action_id: uuid.UUID,
        current_user: AuthenticatedUser = Depends(get_current_user),
        db: AsyncSession = Depends(get_db_session),
        settings: Settings = Depends(get_settings),
        engine: ActionMutationEngine = Depends(get_mutation_engine),
    ) -> BulkEstimateResponse:
        """Estimate this action and every descendant lacking an estimate."""
        try:
            outcome = await _service(db, settings, engine).estimate_all(
                scope, current_user.id, action_id=action_id
            )
        except (ActionNotFoundError, NodeNotInTreeError):
            raise _action_not_found(action_id)
        return _bulk_response(outcome)

    return router


goal_actions_router = make_action_router(
    ActionScope.GOAL,
    collection_path="/goals/{owner_id}/actions",
    item_path="/actions/{action_id}",
    tag="actions",
)

milestone_actions_router = make_action_router(
    ActionScope.MILESTONE,
    collection_path="/milestones/{owner_id}/actions",
    item_path="/milestone-actions/{action_id}",
    tag="milestone-actions",
)
