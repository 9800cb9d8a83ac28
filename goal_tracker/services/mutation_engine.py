"""Breakdown and time estimation on in-memory action trees.

The engine takes an immutable forest (``core.action_tree.ActionNode``),
talks to the enhancement service, and returns a new forest. It never
touches the database; ``ActionService`` loads the forest, calls in here,
and persists whatever changed.

Breakdown semantics:
- A node that already has children is never regenerated. Breaking it down
  again only toggles its expanded state.
- Nodes at ``max_depth`` or deeper cannot be broken down.
- Enhancement failures degrade to the fixed four-step fallback.

Estimation semantics:
- A single estimate either comes from the service or the call fails.
  There is no fallback number.
- The bulk variant estimates every node in a subtree that lacks an
  estimate, concurrently. Individual failures are collected and never abort
  the batch.
"""

from __future__ import annotations

import asyncio
import datetime as dt
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

import structlog

from goal_tracker.core.action_tree import ActionNode
from goal_tracker.core.mutation import (
    apply_update,
    can_break_down,
    find_node,
    iter_nodes,
    mint_child_id,
    total_estimated_minutes,
)
from goal_tracker.enhancement.client import EnhancementClient, EnhancementError
from goal_tracker.enhancement.fallback import breakdown_fallback
from goal_tracker.enhancement.schemas import (
    ActionBreakdown,
    BreakdownRequest,
    EnhancementSource,
    GoalContext,
    SubAction,
    TimeEstimateRequest,
)
from goal_tracker.models.action import DEFAULT_IMPACT

log = structlog.get_logger(__name__)


class BreakdownNotAllowedError(Exception):
    """Raised when a node is at or past the configured breakdown depth."""


class NodeNotInTreeError(LookupError):
    """Raised when the target node id is not part of the supplied forest."""


@dataclass
class BreakdownOutcome:
    nodes: list[ActionNode]
    node: ActionNode
    created: list[ActionNode] = field(default_factory=list)
    toggled: bool = False
    source: EnhancementSource | None = None
    reasoning: str = ""


@dataclass
class EstimateFailure:
    node_id: str
    error: str


@dataclass
class BulkEstimateOutcome:
    nodes: list[ActionNode]
    estimated: dict[str, int] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)
    failures: list[EstimateFailure] = field(default_factory=list)
    total_minutes: int = 0


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.UTC)


def _sub_action_notes(sub: SubAction) -> str | None:
    parts = [sub.description.strip()] if sub.description.strip() else []
    if sub.deliverable:
        parts.append(f"Deliverable: {sub.deliverable}")
    if sub.tools:
        parts.append("Tools: " + ", ".join(sub.tools))
    return "\n".join(parts) or None


class ActionMutationEngine:
    """Async tree operations that need the enhancement service."""

    def __init__(
        self,
        enhancement: EnhancementClient,
        *,
        max_depth: int = 3,
        clock: Callable[[], dt.datetime] = _utcnow,
    ) -> None:
        self._enhancement = enhancement
        self._max_depth = max_depth
        self._clock = clock

    @property
    def max_depth(self) -> int:
        return self._max_depth

    def can_break_down(self, node: ActionNode) -> bool:
        return can_break_down(node, self._max_depth)

    # ------------------------------------------------------------------ #
    # Breakdown
    # ------------------------------------------------------------------ #

    async def breakdown(
        self,
        nodes: Sequence[ActionNode],
        node_id: str,
        context: GoalContext | None = None,
    ) -> BreakdownOutcome:
        """Generate children for a node, or toggle it if it has some already.

        Raises:
            NodeNotInTreeError: If ``node_id`` is not in ``nodes``.
            BreakdownNotAllowedError: If the node is at the depth ceiling.
        """
        node = find_node(nodes, node_id)
        if node is None:
            raise NodeNotInTreeError(node_id)

        if node.children:
            updated = apply_update(nodes, node_id, {"expanded": not node.expanded})
            log.debug("mutation_engine.breakdown_toggled", node_id=node_id, expanded=not node.expanded)
            return BreakdownOutcome(
                nodes=updated,
                node=find_node(updated, node_id) or node,
                toggled=True,
            )

        if not self.can_break_down(node):
            raise BreakdownNotAllowedError(
                f"Action at level {node.level} cannot be broken down "
                f"(limit {self._max_depth})"
            )

        breakdown, source = await self._request_breakdown(node, context)

        now = self._clock()
        timestamp_ms = int(now.timestamp() * 1000)
        children = tuple(
            ActionNode(
                id=mint_child_id(node.id, i, timestamp_ms),
                title=sub.title,
                date=now.date(),
                impact=sub.estimated_minutes or DEFAULT_IMPACT,
                level=node.level + 1,
                expanded=False,
                notes=_sub_action_notes(sub),
                parent_id=node.id,
                persisted=False,
            )
            for i, sub in enumerate(breakdown.sub_actions)
        )
        updated = apply_update(nodes, node_id, {"children": children, "expanded": True})

        log.info(
            "mutation_engine.breakdown_created",
            node_id=node_id,
            level=node.level,
            children=len(children),
            source=str(source),
        )
        return BreakdownOutcome(
            nodes=updated,
            node=find_node(updated, node_id) or node,
            created=list(children),
            source=source,
            reasoning=breakdown.reasoning,
        )

    async def _request_breakdown(
        self,
        node: ActionNode,
        context: GoalContext | None,
    ) -> tuple[ActionBreakdown, EnhancementSource]:
        request = BreakdownRequest(
            title=node.title,
            depth_level=node.level,
            notes=node.notes,
            goal_context=context,
        )
        try:
            result = await self._enhancement.break_down_action(request)
        except EnhancementError as exc:
            log.warning(
                "mutation_engine.breakdown_fallback",
                node_id=node.id,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return breakdown_fallback(node.title), EnhancementSource.FALLBACK
        return result, EnhancementSource.AI

    # ------------------------------------------------------------------ #
    # Time estimation
    # ------------------------------------------------------------------ #

    @staticmethod
    def _estimate_request(node: ActionNode, context: GoalContext | None) -> TimeEstimateRequest:
        return TimeEstimateRequest(
            title=node.title,
            impact=node.impact,
            depth_level=node.level,
            notes=node.notes,
            goal_context=context,
        )

    async def estimate_time(
        self,
        nodes: Sequence[ActionNode],
        node_id: str,
        context: GoalContext | None = None,
    ) -> tuple[list[ActionNode], int]:
        """Estimate one node and return the new forest plus the minutes.

        Raises:
            NodeNotInTreeError: If ``node_id`` is not in ``nodes``.
            EnhancementError: If the service cannot produce an estimate. The
                node is left untouched.
        """
        node = find_node(nodes, node_id)
        if node is None:
            raise NodeNotInTreeError(node_id)

        minutes = await self._enhancement.estimate_time(self._estimate_request(node, context))
        updated = apply_update(
            nodes, node_id, {"estimated_time": minutes, "time_generated": True}
        )
        log.info("mutation_engine.estimated", node_id=node_id, minutes=minutes)
        return updated, minutes

    async def estimate_all(
        self,
        nodes: Sequence[ActionNode],
        root_id: str | None = None,
        context: GoalContext | None = None,
    ) -> BulkEstimateOutcome:
        """Estimate every node under ``root_id`` (or the whole forest) lacking one.

        ``total_minutes`` sums all estimates in the subtree afterwards,
        existing ones included. Nodes that failed count as zero.
        """
        if root_id is None:
            subtree: list[ActionNode] = list(nodes)
        else:
            root = find_node(nodes, root_id)
            if root is None:
                raise NodeNotInTreeError(root_id)
            subtree = [root]

        targets: list[ActionNode] = []
        outcome = BulkEstimateOutcome(nodes=list(nodes))
        for node in iter_nodes(subtree):
            if node.estimated_time is None:
                targets.append(node)
            else:
                outcome.skipped.append(node.id)

        results = await asyncio.gather(
            *(
                self._enhancement.estimate_time(self._estimate_request(node, context))
                for node in targets
            ),
            return_exceptions=True,
        )

        updated: list[ActionNode] = list(nodes)
        for node, result in zip(targets, results):
            if isinstance(result, Exception):
                log.error(
                    "mutation_engine.estimate_failed",
                    node_id=node.id,
                    error_type=type(result).__name__,
                    error=str(result),
                )
                outcome.failures.append(EstimateFailure(node_id=node.id, error=str(result)))
                continue
            updated = apply_update(
                updated, node.id, {"estimated_time": result, "time_generated": True}
            )
            outcome.estimated[node.id] = result

        outcome.nodes = updated
        if root_id is None:
            outcome.total_minutes = total_estimated_minutes(updated)
        else:
            new_root = find_node(updated, root_id)
            outcome.total_minutes = total_estimated_minutes([new_root]) if new_root else 0

        log.info(
            "mutation_engine.estimate_all",
            root_id=root_id,
            estimated=len(outcome.estimated),
            skipped=len(outcome.skipped),
            failed=len(outcome.failures),
            total_minutes=outcome.total_minutes,
        )
        return outcome
