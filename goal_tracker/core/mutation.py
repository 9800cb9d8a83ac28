"""Pure operations on immutable action trees.

``apply_update`` replaces exactly one node, rebuilding only the chain of
ancestors above it. Untouched siblings and subtrees are the same objects in
the input and the output. An id that does not resolve is a no-op: late
results for a node that no longer exists must not fail.

Nothing in this module touches storage or the enhancement service; the
async breakdown/estimate operations live in
``goal_tracker.services.mutation_engine``.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence
from dataclasses import replace
from typing import Any

from goal_tracker.core.action_tree import ActionNode, iter_depth_first

# Fields a patch may set. ``children`` replaces the child list wholesale.
PATCHABLE_FIELDS = frozenset(
    {
        "title",
        "completed",
        "date",
        "impact",
        "level",
        "expanded",
        "notes",
        "estimated_time",
        "actual_time",
        "time_generated",
        "children",
    }
)


def _validate_patch(patch: Mapping[str, Any]) -> None:
    unknown = set(patch) - PATCHABLE_FIELDS
    if unknown:
        raise ValueError(f"Unknown action fields in patch: {sorted(unknown)}")


def _merge(node: ActionNode, patch: Mapping[str, Any]) -> ActionNode:
    changes = dict(patch)
    if "children" in changes:
        changes["children"] = tuple(changes["children"])
    return replace(node, **changes)


def _update_in(
    nodes: Sequence[ActionNode],
    target_id: str,
    patch: Mapping[str, Any],
) -> tuple[ActionNode, ...] | None:
    """Return a new sibling tuple with the target replaced, or None if absent."""
    for i, node in enumerate(nodes):
        if node.id == target_id:
            return (*nodes[:i], _merge(node, patch), *nodes[i + 1 :])
        if node.children:
            new_children = _update_in(node.children, target_id, patch)
            if new_children is not None:
                rebuilt = replace(node, children=new_children)
                return (*nodes[:i], rebuilt, *nodes[i + 1 :])
    return None


def apply_update(
    nodes: Sequence[ActionNode],
    target_id: str,
    patch: Mapping[str, Any],
) -> list[ActionNode]:
    """Shallow-merge ``patch`` into the node with ``target_id``.

    Raises:
        ValueError: If the patch names a field that is not patchable.
    """
    _validate_patch(patch)
    updated = _update_in(nodes, target_id, patch)
    if updated is None:
        return list(nodes)
    return list(updated)


def find_node(nodes: Sequence[ActionNode], node_id: str) -> ActionNode | None:
    for node in iter_depth_first(nodes):
        if node.id == node_id:
            return node
    return None


def iter_nodes(nodes: Sequence[ActionNode]) -> Iterator[ActionNode]:
    return iter_depth_first(nodes)


def toggle_completed(nodes: Sequence[ActionNode], node_id: str) -> list[ActionNode]:
    """Flip ``completed`` on exactly one node. Parents and children keep theirs."""
    node = find_node(nodes, node_id)
    if node is None:
        return list(nodes)
    return apply_update(nodes, node_id, {"completed": not node.completed})


def can_break_down(node: ActionNode, max_depth: int) -> bool:
    return node.level < max_depth


def compute_progress(roots: Sequence[ActionNode]) -> int:
    """Percentage of completed root actions, rounded half up. 0 when empty.

    Only the given nodes count; sub-action completion does not roll up.
    """
    total = len(roots)
    if total == 0:
        return 0
    completed = sum(1 for node in roots if node.completed)
    return (200 * completed + total) // (2 * total)


def total_estimated_minutes(nodes: Sequence[ActionNode]) -> int:
    """Sum of estimates over every node in the forest; missing counts as 0."""
    return sum(node.estimated_time or 0 for node in iter_depth_first(nodes))


def nodes_missing_estimate(nodes: Sequence[ActionNode]) -> list[ActionNode]:
    return [node for node in iter_depth_first(nodes) if node.estimated_time is None]


def mint_child_id(parent_id: str, index: int, timestamp_ms: int) -> str:
    """Identifier for a generated child, unique within its tree."""
    return f"{parent_id}-sub-{timestamp_ms}-{index}"
