"""Action tree construction and flattening.

Actions are stored flat: one row per node with an optional ``parent_id``
in the same scope (one goal's actions, or one milestone's actions). The API
and the mutation engine work on nested trees. This module converts between
the two shapes.

Forward build (flat -> tree):

1. Index every record by key in one pass.
2. Attach each record to its parent's child list, keeping the supplied
   order (storage returns rows in creation order).
3. Records whose parent key does not resolve are orphans. Records on a
   parent cycle are never reachable from a root and are orphans too.
   Orphans are always logged and returned in ``TreeBuildResult.orphans``;
   the ``OrphanPolicy`` decides whether they are promoted to roots or
   dropped.
4. A node with children is expanded unless storage says it was explicitly
   collapsed (``is_expanded is False``).

Stored ``level`` is authoritative. The builder never recomputes depth from
the parent chain, so an inconsistent stored level survives as-is.

Reverse flatten (tree -> flat) walks depth-first, pre-order. Persisted nodes
keep their ``id``; nodes minted in memory come out with ``id=None`` so the
store inserts them.
"""

from __future__ import annotations

import datetime as dt
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass, field
from typing import Any

import structlog

from goal_tracker.config import OrphanPolicy

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ActionNode:
    """One node of an in-memory action tree.

    Nodes are immutable; updates produce new nodes (see ``core.mutation``).
    ``persisted`` is False for nodes created in memory (AI breakdown,
    fallback suggestions) that have not been written to storage yet.
    """

    id: str
    title: str
    completed: bool = False
    date: dt.date | None = None
    impact: int = 10
    level: int = 0
    expanded: bool = False
    notes: str | None = None
    estimated_time: int | None = None
    actual_time: int | None = None
    time_generated: bool = False
    parent_id: str | None = None
    children: tuple[ActionNode, ...] = ()
    persisted: bool = True
    orphaned: bool = False


@dataclass(frozen=True)
class FlatAction:
    """Storage-shaped action record.

    ``key`` identifies the node inside one tree build/flatten round and is
    always set. ``id`` is the persisted identifier, or None for a node that
    still has to be inserted. ``parent_key`` points at the parent's ``key``.
    """

    key: str
    title: str
    id: str | None = None
    parent_key: str | None = None
    completed: bool = False
    date: dt.date | None = None
    impact: int = 10
    level: int | None = None
    is_expanded: bool | None = None
    notes: str | None = None
    estimated_time: int | None = None
    actual_time: int | None = None
    time_generated: bool = False

    @classmethod
    def from_row(cls, row: Any) -> FlatAction:
        """Build a record from an ORM action row (goal or milestone scope)."""
        return cls(
            key=str(row.id),
            id=str(row.id),
            parent_key=str(row.parent_id) if row.parent_id is not None else None,
            title=row.title,
            completed=row.completed,
            date=row.date,
            impact=row.impact,
            level=row.level,
            is_expanded=row.is_expanded,
            notes=row.notes,
            estimated_time=row.estimated_time,
            actual_time=row.actual_time,
            time_generated=row.time_generated,
        )


@dataclass
class TreeBuildResult:
    roots: list[ActionNode] = field(default_factory=list)
    orphans: list[str] = field(default_factory=list)  # keys of orphaned records

    @property
    def has_orphans(self) -> bool:
        return bool(self.orphans)


def build_tree(
    records: Iterable[FlatAction],
    *,
    default_level: int = 0,
    orphan_policy: OrphanPolicy = OrphanPolicy.PROMOTE,
    scope: str | None = None,
) -> TreeBuildResult:
    """Assemble flat records into a forest.

    Args:
        records: Flat records in creation order.
        default_level: Level used when a record has no stored level
            (0 for goal actions, 1 for milestone actions).
        orphan_policy: Placement of records with an unresolvable parent.
        scope: Free-form scope label, only used in log events.

    Never raises on malformed input.
    """
    ordered: list[FlatAction] = []
    index: dict[str, FlatAction] = {}
    for record in records:
        if record.key in index:
            log.warning("action_tree.duplicate_key", key=record.key, scope=scope)
            continue
        index[record.key] = record
        ordered.append(record)

    children_of: dict[str, list[str]] = {key: [] for key in index}
    root_keys: list[str] = []
    dangling: list[str] = []
    for record in ordered:
        parent = record.parent_key
        if parent is None:
            root_keys.append(record.key)
        elif parent in index and parent != record.key:
            children_of[parent].append(record.key)
        else:
            dangling.append(record.key)

    result = TreeBuildResult()
    placed: set[str] = set()

    def _assemble(key: str, *, orphaned: bool = False) -> ActionNode:
        placed.add(key)
        record = index[key]
        kids = tuple(
            _assemble(child_key)
            for child_key in children_of[key]
            if child_key not in placed
        )
        if kids:
            expanded = record.is_expanded is not False
        else:
            expanded = bool(record.is_expanded)
        return ActionNode(
            id=key,
            title=record.title,
            completed=record.completed,
            date=record.date,
            impact=record.impact,
            level=record.level if record.level is not None else default_level,
            expanded=expanded,
            notes=record.notes,
            estimated_time=record.estimated_time,
            actual_time=record.actual_time,
            time_generated=record.time_generated,
            parent_id=None if orphaned else record.parent_key,
            children=kids,
            persisted=record.id is not None,
            orphaned=orphaned,
        )

    def _place_orphan(key: str, reason: str) -> None:
        result.orphans.append(key)
        log.warning(
            "action_tree.orphan",
            key=key,
            parent_key=index[key].parent_key,
            reason=reason,
            policy=str(orphan_policy),
            scope=scope,
        )
        if orphan_policy is OrphanPolicy.PROMOTE:
            result.roots.append(_assemble(key, orphaned=True))
        else:
            _mark_subtree(key)

    def _mark_subtree(key: str) -> None:
        stack = [key]
        while stack:
            current = stack.pop()
            if current in placed:
                continue
            placed.add(current)
            stack.extend(children_of[current])

    # Roots and dangling-parent orphans keep their relative supplied order.
    dangling_set = set(dangling)
    for record in ordered:
        if record.key in placed:
            continue
        if record.parent_key is None:
            result.roots.append(_assemble(record.key))
        elif record.key in dangling_set:
            reason = "self_parent" if record.parent_key == record.key else "parent_not_found"
            _place_orphan(record.key, reason=reason)

    # Whatever is still unplaced sits on a parent cycle.
    for record in ordered:
        if record.key not in placed:
            _place_orphan(record.key, reason="parent_cycle")

    if result.orphans:
        log.info(
            "action_tree.built_with_orphans",
            scope=scope,
            total=len(ordered),
            orphans=len(result.orphans),
        )
    return result


def iter_depth_first(roots: Sequence[ActionNode]) -> Iterator[ActionNode]:
    """Yield every node pre-order, siblings left to right."""
    stack = list(reversed(roots))
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(node.children))


def flatten_tree(roots: Sequence[ActionNode]) -> list[FlatAction]:
    """Flatten a forest depth-first for persistence.

    Each record carries its parent's key. Persisted nodes keep their ``id``;
    new nodes get ``id=None``.
    """
    flat: list[FlatAction] = []

    def _visit(node: ActionNode, parent_key: str | None) -> None:
        flat.append(
            FlatAction(
                key=node.id,
                id=node.id if node.persisted else None,
                parent_key=parent_key,
                title=node.title,
                completed=node.completed,
                date=node.date,
                impact=node.impact,
                level=node.level,
                is_expanded=node.expanded,
                notes=node.notes,
                estimated_time=node.estimated_time,
                actual_time=node.actual_time,
                time_generated=node.time_generated,
            )
        )
        for child in node.children:
            _visit(child, node.id)

    for root in roots:
        _visit(root, None)
    return flat
