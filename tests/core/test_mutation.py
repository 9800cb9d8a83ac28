"""Tests for pure tree mutations and derived values."""

from __future__ import annotations

import pytest

from goal_tracker.core.action_tree import ActionNode
from goal_tracker.core.mutation import (
    apply_update,
    can_break_down,
    compute_progress,
    find_node,
    mint_child_id,
    nodes_missing_estimate,
    toggle_completed,
    total_estimated_minutes,
)


def node(node_id: str, *children: ActionNode, **kwargs) -> ActionNode:
    return ActionNode(id=node_id, title=node_id, children=children, **kwargs)


@pytest.fixture
def forest() -> list[ActionNode]:
    return [
        node(
            "a",
            node("a1", level=1, estimated_time=30),
            node("a2", node("a2x", level=2), level=1),
            estimated_time=10,
        ),
        node("b", node("b1", level=1)),
        node("c", completed=True),
    ]


class TestApplyUpdate:
    def test_changes_only_the_target(self, forest):
        updated = apply_update(forest, "a2x", {"title": "renamed"})
        assert find_node(updated, "a2x").title == "renamed"
        assert find_node(forest, "a2x").title == "a2x"

    def test_untouched_subtrees_are_shared(self, forest):
        updated = apply_update(forest, "a2x", {"completed": True})
        assert updated[1] is forest[1]
        assert updated[2] is forest[2]
        assert updated[0].children[0] is forest[0].children[0]
        assert updated[0] is not forest[0]

    def test_other_fields_of_target_untouched(self, forest):
        updated = apply_update(forest, "a", {"notes": "n"})
        target = updated[0]
        assert target.notes == "n"
        assert target.children == forest[0].children
        assert target.estimated_time == 10

    def test_missing_id_is_noop(self, forest):
        updated = apply_update(forest, "ghost", {"title": "x"})
        assert updated == forest
        assert all(u is f for u, f in zip(updated, forest))

    def test_unknown_field_raises(self, forest):
        with pytest.raises(ValueError, match="Unknown action fields"):
            apply_update(forest, "a", {"owner": "someone"})

    def test_children_replace_list(self, forest):
        updated = apply_update(forest, "b", {"children": [node("new", level=1)]})
        assert [c.id for c in find_node(updated, "b").children] == ["new"]


class TestToggle:
    def test_toggle_flips_only_the_node(self, forest):
        updated = toggle_completed(forest, "a2")
        assert find_node(updated, "a2").completed is True
        assert find_node(updated, "a").completed is False
        assert find_node(updated, "a2x").completed is False

    def test_toggle_twice_restores(self, forest):
        assert toggle_completed(toggle_completed(forest, "c"), "c") == forest


class TestProgress:
    def test_two_of_three_roots_is_67(self):
        roots = [node("x", completed=True), node("y", completed=True), node("z")]
        assert compute_progress(roots) == 67

    def test_half_rounds_up(self):
        roots = [node(str(i), completed=i < 1) for i in range(8)]
        # 1/8 = 12.5%
        assert compute_progress(roots) == 13

    def test_empty_is_zero(self):
        assert compute_progress([]) == 0

    def test_sub_action_completion_does_not_roll_up(self):
        roots = [node("p", node("p1", completed=True, level=1))]
        assert compute_progress(roots) == 0


class TestBreakdownDepth:
    @pytest.mark.parametrize(
        ("level", "allowed"),
        [(0, True), (2, True), (3, False), (4, False)],
    )
    def test_depth_ceiling(self, level, allowed):
        assert can_break_down(node("n", level=level), max_depth=3) is allowed


class TestEstimates:
    def test_total_sums_whole_forest(self, forest):
        assert total_estimated_minutes(forest) == 40

    def test_missing_estimates_listed_depth_first(self, forest):
        ids = [n.id for n in nodes_missing_estimate(forest)]
        assert ids == ["a2", "a2x", "b", "b1", "c"]


def test_minted_ids_are_unique_per_index():
    ids = {mint_child_id("p", i, 1700000000000) for i in range(4)}
    assert len(ids) == 4
