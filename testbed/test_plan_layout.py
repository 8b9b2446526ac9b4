import logging

import pytest

pytest.importorskip("networkx")

from src.content_workspace.plan_layout import (
    PADDING_X,
    PADDING_Y,
    PlanNode,
    build_connectors,
    calculate_level_positions,
    compute_dependency_levels,
)


def node(node_id, *deps):
    return PlanNode(id=node_id, title=node_id.upper(), dependencies=tuple(deps))


def test_diamond_levels_follow_input_order():
    nodes = [node("A"), node("B", "A"), node("C", "A"), node("D", "B", "C")]
    layout = compute_dependency_levels(nodes)

    assert layout.levels == (("A",), ("B", "C"), ("D",))
    assert layout.node_levels == {"A": 0, "B": 1, "C": 1, "D": 2}
    assert layout.degenerate is False


def test_tie_order_is_input_order_not_sorted():
    nodes = [node("root"), node("zeta", "root"), node("alpha", "root")]
    assert compute_dependency_levels(nodes).levels[1] == ("zeta", "alpha")


def test_two_cycle_terminates_in_one_fallback_level(caplog):
    nodes = [node("X", "Y"), node("Y", "X")]
    with caplog.at_level(logging.WARNING):
        layout = compute_dependency_levels(nodes)

    assert layout.levels == (("X", "Y"),)
    assert layout.degenerate is True
    assert set(layout.diagnostic.cycle) == {"X", "Y"}
    assert "Circular dependency or missing node" in caplog.text


def test_cycle_after_valid_prefix_keeps_earlier_levels():
    nodes = [node("A"), node("B", "A", "C"), node("C", "B"), node("D", "A")]
    layout = compute_dependency_levels(nodes)

    assert layout.levels == (("A",), ("D",), ("B", "C"))
    assert layout.diagnostic.unplaced == ("B", "C")


def test_missing_reference_is_reported():
    nodes = [node("A"), node("B", "ghost")]
    layout = compute_dependency_levels(nodes)

    assert layout.levels == (("A",), ("B",))
    assert layout.diagnostic.missing_references == (("B", "ghost"),)
    assert layout.diagnostic.cycle == ()
    assert "B->ghost" in layout.diagnostic.describe()


def test_custom_dependency_lookup_is_used():
    nodes = [PlanNode("1", "one"), PlanNode("2", "two")]
    layout = compute_dependency_levels(nodes, lambda n: ["1"] if n.id == "2" else [])
    assert layout.levels == (("1",), ("2",))


def test_empty_input_yields_no_levels():
    layout = compute_dependency_levels([])
    assert layout.levels == ()
    assert calculate_level_positions(layout.levels) == {}


def test_level_positions_advance_by_level_and_stay_positive():
    positions = calculate_level_positions((("A",), ("B", "C"), ("D",)))

    assert positions["A"][0] < positions["B"][0] < positions["D"][0]
    assert positions["B"][0] == positions["C"][0]
    assert positions["B"][1] < positions["C"][1]
    assert min(x for x, _ in positions.values()) >= PADDING_X
    assert min(y for _, y in positions.values()) >= PADDING_Y


def test_connectors_skip_unknown_positions():
    nodes = [node("A"), node("B", "A"), node("C", "A", "ghost")]
    positions = {"A": (0.0, 0.0), "B": (1.0, 0.0), "C": (1.0, 1.0)}
    connectors = build_connectors(nodes, positions)

    assert [(c.source, c.target) for c in connectors] == [("A", "B"), ("A", "C")]
    assert connectors[0].start == (0.0, 0.0)
    assert connectors[0].end == (1.0, 0.0)

    partial = build_connectors(nodes, {"A": (0.0, 0.0), "B": (1.0, 0.0)})
    assert [(c.source, c.target) for c in partial] == [("A", "B")]
