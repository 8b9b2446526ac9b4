from src.content_workspace.plan_layout import (
    PlanNode,
    build_connectors,
    calculate_level_positions,
    compute_dependency_levels,
)
from src.content_workspace.ui_mapper import to_flow_edge_specs, to_flow_node_specs


def test_to_flow_node_specs_maps_position_type_and_level():
    nodes = [PlanNode("a", "Setup"), PlanNode("b", "Build", ("a",)), PlanNode("c", "Ship", ("b",))]
    layout = compute_dependency_levels(nodes)
    positions = calculate_level_positions(layout.levels)
    specs = to_flow_node_specs(nodes, positions, layout)

    assert [spec["node_type"] for spec in specs] == ["input", "default", "output"]
    assert specs[0]["pos"] == positions["a"]
    assert specs[1]["data"]["content"] == "L2 · Build"
    assert specs[0]["source_position"] == "right"
    assert specs[0]["target_position"] == "left"


def test_to_flow_node_specs_defaults_missing_position():
    specs = to_flow_node_specs([PlanNode("solo", "Solo")], {})
    assert specs[0]["pos"] == (0.0, 0.0)
    assert specs[0]["data"]["content"] == "Solo"


def test_to_flow_edge_specs_uses_connectors():
    nodes = [PlanNode("a", "A"), PlanNode("b", "B", ("a",)), PlanNode("c", "C", ("a",))]
    positions = {"a": (0.0, 0.0), "b": (1.0, 0.0), "c": (1.0, 5.0)}
    specs = to_flow_edge_specs(build_connectors(nodes, positions))

    assert [spec["id"] for spec in specs] == ["a->b", "a->c"]
    assert specs[0]["edge_type"] == "straight"
    assert specs[1]["edge_type"] == "smoothstep"
