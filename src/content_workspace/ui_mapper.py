from typing import Any, Dict, List, Optional, Sequence

from .plan_layout import Connector, LevelLayout, PlanNode, PositionMap


def to_flow_node_specs(
    nodes: Sequence[PlanNode], positions: PositionMap, layout: Optional[LevelLayout] = None
) -> List[Dict[str, Any]]:
    has_dependents = {dep for node in nodes for dep in node.dependencies}
    specs: List[Dict[str, Any]] = []
    for node in nodes:
        x, y = positions.get(node.id, (0.0, 0.0))
        level = layout.node_levels.get(node.id) if layout is not None else None
        if not node.dependencies:
            node_type = "input"
        elif node.id not in has_dependents:
            node_type = "output"
        else:
            node_type = "default"

        content = node.title
        if level is not None:
            content = f"L{level + 1} · {node.title}"
        specs.append(
            {
                "id": node.id,
                "pos": (float(x), float(y)),
                "data": {"content": content},
                "node_type": node_type,
                "source_position": "right",
                "target_position": "left",
                "draggable": True,
            }
        )
    return specs


def to_flow_edge_specs(connectors: Sequence[Connector]) -> List[Dict[str, Any]]:
    specs: List[Dict[str, Any]] = []
    for connector in connectors:
        sy = connector.start[1]
        ty = connector.end[1]
        edge_type = "straight" if abs(ty - sy) < 1e-6 else "smoothstep"
        specs.append(
            {
                "id": f"{connector.source}->{connector.target}",
                "source": connector.source,
                "target": connector.target,
                "label": "",
                "animated": True,
                "edge_type": edge_type,
            }
        )
    return specs
