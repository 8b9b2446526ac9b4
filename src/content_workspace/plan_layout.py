import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import networkx as nx

logger = logging.getLogger(__name__)

PositionMap = Dict[str, Tuple[float, float]]
DependencyLookup = Callable[["PlanNode"], Sequence[str]]

LEVEL_X_GAP = 320.0
NODE_Y_GAP = 150.0
PADDING_X = 120.0
PADDING_Y = 80.0


@dataclass(frozen=True)
class PlanNode:
    id: str
    title: str
    dependencies: Tuple[str, ...] = ()


@dataclass(frozen=True)
class LayoutDiagnostic:
    unplaced: Tuple[str, ...]
    missing_references: Tuple[Tuple[str, str], ...]
    cycle: Tuple[str, ...]

    def describe(self) -> str:
        details = [f"unplaced={list(self.unplaced)}"]
        if self.missing_references:
            details.append(
                "missing=" + ", ".join(f"{node}->{dep}" for node, dep in self.missing_references)
            )
        if self.cycle:
            details.append("cycle=" + " -> ".join(self.cycle + self.cycle[:1]))
        return "; ".join(details)


@dataclass(frozen=True)
class LevelLayout:
    levels: Tuple[Tuple[str, ...], ...]
    node_levels: Dict[str, int]
    diagnostic: Optional[LayoutDiagnostic] = None

    @property
    def degenerate(self) -> bool:
        return self.diagnostic is not None


@dataclass(frozen=True)
class Connector:
    source: str
    target: str
    start: Tuple[float, float]
    end: Tuple[float, float]


def compute_dependency_levels(
    nodes: Sequence[PlanNode], dependency_lookup: Optional[DependencyLookup] = None
) -> LevelLayout:
    """Group nodes into levels so every dependency sits in an earlier level.

    When no remaining node qualifies (a cycle or an undeclared dependency),
    all remaining nodes are placed in one final level and a diagnostic is
    attached.
    """
    lookup = dependency_lookup or (lambda node: node.dependencies)
    dependencies = {node.id: tuple(lookup(node)) for node in nodes}

    placed: Dict[str, int] = {}
    levels: List[Tuple[str, ...]] = []
    remaining = [node.id for node in nodes]
    diagnostic = None

    while remaining:
        ready = tuple(
            node_id for node_id in remaining if all(dep in placed for dep in dependencies[node_id])
        )
        if not ready:
            diagnostic = _diagnose(remaining, dependencies)
            logger.warning(
                "Circular dependency or missing node detected in graph layout: %s", diagnostic.describe()
            )
            ready = tuple(remaining)

        for node_id in ready:
            placed[node_id] = len(levels)
        levels.append(ready)
        ready_ids = set(ready)
        remaining = [node_id for node_id in remaining if node_id not in ready_ids]

    return LevelLayout(levels=tuple(levels), node_levels=placed, diagnostic=diagnostic)


def calculate_level_positions(levels: Sequence[Sequence[str]]) -> PositionMap:
    positions: PositionMap = {}
    for level_idx, level in enumerate(levels):
        start_y = -((len(level) - 1) * NODE_Y_GAP) / 2.0
        x = level_idx * LEVEL_X_GAP
        for index, node_id in enumerate(level):
            positions[node_id] = (x, start_y + index * NODE_Y_GAP)
    return _shift_positions_to_positive(positions)


def build_connectors(nodes: Sequence[PlanNode], positions: PositionMap) -> List[Connector]:
    connectors: List[Connector] = []
    for node in nodes:
        if node.id not in positions:
            continue
        for dep in node.dependencies:
            if dep not in positions:
                continue
            connectors.append(Connector(dep, node.id, positions[dep], positions[node.id]))
    return connectors


def _diagnose(remaining: Sequence[str], dependencies: Dict[str, Tuple[str, ...]]) -> LayoutDiagnostic:
    known = set(dependencies)
    missing = tuple(
        (node_id, dep) for node_id in remaining for dep in dependencies[node_id] if dep not in known
    )

    graph = nx.DiGraph()
    graph.add_nodes_from(remaining)
    remaining_ids = set(remaining)
    for node_id in remaining:
        for dep in dependencies[node_id]:
            if dep in remaining_ids:
                graph.add_edge(dep, node_id)
    try:
        cycle = tuple(source for source, _ in nx.find_cycle(graph))
    except nx.NetworkXNoCycle:
        cycle = ()

    return LayoutDiagnostic(unplaced=tuple(remaining), missing_references=missing, cycle=cycle)


def _shift_positions_to_positive(positions: PositionMap) -> PositionMap:
    if not positions:
        return positions

    min_x = min(pos[0] for pos in positions.values())
    min_y = min(pos[1] for pos in positions.values())

    shift_x = -min_x + PADDING_X if min_x < PADDING_X else 0.0
    shift_y = -min_y + PADDING_Y if min_y < PADDING_Y else 0.0

    return {
        node_id: (float(x + shift_x), float(y + shift_y))
        for node_id, (x, y) in positions.items()
    }
