"""Deterministic canvas layout.

``compute_layout`` is a pure function ``(nodes, config) -> {id: Position}``:
phases on one horizontal line ordered by ``phaseIndex``, each phase's steps
stacked in its column, each step's substeps indented just below it::

    phase 0             phase 1
      step                step
        substep             substep
        substep
      step

Steps or substeps whose parent is missing or of the wrong type are stacked
in an extra "unassigned" column to the right of the last phase so that
every node always receives coordinates.

The module also owns the positions used by the creation paths (single
create, bulk create, breakdown), which place new nodes without re-running
the full layout.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field
from typing import Optional

import structlog

from roadmap.config import LayoutConfig, settings
from roadmap.db.models import Node, NodeType, Position
from roadmap.db.nodes import list_nodes, update_node
from roadmap.db.projects import require_project

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Ordering helpers
# ---------------------------------------------------------------------------

def phase_sort_key(node: Node) -> tuple[int, int]:
    """``phaseIndex`` wins; ``order_index`` is the fallback and tie-break."""
    index = node.metadata.phase_index
    return (index if index is not None else node.order_index, node.order_index)


def ordered_phases(nodes: list[Node]) -> list[Node]:
    return sorted((n for n in nodes if n.type is NodeType.PHASE), key=phase_sort_key)


def _children(nodes: list[Node], parent_id: str, node_type: NodeType) -> list[Node]:
    return sorted(
        (n for n in nodes if n.parent_id == parent_id and n.type is node_type),
        key=lambda n: n.order_index,
    )


# ---------------------------------------------------------------------------
# Full layout
# ---------------------------------------------------------------------------

def _place_steps(
    nodes: list[Node],
    steps: list[Node],
    column_x: float,
    config: LayoutConfig,
    positions: dict[str, Position],
) -> None:
    cursor = config.STEP_START_Y
    for step in steps:
        step_x = column_x + config.STEP_OFFSET_X
        positions[step.id] = Position(step_x, cursor)
        cursor += config.SUBSTEP_START_OFFSET_Y

        for substep in _children(nodes, step.id, NodeType.SUBSTEP):
            positions[substep.id] = Position(step_x + config.SUBSTEP_OFFSET_X, cursor)
            cursor += config.SUBSTEP_SPACING_Y

        cursor += config.STEP_SPACING_Y


def compute_layout(
    nodes: list[Node], config: Optional[LayoutConfig] = None
) -> dict[str, Position]:
    """Assign coordinates to every node.  Pure and idempotent."""
    config = config or settings.layout
    positions: dict[str, Position] = {}

    phases = ordered_phases(nodes)
    for i, phase in enumerate(phases):
        phase_x = config.PHASE_START_X + i * config.PHASE_SPACING_X
        positions[phase.id] = Position(phase_x, config.PHASE_Y)
        _place_steps(nodes, _children(nodes, phase.id, NodeType.STEP), phase_x, config, positions)

    leftovers = sorted(
        (n for n in nodes if n.id not in positions), key=lambda n: n.order_index
    )
    if not leftovers:
        return positions

    column_x = config.PHASE_START_X + len(phases) * config.PHASE_SPACING_X
    _place_steps(
        nodes,
        [n for n in leftovers if n.type is NodeType.STEP],
        column_x,
        config,
        positions,
    )

    # Substeps hanging under nothing usable
    stray = [n for n in leftovers if n.id not in positions]
    if stray:
        cursor = max((p.y for p in positions.values()), default=config.STEP_START_Y)
        for node in stray:
            cursor += config.STEP_SPACING_Y
            positions[node.id] = Position(column_x + config.SUBSTEP_OFFSET_X, cursor)

    return positions


@dataclass
class LayoutResult:
    nodes: list[Node]
    updated_ids: list[str] = field(default_factory=list)
    failed_ids: list[str] = field(default_factory=list)


def apply_layout(
    conn: sqlite3.Connection,
    project_id: str,
    config: Optional[LayoutConfig] = None,
) -> LayoutResult:
    """Re-run the layout over a whole project and persist changed positions.

    A failed position write is logged and skipped; the next auto-format
    repairs it.

    Raises:
        NotFoundError: If the project does not exist.
    """
    require_project(conn, project_id)
    nodes = list_nodes(conn, project_id)
    positions = compute_layout(nodes, config)

    result = LayoutResult(nodes=[])
    for node in nodes:
        target = positions[node.id]
        if node.position == target:
            continue
        try:
            update_node(conn, node.id, position=target)
        except sqlite3.Error as exc:
            logger.warning("layout_write_failed", node_id=node.id, error=str(exc))
            result.failed_ids.append(node.id)
        else:
            result.updated_ids.append(node.id)

    result.nodes = list_nodes(conn, project_id)
    logger.info(
        "layout_applied",
        project_id=project_id,
        updated=len(result.updated_ids),
        failed=len(result.failed_ids),
    )
    return result


# ---------------------------------------------------------------------------
# Creation-path positions
# ---------------------------------------------------------------------------

def _subtree_bottom(nodes: list[Node], root: Node) -> float:
    """Lowest ``y`` among *root* and every known descendant."""
    bottom = root.position.y
    frontier = [root.id]
    while frontier:
        parent_id = frontier.pop()
        for node in nodes:
            if node.parent_id == parent_id:
                bottom = max(bottom, node.position.y)
                frontier.append(node.id)
    return bottom


def creation_position(
    existing: list[Node],
    node_type: NodeType,
    parent: Optional[Node] = None,
    phase_index: Optional[int] = None,
    config: Optional[LayoutConfig] = None,
) -> Position:
    """Default position for a node created outside a full layout pass.

    Phases go on the phase line at their ``phaseIndex`` column.  Anything
    with a parent is stacked below the parent's current subtree (indented
    for substeps); parentless steps/substeps stack in the default column.
    """
    config = config or settings.layout

    if node_type is NodeType.PHASE:
        if phase_index is None:
            phase_index = sum(1 for n in existing if n.type is NodeType.PHASE)
        return Position(
            config.PHASE_START_X + phase_index * config.PHASE_SPACING_X,
            config.PHASE_Y,
        )

    if parent is not None:
        offset_x = (
            config.SUBSTEP_OFFSET_X if node_type is NodeType.SUBSTEP else config.STEP_OFFSET_X
        )
        return Position(
            parent.position.x + offset_x,
            _subtree_bottom(existing, parent) + config.STACK_SPACING_Y,
        )

    loose = [
        n.position.y for n in existing
        if n.parent_id is None and n.type is not NodeType.PHASE
    ]
    y = max(loose) + config.STACK_SPACING_Y if loose else config.DEFAULT_Y
    return Position(config.DEFAULT_X, y)


def breakdown_positions(
    parent: Node, count: int, config: Optional[LayoutConfig] = None
) -> list[Position]:
    """Positions for *count* children spawned by a breakdown: to the right
    of the parent, stacked downwards."""
    config = config or settings.layout
    return [
        Position(
            parent.position.x + config.BREAKDOWN_OFFSET_X,
            parent.position.y + i * config.BREAKDOWN_SPACING_Y,
        )
        for i in range(count)
    ]
