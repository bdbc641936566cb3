"""Relationship graph: the canvas edge set and the link/unlink operations.

Edges are never stored as rows.  :func:`build_edges` derives them from

1. ``parent_id`` links of the two valid kinds (phase → step, step → substep),
2. the phase sequence (consecutive phases by ``phaseIndex``),
3. ``customEdges`` in the project metadata (never overriding 1–2),

and finally drops every id listed in ``deletedEdges``.

:func:`connect_nodes` / :func:`disconnect_edge` are the write side: a
valid-pair link becomes a ``parent_id``, anything else a custom edge, and
every disconnect leaves a tombstone that a later connect removes again.
"""

from __future__ import annotations

import re
import sqlite3
from time import time
from typing import Any, Optional

import structlog

from roadmap.db.models import Edge, Node, NodeType, Project, is_valid_parent
from roadmap.db.nodes import list_nodes, require_node, update_node
from roadmap.db.projects import require_project, update_project_metadata
from roadmap.errors import MalformedInputError, NotFoundError
from roadmap.tree.layout import ordered_phases

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Visual styles
# ---------------------------------------------------------------------------

PHASE_STEP_STYLE = {"stroke": "#3b82f6", "strokeWidth": 2}
STEP_SUBSTEP_STYLE = {"stroke": "#8b5cf6", "strokeWidth": 2}
PHASE_SEQUENCE_STYLE = {"stroke": "#10b981", "strokeWidth": 3, "strokeDasharray": "5,5"}
CUSTOM_EDGE_STYLE = {"stroke": "#6b7280", "strokeWidth": 2}

_HANDLES = {
    NodeType.STEP: ("phase-steps", "step-top", PHASE_STEP_STYLE),
    NodeType.SUBSTEP: ("step-bottom", "step-top", STEP_SUBSTEP_STYLE),
}

_UUID_RE = re.compile(
    r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}", re.IGNORECASE
)


def edge_id(source: str, target: str) -> str:
    return f"e-{source}-{target}"


def phase_edge_id(source: str, target: str) -> str:
    return f"e-phase-{source}-{target}"


# ---------------------------------------------------------------------------
# Derivation
# ---------------------------------------------------------------------------

def _tree_edge(parent: Node, child: Node) -> Edge:
    source_handle, target_handle, style = _HANDLES[child.type]
    return Edge(
        id=edge_id(parent.id, child.id),
        source=parent.id,
        target=child.id,
        source_handle=source_handle,
        target_handle=target_handle,
        style=dict(style),
    )


def _sequence_edge(a: Node, b: Node) -> Edge:
    return Edge(
        id=phase_edge_id(a.id, b.id),
        source=a.id,
        target=b.id,
        source_handle="phase-right",
        target_handle="phase-left",
        animated=True,
        style=dict(PHASE_SEQUENCE_STYLE),
        label="→",
        label_style={"fill": "#10b981", "fontWeight": 600},
        label_bg_style={"fill": "white"},
    )


def build_edges(nodes: list[Node], project: Project) -> list[Edge]:
    """Derive the edge list for a project.  Pure: reads nothing but its args.

    The result is ordered (tree edges by child ``order_index``, then the
    phase sequence, then custom edges in stored order) so equal inputs give
    equal lists, not just equal sets.
    """
    by_id = {n.id: n for n in nodes}
    edges: list[Edge] = []
    seen: set[str] = set()

    def emit(edge: Edge) -> None:
        if edge.id not in seen:
            seen.add(edge.id)
            edges.append(edge)

    for node in sorted(nodes, key=lambda n: n.order_index):
        parent = by_id.get(node.parent_id) if node.parent_id else None
        if parent is not None and is_valid_parent(parent.type, node.type):
            emit(_tree_edge(parent, node))

    phases = ordered_phases(nodes)
    for a, b in zip(phases, phases[1:]):
        emit(_sequence_edge(a, b))

    for raw in project.metadata.custom_edges:
        try:
            custom = Edge.from_dict(raw) if isinstance(raw, dict) else None
        except KeyError:
            custom = None
        if custom is None:
            logger.warning("custom_edge_malformed", project_id=project.id, edge=raw)
            continue
        custom.id = edge_id(custom.source, custom.target)
        emit(custom)

    tombstones = set(project.metadata.deleted_edges)
    return [e for e in edges if e.id not in tombstones]


def project_edges(conn: sqlite3.Connection, project_id: str) -> list[Edge]:
    project = require_project(conn, project_id)
    return build_edges(list_nodes(conn, project_id), project)


# ---------------------------------------------------------------------------
# Link / unlink
# ---------------------------------------------------------------------------

def connect_nodes(
    conn: sqlite3.Connection,
    project_id: str,
    source_id: str,
    target_id: str,
    *,
    source_handle: Optional[str] = None,
    target_handle: Optional[str] = None,
) -> Edge:
    """Draw a link from *source_id* to *target_id*.

    A phase → step or step → substep pair re-parents the target; any other
    pair is stored as a custom edge.  Either way the edge id is removed
    from the tombstone set so a previously deleted edge comes back.

    Raises:
        NotFoundError: If the project or either node is missing.
        MalformedInputError: On a self-link.
    """
    if source_id == target_id:
        raise MalformedInputError("Cannot connect a node to itself")
    project = require_project(conn, project_id)
    source = require_node(conn, source_id, project_id)
    target = require_node(conn, target_id, project_id)

    eid = edge_id(source.id, target.id)
    meta = project.metadata
    meta.deleted_edges = [d for d in meta.deleted_edges if d != eid]

    if is_valid_parent(source.type, target.type):
        update_node(conn, target.id, parent_id=source.id)
        edge = _tree_edge(source, target)
        logger.info("node_reparented", project_id=project_id, parent=source.id, child=target.id)
    else:
        edge = Edge(
            id=eid,
            source=source.id,
            target=target.id,
            source_handle=source_handle,
            target_handle=target_handle,
            style=dict(CUSTOM_EDGE_STYLE),
        )
        if not any(isinstance(e, dict) and e.get("id") == eid for e in meta.custom_edges):
            meta.custom_edges.append(edge.to_dict())
        logger.info("custom_edge_added", project_id=project_id, edge_id=eid)

    update_project_metadata(
        conn,
        project_id,
        custom_edges=meta.custom_edges,
        deleted_edges=meta.deleted_edges,
    )
    return edge


def parse_edge_endpoints(eid: str) -> tuple[str, str]:
    """Extract ``(source, target)`` from an edge id by its two UUIDs.

    Raises:
        MalformedInputError: If the id does not contain two UUIDs.
    """
    found = _UUID_RE.findall(eid)
    if len(found) < 2:
        raise MalformedInputError(f"Edge id does not name two nodes: {eid!r}")
    return found[0], found[1]


def disconnect_edge(conn: sqlite3.Connection, project_id: str, eid: str) -> list[Node]:
    """Remove an edge from the canvas.

    If the edge is the target's ``parent_id`` link, the target is detached
    from the tree.  A custom edge is dropped from ``customEdges``.  In every
    case the id is tombstoned so a derived edge stays hidden.

    Returns:
        The project's refreshed node list.
    """
    project = require_project(conn, project_id)
    nodes = list_nodes(conn, project_id)

    current = {e.id: e for e in build_edges(nodes, project)}
    if eid in current:
        source_id, target_id = current[eid].source, current[eid].target
    else:
        source_id, target_id = parse_edge_endpoints(eid)

    by_id = {n.id: n for n in nodes}
    target = by_id.get(target_id)
    if target is not None and target.parent_id == source_id:
        update_node(conn, target.id, parent_id=None)
        logger.info("node_detached", project_id=project_id, node_id=target.id)

    meta = project.metadata
    meta.custom_edges = [
        e for e in meta.custom_edges if not (isinstance(e, dict) and e.get("id") == eid)
    ]
    if eid not in meta.deleted_edges:
        meta.deleted_edges.append(eid)
    update_project_metadata(
        conn,
        project_id,
        custom_edges=meta.custom_edges,
        deleted_edges=meta.deleted_edges,
    )
    logger.info("edge_deleted", project_id=project_id, edge_id=eid)
    return list_nodes(conn, project_id)


def update_edge(
    conn: sqlite3.Connection, project_id: str, eid: str, updates: dict[str, Any]
) -> Edge:
    """Merge *updates* (camelCase edge fields) into a stored custom edge.

    ``id``, ``source`` and ``target`` cannot be changed this way.

    Raises:
        NotFoundError: If the project is missing or *eid* is not a custom edge.
    """
    project = require_project(conn, project_id)
    meta = project.metadata
    for i, raw in enumerate(meta.custom_edges):
        if isinstance(raw, dict) and raw.get("id") == eid:
            break
    else:
        raise NotFoundError(f"Custom edge not found: {eid!r}")

    frozen = {"id", "source", "target"}
    merged = {**raw, **{k: v for k, v in updates.items() if k not in frozen}}
    merged["updatedAt"] = int(time())
    meta.custom_edges[i] = merged
    update_project_metadata(conn, project_id, custom_edges=meta.custom_edges)
    return Edge.from_dict(merged)
