"""Tree-level services used by the HTTP routers, the CLI and the agent.

Each function validates the tree rules the store does not enforce, performs
the write(s) through :mod:`roadmap.db`, and then re-derives whatever the
write can have made stale (cascade, project aggregate).  Mutations return
the refreshed node list so callers can resync in one round trip.
"""

from __future__ import annotations

import sqlite3
from typing import Any, Optional

import structlog

from roadmap.config import LayoutConfig
from roadmap.db import nodes as node_store
from roadmap.db.models import (
    Edge,
    Node,
    NodeMetadata,
    NodeStatus,
    NodeType,
    Position,
    Priority,
    is_valid_parent,
)
from roadmap.db.projects import require_project
from roadmap.errors import MalformedInputError
from roadmap.tree.cascade import (
    ProjectProgress,
    recalculate_project_progress,
    resolve_cascade,
)
from roadmap.tree.graph import build_edges, connect_nodes, disconnect_edge
from roadmap.tree.layout import LayoutResult, apply_layout, creation_position

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------

def _enum(enum_cls, value: Any, field_name: str):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise MalformedInputError(
            f"Invalid {field_name} {value!r}; expected one of: {allowed}"
        ) from None


def parse_type(value: Any) -> NodeType:
    return _enum(NodeType, value, "type")


def parse_status(value: Any) -> NodeStatus:
    return _enum(NodeStatus, value, "status")


def parse_priority(value: Any) -> Priority:
    return _enum(Priority, value, "priority")


def check_parent(
    conn: sqlite3.Connection,
    project_id: str,
    node_type: NodeType,
    parent_id: Optional[str],
) -> Optional[Node]:
    """Resolve *parent_id* and enforce the phase → step → substep shape.

    Raises:
        NotFoundError: If the parent is not a node of *project_id*.
        MalformedInputError: If a phase gets a parent or the parent's type
            is not the one *node_type* hangs under.
    """
    if not parent_id:
        return None
    if node_type is NodeType.PHASE:
        raise MalformedInputError("A phase cannot have a parent")
    parent = node_store.require_node(conn, parent_id, project_id)
    if not is_valid_parent(parent.type, node_type):
        raise MalformedInputError(
            f"A {node_type.value} must be placed under a "
            f"{node_type.parent_type.value}, not a {parent.type.value}"
        )
    return parent


def next_phase_index(nodes: list[Node]) -> int:
    indices = [
        n.metadata.phase_index
        for n in nodes
        if n.type is NodeType.PHASE and n.metadata.phase_index is not None
    ]
    return max(indices) + 1 if indices else 0


# ---------------------------------------------------------------------------
# Derived-state refresh
# ---------------------------------------------------------------------------

def refresh_project(conn: sqlite3.Connection, project_id: str) -> None:
    """Re-run the full cascade and the project aggregate.

    Errors are logged and swallowed: both passes are idempotent and the
    next mutation repairs whatever this one left stale.
    """
    try:
        resolve_cascade(conn, project_id)
        recalculate_project_progress(conn, project_id)
    except sqlite3.Error:
        logger.error("project_refresh_failed", project_id=project_id, exc_info=True)


def recalculate_project(conn: sqlite3.Connection, project_id: str) -> ProjectProgress:
    """Explicit recompute of phase progress and the project aggregate."""
    return recalculate_project_progress(conn, project_id)


# ---------------------------------------------------------------------------
# Node services
# ---------------------------------------------------------------------------

def create_node(
    conn: sqlite3.Connection,
    project_id: str,
    node_type: Any,
    title: str,
    *,
    description: str = "",
    parent_id: Optional[str] = None,
    status: Any = NodeStatus.PENDING,
    priority: Any = Priority.MEDIUM,
    position: Optional[Position] = None,
    estimated_time: str = "",
    metadata: Optional[dict[str, Any]] = None,
    config: Optional[LayoutConfig] = None,
) -> Node:
    """Manually create a single node.

    Phases receive the next free ``phaseIndex``; the node gets the stacked
    default position unless *position* is given.

    Raises:
        MalformedInputError: On a missing title or an invalid type, status,
            priority or parent type.
        NotFoundError: If the project or the parent does not exist.
    """
    if not title or not title.strip():
        raise MalformedInputError("Missing required field: title")
    ntype = parse_type(node_type)
    nstatus = parse_status(status)
    npriority = parse_priority(priority)

    require_project(conn, project_id)
    parent = check_parent(conn, project_id, ntype, parent_id)
    existing = node_store.list_nodes(conn, project_id)

    meta = NodeMetadata.from_dict(metadata)
    meta.estimated_time = meta.estimated_time or estimated_time
    meta.progress = meta.progress or 0
    meta.extra.setdefault("createdManually", True)
    if ntype is NodeType.PHASE and meta.phase_index is None:
        meta.phase_index = next_phase_index(existing)

    if position is None:
        position = creation_position(
            existing, ntype, parent=parent, phase_index=meta.phase_index, config=config
        )

    node = node_store.create_node(
        conn,
        project_id,
        title.strip(),
        ntype,
        description=description,
        parent_id=parent.id if parent else None,
        status=nstatus,
        priority=npriority,
        position=position,
        metadata=meta,
    )
    logger.info(
        "node_created",
        project_id=project_id,
        node_id=node.id,
        type=ntype.value,
        order_index=node.order_index,
    )
    refresh_project(conn, project_id)
    return node_store.require_node(conn, node.id)


def set_node_status(conn: sqlite3.Connection, node_id: str, status: Any) -> list[Node]:
    """Write a node's status, then cascade and refresh the aggregate.

    Returns:
        The refreshed node list of the node's project.
    """
    nstatus = parse_status(status)
    node = node_store.require_node(conn, node_id)
    if node.status is not nstatus:
        node_store.update_node(conn, node_id, status=nstatus)
        logger.info(
            "node_status_changed",
            node_id=node_id,
            old=node.status.value,
            new=nstatus.value,
        )
    refresh_project(conn, node.project_id)
    return node_store.list_nodes(conn, node.project_id)


def move_node(conn: sqlite3.Connection, node_id: str, x: Any, y: Any) -> Node:
    """Update a node's canvas position."""
    try:
        position = Position(float(x), float(y))
    except (TypeError, ValueError):
        raise MalformedInputError("Position requires numeric x and y") from None
    node_store.require_node(conn, node_id)
    return node_store.update_node(conn, node_id, position=position)


def update_node_content(
    conn: sqlite3.Connection,
    node_id: str,
    patch: dict[str, Any],
    project_id: Optional[str] = None,
) -> Node:
    """Apply a partial patch to one node.

    Accepted keys: ``title``, ``description``, ``status``, ``priority``,
    ``parent_id``, ``estimated_time`` and ``metadata`` (merged key by key
    into the stored bag).  With *project_id* the node must belong to it.

    Raises:
        NotFoundError: If the node (or its new parent) is not in the project.
        MalformedInputError: On unknown keys or invalid values.
    """
    node = node_store.require_node(conn, node_id, project_id)
    allowed = {
        "title", "description", "status", "priority",
        "parent_id", "estimated_time", "metadata",
    }
    unknown = set(patch) - allowed
    if unknown:
        raise MalformedInputError(f"Cannot update field(s): {', '.join(sorted(unknown))}")

    fields: dict[str, Any] = {}
    if "title" in patch:
        if not patch["title"] or not str(patch["title"]).strip():
            raise MalformedInputError("Title cannot be empty")
        fields["title"] = str(patch["title"]).strip()
    if "description" in patch:
        fields["description"] = patch["description"] or ""
    if "status" in patch:
        fields["status"] = parse_status(patch["status"])
    if "priority" in patch:
        fields["priority"] = parse_priority(patch["priority"])
    if "parent_id" in patch:
        parent = check_parent(conn, node.project_id, node.type, patch["parent_id"])
        fields["parent_id"] = parent.id if parent else None
    if "metadata" in patch or "estimated_time" in patch:
        merged = {**node.metadata.to_dict(), **(patch.get("metadata") or {})}
        if "estimated_time" in patch:
            merged["estimatedTime"] = patch["estimated_time"]
        fields["metadata"] = NodeMetadata.from_dict(merged)

    if not fields:
        return node

    updated = node_store.update_node(conn, node_id, **fields)
    logger.info("node_updated", node_id=node_id, fields=sorted(fields))
    if "status" in fields or "parent_id" in fields:
        refresh_project(conn, node.project_id)
        updated = node_store.require_node(conn, node_id)
    return updated


def delete_node(conn: sqlite3.Connection, project_id: str, node_id: str) -> list[Node]:
    """Delete a node of *project_id* and its descendants, then refresh.

    Raises:
        NotFoundError: If the node does not exist in the project.
    """
    node_store.require_node(conn, node_id, project_id)
    node_store.delete_node(conn, node_id)
    logger.info("node_deleted", project_id=project_id, node_id=node_id)
    refresh_project(conn, project_id)
    return node_store.list_nodes(conn, project_id)


def find_orphans(nodes: list[Node]) -> list[Node]:
    """Nodes whose ``parent_id`` points at a node that no longer exists."""
    ids = {n.id for n in nodes}
    return [n for n in nodes if n.parent_id and n.parent_id not in ids]


def cleanup_project(
    conn: sqlite3.Connection,
    project_id: str,
    node_ids: Optional[list[str]] = None,
) -> int:
    """Delete the listed nodes, or every orphan when no ids are given.

    Returns:
        The number of nodes deleted (descendants removed by cascade are not
        counted).
    """
    require_project(conn, project_id)
    if not node_ids:
        node_ids = [n.id for n in find_orphans(node_store.list_nodes(conn, project_id))]
    deleted = node_store.delete_nodes(conn, project_id, node_ids)
    logger.info("project_cleaned_up", project_id=project_id, deleted=deleted)
    refresh_project(conn, project_id)
    return deleted


def auto_format(
    conn: sqlite3.Connection, project_id: str, config: Optional[LayoutConfig] = None
) -> LayoutResult:
    """Re-run the layout engine over the whole project."""
    return apply_layout(conn, project_id, config)


# ---------------------------------------------------------------------------
# Graph services
# ---------------------------------------------------------------------------

def project_graph(conn: sqlite3.Connection, project_id: str) -> dict[str, Any]:
    """Nodes plus derived edges, ready for the canvas."""
    project = require_project(conn, project_id)
    nodes = node_store.list_nodes(conn, project_id)
    return {
        "project": project.to_dict(),
        "nodes": [n.to_dict() for n in nodes],
        "edges": [e.to_dict() for e in build_edges(nodes, project)],
    }


def link_nodes(
    conn: sqlite3.Connection,
    project_id: str,
    source_id: str,
    target_id: str,
    **handles: Optional[str],
) -> tuple[Edge, list[Node]]:
    """Connect two nodes, then refresh the cascade (a re-parent can change it)."""
    edge = connect_nodes(conn, project_id, source_id, target_id, **handles)
    refresh_project(conn, project_id)
    return edge, node_store.list_nodes(conn, project_id)


def unlink_edge(conn: sqlite3.Connection, project_id: str, eid: str) -> list[Node]:
    disconnect_edge(conn, project_id, eid)
    refresh_project(conn, project_id)
    return node_store.list_nodes(conn, project_id)
