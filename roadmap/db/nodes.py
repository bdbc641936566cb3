"""CRUD operations for the ``nodes`` table.

No tree-shape or cascade logic lives here; callers in :mod:`roadmap.tree`
and :mod:`roadmap.agent` enforce those rules before writing.
"""

from __future__ import annotations

import json
import sqlite3
import uuid
from time import time
from typing import Any, Optional

from roadmap.db.models import (
    Node,
    NodeMetadata,
    NodeStatus,
    NodeType,
    Position,
    Priority,
)
from roadmap.errors import NotFoundError


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _row_to_node(row: sqlite3.Row) -> Node:
    return Node(
        id=row["id"],
        project_id=row["project_id"],
        parent_id=row["parent_id"],
        title=row["title"],
        description=row["description"],
        type=NodeType(row["type"]),
        order_index=row["order_index"],
        status=NodeStatus(row["status"]),
        priority=Priority(row["priority"]),
        position=Position(x=row["position_x"], y=row["position_y"]),
        metadata=NodeMetadata.from_json(row["metadata"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _metadata_json(metadata: NodeMetadata | dict[str, Any] | None) -> str:
    if isinstance(metadata, NodeMetadata):
        return metadata.to_json()
    return json.dumps(metadata or {})


# ---------------------------------------------------------------------------
# Order index allocation
# ---------------------------------------------------------------------------

def reserve_order_indices(
    conn: sqlite3.Connection, project_id: str, count: int = 1
) -> int:
    """Atomically reserve *count* consecutive ``order_index`` values.

    A single ``UPDATE ... RETURNING`` bumps the project's counter, never
    letting it fall behind the highest index already stored, so two
    creators can no longer compute the same "max + 1".

    Returns:
        The first reserved index.

    Raises:
        NotFoundError: If the project does not exist.
    """
    with conn:
        rows = conn.execute(
            """
            UPDATE projects
            SET    next_order_index = MAX(
                       next_order_index,
                       (SELECT COALESCE(MAX(order_index) + 1, 0)
                        FROM nodes WHERE project_id = ?)
                   ) + ?
            WHERE  id = ?
            RETURNING next_order_index
            """,
            (project_id, count, project_id),
        ).fetchall()
    if not rows:
        raise NotFoundError(f"Project not found: {project_id!r}")
    return rows[0][0] - count


def next_order_index(conn: sqlite3.Connection, project_id: str) -> int:
    """Reserve and return a single ``order_index``."""
    return reserve_order_indices(conn, project_id, 1)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def create_node(
    conn: sqlite3.Connection,
    project_id: str,
    title: str,
    node_type: NodeType | str,
    *,
    description: str = "",
    parent_id: Optional[str] = None,
    order_index: Optional[int] = None,
    status: NodeStatus | str = NodeStatus.PENDING,
    priority: Priority | str = Priority.MEDIUM,
    position: Optional[Position] = None,
    metadata: NodeMetadata | dict[str, Any] | None = None,
    node_id: Optional[str] = None,
) -> Node:
    """Insert a new node and return it.

    Args:
        conn: Open DB connection.
        project_id: Owning project.
        title: Human-readable display name.
        node_type: ``phase``, ``step`` or ``substep``.
        description: Free text.
        parent_id: Optional parent node id (not validated here).
        order_index: Explicit index; reserved from the project counter when
            omitted.
        status: Initial status, ``pending`` by default.
        priority: ``medium`` by default.
        position: Canvas coordinates, ``(0, 0)`` when omitted.
        metadata: Node metadata bag.
        node_id: Explicit UUID override (auto-generated when omitted).

    Returns:
        The newly created :class:`~roadmap.db.models.Node`.
    """
    ntype = NodeType(node_type)
    nid = node_id or str(uuid.uuid4())
    now = int(time())
    pos = position or Position(0, 0)
    if order_index is None:
        order_index = next_order_index(conn, project_id)

    with conn:
        conn.execute(
            """
            INSERT INTO nodes (id, project_id, parent_id, title, description, type,
                               level, order_index, status, priority,
                               position_x, position_y, metadata, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                nid,
                project_id,
                parent_id,
                title,
                description,
                ntype.value,
                ntype.level,
                order_index,
                NodeStatus(status).value,
                Priority(priority).value,
                pos.x,
                pos.y,
                _metadata_json(metadata),
                now,
                now,
            ),
        )

    return get_node(conn, nid)  # type: ignore[return-value]


def get_node(conn: sqlite3.Connection, node_id: str) -> Optional[Node]:
    """Fetch a single node by its UUID.  Returns ``None`` if not found."""
    row = conn.execute(
        "SELECT * FROM nodes WHERE id = ?", (node_id,)
    ).fetchone()
    return _row_to_node(row) if row else None


def require_node(
    conn: sqlite3.Connection, node_id: str, project_id: Optional[str] = None
) -> Node:
    """Like :func:`get_node` but raises when missing or outside *project_id*."""
    node = get_node(conn, node_id)
    if node is None or (project_id is not None and node.project_id != project_id):
        raise NotFoundError(f"Node not found: {node_id!r}")
    return node


def list_nodes(
    conn: sqlite3.Connection,
    project_id: str,
    *,
    parent_id: Optional[str] = None,
    node_type: NodeType | str | None = None,
) -> list[Node]:
    """Return a project's nodes ordered by ``order_index``.

    ``parent_id`` and ``node_type`` are optional equality filters.
    """
    clauses = ["project_id = ?"]
    params: list[Any] = [project_id]
    if parent_id is not None:
        clauses.append("parent_id = ?")
        params.append(parent_id)
    if node_type is not None:
        clauses.append("type = ?")
        params.append(NodeType(node_type).value)

    rows = conn.execute(
        f"SELECT * FROM nodes WHERE {' AND '.join(clauses)} "  # noqa: S608
        "ORDER BY order_index ASC, created_at ASC",
        params,
    ).fetchall()
    return [_row_to_node(r) for r in rows]


_UPDATABLE = {
    "title",
    "description",
    "type",
    "parent_id",
    "order_index",
    "status",
    "priority",
    "position",
    "metadata",
}


def update_node(conn: sqlite3.Connection, node_id: str, **kwargs: Any) -> Node:
    """Update one or more fields on a node.

    Allowed keyword arguments: ``title``, ``description``, ``type``,
    ``parent_id``, ``order_index``, ``status``, ``priority``, ``position``
    (:class:`Position` or ``{"x", "y"}`` dict) and ``metadata``
    (:class:`NodeMetadata` or dict, replaces the whole bag).  ``updated_at``
    is always refreshed automatically.

    Raises:
        NotFoundError: If ``node_id`` does not exist.
        ValueError: If an unknown field is given or nothing is given.
    """
    if get_node(conn, node_id) is None:
        raise NotFoundError(f"Node not found: {node_id!r}")

    updates: dict[str, Any] = {}
    for key, value in kwargs.items():
        if key not in _UPDATABLE:
            raise ValueError(f"Cannot update field {key!r}")
        if key == "metadata":
            updates["metadata"] = _metadata_json(value)
        elif key == "position":
            pos = value if isinstance(value, Position) else Position(value["x"], value["y"])
            updates["position_x"] = pos.x
            updates["position_y"] = pos.y
        elif key == "type":
            ntype = NodeType(value)
            updates["type"] = ntype.value
            updates["level"] = ntype.level
        elif key == "status":
            updates["status"] = NodeStatus(value).value
        elif key == "priority":
            updates["priority"] = Priority(value).value
        else:
            updates[key] = value

    if not updates:
        raise ValueError("No valid fields provided to update_node()")

    updates["updated_at"] = int(time())
    set_clause = ", ".join(f"{col} = ?" for col in updates)
    values = list(updates.values()) + [node_id]

    with conn:
        conn.execute(
            f"UPDATE nodes SET {set_clause} WHERE id = ?", values  # noqa: S608
        )

    return get_node(conn, node_id)  # type: ignore[return-value]


def delete_node(conn: sqlite3.Connection, node_id: str) -> int:
    """Delete a node and, via ``ON DELETE CASCADE``, all of its descendants.

    Returns:
        1 when the node existed, 0 otherwise.  Rows removed by the foreign
        key cascade are not counted.
    """
    with conn:
        cur = conn.execute("DELETE FROM nodes WHERE id = ?", (node_id,))
    return cur.rowcount


def delete_nodes(conn: sqlite3.Connection, project_id: str, node_ids: list[str]) -> int:
    """Delete several nodes of one project.

    Returns the number of listed nodes that existed; cascaded descendants
    are not counted.
    """
    if not node_ids:
        return 0
    placeholders = ", ".join("?" for _ in node_ids)
    with conn:
        cur = conn.execute(
            f"DELETE FROM nodes WHERE project_id = ? AND id IN ({placeholders})",  # noqa: S608
            [project_id, *node_ids],
        )
    return cur.rowcount
