"""CRUD operations for the ``projects`` table.

A project owns a set of nodes (``nodes.project_id``) and carries the
aggregate progress plus the custom-edge / deleted-edge overlays in its
metadata bag.
"""

from __future__ import annotations

import sqlite3
import uuid
from time import time
from typing import Any, Optional

from roadmap.db.models import Project, ProjectMetadata
from roadmap.errors import NotFoundError


def _row_to_project(row: sqlite3.Row) -> Project:
    return Project(
        id=row["id"],
        title=row["title"],
        jurusan=row["jurusan"],
        timeline=row["timeline"],
        description=row["description"],
        metadata=ProjectMetadata.from_json(row["metadata"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def create_project(
    conn: sqlite3.Connection,
    title: str,
    jurusan: str = "",
    timeline: str = "",
    description: str = "",
    metadata: Optional[ProjectMetadata] = None,
    project_id: Optional[str] = None,
) -> Project:
    """Insert a new project and return it."""
    pid = project_id or str(uuid.uuid4())
    now = int(time())
    meta = metadata or ProjectMetadata()
    with conn:
        conn.execute(
            """
            INSERT INTO projects (id, title, jurusan, timeline, description,
                                  metadata, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (pid, title, jurusan, timeline, description, meta.to_json(), now, now),
        )
    return get_project(conn, pid)  # type: ignore[return-value]


def get_project(conn: sqlite3.Connection, project_id: str) -> Optional[Project]:
    """Fetch a project by id.  Returns ``None`` if not found."""
    row = conn.execute(
        "SELECT * FROM projects WHERE id = ?", (project_id,)
    ).fetchone()
    return _row_to_project(row) if row else None


def require_project(conn: sqlite3.Connection, project_id: str) -> Project:
    project = get_project(conn, project_id)
    if project is None:
        raise NotFoundError(f"Project not found: {project_id!r}")
    return project


def list_projects(conn: sqlite3.Connection) -> list[Project]:
    """Return all projects, newest first."""
    rows = conn.execute(
        "SELECT * FROM projects ORDER BY created_at DESC, rowid DESC"
    ).fetchall()
    return [_row_to_project(r) for r in rows]


def update_project(conn: sqlite3.Connection, project_id: str, **kwargs: Any) -> Project:
    """Update project fields.

    Allowed keyword arguments: ``title``, ``jurusan``, ``timeline``,
    ``description`` and ``metadata`` (a :class:`ProjectMetadata`, replaces
    the stored bag).

    Raises:
        NotFoundError: If the project does not exist.
        ValueError: On unknown fields or an empty update.
    """
    require_project(conn, project_id)

    allowed = {"title", "jurusan", "timeline", "description", "metadata"}
    updates: dict[str, Any] = {}
    for key, value in kwargs.items():
        if key not in allowed:
            raise ValueError(f"Cannot update field {key!r}")
        updates[key] = value.to_json() if key == "metadata" else value

    if not updates:
        raise ValueError("No valid fields provided to update_project()")

    updates["updated_at"] = int(time())
    set_clause = ", ".join(f"{col} = ?" for col in updates)
    with conn:
        conn.execute(
            f"UPDATE projects SET {set_clause} WHERE id = ?",  # noqa: S608
            [*updates.values(), project_id],
        )
    return get_project(conn, project_id)  # type: ignore[return-value]


def update_project_metadata(
    conn: sqlite3.Connection, project_id: str, **fields: Any
) -> Project:
    """Read-modify-write selected :class:`ProjectMetadata` members.

    Keys of the bag the caller does not name are left as stored.
    """
    project = require_project(conn, project_id)
    meta = project.metadata
    for name, value in fields.items():
        if not hasattr(meta, name):
            raise ValueError(f"Unknown project metadata field {name!r}")
        setattr(meta, name, value)
    return update_project(conn, project_id, metadata=meta)


def delete_project(conn: sqlite3.Connection, project_id: str) -> None:
    """Delete a project and (via CASCADE) all of its nodes."""
    with conn:
        conn.execute("DELETE FROM projects WHERE id = ?", (project_id,))
