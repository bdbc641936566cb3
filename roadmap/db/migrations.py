"""Schema bootstrap and versioned migrations.

``init_db(conn)`` creates the tables from ``schema.sql`` and then applies
every pending entry of :data:`MIGRATIONS`.  It is safe to call on every
start-up; applied versions are recorded in ``schema_version``.
"""

from __future__ import annotations

import sqlite3
from typing import Optional, Sequence

import structlog

from roadmap.config import settings

logger = structlog.get_logger(__name__)


# Each entry is ``(version, sql)``.  Versions must be strictly increasing;
# append new ones at the end and never edit an applied one.
MIGRATIONS: list[tuple[int, str]] = [
    # level is derived from type; rows written around the store can disagree.
    (
        1,
        """
        UPDATE nodes
        SET    level = CASE type WHEN 'phase' THEN 1 WHEN 'step' THEN 2 ELSE 3 END
        WHERE  level != CASE type WHEN 'phase' THEN 1 WHEN 'step' THEN 2 ELSE 3 END
        """,
    ),
    (2, "CREATE INDEX IF NOT EXISTS idx_nodes_project_status ON nodes(project_id, status)"),
]


def init_db(conn: sqlite3.Connection) -> None:
    """Create all tables and indexes, then run pending migrations.

    Args:
        conn: An open, configured SQLite connection.
    """
    # executescript() commits first; fine for a DDL-only script.
    conn.executescript(settings.schema_path.read_text(encoding="utf-8"))
    with conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_version (
                version    INTEGER PRIMARY KEY,
                applied_at INTEGER NOT NULL DEFAULT (CAST(strftime('%s', 'now') AS INTEGER))
            )
            """
        )
    migrate(conn)


def current_version(conn: sqlite3.Connection) -> int:
    """Highest applied migration version, 0 for a fresh schema."""
    row = conn.execute("SELECT COALESCE(MAX(version), 0) FROM schema_version").fetchone()
    return row[0]


def migrate(
    conn: sqlite3.Connection,
    migrations: Optional[Sequence[tuple[int, str]]] = None,
) -> int:
    """Apply every migration newer than :func:`current_version`.

    Each migration runs in its own transaction together with its
    ``schema_version`` row, so a failure leaves earlier ones applied.

    Returns:
        The schema version after the run.
    """
    applied = current_version(conn)
    for version, sql in sorted(migrations if migrations is not None else MIGRATIONS):
        if version <= applied:
            continue
        with conn:
            conn.execute(sql)
            conn.execute("INSERT INTO schema_version(version) VALUES (?)", (version,))
        logger.info("schema_migrated", version=version)
        applied = version
    return applied
