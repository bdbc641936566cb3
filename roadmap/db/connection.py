"""SQLite connection factory for the roadmap store."""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Optional

from roadmap.config import settings

# Milliseconds a writer waits on a locked database before raising.
BUSY_TIMEOUT_MS = 5000


def get_connection(db_path: Optional[Path] = None) -> sqlite3.Connection:
    """Open a connection to the roadmap database.

    ``foreign_keys`` is switched on because deleting a node relies on the
    ``ON DELETE CASCADE`` of ``parent_id`` to remove its subtree, and
    deleting a project on the one of ``project_id``.  File databases use WAL
    so the API and the CLI can read while the other writes.

    Args:
        db_path: Database file, or ``":memory:"``.  Defaults to
            ``settings.db_path`` (the workspace directory is created).

    Returns:
        A connection whose rows are :class:`sqlite3.Row`.
    """
    path = db_path or settings.db_path
    in_memory = str(path) == ":memory:"
    if not in_memory:
        settings.ensure_workspace()

    conn = sqlite3.connect(str(path), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute(f"PRAGMA busy_timeout = {BUSY_TIMEOUT_MS}")
    if not in_memory:
        conn.execute("PRAGMA journal_mode = WAL")
    return conn
