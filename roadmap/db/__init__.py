"""Database layer package.

Public re-exports so callers can write::

    from roadmap.db import get_connection, init_db
    from roadmap.db import nodes, projects
"""

from roadmap.db.connection import get_connection
from roadmap.db.migrations import init_db
from roadmap.db import nodes, projects

__all__ = ["get_connection", "init_db", "nodes", "projects"]
