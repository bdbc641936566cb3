"""FastAPI HTTP layer package.

Public re-export so callers can write::

    from roadmap.api import app

    uvicorn roadmap.api:app --reload
"""

from roadmap.api.app import app

__all__ = ["app"]
