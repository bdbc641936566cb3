"""Project endpoints.

Routes
------
GET    /projects                    List all projects
POST   /projects                    Create a project
GET    /projects/{id}               Fetch a project
DELETE /projects/{id}               Delete a project and all its nodes
GET    /projects/{id}/nodes         All nodes of the project (by order_index)
GET    /projects/{id}/graph         Nodes + derived edges for the canvas
POST   /projects/{id}/recalculate   Recompute phase progress + project aggregate
POST   /projects/{id}/cleanup       Delete listed nodes, or all orphans
POST   /projects/{id}/auto-format   Re-run the layout over the whole tree
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Request, Response
from pydantic import BaseModel, Field

from roadmap.db.nodes import list_nodes
from roadmap.db.projects import (
    create_project,
    delete_project,
    list_projects,
    require_project,
)
from roadmap.tree import operations

router = APIRouter()


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------

class ProjectCreate(BaseModel):
    title: str = Field(min_length=1)
    jurusan: str = ""
    timeline: str = ""
    description: str = ""


class CleanupRequest(BaseModel):
    node_ids: Optional[list[str]] = None


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.get("")
def list_all(request: Request) -> list[dict[str, Any]]:
    """Return all projects, newest first."""
    return [p.to_dict() for p in list_projects(request.app.state.db)]


@router.post("", status_code=201)
def create(body: ProjectCreate, request: Request) -> dict[str, Any]:
    """Create a new, empty project."""
    project = create_project(
        request.app.state.db,
        title=body.title,
        jurusan=body.jurusan,
        timeline=body.timeline,
        description=body.description,
    )
    return project.to_dict()


@router.get("/{project_id}")
def get_one(project_id: str, request: Request) -> dict[str, Any]:
    return require_project(request.app.state.db, project_id).to_dict()


@router.delete("/{project_id}")
def remove(project_id: str, request: Request) -> Response:
    """Delete a project; its nodes go with it via CASCADE."""
    conn = request.app.state.db
    require_project(conn, project_id)
    delete_project(conn, project_id)
    return Response(status_code=204)


@router.get("/{project_id}/nodes")
def project_nodes(project_id: str, request: Request) -> dict[str, Any]:
    conn = request.app.state.db
    require_project(conn, project_id)
    return {"nodes": [n.to_dict() for n in list_nodes(conn, project_id)]}


@router.get("/{project_id}/graph")
def project_graph(project_id: str, request: Request) -> dict[str, Any]:
    """Nodes plus the derived edge set (tree, phase sequence, custom)."""
    return operations.project_graph(request.app.state.db, project_id)


@router.post("/{project_id}/recalculate")
def recalculate(project_id: str, request: Request) -> dict[str, Any]:
    """Recompute phase progress and the project aggregate."""
    conn = request.app.state.db
    progress = operations.recalculate_project(conn, project_id)
    return {
        "success": True,
        "progress": progress.to_dict(),
        "project": require_project(conn, project_id).to_dict(),
    }


@router.post("/{project_id}/cleanup")
def cleanup(
    project_id: str, request: Request, body: Optional[CleanupRequest] = None
) -> dict[str, Any]:
    """Delete the given node ids, or every orphaned node when none are given."""
    conn = request.app.state.db
    deleted = operations.cleanup_project(
        conn, project_id, body.node_ids if body else None
    )
    return {
        "success": True,
        "deleted": deleted,
        "nodes": [n.to_dict() for n in list_nodes(conn, project_id)],
    }


@router.post("/{project_id}/auto-format")
def auto_format(project_id: str, request: Request) -> dict[str, Any]:
    """Re-run the layout engine; reports how many positions changed."""
    result = operations.auto_format(request.app.state.db, project_id)
    return {
        "success": True,
        "updated": len(result.updated_ids),
        "failed": len(result.failed_ids),
        "nodes": [n.to_dict() for n in result.nodes],
    }
