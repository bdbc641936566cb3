"""Canvas edge endpoints.

Routes
------
POST   /edges                          Connect two nodes
PATCH  /edges/{edge_id}                Restyle a custom edge
DELETE /edges/{edge_id}?project_id=    Disconnect (tombstone) an edge

Connecting a phase to a step, or a step to a substep, re-parents the target;
any other pair becomes a custom edge.
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel, ConfigDict

from roadmap.tree import operations
from roadmap.tree.graph import update_edge

router = APIRouter()


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------

class EdgeCreate(BaseModel):
    project_id: str
    source: str
    target: str
    source_handle: Optional[str] = None
    target_handle: Optional[str] = None


class EdgePatch(BaseModel):
    """Style fields use the canvas' camelCase names (``labelStyle`` ...)."""

    model_config = ConfigDict(extra="allow")

    project_id: str


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("", status_code=201)
def connect(body: EdgeCreate, request: Request) -> dict[str, Any]:
    edge, nodes = operations.link_nodes(
        request.app.state.db,
        body.project_id,
        body.source,
        body.target,
        source_handle=body.source_handle,
        target_handle=body.target_handle,
    )
    return {
        "success": True,
        "edge": edge.to_dict(),
        "nodes": [n.to_dict() for n in nodes],
    }


@router.patch("/{edge_id}")
def restyle(edge_id: str, body: EdgePatch, request: Request) -> dict[str, Any]:
    """Merge style updates into a custom edge."""
    updates = body.model_dump(exclude={"project_id"})
    edge = update_edge(request.app.state.db, body.project_id, edge_id, updates)
    return {"success": True, "edge": edge.to_dict()}


@router.delete("/{edge_id}")
def disconnect(edge_id: str, project_id: str, request: Request) -> dict[str, Any]:
    nodes = operations.unlink_edge(request.app.state.db, project_id, edge_id)
    return {"success": True, "nodes": [n.to_dict() for n in nodes]}
