"""Node endpoints.

Routes
------
POST   /nodes                        Create a node (phase / step / substep)
GET    /nodes/{node_id}              Fetch a single node
PATCH  /nodes/{node_id}              Patch content (title, description, ...)
PATCH  /nodes/{node_id}/status       Change status; cascades to ancestors
PATCH  /nodes/{node_id}/position     Move a node on the canvas
DELETE /nodes/{node_id}?project_id=  Delete a node and its descendants

Mutations that can affect other nodes return the project's refreshed node
list so the caller can resync in one round trip.
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from roadmap.db.models import Position
from roadmap.db.nodes import list_nodes, require_node
from roadmap.tree import operations

router = APIRouter()


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------

class PositionBody(BaseModel):
    x: float
    y: float


class NodeCreate(BaseModel):
    project_id: str
    type: str
    title: str
    description: str = ""
    parent_id: Optional[str] = None
    status: str = "pending"
    priority: str = "medium"
    estimated_time: str = ""
    position: Optional[PositionBody] = None
    metadata: Optional[dict[str, Any]] = None


class NodePatch(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    status: Optional[str] = None
    priority: Optional[str] = None
    parent_id: Optional[str] = None
    estimated_time: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None


class StatusBody(BaseModel):
    status: str = Field(min_length=1)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _nodes_payload(nodes: list) -> dict[str, Any]:
    return {"success": True, "nodes": [n.to_dict() for n in nodes]}


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("", status_code=201)
def create(body: NodeCreate, request: Request) -> dict[str, Any]:
    """Create a node with the next order index and a default position."""
    node = operations.create_node(
        request.app.state.db,
        body.project_id,
        body.type,
        body.title,
        description=body.description,
        parent_id=body.parent_id,
        status=body.status,
        priority=body.priority,
        estimated_time=body.estimated_time,
        position=Position(body.position.x, body.position.y) if body.position else None,
        metadata=body.metadata,
    )
    return {"success": True, "node": node.to_dict()}


@router.get("/{node_id}")
def get_one(node_id: str, request: Request) -> dict[str, Any]:
    return require_node(request.app.state.db, node_id).to_dict()


@router.patch("/{node_id}")
def patch(node_id: str, body: NodePatch, request: Request) -> dict[str, Any]:
    """Patch node content.  Only the fields sent are touched.

    Sending ``parent_id: null`` explicitly detaches the node.  A patch that
    touches ``status`` or ``parent_id`` re-runs the cascade, so the response
    then also carries the project's refreshed node list.
    """
    conn = request.app.state.db
    updates = body.model_dump(exclude_unset=True)
    node = operations.update_node_content(conn, node_id, updates)
    payload: dict[str, Any] = {"success": True, "node": node.to_dict()}
    if {"status", "parent_id"} & updates.keys():
        payload["nodes"] = [n.to_dict() for n in list_nodes(conn, node.project_id)]
    return payload


@router.patch("/{node_id}/status")
def set_status(node_id: str, body: StatusBody, request: Request) -> dict[str, Any]:
    """Set the status and return every node of the project after the cascade."""
    nodes = operations.set_node_status(request.app.state.db, node_id, body.status)
    return _nodes_payload(nodes)


@router.patch("/{node_id}/position")
def move(node_id: str, body: PositionBody, request: Request) -> dict[str, Any]:
    node = operations.move_node(request.app.state.db, node_id, body.x, body.y)
    return {"success": True, "node": node.to_dict()}


@router.delete("/{node_id}")
def remove(node_id: str, project_id: str, request: Request) -> dict[str, Any]:
    """Delete a node of *project_id*; descendants go with it."""
    nodes = operations.delete_node(request.app.state.db, project_id, node_id)
    return _nodes_payload(nodes)
