"""Agent endpoints.

Routes
------
POST /agent/chat        One chat turn: the model proposes, the executor applies
POST /agent/actions     Apply an already-structured action proposal
POST /agent/breakdown   Break a phase into steps or a step into substeps
POST /agent/refine      Rewrite a node's description and attach checkpoints and tips
POST /agent/generate    Generate a whole roadmap for a project

Upstream (LLM) overload / rate-limit errors come back as 503 with a
``userMessage`` hint; no endpoint retries.
"""

from __future__ import annotations

import json
from typing import Any, Literal, Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from roadmap.agent import run_agent_turn
from roadmap.agent.actions import breakdown_proposal, coerce_proposal
from roadmap.agent.executor import execute_action, refine_node
from roadmap.agent.generator import generate_roadmap

router = APIRouter()


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------

class ChatRequest(BaseModel):
    project_id: str
    message: str = Field(min_length=1)


class ActionRequest(BaseModel):
    project_id: str
    proposal: dict[str, Any]


class BreakdownRequest(BaseModel):
    project_id: str
    node_id: str
    num_items: Optional[int] = Field(default=None, ge=1, le=10)


class RefineRequest(BaseModel):
    project_id: str
    node_id: str


class GenerateRequest(BaseModel):
    project_id: str
    mode: Literal["fresh", "replace", "merge"] = "fresh"
    additional_context: str = ""


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("/chat")
def chat(body: ChatRequest, request: Request) -> dict[str, Any]:
    return run_agent_turn(request.app.state.db, body.project_id, body.message)


@router.post("/actions")
def apply_action(body: ActionRequest, request: Request) -> dict[str, Any]:
    """Execute a proposal; one that does not validate degrades to chat only."""
    proposal = coerce_proposal(body.proposal, json.dumps(body.proposal))
    result = execute_action(request.app.state.db, body.project_id, proposal)
    return result.to_dict()


@router.post("/breakdown")
def breakdown(body: BreakdownRequest, request: Request) -> dict[str, Any]:
    proposal = breakdown_proposal(body.node_id, body.num_items)
    result = execute_action(request.app.state.db, body.project_id, proposal)
    return {**result.to_dict(), "count": len(result.created_nodes)}


@router.post("/refine")
def refine(body: RefineRequest, request: Request) -> dict[str, Any]:
    return refine_node(request.app.state.db, body.project_id, body.node_id).to_dict()


@router.post("/generate")
def generate(body: GenerateRequest, request: Request) -> dict[str, Any]:
    nodes = generate_roadmap(
        request.app.state.db,
        body.project_id,
        mode=body.mode,
        additional_context=body.additional_context,
    )
    return {"success": True, "nodes": [n.to_dict() for n in nodes]}
