"""Build and compile the LangGraph agent-turn StateGraph.

The graph topology is:

    START → propose ──(chat_only)──────────→ END
                  └──(any other action)→ execute → END

Nodes are closures over the DB connection (see the ``make_*`` factories),
so the connection never enters the checkpointed state bag.
"""

from __future__ import annotations

import sqlite3
from typing import Optional

import httpx
import structlog
from langgraph.checkpoint.memory import MemorySaver
from langgraph.graph import END, START, StateGraph

from roadmap.agent import llm
from roadmap.agent.actions import ActionProposal, parse_action_response
from roadmap.agent.executor import ActionResult, execute_action
from roadmap.agent.prompts import build_chat_prompt
from roadmap.agent.state import AgentTurnState
from roadmap.config import LayoutConfig, settings
from roadmap.db import nodes as node_store
from roadmap.db.models import Node
from roadmap.db.projects import require_project
from roadmap.errors import UpstreamUnavailableError

logger = structlog.get_logger(__name__)


def _prompt_nodes(message: str, nodes: list[Node]) -> list[Node]:
    """Trim a large project to the nodes most relevant to *message*."""
    limit = settings.prompt_node_limit
    if len(nodes) <= limit:
        return nodes
    try:
        return llm.select_relevant_nodes(message, nodes, limit)
    except (httpx.HTTPError, UpstreamUnavailableError, EnvironmentError) as exc:
        logger.warning("node_retrieval_failed", error=str(exc), kept=limit)
        return nodes[:limit]


# ---------------------------------------------------------------------------
# Node factories
# ---------------------------------------------------------------------------

def make_proposer(conn: sqlite3.Connection):
    """Return a *propose* node: ask the model and parse its reply."""

    def propose(state: AgentTurnState) -> dict:
        project = require_project(conn, state["project_id"])
        nodes = _prompt_nodes(state["message"], node_store.list_nodes(conn, project.id))
        raw = llm.generate_text(build_chat_prompt(project, nodes, state["message"]))
        proposal = parse_action_response(raw)
        logger.info(
            "agent_action_proposed",
            project_id=project.id,
            action=proposal.action.type,
        )
        return {"raw_response": raw, "proposal": proposal.model_dump(mode="json")}

    return propose


def make_executor(conn: sqlite3.Connection, config: Optional[LayoutConfig] = None):
    """Return an *execute* node that applies the proposal to the store."""

    def execute(state: AgentTurnState) -> dict:
        proposal = ActionProposal.model_validate(state["proposal"])
        result = execute_action(conn, state["project_id"], proposal, config)
        return {"result": result.to_dict()}

    return execute


def _route_proposal(state: AgentTurnState) -> str:
    return END if state["proposal"]["action"]["type"] == "chat_only" else "execute"


def build_graph(conn: sqlite3.Connection, config: Optional[LayoutConfig] = None):
    """Compile and return the agent-turn ``StateGraph``.

    Args:
        conn: Open, initialised DB connection captured by every node closure.
        config: Layout constants for node placement (settings by default).

    Returns:
        A compiled LangGraph graph with an in-memory checkpointer.
    """
    graph = StateGraph(AgentTurnState)

    graph.add_node("propose", make_proposer(conn))
    graph.add_node("execute", make_executor(conn, config))

    graph.add_edge(START, "propose")
    graph.add_conditional_edges("propose", _route_proposal)
    graph.add_edge("execute", END)

    return graph.compile(checkpointer=MemorySaver())


def chat_result(state: AgentTurnState) -> dict:
    """The turn's response payload, for chat-only turns as well."""
    if state.get("result"):
        return state["result"]
    proposal = ActionProposal.model_validate(state["proposal"])
    return ActionResult(action="chat_only", message=proposal.message).to_dict()
