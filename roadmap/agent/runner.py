"""High-level runner for one agent chat turn.

``run_agent_turn`` wires the compiled graph to a caller-owned connection
(the API's shared one, or one the CLI opened) and returns the response
payload the routers and commands render.
"""

from __future__ import annotations

import sqlite3
import uuid
from typing import Any, Optional

import structlog

from roadmap.agent.graph import build_graph, chat_result
from roadmap.agent.state import AgentTurnState
from roadmap.config import LayoutConfig
from roadmap.errors import MalformedInputError

logger = structlog.get_logger(__name__)


def run_agent_turn(
    conn: sqlite3.Connection,
    project_id: str,
    message: str,
    config: Optional[LayoutConfig] = None,
) -> dict[str, Any]:
    """Ask the agent about *project_id* and apply whatever it proposes.

    Each call runs on a fresh ``thread_id`` so no state leaks between turns.

    Returns:
        ``ActionResult.to_dict()``; chat-only turns have empty node lists.

    Raises:
        MalformedInputError: If *message* is blank.
        NotFoundError: If the project does not exist.
        UpstreamUnavailableError: If the model is overloaded or rate-limited.
    """
    if not message or not message.strip():
        raise MalformedInputError("Missing required field: message")

    graph = build_graph(conn, config)
    run_config = {"configurable": {"thread_id": str(uuid.uuid4())}}
    initial: AgentTurnState = {"project_id": project_id, "message": message.strip()}

    final: AgentTurnState = graph.invoke(initial, config=run_config)  # type: ignore[assignment]
    payload = chat_result(final)
    logger.info("agent_turn_finished", project_id=project_id, action=payload["action"])
    return payload
