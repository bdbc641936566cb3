"""State bag carried through the agent-turn graph."""

from __future__ import annotations

from typing import Any, TypedDict


class AgentTurnState(TypedDict, total=False):
    project_id: str
    message: str
    raw_response: str
    # ActionProposal.model_dump(mode="json"); plain data keeps it checkpointable
    proposal: dict[str, Any]
    # ActionResult.to_dict()
    result: dict[str, Any]
