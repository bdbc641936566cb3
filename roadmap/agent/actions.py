"""Agent action proposals: the closed set of shapes and their parser.

A proposal is the JSON envelope the model is asked to produce::

    {"action": {"type": "...", "params": {...}, "reasoning": "..."},
     "message": "..."}

Parsing never fails.  Anything that is not a valid known action becomes a
``chat_only`` proposal whose message is the raw model text.
"""

from __future__ import annotations

import json
import re
from typing import Annotated, Any, Literal, Optional, Union

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from roadmap.db.models import NodeStatus, NodeType, Priority

logger = structlog.get_logger(__name__)

_FENCED_RE = re.compile(r"```json\s*(\{[\s\S]*?\})\s*```")
_BARE_RE = re.compile(r"(\{[\s\S]*\"action\"[\s\S]*\})")

# Named by the wider prompt vocabulary but answered in prose only.
ADVISORY_ACTIONS = frozenset(
    {"analyze_progress", "suggest_next_steps", "refine_description", "find_gaps"}
)


# ---------------------------------------------------------------------------
# Params
# ---------------------------------------------------------------------------

class _Params(BaseModel):
    model_config = ConfigDict(extra="ignore")

    @field_validator("type", "priority", "status", mode="before", check_fields=False)
    @classmethod
    def lowercase_enums(cls, value: Any) -> Any:
        return value.lower() if isinstance(value, str) else value


class NodeSpec(_Params):
    """One node of a (possibly nested) bulk-creation request."""

    title: str = Field(min_length=1)
    description: str = ""
    type: NodeType
    priority: Priority = Priority.MEDIUM
    estimated_time: str = ""
    children: list["NodeSpec"] = Field(default_factory=list)

    def count(self) -> int:
        return 1 + sum(child.count() for child in self.children)


class CreateNodeParams(_Params):
    title: str = Field(min_length=1)
    description: str = ""
    type: NodeType
    parent_id: Optional[str] = None
    priority: Priority = Priority.MEDIUM
    estimated_time: str = ""


class CreateMultipleNodesParams(_Params):
    nodes: list[NodeSpec] = Field(min_length=1)


class NodeUpdates(_Params):
    title: Optional[str] = None
    description: Optional[str] = None
    priority: Optional[Priority] = None
    status: Optional[NodeStatus] = None
    estimated_time: Optional[str] = None


class UpdateNodeParams(_Params):
    node_id: str
    updates: NodeUpdates


class BreakDownTaskParams(_Params):
    node_id: str
    num_substeps: Optional[int] = Field(default=None, ge=1, le=10)


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------

class CreateNodeAction(BaseModel):
    type: Literal["create_node"]
    params: CreateNodeParams
    reasoning: Optional[str] = None


class CreateMultipleNodesAction(BaseModel):
    type: Literal["create_multiple_nodes"]
    params: CreateMultipleNodesParams
    reasoning: Optional[str] = None


class UpdateNodeAction(BaseModel):
    type: Literal["update_node"]
    params: UpdateNodeParams
    reasoning: Optional[str] = None


class BreakDownTaskAction(BaseModel):
    type: Literal["break_down_task"]
    params: BreakDownTaskParams
    reasoning: Optional[str] = None


class ChatOnlyAction(BaseModel):
    type: Literal["chat_only"] = "chat_only"
    params: dict[str, Any] = Field(default_factory=dict)
    reasoning: Optional[str] = None


AgentAction = Annotated[
    Union[
        CreateNodeAction,
        CreateMultipleNodesAction,
        UpdateNodeAction,
        BreakDownTaskAction,
        ChatOnlyAction,
    ],
    Field(discriminator="type"),
]


class ActionProposal(BaseModel):
    action: AgentAction
    message: str = ""

    @property
    def is_chat(self) -> bool:
        return self.action.type == "chat_only"


def chat_only(message: str) -> ActionProposal:
    return ActionProposal(action=ChatOnlyAction(), message=message)


def breakdown_proposal(node_id: str, num_substeps: Optional[int] = None) -> ActionProposal:
    return ActionProposal(
        action=BreakDownTaskAction(
            type="break_down_task",
            params=BreakDownTaskParams(node_id=node_id, num_substeps=num_substeps),
        ),
        message="Task broken down.",
    )


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def coerce_proposal(data: Any, raw_text: str) -> ActionProposal:
    """Validate an already-decoded proposal, degrading to ``chat_only``.

    *raw_text* is the message used when *data* is not a usable proposal.
    """
    if not isinstance(data, dict) or not isinstance(data.get("action"), dict):
        logger.warning("action_proposal_invalid", reason="missing action object")
        return chat_only(raw_text)

    action_type = data["action"].get("type")
    if action_type in ADVISORY_ACTIONS:
        return chat_only(str(data.get("message") or raw_text))

    try:
        proposal = ActionProposal.model_validate(data)
    except ValidationError as exc:
        logger.warning(
            "action_proposal_invalid",
            action_type=action_type,
            errors=exc.error_count(),
        )
        return chat_only(raw_text)

    if not proposal.message:
        proposal.message = proposal.action.reasoning or ""
    return proposal


def parse_action_response(text: str) -> ActionProposal:
    """Extract an action proposal from free model text.

    Looks for a fenced ```json block first, then for a bare object that
    mentions ``"action"``.  No JSON at all means the model just chatted.
    """
    match = _FENCED_RE.search(text) or _BARE_RE.search(text)
    if match is None:
        return chat_only(text)
    try:
        data = json.loads(match.group(1))
    except json.JSONDecodeError as exc:
        logger.warning("action_proposal_unparseable", error=str(exc))
        return chat_only(text)
    return coerce_proposal(data, text)
