"""Apply agent action proposals to the store.

Only structural rules are enforced here (project scoping, valid parent
types); whether an action makes sense for the thesis is the model's call.

Bulk creation is best-effort: a node that fails to insert is logged and
skipped together with its subtree, and the action still reports success
for everything else.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

import structlog

from roadmap.config import LayoutConfig, settings
from roadmap.agent import llm
from roadmap.agent.actions import (
    ActionProposal,
    BreakDownTaskAction,
    CreateMultipleNodesAction,
    CreateNodeAction,
    NodeSpec,
    UpdateNodeAction,
)
from roadmap.agent.prompts import build_breakdown_prompt, build_refine_prompt
from roadmap.db import nodes as node_store
from roadmap.db.models import Node, NodeMetadata, NodeType, Priority
from roadmap.db.projects import require_project
from roadmap.errors import MalformedInputError, RoadmapError
from roadmap.tree.cascade import cascade_ancestors, recalculate_project_progress
from roadmap.tree.layout import breakdown_positions, creation_position
from roadmap.tree.operations import check_parent, next_phase_index, refresh_project

logger = structlog.get_logger(__name__)


@dataclass
class ActionResult:
    action: str
    message: str
    created_nodes: list[Node] = field(default_factory=list)
    updated_nodes: list[Node] = field(default_factory=list)
    failed: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "action": self.action,
            "message": self.message,
            "created_nodes": [n.to_dict() for n in self.created_nodes],
            "updated_nodes": [n.to_dict() for n in self.updated_nodes],
            "failed": self.failed,
        }


def _ai_metadata(estimated_time: str, node_type: NodeType, phase_index: Optional[int]) -> NodeMetadata:
    meta = NodeMetadata(estimated_time=estimated_time or "", extra={"generatedBy": "ai"})
    if node_type is NodeType.PHASE:
        meta.phase_index = phase_index
        meta.progress = 0
    return meta


# ---------------------------------------------------------------------------
# Single and bulk creation
# ---------------------------------------------------------------------------

def _insert(
    conn: sqlite3.Connection,
    project_id: str,
    existing: list[Node],
    *,
    title: str,
    description: str,
    node_type: NodeType,
    priority: Priority,
    estimated_time: str,
    parent: Optional[Node],
    config: Optional[LayoutConfig],
) -> Node:
    phase_index = next_phase_index(existing) if node_type is NodeType.PHASE else None
    node = node_store.create_node(
        conn,
        project_id,
        title,
        node_type,
        description=description,
        parent_id=parent.id if parent else None,
        priority=priority,
        position=creation_position(
            existing, node_type, parent=parent, phase_index=phase_index, config=config
        ),
        metadata=_ai_metadata(estimated_time, node_type, phase_index),
    )
    existing.append(node)
    return node


def create_single_node(
    conn: sqlite3.Connection,
    project_id: str,
    action: CreateNodeAction,
    config: Optional[LayoutConfig] = None,
) -> list[Node]:
    params = action.params
    parent = check_parent(conn, project_id, params.type, params.parent_id)
    existing = node_store.list_nodes(conn, project_id)
    node = _insert(
        conn,
        project_id,
        existing,
        title=params.title,
        description=params.description,
        node_type=params.type,
        priority=params.priority,
        estimated_time=params.estimated_time,
        parent=parent,
        config=config,
    )
    logger.info("agent_node_created", project_id=project_id, node_id=node.id)
    return [node]


def create_node_tree(
    conn: sqlite3.Connection,
    project_id: str,
    specs: list[NodeSpec],
    config: Optional[LayoutConfig] = None,
) -> tuple[list[Node], int]:
    """Create a nested list of NodeSpec trees depth-first.

    Every node reserves the next ``order_index`` as it is inserted, so the
    order follows the depth-first walk.  A child whose type does not fit
    under its parent is rejected like any other per-node failure.

    Returns:
        ``(created_nodes, failed_count)``, where the failed count includes
        the skipped subtree of a failed node.
    """
    existing = node_store.list_nodes(conn, project_id)
    created: list[Node] = []
    failed = 0

    def walk(spec: NodeSpec, parent: Optional[Node]) -> None:
        nonlocal failed
        try:
            if parent is not None and parent.type.child_type is not spec.type:
                raise MalformedInputError(
                    f"A {spec.type.value} cannot be placed under a {parent.type.value}"
                )
            node = _insert(
                conn,
                project_id,
                existing,
                title=spec.title,
                description=spec.description,
                node_type=spec.type,
                priority=spec.priority,
                estimated_time=spec.estimated_time,
                parent=parent,
                config=config,
            )
        except (sqlite3.Error, RoadmapError) as exc:
            skipped = spec.count()
            failed += skipped
            logger.warning(
                "bulk_create_node_failed",
                project_id=project_id,
                title=spec.title,
                skipped=skipped,
                error=str(exc),
            )
            return
        created.append(node)
        for child in spec.children:
            walk(child, node)

    for spec in specs:
        walk(spec, None)

    logger.info(
        "bulk_create_finished",
        project_id=project_id,
        created=len(created),
        failed=failed,
    )
    return created, failed


# ---------------------------------------------------------------------------
# Update
# ---------------------------------------------------------------------------

def update_existing_node(
    conn: sqlite3.Connection, project_id: str, action: UpdateNodeAction
) -> list[Node]:
    """Apply the patch, then re-derive the node and its ancestors only.

    Raises:
        NotFoundError: If the node is not part of *project_id*.
    """
    params = action.params
    node = node_store.require_node(conn, params.node_id, project_id)
    updates = params.updates

    fields: dict[str, Any] = {}
    if updates.title:
        fields["title"] = updates.title
    if updates.description is not None:
        fields["description"] = updates.description
    if updates.priority is not None:
        fields["priority"] = updates.priority
    if updates.status is not None:
        fields["status"] = updates.status
    if updates.estimated_time is not None:
        meta = node.metadata
        meta.estimated_time = updates.estimated_time
        fields["metadata"] = meta

    if not fields:
        return []

    updated = node_store.update_node(conn, node.id, **fields)
    logger.info("agent_node_updated", project_id=project_id, node_id=node.id, fields=sorted(fields))
    if "status" in fields:
        cascade_ancestors(conn, node.id)
    return [updated]


# ---------------------------------------------------------------------------
# Breakdown
# ---------------------------------------------------------------------------

def break_down_node(
    conn: sqlite3.Connection,
    project_id: str,
    node_id: str,
    num_items: Optional[int] = None,
    config: Optional[LayoutConfig] = None,
) -> list[Node]:
    """Ask the model for sub-items of a node and create them as its children.

    A phase is broken into steps, a step into substeps.  Children sit to the
    right of the parent, stacked downwards.

    Raises:
        NotFoundError: If the node is not part of *project_id*.
        MalformedInputError: For a substep, or when the reply has no usable
            ``subtasks`` list.
    """
    project = require_project(conn, project_id)
    parent = node_store.require_node(conn, node_id, project_id)
    child_type = parent.type.child_type
    if child_type is None:
        raise MalformedInputError("A substep cannot be broken down further")

    prompt = build_breakdown_prompt(
        project,
        parent,
        num_items,
        settings.breakdown_min_items,
        settings.breakdown_max_items,
    )
    reply = llm.generate_json(prompt)
    subtasks = [
        s for s in reply.get("subtasks") or []
        if isinstance(s, dict) and str(s.get("title") or "").strip()
    ]
    subtasks = subtasks[: num_items or settings.breakdown_max_items]
    if not subtasks:
        raise MalformedInputError("The model returned no subtasks")

    positions = breakdown_positions(parent, len(subtasks), config)
    first_index = node_store.reserve_order_indices(conn, project_id, len(subtasks))

    created: list[Node] = []
    for i, (subtask, position) in enumerate(zip(subtasks, positions)):
        try:
            priority = Priority(str(subtask.get("priority") or "medium").lower())
        except ValueError:
            priority = Priority.MEDIUM
        try:
            node = node_store.create_node(
                conn,
                project_id,
                str(subtask["title"]).strip(),
                child_type,
                description=str(subtask.get("description") or ""),
                parent_id=parent.id,
                order_index=first_index + i,
                priority=priority,
                position=position,
                metadata=NodeMetadata(
                    estimated_time=str(subtask.get("estimatedTime") or ""),
                    extra={
                        "deliverable": subtask.get("deliverable") or "",
                        "generatedBy": "ai",
                    },
                ),
            )
        except sqlite3.Error as exc:
            logger.warning("breakdown_node_failed", parent_id=parent.id, error=str(exc))
            continue
        created.append(node)

    meta = parent.metadata
    meta.extra.update(
        {
            "brokenDown": True,
            "brokenDownAt": datetime.now(timezone.utc).isoformat(),
            "childCount": len(created),
        }
    )
    node_store.update_node(conn, parent.id, metadata=meta)
    logger.info("node_broken_down", parent_id=parent.id, children=len(created))
    return created


# ---------------------------------------------------------------------------
# Refine
# ---------------------------------------------------------------------------

@dataclass
class RefineResult:
    node: Node
    improvements: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "node": self.node.to_dict(),
            "improvements": self.improvements,
        }


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v).strip() for v in value if str(v).strip()]


def refine_node(conn: sqlite3.Connection, project_id: str, node_id: str) -> RefineResult:
    """Ask the model for a sharper description plus checkpoints, resources and tips.

    The description is replaced; the rest is merged into the node's metadata
    so unrelated keys survive.  Status, structure and position are untouched,
    so no cascade runs.

    Raises:
        NotFoundError: If the node is not part of *project_id*.
        MalformedInputError: When the reply has no usable description.
    """
    project = require_project(conn, project_id)
    node = node_store.require_node(conn, node_id, project_id)

    reply = llm.generate_json(build_refine_prompt(project, node))
    description = str(reply.get("description") or "").strip()
    if not description:
        raise MalformedInputError("The model returned no refined description")

    improvements: dict[str, Any] = {
        "description": description,
        "checkpoints": _string_list(reply.get("checkpoints")),
        "resources": [r for r in reply.get("resources") or [] if isinstance(r, dict)],
        "tips": _string_list(reply.get("tips")),
        "estimatedTime": str(reply.get("estimatedTime") or node.metadata.estimated_time or ""),
    }

    meta = node.metadata
    meta.resources = improvements["resources"]
    meta.estimated_time = improvements["estimatedTime"]
    meta.extra.update(
        {
            "checkpoints": improvements["checkpoints"],
            "tips": improvements["tips"],
            "refined": True,
            "refinedAt": datetime.now(timezone.utc).isoformat(),
        }
    )
    updated = node_store.update_node(conn, node.id, description=description, metadata=meta)
    logger.info(
        "node_refined",
        project_id=project_id,
        node_id=node.id,
        checkpoints=len(improvements["checkpoints"]),
        resources=len(improvements["resources"]),
    )
    return RefineResult(node=updated, improvements=improvements)


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

def execute_action(
    conn: sqlite3.Connection,
    project_id: str,
    proposal: ActionProposal,
    config: Optional[LayoutConfig] = None,
) -> ActionResult:
    """Apply one proposal and refresh the derived project state.

    Raises:
        NotFoundError: If the project, or a node named by the action, is
            missing from the project.
        MalformedInputError: If a single-node action breaks a tree rule.
    """
    require_project(conn, project_id)
    action = proposal.action
    result = ActionResult(action=action.type, message=proposal.message)

    if isinstance(action, CreateNodeAction):
        result.created_nodes = create_single_node(conn, project_id, action, config)
    elif isinstance(action, CreateMultipleNodesAction):
        result.created_nodes, result.failed = create_node_tree(
            conn, project_id, action.params.nodes, config
        )
    elif isinstance(action, UpdateNodeAction):
        result.updated_nodes = update_existing_node(conn, project_id, action)
    elif isinstance(action, BreakDownTaskAction):
        result.created_nodes = break_down_node(
            conn, project_id, action.params.node_id, action.params.num_substeps, config
        )
    else:
        return result

    if isinstance(action, UpdateNodeAction):
        try:
            recalculate_project_progress(conn, project_id)
        except sqlite3.Error:
            logger.error("project_refresh_failed", project_id=project_id, exc_info=True)
    else:
        refresh_project(conn, project_id)

    # Reload so callers see post-cascade status
    result.created_nodes = _reload(conn, result.created_nodes)
    result.updated_nodes = _reload(conn, result.updated_nodes)
    logger.info(
        "agent_action_executed",
        project_id=project_id,
        action=action.type,
        created=len(result.created_nodes),
        updated=len(result.updated_nodes),
        failed=result.failed,
    )
    return result


def _reload(conn: sqlite3.Connection, nodes: list[Node]) -> list[Node]:
    fresh = (node_store.get_node(conn, n.id) for n in nodes)
    return [n for n in fresh if n is not None]
