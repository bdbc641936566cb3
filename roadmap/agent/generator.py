"""Whole-roadmap generation for a project.

The model answers in the ``{"phases": [{..., "steps": [{..., "substeps":
[str]}]}]}`` shape; the reply is converted to nested :class:`NodeSpec` objects
and created through the same depth-first bulk path as the
``create_multiple_nodes`` action, after which the layout engine places the
whole tree.
"""

from __future__ import annotations

import sqlite3
from typing import Any, Optional

import structlog
from pydantic import ValidationError

from roadmap.agent import llm
from roadmap.agent.actions import NodeSpec
from roadmap.agent.executor import create_node_tree
from roadmap.agent.prompts import build_roadmap_prompt
from roadmap.config import LayoutConfig
from roadmap.db import nodes as node_store
from roadmap.db.models import Node
from roadmap.db.projects import require_project, update_project_metadata
from roadmap.errors import MalformedInputError
from roadmap.tree.layout import apply_layout
from roadmap.tree.operations import refresh_project

logger = structlog.get_logger(__name__)

GENERATE_MODES = ("fresh", "replace")


def _step_spec(step: dict[str, Any]) -> dict[str, Any]:
    return {
        "title": step.get("title"),
        "description": step.get("description") or "",
        "type": "step",
        "priority": step.get("priority") or "medium",
        "estimated_time": step.get("estimatedTime") or "",
        "children": [
            {"title": s, "type": "substep"}
            for s in step.get("substeps") or []
            if isinstance(s, str) and s.strip()
        ],
    }


def phases_to_specs(phases: list[dict[str, Any]]) -> list[NodeSpec]:
    """Convert the model's ``phases`` list into nested node specs.

    Phases that do not validate are dropped with a warning.
    """
    specs: list[NodeSpec] = []
    for phase in phases:
        if not isinstance(phase, dict):
            continue
        raw = {
            "title": phase.get("title"),
            "description": phase.get("description") or "",
            "type": "phase",
            "estimated_time": phase.get("estimatedTime") or "",
            "children": [_step_spec(s) for s in phase.get("steps") or [] if isinstance(s, dict)],
        }
        try:
            specs.append(NodeSpec.model_validate(raw))
        except ValidationError as exc:
            logger.warning("generated_phase_invalid", title=phase.get("title"), errors=exc.error_count())
    return specs


def generate_roadmap(
    conn: sqlite3.Connection,
    project_id: str,
    mode: str = "fresh",
    additional_context: str = "",
    config: Optional[LayoutConfig] = None,
) -> list[Node]:
    """Generate a full phase/step/substep tree for a project.

    ``replace`` (``merge`` is accepted as an alias) deletes the project's
    existing nodes first; ``fresh`` appends.

    Returns:
        The project's node list after generation and layout.

    Raises:
        NotFoundError: If the project does not exist.
        MalformedInputError: On an unknown mode or a reply without phases.
    """
    if mode == "merge":
        mode = "replace"
    if mode not in GENERATE_MODES:
        raise MalformedInputError(f"Unknown generate mode {mode!r}")

    project = require_project(conn, project_id)
    reply = llm.generate_json(build_roadmap_prompt(project, additional_context))
    phases = reply.get("phases")
    if not isinstance(phases, list) or not phases:
        raise MalformedInputError("The model returned no phases")
    specs = phases_to_specs(phases)
    if not specs:
        raise MalformedInputError("None of the generated phases were usable")

    if mode == "replace":
        existing = [n.id for n in node_store.list_nodes(conn, project_id)]
        deleted = node_store.delete_nodes(conn, project_id, existing)
        logger.info("roadmap_nodes_replaced", project_id=project_id, deleted=deleted)

    created, failed = create_node_tree(conn, project_id, specs, config)
    apply_layout(conn, project_id, config)

    tags = list(project.metadata.extra.get("tags") or [])
    if project.jurusan and project.jurusan not in tags:
        tags.append(project.jurusan)
    meta = require_project(conn, project_id).metadata
    meta.extra["tags"] = tags
    update_project_metadata(
        conn,
        project_id,
        current_phase=specs[0].title,
        completed_steps=0,
        progress_percentage=0,
        total_steps=len(created),
        extra=meta.extra,
    )
    refresh_project(conn, project_id)
    logger.info(
        "roadmap_generated",
        project_id=project_id,
        mode=mode,
        phases=len(specs),
        created=len(created),
        failed=failed,
    )
    return node_store.list_nodes(conn, project_id)
