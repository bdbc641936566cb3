"""Status cascade and progress roll-up.

Parent status is stored, not computed on read, so every mutation that can
change a leaf re-derives the parents here.  The rule is the same at both
levels (step from its substeps, phase from its steps)::

    all children completed  -> completed
    else any blocked        -> blocked
    else any in_progress    -> in_progress
    else                    -> pending

Two entry points:

``resolve_cascade``
    Full two-pass rescan of a project (steps first, then phases, phases
    seeing the step statuses written by the first pass).

``cascade_ancestors``
    Re-derives one changed node and walks its parent chain; a bounded-depth
    alternative used by the agent executor after single-node updates.

Writes are best-effort: a failed write is logged and the pass continues.
Both functions are idempotent once leaf statuses are settled.
"""

from __future__ import annotations

import math
import sqlite3
from dataclasses import dataclass, field
from typing import Iterable, Optional

import structlog

from roadmap.db.models import Node, NodeStatus, NodeType
from roadmap.db.nodes import get_node, list_nodes, update_node
from roadmap.db.projects import require_project, update_project_metadata
from roadmap.tree.layout import ordered_phases

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Pure rules
# ---------------------------------------------------------------------------

def derive_status(statuses: Iterable[NodeStatus]) -> Optional[NodeStatus]:
    """Apply the precedence rule; ``None`` when there are no children."""
    statuses = list(statuses)
    if not statuses:
        return None
    if all(s is NodeStatus.COMPLETED for s in statuses):
        return NodeStatus.COMPLETED
    if NodeStatus.BLOCKED in statuses:
        return NodeStatus.BLOCKED
    if NodeStatus.IN_PROGRESS in statuses:
        return NodeStatus.IN_PROGRESS
    return NodeStatus.PENDING


def percent(part: int, whole: int) -> int:
    """Round-half-up percentage; 0 for an empty denominator."""
    if whole <= 0:
        return 0
    return int(math.floor(100 * part / whole + 0.5))


@dataclass
class CascadePlan:
    """Writes a cascade pass wants to make, keyed by node id."""

    statuses: dict[str, NodeStatus] = field(default_factory=dict)
    progress: dict[str, int] = field(default_factory=dict)

    def is_empty(self) -> bool:
        return not self.statuses and not self.progress


def plan_cascade(nodes: list[Node]) -> CascadePlan:
    """Compute the cascade for a whole project without touching the store.

    Children are matched on ``parent_id`` *and* on the expected child type,
    so a node attached under the wrong kind of parent never feeds a status.
    """
    plan = CascadePlan()
    current = {n.id: n.status for n in nodes}

    children: dict[str, list[Node]] = {}
    for node in nodes:
        if node.parent_id:
            children.setdefault(node.parent_id, []).append(node)

    # Pass 1: steps from substeps.  Pass 2: phases from (updated) steps.
    for parent_type in (NodeType.STEP, NodeType.PHASE):
        for parent in nodes:
            if parent.type is not parent_type:
                continue
            kids = [
                c for c in children.get(parent.id, [])
                if c.type is parent_type.child_type
            ]
            new_status = derive_status(current[c.id] for c in kids)
            if new_status is None:
                continue
            if new_status is not current[parent.id]:
                plan.statuses[parent.id] = new_status
                current[parent.id] = new_status

            if parent_type is NodeType.PHASE:
                done = sum(1 for c in kids if current[c.id] is NodeStatus.COMPLETED)
                progress = percent(done, len(kids))
                if parent.metadata.progress != progress:
                    plan.progress[parent.id] = progress

    return plan


# ---------------------------------------------------------------------------
# Store-backed passes
# ---------------------------------------------------------------------------

@dataclass
class CascadeResult:
    updated_ids: list[str] = field(default_factory=list)
    failed_ids: list[str] = field(default_factory=list)


def _apply_plan(
    conn: sqlite3.Connection, nodes: dict[str, Node], plan: CascadePlan
) -> CascadeResult:
    result = CascadeResult()
    for node_id in dict.fromkeys([*plan.statuses, *plan.progress]):
        fields: dict = {}
        if node_id in plan.statuses:
            fields["status"] = plan.statuses[node_id]
        if node_id in plan.progress:
            meta = nodes[node_id].metadata
            meta.progress = plan.progress[node_id]
            fields["metadata"] = meta
        try:
            update_node(conn, node_id, **fields)
        except sqlite3.Error as exc:
            logger.warning("cascade_write_failed", node_id=node_id, error=str(exc))
            result.failed_ids.append(node_id)
        else:
            result.updated_ids.append(node_id)
    return result


def resolve_cascade(conn: sqlite3.Connection, project_id: str) -> CascadeResult:
    """Re-derive every step and phase status (and phase progress) in a project."""
    nodes = list_nodes(conn, project_id)
    plan = plan_cascade(nodes)
    if plan.is_empty():
        return CascadeResult()
    result = _apply_plan(conn, {n.id: n for n in nodes}, plan)
    logger.debug(
        "cascade_resolved",
        project_id=project_id,
        updated=len(result.updated_ids),
        failed=len(result.failed_ids),
    )
    return result


def cascade_ancestors(conn: sqlite3.Connection, node_id: str) -> CascadeResult:
    """Recompute *node_id* and then each node up its parent chain.

    The changed node is re-derived first, since a step or phase cannot keep
    a status its children contradict.  A node without correctly-typed
    children keeps its own status; above the start node such a parent ends
    the walk.
    """
    result = CascadeResult()
    current = get_node(conn, node_id)

    while current is not None:
        child_type = current.type.child_type
        kids = (
            list_nodes(conn, current.project_id, parent_id=current.id, node_type=child_type)
            if child_type is not None
            else []
        )
        new_status = derive_status(k.status for k in kids)
        if new_status is None:
            if current.id != node_id:
                break
        else:
            plan = CascadePlan()
            if new_status is not current.status:
                plan.statuses[current.id] = new_status
            if current.type is NodeType.PHASE:
                done = sum(1 for k in kids if k.status is NodeStatus.COMPLETED)
                progress = percent(done, len(kids))
                if current.metadata.progress != progress:
                    plan.progress[current.id] = progress
            step = _apply_plan(conn, {current.id: current}, plan)
            result.updated_ids.extend(step.updated_ids)
            result.failed_ids.extend(step.failed_ids)

        current = get_node(conn, current.parent_id) if current.parent_id else None

    return result


# ---------------------------------------------------------------------------
# Project aggregate
# ---------------------------------------------------------------------------

@dataclass
class ProjectProgress:
    total_nodes: int
    completed_nodes: int
    progress_percentage: int
    current_phase: str
    phases: int

    def to_dict(self) -> dict:
        return {
            "totalNodes": self.total_nodes,
            "completedNodes": self.completed_nodes,
            "progressPercentage": self.progress_percentage,
            "currentPhase": self.current_phase,
            "phases": self.phases,
        }


def summarize_progress(nodes: list[Node]) -> ProjectProgress:
    """Project aggregate over *all* nodes, phases included.

    ``current_phase`` is the first phase in progress, else the first pending
    one, else the last phase, else ``"N/A"``.
    """
    total = len(nodes)
    completed = sum(1 for n in nodes if n.status is NodeStatus.COMPLETED)

    phases = ordered_phases(nodes)
    current = (
        next((p for p in phases if p.status is NodeStatus.IN_PROGRESS), None)
        or next((p for p in phases if p.status is NodeStatus.PENDING), None)
        or (phases[-1] if phases else None)
    )
    return ProjectProgress(
        total_nodes=total,
        completed_nodes=completed,
        progress_percentage=percent(completed, total),
        current_phase=current.title if current else "N/A",
        phases=len(phases),
    )


def recalculate_project_progress(
    conn: sqlite3.Connection, project_id: str
) -> ProjectProgress:
    """Refresh phase progress and write the project aggregate.

    Raises:
        NotFoundError: If the project does not exist.
    """
    require_project(conn, project_id)
    nodes = list_nodes(conn, project_id)

    by_id = {n.id: n for n in nodes}
    plan = CascadePlan()
    for phase in (n for n in nodes if n.type is NodeType.PHASE):
        steps = [
            n for n in nodes if n.parent_id == phase.id and n.type is NodeType.STEP
        ]
        if not steps:
            continue
        done = sum(1 for s in steps if s.status is NodeStatus.COMPLETED)
        progress = percent(done, len(steps))
        if phase.metadata.progress != progress:
            plan.progress[phase.id] = progress
    if not plan.is_empty():
        _apply_plan(conn, by_id, plan)

    summary = summarize_progress(nodes)
    update_project_metadata(
        conn,
        project_id,
        current_phase=summary.current_phase,
        total_steps=summary.total_nodes,
        completed_steps=summary.completed_nodes,
        progress_percentage=summary.progress_percentage,
    )
    logger.info(
        "project_progress_recalculated",
        project_id=project_id,
        total=summary.total_nodes,
        completed=summary.completed_nodes,
        percentage=summary.progress_percentage,
    )
    return summary
