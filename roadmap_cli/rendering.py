"""Utilities for rendering a roadmap in the terminal."""

from __future__ import annotations

from roadmap.db.models import Edge, Node, NodeStatus, NodeType
from roadmap.tree.layout import ordered_phases

_STATUS_ICONS = {
    NodeStatus.PENDING: "○",
    NodeStatus.IN_PROGRESS: "◐",
    NodeStatus.COMPLETED: "●",
    NodeStatus.BLOCKED: "✖",
}

_TYPE_ICONS = {
    NodeType.PHASE: "📦",
    NodeType.STEP: "📄",
    NodeType.SUBSTEP: "▫️",
}


def _label(node: Node, show_ids: bool) -> str:
    text = f"{_STATUS_ICONS[node.status]} {_TYPE_ICONS[node.type]} {node.title}"
    if node.type is NodeType.PHASE and node.metadata.progress is not None:
        text += f" ({node.metadata.progress}%)"
    if show_ids:
        text += f"  [{node.id[:8]}]"
    return text


def render_tree(nodes: list[Node], show_ids: bool = False) -> str:
    """Render a project as an ASCII tree, phases in sequence order.

    Steps and substeps that hang under no phase are listed under an
    ``Unassigned`` heading at the end.

    Args:
        nodes: Every node of the project.
        show_ids: Append the first 8 characters of each node id.

    Returns:
        The rendered tree, or an empty string for an empty project.
    """
    children: dict[str, list[Node]] = {}
    for n in sorted(nodes, key=lambda n: n.order_index):
        if n.parent_id:
            children.setdefault(n.parent_id, []).append(n)

    lines: list[str] = []
    seen: set[str] = set()

    def visit(node: Node, prefix: str, is_last: bool) -> None:
        seen.add(node.id)
        connector = "└── " if is_last else "├── "
        lines.append(f"{prefix}{connector}{_label(node, show_ids)}")
        kids = [k for k in children.get(node.id, []) if k.id not in seen]
        child_prefix = prefix + ("    " if is_last else "│   ")
        for i, kid in enumerate(kids):
            visit(kid, child_prefix, i == len(kids) - 1)

    for phase in ordered_phases(nodes):
        seen.add(phase.id)
        lines.append(_label(phase, show_ids))
        kids = children.get(phase.id, [])
        for i, kid in enumerate(kids):
            visit(kid, "", i == len(kids) - 1)

    rest = [n for n in sorted(nodes, key=lambda n: n.order_index) if n.id not in seen]
    if rest:
        lines.append("Unassigned")
        for i, node in enumerate(rest):
            lines.append(f"{'└── ' if i == len(rest) - 1 else '├── '}{_label(node, show_ids)}")
    return "\n".join(lines)


def render_edges(edges: list[Edge], nodes: list[Node]) -> str:
    """One line per edge: ``source → target`` with its provenance."""
    titles = {n.id: n.title for n in nodes}
    lines = []
    for e in edges:
        if e.id.startswith("e-phase-"):
            kind = "sequence"
        elif e.source_handle in ("phase-steps", "step-bottom"):
            kind = "tree"
        else:
            kind = "custom"
        lines.append(
            f"  {titles.get(e.source, e.source[:8])} → {titles.get(e.target, e.target[:8])}"
            f"  [{kind}]  {e.id}"
        )
    return "\n".join(lines)
