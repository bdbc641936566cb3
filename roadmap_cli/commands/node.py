"""Node commands: add, change status, delete."""

import sqlite3
from typing import Optional

import typer

from roadmap.db import get_connection, init_db
from roadmap.db.models import Node
from roadmap.db.nodes import list_nodes
from roadmap.errors import RoadmapError
from roadmap.tree import operations
from roadmap_cli.context import fail, load_context, require_context

node_app = typer.Typer(help="Create and update roadmap nodes.")


def find_node(conn: sqlite3.Connection, project_id: str, ref: str) -> Node:
    """Resolve *ref* as a full id, an id prefix, or a title (case-insensitive)."""
    nodes = list_nodes(conn, project_id)
    for n in nodes:
        if n.id == ref:
            return n
    matches = [n for n in nodes if n.id.startswith(ref)] if len(ref) >= 4 else []
    if not matches:
        matches = [n for n in nodes if n.title.lower() == ref.lower()]
    if len(matches) > 1:
        fail(f"{ref!r} is ambiguous ({len(matches)} nodes); use a longer id.")
    if not matches:
        fail(f"Node not found: {ref}")
    return matches[0]


@node_app.command("add")
@require_context
def node_add(
    title: str = typer.Argument(..., help="Node title."),
    node_type: str = typer.Option(..., "--type", help="phase | step | substep."),
    parent: Optional[str] = typer.Option(None, "--parent", "-p", help="Parent id, id prefix or title."),
    description: str = typer.Option("", "--description", "-d"),
    priority: str = typer.Option("medium", "--priority"),
    estimate: str = typer.Option("", "--estimate", help="Estimated time, e.g. '3 days'."),
) -> None:
    """Add a node to the active project."""
    ctx = load_context()
    conn = get_connection()
    init_db(conn)

    try:
        parent_id = find_node(conn, ctx.active_project_id, parent).id if parent else None
        node = operations.create_node(
            conn,
            ctx.active_project_id,
            node_type,
            title,
            description=description,
            parent_id=parent_id,
            priority=priority,
            estimated_time=estimate,
        )
        typer.echo(
            f"✅ Added {node.type.value}: {node.title} ({node.id}) "
            f"at ({node.position.x:g}, {node.position.y:g})"
        )
    except RoadmapError as exc:
        fail(str(exc))
    finally:
        conn.close()


@node_app.command("status")
@require_context
def node_status(
    ref: str = typer.Argument(..., help="Node id, id prefix or title."),
    status: str = typer.Argument(..., help="pending | in_progress | completed | blocked."),
) -> None:
    """Set a node's status; parents are updated automatically."""
    ctx = load_context()
    conn = get_connection()
    init_db(conn)

    try:
        node = find_node(conn, ctx.active_project_id, ref)
        before = {n.id: n.status for n in list_nodes(conn, ctx.active_project_id)}
        nodes = operations.set_node_status(conn, node.id, status)
        typer.echo(f"✅ {node.title}: {status}")
        for n in nodes:
            if n.id != node.id and before.get(n.id) is not n.status:
                typer.echo(f"   ↳ {n.title}: {n.status.value}")
    except RoadmapError as exc:
        fail(str(exc))
    finally:
        conn.close()


@node_app.command("delete")
@require_context
def node_delete(
    ref: str = typer.Argument(..., help="Node id, id prefix or title."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation."),
) -> None:
    """Delete a node and all of its descendants."""
    ctx = load_context()
    conn = get_connection()
    init_db(conn)

    try:
        node = find_node(conn, ctx.active_project_id, ref)
        if not yes:
            typer.confirm(f"Delete {node.title!r} and its descendants?", abort=True)
        remaining = operations.delete_node(conn, ctx.active_project_id, node.id)
        typer.echo(f"🗑️  Deleted {node.title} ({len(remaining)} nodes left)")
    except RoadmapError as exc:
        fail(str(exc))
    finally:
        conn.close()
