"""Commands for viewing and editing the roadmap canvas."""

import typer

from roadmap.db import get_connection, init_db
from roadmap.db.nodes import list_nodes
from roadmap.db.projects import require_project
from roadmap.errors import RoadmapError
from roadmap.tree import operations
from roadmap.tree.graph import build_edges, edge_id
from roadmap_cli.commands.node import find_node
from roadmap_cli.context import fail, load_context, require_context
from roadmap_cli.rendering import render_edges, render_tree

map_app = typer.Typer(help="Visualise, connect and lay out project nodes.")


@map_app.command("show")
@require_context
def map_show(
    format: str = typer.Option("tree", "--format", help="Output format: tree | list"),
    ids: bool = typer.Option(False, "--ids", help="Show node id prefixes."),
) -> None:
    """Display the roadmap as an ASCII tree or a flat list."""
    ctx = load_context()
    conn = get_connection()
    init_db(conn)

    try:
        project = require_project(conn, ctx.active_project_id)
        nodes = list_nodes(conn, project.id)
        typer.echo(f"🗺️  {project.title}")
        if not nodes:
            typer.echo("  (empty roadmap)")
            return

        if format == "list":
            for n in nodes:
                typer.echo(
                    f"  #{n.order_index:<3} [{n.type.value:<7}] {n.status.value:<11} "
                    f"{n.title} ({n.id[:8]}) @ ({n.position.x:g}, {n.position.y:g})"
                )
        else:
            typer.echo(render_tree(nodes, show_ids=ids))
    except RoadmapError as exc:
        fail(str(exc))
    finally:
        conn.close()


@map_app.command("edges")
@require_context
def map_edges() -> None:
    """List the derived edge set (tree, phase sequence and custom edges)."""
    ctx = load_context()
    conn = get_connection()
    init_db(conn)

    try:
        project = require_project(conn, ctx.active_project_id)
        nodes = list_nodes(conn, project.id)
        edges = build_edges(nodes, project)
        if not edges:
            typer.echo("No edges.")
            return
        typer.echo(f"Edges ({len(edges)}):")
        typer.echo(render_edges(edges, nodes))
    except RoadmapError as exc:
        fail(str(exc))
    finally:
        conn.close()


@map_app.command("connect")
@require_context
def map_connect(
    source: str = typer.Argument(..., help="Source node id, id prefix or title."),
    target: str = typer.Argument(..., help="Target node id, id prefix or title."),
) -> None:
    """Connect two nodes.

    Phase → step and step → substep links re-parent the target; any other
    pair is kept as a custom edge.
    """
    ctx = load_context()
    conn = get_connection()
    init_db(conn)

    try:
        src = find_node(conn, ctx.active_project_id, source)
        tgt = find_node(conn, ctx.active_project_id, target)
        edge, _ = operations.link_nodes(conn, ctx.active_project_id, src.id, tgt.id)
        kind = "custom edge" if edge.source_handle not in ("phase-steps", "step-bottom") else "parent link"
        typer.echo(f"🔗 {src.title} → {tgt.title} ({kind})")
    except RoadmapError as exc:
        fail(str(exc))
    finally:
        conn.close()


@map_app.command("disconnect")
@require_context
def map_disconnect(
    source: str = typer.Argument(..., help="Source node id, id prefix or title."),
    target: str = typer.Argument(..., help="Target node id, id prefix or title."),
) -> None:
    """Remove the edge between two nodes (detaching the target if it is a child)."""
    ctx = load_context()
    conn = get_connection()
    init_db(conn)

    try:
        src = find_node(conn, ctx.active_project_id, source)
        tgt = find_node(conn, ctx.active_project_id, target)
        operations.unlink_edge(conn, ctx.active_project_id, edge_id(src.id, tgt.id))
        typer.echo(f"✂️  Disconnected {src.title} → {tgt.title}")
    except RoadmapError as exc:
        fail(str(exc))
    finally:
        conn.close()


@map_app.command("format")
@require_context
def map_format() -> None:
    """Re-run the automatic layout over the whole roadmap."""
    ctx = load_context()
    conn = get_connection()
    init_db(conn)

    try:
        result = operations.auto_format(conn, ctx.active_project_id)
        typer.echo(
            f"📐 Layout applied: {len(result.updated_ids)} node(s) moved"
            + (f", {len(result.failed_ids)} failed" if result.failed_ids else "")
        )
    except RoadmapError as exc:
        fail(str(exc))
    finally:
        conn.close()
