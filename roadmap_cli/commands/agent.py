"""Agent commands for the active project."""

from typing import Optional

import typer

from roadmap.agent import run_agent_turn
from roadmap.agent.actions import breakdown_proposal
from roadmap.agent.executor import execute_action, refine_node
from roadmap.agent.generator import generate_roadmap
from roadmap.db import get_connection, init_db
from roadmap.errors import RoadmapError, UpstreamUnavailableError
from roadmap_cli.commands.node import find_node
from roadmap_cli.context import fail, load_context, require_context
from roadmap_cli.rendering import render_tree

agent_app = typer.Typer(help="Ask the roadmap agent to plan and edit.")


def _upstream(exc: UpstreamUnavailableError) -> None:
    fail(f"{exc.user_message} ({exc.kind})")


@agent_app.command("ask")
@require_context
def agent_ask(
    message: str = typer.Argument(..., help="What you want the agent to do or answer."),
) -> None:
    """Chat with the agent; proposed edits are applied to the roadmap."""
    ctx = load_context()
    conn = get_connection()
    init_db(conn)

    try:
        payload = run_agent_turn(conn, ctx.active_project_id, message)
        typer.echo(f"🤖 {payload['message']}")
        if payload["action"] != "chat_only":
            typer.echo(
                f"   action={payload['action']}  created={len(payload['created_nodes'])}"
                f"  updated={len(payload['updated_nodes'])}"
                + (f"  failed={payload['failed']}" if payload["failed"] else "")
            )
            for n in payload["created_nodes"]:
                typer.echo(f"   + [{n['type']}] {n['title']}")
    except UpstreamUnavailableError as exc:
        _upstream(exc)
    except RoadmapError as exc:
        fail(str(exc))
    finally:
        conn.close()


@agent_app.command("breakdown")
@require_context
def agent_breakdown(
    ref: str = typer.Argument(..., help="Node id, id prefix or title to break down."),
    count: Optional[int] = typer.Option(None, "--count", "-n", min=1, max=10, help="Number of sub-items."),
) -> None:
    """Split a phase into steps, or a step into substeps."""
    ctx = load_context()
    conn = get_connection()
    init_db(conn)

    try:
        node = find_node(conn, ctx.active_project_id, ref)
        typer.echo(f"🧩 Breaking down {node.title!r} …")
        result = execute_action(conn, ctx.active_project_id, breakdown_proposal(node.id, count))
        for child in result.created_nodes:
            typer.echo(f"   + [{child.type.value}] {child.title}")
        typer.echo(f"✅ Created {len(result.created_nodes)} sub-item(s)")
    except UpstreamUnavailableError as exc:
        _upstream(exc)
    except RoadmapError as exc:
        fail(str(exc))
    finally:
        conn.close()


@agent_app.command("generate")
@require_context
def agent_generate(
    replace: bool = typer.Option(False, "--replace", help="Delete existing nodes first."),
    context: str = typer.Option("", "--context", "-c", help="Additional context for the planner."),
) -> None:
    """Generate a complete roadmap for the active project."""
    ctx = load_context()
    conn = get_connection()
    init_db(conn)

    try:
        typer.echo("🧠 Generating roadmap …")
        nodes = generate_roadmap(
            conn,
            ctx.active_project_id,
            mode="replace" if replace else "fresh",
            additional_context=context,
        )
        typer.echo(render_tree(nodes))
        typer.echo(f"✅ Roadmap has {len(nodes)} node(s)")
    except UpstreamUnavailableError as exc:
        _upstream(exc)
    except RoadmapError as exc:
        fail(str(exc))
    finally:
        conn.close()


@agent_app.command("refine")
@require_context
def agent_refine(
    ref: str = typer.Argument(..., help="Node id, id prefix or title to refine."),
) -> None:
    """Rewrite a node's description and attach checkpoints, resources and tips."""
    ctx = load_context()
    conn = get_connection()
    init_db(conn)

    try:
        node = find_node(conn, ctx.active_project_id, ref)
        typer.echo(f"🔍 Refining {node.title!r} …")
        result = refine_node(conn, ctx.active_project_id, node.id)
        improvements = result.improvements
        typer.echo(f"✨ Refined {result.node.title!r}")
        typer.echo(f"   {improvements['description']}")
        for checkpoint in improvements["checkpoints"]:
            typer.echo(f"   ☐ {checkpoint}")
        for resource in improvements["resources"]:
            typer.echo(f"   📚 {resource.get('title', '')} ({resource.get('type', 'resource')})")
        for tip in improvements["tips"]:
            typer.echo(f"   💡 {tip}")
        if improvements["estimatedTime"]:
            typer.echo(f"   ⏱  {improvements['estimatedTime']}")
    except UpstreamUnavailableError as exc:
        _upstream(exc)
    except RoadmapError as exc:
        fail(str(exc))
    finally:
        conn.close()
