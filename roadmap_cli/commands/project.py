"""Project management commands."""

import typer

from roadmap.db import get_connection, init_db
from roadmap.db.nodes import list_nodes
from roadmap.db.projects import create_project, list_projects, require_project
from roadmap.errors import RoadmapError
from roadmap.tree.cascade import summarize_progress
from roadmap.tree.operations import recalculate_project
from roadmap_cli.context import fail, load_context, require_context, switch_to

project_app = typer.Typer(help="Manage thesis roadmap projects.")


@project_app.command("new")
def project_new(
    title: str = typer.Argument(..., help="Title of the new project."),
    jurusan: str = typer.Option("", "--jurusan", "-j", help="Field of study."),
    timeline: str = typer.Option("", "--timeline", "-t", help="e.g. '6 months'."),
    description: str = typer.Option("", "--description", "-d"),
) -> None:
    """Create a new project and switch to it."""
    conn = get_connection()
    init_db(conn)

    try:
        project = create_project(
            conn, title, jurusan=jurusan, timeline=timeline, description=description
        )
        typer.echo(f"✅ Project created: {project.title} ({project.id})")
        switch_to(project)
    finally:
        conn.close()


@project_app.command("list")
def project_list() -> None:
    """List all available projects."""
    conn = get_connection()
    init_db(conn)

    try:
        projects = list_projects(conn)
        if not projects:
            typer.echo("No projects found.")
            return

        active_id = load_context().active_project_id

        typer.echo("Projects:")
        for p in projects:
            marker = "*" if p.id == active_id else " "
            pct = p.metadata.progress_percentage or 0
            typer.echo(f"{marker} {p.title} \t{pct}%\t[{p.id}]")
    finally:
        conn.close()


@project_app.command("switch")
def project_switch(
    identifier: str = typer.Argument(..., help="Project title or UUID."),
) -> None:
    """Switch the active project context."""
    conn = get_connection()
    init_db(conn)

    try:
        projects = list_projects(conn)
        target = next((p for p in projects if p.id == identifier), None)
        if target is None:
            matches = [p for p in projects if p.title.lower() == identifier.lower()]
            if len(matches) > 1:
                fail(f"Multiple projects are titled {identifier!r}; use the UUID.")
            target = matches[0] if matches else None
        if target is None:
            fail(f"Project not found: {identifier}")
        switch_to(target)
    finally:
        conn.close()


@project_app.command("status")
@require_context
def project_status() -> None:
    """Show progress of the active project."""
    ctx = load_context()
    conn = get_connection()
    init_db(conn)

    try:
        project = require_project(conn, ctx.active_project_id)
        summary = summarize_progress(list_nodes(conn, project.id))
        typer.echo(f"📊 Project: {project.title}")
        if project.jurusan:
            typer.echo(f"   Field   : {project.jurusan}")
        if project.timeline:
            typer.echo(f"   Timeline: {project.timeline}")
        typer.echo(f"   Phases  : {summary.phases}")
        typer.echo(f"   Nodes   : {summary.completed_nodes}/{summary.total_nodes} completed")
        typer.echo(f"   Progress: {summary.progress_percentage}%")
        typer.echo(f"   Current : {summary.current_phase}")
    except RoadmapError as exc:
        fail(str(exc))
    finally:
        conn.close()


@project_app.command("recalc")
@require_context
def project_recalc() -> None:
    """Recompute phase progress and the project aggregate."""
    ctx = load_context()
    conn = get_connection()
    init_db(conn)

    try:
        summary = recalculate_project(conn, ctx.active_project_id)
        typer.echo(
            f"🔄 Recalculated: {summary.progress_percentage}% "
            f"({summary.completed_nodes}/{summary.total_nodes}), "
            f"current phase: {summary.current_phase}"
        )
    except RoadmapError as exc:
        fail(str(exc))
    finally:
        conn.close()
