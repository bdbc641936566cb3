"""Roadmap CLI: entry-point for all engine operations.

Usage:
    roadmap --help

Command groups:
    db       → database setup
    project  → create / switch / inspect projects
    node     → add nodes, change status, delete
    map      → tree view, edges, connect / disconnect, auto-layout
    agent    → chat, breakdown and roadmap generation via the LLM
"""

from __future__ import annotations

import typer

from roadmap.config import configure_logging, settings
from roadmap.db import get_connection, init_db
from roadmap_cli.commands.agent import agent_app
from roadmap_cli.commands.map import map_app
from roadmap_cli.commands.node import node_app
from roadmap_cli.commands.project import project_app

app = typer.Typer(
    name="roadmap",
    help="Thesis roadmap CLI.",
    no_args_is_help=True,
)


@app.callback()
def main() -> None:
    """Configure logging before any command runs."""
    configure_logging(settings.log_level, settings.log_format)


db_app = typer.Typer(help="Database operations.", no_args_is_help=True)
app.add_typer(db_app, name="db")
app.add_typer(project_app, name="project")
app.add_typer(node_app, name="node")
app.add_typer(map_app, name="map")
app.add_typer(agent_app, name="agent")


@db_app.command("init")
def db_init() -> None:
    """Initialise the SQLite database (create tables if they do not exist)."""
    conn = get_connection()
    init_db(conn)
    conn.close()
    typer.echo(f"[db init] Database ready at {settings.db_path}")


# ---------------------------------------------------------------------------
# Entry-point
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    app()
