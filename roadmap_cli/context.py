"""Active-project state for the roadmap CLI.

Commands act on the project recorded in ``<cli_config_dir>/context.json``
instead of taking a ``--project`` flag on every call.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field, fields
from functools import wraps
from pathlib import Path
from typing import Any, Callable, NoReturn

import typer

from roadmap.config import settings
from roadmap.db.models import Project


@dataclass
class CliContext:
    active_project_id: str | None = None
    active_project_title: str | None = None
    user_preferences: dict[str, Any] = field(default_factory=dict)

    def activate(self, project: Project) -> None:
        self.active_project_id = project.id
        self.active_project_title = project.title

    def to_json(self) -> str:
        return json.dumps(asdict(self), indent=2)

    @classmethod
    def from_json(cls, data: str) -> CliContext:
        """Parse a context file; keys written by other versions are dropped."""
        try:
            raw = json.loads(data)
        except json.JSONDecodeError:
            return cls()
        if not isinstance(raw, dict):
            return cls()
        known = {f.name for f in fields(cls)}
        ctx = cls(**{k: v for k, v in raw.items() if k in known})
        if not isinstance(ctx.user_preferences, dict):
            ctx.user_preferences = {}
        return ctx


def _get_context_path() -> Path:
    return settings.cli_config_dir / "context.json"


def load_context() -> CliContext:
    """Read the context file, or defaults when there is none."""
    path = _get_context_path()
    if not path.exists():
        return CliContext()
    return CliContext.from_json(path.read_text(encoding="utf-8"))


def save_context(ctx: CliContext) -> None:
    settings.cli_config_dir.mkdir(parents=True, exist_ok=True)
    _get_context_path().write_text(ctx.to_json(), encoding="utf-8")


def switch_to(project: Project) -> None:
    """Make *project* the active one and announce it."""
    ctx = load_context()
    ctx.activate(project)
    save_context(ctx)
    typer.echo(f"📂 Switched to project: {project.title}")


def fail(message: str) -> NoReturn:
    typer.echo(f"❌ {message}")
    raise typer.Exit(code=1)


def require_context(func: Callable) -> Callable:
    """Abort the wrapped command unless a project is active.

    The command body reads the project id itself with :func:`load_context`.
    """

    @wraps(func)
    def wrapper(*args, **kwargs):
        if not load_context().active_project_id:
            typer.echo("❌ No active project selected.")
            typer.echo("Run 'project new <title>' or 'project switch <title>' first.")
            raise typer.Exit(code=1)
        return func(*args, **kwargs)

    return wrapper
