"""Centralised settings for the roadmap engine.

All runtime configuration is resolved here in one place.  Values can be
overridden via environment variables or a `.env` file in the project root
(loaded automatically when this module is imported).
"""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path

import structlog
from dotenv import load_dotenv

# Load .env from the project root (two levels up from this file)
_env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_env_path, override=False)


def _layout_env(name: str, default: float) -> float:
    return float(os.environ.get(f"LAYOUT_{name}", str(default)))


@dataclass(frozen=True)
class LayoutConfig:
    """Canvas geometry used by the layout engine and the creation paths.

    The first block drives the full auto-format pass; the remaining
    constants place freshly created nodes before the next auto-format.
    """

    PHASE_START_X: float = 100
    PHASE_SPACING_X: float = 1200
    PHASE_Y: float = 100
    STEP_START_Y: float = 400
    STEP_SPACING_Y: float = 100
    STEP_OFFSET_X: float = 0
    SUBSTEP_START_OFFSET_Y: float = 150
    SUBSTEP_SPACING_Y: float = 100
    SUBSTEP_OFFSET_X: float = 50

    DEFAULT_X: float = 100
    DEFAULT_Y: float = 100
    STACK_SPACING_Y: float = 120

    BREAKDOWN_OFFSET_X: float = 300
    BREAKDOWN_SPACING_Y: float = 100

    @classmethod
    def from_env(cls) -> "LayoutConfig":
        """Build a config where every constant may be overridden by ``LAYOUT_<NAME>``."""
        defaults = cls()
        return cls(
            **{
                name: _layout_env(name, getattr(defaults, name))
                for name in cls.__dataclass_fields__
            }
        )


@dataclass
class Settings:
    # ------------------------------------------------------------------
    # Workspace / storage
    # ------------------------------------------------------------------
    workspace_dir: Path = field(
        default_factory=lambda: Path(
            os.environ.get("ROADMAP_WORKSPACE", Path.home() / ".roadmap_data")
        )
    )
    cli_config_dir: Path = field(
        default_factory=lambda: Path(
            os.environ.get("ROADMAP_CLI_DIR", Path.home() / ".roadmap_cli")
        )
    )

    @property
    def db_path(self) -> Path:
        """Absolute path to the SQLite database file."""
        return self.workspace_dir / "roadmap.db"

    @property
    def schema_path(self) -> Path:
        """Absolute path to the schema SQL file bundled with the package."""
        return Path(__file__).resolve().parent / "db" / "schema.sql"

    # ------------------------------------------------------------------
    # Chat / generation model
    # ------------------------------------------------------------------
    llm_provider: str = field(
        default_factory=lambda: os.environ.get("LLM_PROVIDER", "ollama")
    )
    ollama_base_url: str = field(
        default_factory=lambda: os.environ.get("OLLAMA_BASE_URL", "http://localhost:11434")
    )
    ollama_chat_model: str = field(
        default_factory=lambda: os.environ.get("OLLAMA_CHAT_MODEL", "ministral-3:8b")
    )
    openai_chat_model: str = field(
        default_factory=lambda: os.environ.get("OPENAI_CHAT_MODEL", "gpt-4o-mini")
    )
    llm_temperature: float = field(
        default_factory=lambda: float(os.environ.get("LLM_TEMPERATURE", "0.7"))
    )

    # ------------------------------------------------------------------
    # Embedding model (node retrieval for prompts)
    # ------------------------------------------------------------------
    embedding_provider: str = field(
        default_factory=lambda: os.environ.get("EMBEDDING_PROVIDER", "ollama")
    )
    ollama_embed_model: str = field(
        default_factory=lambda: os.environ.get("OLLAMA_EMBED_MODEL", "embeddinggemma:latest")
    )
    openai_embed_model: str = field(
        default_factory=lambda: os.environ.get(
            "OPENAI_EMBED_MODEL", "text-embedding-3-small"
        )
    )
    embedding_dim: int = field(
        default_factory=lambda: int(os.environ.get("EMBEDDING_DIM", "768"))
    )
    request_timeout: float = field(
        default_factory=lambda: float(os.environ.get("REQUEST_TIMEOUT", "60.0"))
    )

    # ------------------------------------------------------------------
    # Agent
    # ------------------------------------------------------------------
    breakdown_min_items: int = field(
        default_factory=lambda: int(os.environ.get("BREAKDOWN_MIN_ITEMS", "3"))
    )
    breakdown_max_items: int = field(
        default_factory=lambda: int(os.environ.get("BREAKDOWN_MAX_ITEMS", "5"))
    )
    # Above this many nodes the chat prompt only lists the most relevant ones
    prompt_node_limit: int = field(
        default_factory=lambda: int(os.environ.get("PROMPT_NODE_LIMIT", "40"))
    )

    # ------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------
    log_level: str = field(
        default_factory=lambda: os.environ.get("LOG_LEVEL", "INFO")
    )
    log_format: str = field(
        default_factory=lambda: os.environ.get("LOG_FORMAT", "text")
    )

    # ------------------------------------------------------------------
    # Canvas layout
    # ------------------------------------------------------------------
    layout: LayoutConfig = field(default_factory=LayoutConfig.from_env)

    def ensure_workspace(self) -> None:
        """Create the workspace directory if it does not exist."""
        self.workspace_dir.mkdir(parents=True, exist_ok=True)


def configure_logging(log_level: str = "INFO", log_format: str = "text") -> None:
    """Configure structlog for either JSON or console output.

    Args:
        log_level: The minimum log level to emit (DEBUG, INFO, WARNING, ERROR).
        log_format: ``json`` for production, ``text`` for development.
    """
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "json":
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


# Module-level singleton; import this everywhere:
#   from roadmap.config import settings
settings = Settings()
