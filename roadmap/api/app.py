"""FastAPI application factory.

Lifespan
--------
On startup the app opens a single SQLite connection (shared across all
requests via ``request.app.state.db``) and initialises the schema.  On
shutdown it closes the connection cleanly.

Routers
-------
All endpoint groups are mounted under their respective path prefix:

    /projects  : project CRUD, progress, cleanup, auto-format, graph
    /nodes     : node create / patch / status / position / delete
    /edges     : connect, restyle and disconnect canvas edges
    /agent     : agent chat turns, structured actions, breakdown, generation

Errors
------
:class:`~roadmap.errors.RoadmapError` subclasses are mapped to their status
code with a ``{"error": ...}`` body; upstream (LLM) failures add a
``userMessage`` hint.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from roadmap.config import configure_logging, settings
from roadmap.db import get_connection, init_db
from roadmap.errors import RoadmapError, UpstreamUnavailableError

from roadmap.api.routers import agent as agent_router
from roadmap.api.routers import edges as edges_router
from roadmap.api.routers import nodes as nodes_router
from roadmap.api.routers import projects as projects_router

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the DB on startup and close it on shutdown."""
    conn = get_connection()
    init_db(conn)
    app.state.db = conn
    logger.info("api_started", db_path=str(settings.db_path))
    try:
        yield
    finally:
        conn.close()


async def _roadmap_error_handler(request: Request, exc: RoadmapError) -> JSONResponse:
    body = {"error": str(exc)}
    if isinstance(exc, UpstreamUnavailableError):
        body["userMessage"] = exc.user_message
        body["kind"] = exc.kind
    if exc.status_code >= 500:
        logger.error("request_failed", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=exc.status_code, content=body)


async def _validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    # Missing or malformed request fields are a 400, like MalformedInputError
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request", "details": jsonable_encoder(exc.errors())},
    )


def create_app() -> FastAPI:
    """Return a fully-configured FastAPI application instance."""
    configure_logging(settings.log_level, settings.log_format)

    app = FastAPI(
        title="Roadmap API",
        description=(
            "REST interface for the thesis roadmap engine. "
            "Exposes phase/step/substep CRUD with automatic status cascade, "
            "deterministic canvas layout, the derived relationship graph, "
            "and the LLM agent that proposes and applies roadmap edits."
        ),
        version="0.1.0",
        lifespan=lifespan,
    )

    # Allow browser frontends on any origin (tighten for production).
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(RoadmapError, _roadmap_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)

    app.include_router(projects_router.router, prefix="/projects", tags=["projects"])
    app.include_router(nodes_router.router, prefix="/nodes", tags=["nodes"])
    app.include_router(edges_router.router, prefix="/edges", tags=["edges"])
    app.include_router(agent_router.router, prefix="/agent", tags=["agent"])

    return app


# Module-level instance used by uvicorn:
#   uvicorn roadmap.api.app:app --reload
app = create_app()
