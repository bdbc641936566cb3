"""LLM collaborator: chat generation, JSON extraction and text embeddings.

Chat providers
--------------
``ollama`` (default)
    ``langchain_ollama.ChatOllama`` against ``OLLAMA_BASE_URL``.

``openai``
    ``langchain_openai.ChatOpenAI``; requires ``OPENAI_API_KEY``.

Embeddings go straight over ``httpx`` to the provider's REST endpoint and are
only used to pick which nodes of a large project are worth mentioning in a
prompt.

No call here retries.  Upstream failures that look like overload, rate
limiting or a key problem are re-raised as
:class:`~roadmap.errors.UpstreamUnavailableError`.
"""

from __future__ import annotations

import json
import math
import os
import re
from typing import Any

import httpx
import structlog

from roadmap.config import settings
from roadmap.db.models import Node
from roadmap.errors import MalformedInputError, RoadmapError, classify_upstream_error

logger = structlog.get_logger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*(\{[\s\S]*?\})\s*```")


# ---------------------------------------------------------------------------
# Chat model
# ---------------------------------------------------------------------------

def _get_llm() -> Any:
    """Return a configured LangChain chat model based on ``settings``."""
    if settings.llm_provider == "openai":
        from langchain_openai import ChatOpenAI

        return ChatOpenAI(
            model=settings.openai_chat_model,
            temperature=settings.llm_temperature,
            timeout=settings.request_timeout,
        )

    from langchain_ollama import ChatOllama

    return ChatOllama(
        model=settings.ollama_chat_model,
        base_url=settings.ollama_base_url,
        temperature=settings.llm_temperature,
    )


def _raise_classified(exc: Exception) -> None:
    classified = classify_upstream_error(exc)
    if classified is not None:
        logger.warning("llm_upstream_unavailable", kind=classified.kind, error=str(exc))
        raise classified from exc


def generate_text(prompt: str) -> str:
    """Send *prompt* to the chat model and return the reply text."""
    llm = _get_llm()
    try:
        response = llm.invoke(prompt)
    except Exception as exc:
        _raise_classified(exc)
        raise
    return response.content if hasattr(response, "content") else str(response)


def extract_json(text: str) -> dict[str, Any]:
    """Pull the first JSON object out of a model reply.

    Accepts a bare object, an object inside a code fence, or an object with
    prose around it.

    Raises:
        MalformedInputError: If no JSON object can be decoded.
    """
    match = _FENCE_RE.search(text)
    candidate = match.group(1) if match else None
    if candidate is None:
        start, end = text.find("{"), text.rfind("}")
        if start == -1 or end <= start:
            raise MalformedInputError("Model reply contains no JSON object")
        candidate = text[start : end + 1]
    try:
        data = json.loads(candidate)
    except json.JSONDecodeError as exc:
        raise MalformedInputError(f"Model reply is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise MalformedInputError("Model reply JSON is not an object")
    return data


def generate_json(prompt: str) -> dict[str, Any]:
    """Like :func:`generate_text` but decodes the reply as a JSON object."""
    return extract_json(generate_text(prompt))


# ---------------------------------------------------------------------------
# Embeddings
# ---------------------------------------------------------------------------

def _embed_ollama(text: str) -> list[float]:
    with httpx.Client(timeout=settings.request_timeout) as client:
        response = client.post(
            f"{settings.ollama_base_url}/api/embeddings",
            json={"model": settings.ollama_embed_model, "prompt": text},
        )
        response.raise_for_status()
        return response.json()["embedding"]


def _embed_openai(text: str) -> list[float]:
    api_key = os.environ.get("OPENAI_API_KEY", "")
    if not api_key:
        raise EnvironmentError(
            "OPENAI_API_KEY environment variable is not set. "
            "Set it or switch to EMBEDDING_PROVIDER=ollama."
        )

    with httpx.Client(timeout=settings.request_timeout) as client:
        response = client.post(
            "https://api.openai.com/v1/embeddings",
            headers={"Authorization": f"Bearer {api_key}"},
            json={"model": settings.openai_embed_model, "input": text},
        )
        response.raise_for_status()
        return response.json()["data"][0]["embedding"]


def embed_text(text: str) -> list[float]:
    """Return the embedding of *text* (``settings.embedding_dim`` floats).

    Raises:
        UpstreamUnavailableError: On overload / rate-limit responses.
        RoadmapError: If the provider returns a vector of the wrong size.
        httpx.HTTPError: On any other transport or HTTP failure.
    """
    embed = _embed_openai if settings.embedding_provider == "openai" else _embed_ollama
    try:
        vector = embed(text)
    except httpx.HTTPError as exc:
        _raise_classified(exc)
        raise
    if len(vector) != settings.embedding_dim:
        raise RoadmapError(
            f"Embedding has {len(vector)} dimensions, expected {settings.embedding_dim}"
        )
    return vector


def _cosine(a: list[float], b: list[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


def select_relevant_nodes(query: str, nodes: list[Node], limit: int) -> list[Node]:
    """Return the *limit* nodes whose text is closest to *query*.

    The result keeps the input order so the outline still reads top-down.
    """
    if len(nodes) <= limit:
        return list(nodes)
    query_vec = embed_text(query)
    scored = [
        (_cosine(query_vec, embed_text(f"{n.title}\n{n.description}")), i)
        for i, n in enumerate(nodes)
    ]
    keep = sorted(i for _, i in sorted(scored, reverse=True)[:limit])
    return [nodes[i] for i in keep]
