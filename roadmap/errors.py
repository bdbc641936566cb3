"""Exception taxonomy shared by the engine, the HTTP layer and the CLI.

``NotFoundError`` and ``MalformedInputError`` map onto 404 / 400 responses.
``UpstreamUnavailableError`` marks a retryable failure of the LLM
collaborator and carries a short hint that can be shown to the end user.
"""

from __future__ import annotations


class RoadmapError(Exception):
    """Base class for every error raised deliberately by the engine."""

    status_code = 500


class NotFoundError(RoadmapError):
    """A referenced node or project does not exist (or is outside the project)."""

    status_code = 404


class MalformedInputError(RoadmapError):
    """Required fields are missing or a value is outside its allowed set."""

    status_code = 400


_USER_MESSAGES = {
    "overloaded": "The AI service is overloaded right now. Please try again in a moment.",
    "rate_limited": "Rate limit reached. Please wait a moment before trying again.",
    "configuration": "AI configuration issue. Please contact support.",
}


class UpstreamUnavailableError(RoadmapError):
    """The LLM collaborator is overloaded, rate-limited or misconfigured."""

    status_code = 503

    def __init__(self, kind: str, detail: str) -> None:
        super().__init__(detail)
        self.kind = kind
        self.detail = detail

    @property
    def user_message(self) -> str:
        return _USER_MESSAGES.get(self.kind, f"AI service unavailable ({self.kind}).")


def classify_upstream_error(exc: BaseException) -> UpstreamUnavailableError | None:
    """Map an upstream exception onto an :class:`UpstreamUnavailableError`.

    Classification is done on the error text, the only signal every provider
    SDK has in common.  Returns ``None`` for errors that are not recognised
    as upstream availability problems.
    """
    text = str(exc)
    lowered = text.lower()
    if "503" in text or "overloaded" in lowered:
        return UpstreamUnavailableError("overloaded", text)
    if "429" in text or "quota" in lowered or "RESOURCE_EXHAUSTED" in text:
        return UpstreamUnavailableError("rate_limited", text)
    if "api key" in lowered:
        return UpstreamUnavailableError("configuration", text)
    return None
