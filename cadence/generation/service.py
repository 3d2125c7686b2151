"""GenerationService protocol — interface for content generation backends."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

SOURCE_SCHEDULED_REPORT = "scheduled_report"
SOURCE_SCHEDULED_TASK = "scheduled_task"

# Response fields checked, in order, when the service replies with JSON.
_TEXT_FIELDS = ("output", "response", "message", "text")


class GenerationError(Exception):
    """The Generation Service failed or could not be reached."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass
class GenerationRequest:
    """A prompt plus the identity/context payload sent alongside it.

    Attributes:
        prompt: Fully formed natural-language instruction.
        user_id: The user the content is generated for.
        team_id: The user's team (may be None for team-less accounts).
        source: Call-site tag, e.g. ``"scheduled_task"``.
        context: Extra dispatcher-specific fields merged into the payload.
    """

    prompt: str
    user_id: str
    team_id: str | None
    source: str
    context: dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        return {
            "prompt": self.prompt,
            "chatInput": self.prompt,
            "user_id": self.user_id,
            "team_id": self.team_id,
            "source": self.source,
            **self.context,
        }


@runtime_checkable
class GenerationService(Protocol):
    """Anything that can turn a GenerationRequest into text."""

    async def generate(self, request: GenerationRequest) -> str:
        """Return generated text. Raises GenerationError on failure."""
        ...


def extract_text(body: str) -> str:
    """Pull the generated text out of a raw or JSON response body.

    JSON objects yield their first non-empty ``output``/``response``/
    ``message``/``text`` field (or ``""``); non-JSON bodies are returned as-is.
    """
    try:
        data = json.loads(body)
    except (json.JSONDecodeError, TypeError):
        return body
    return _text_from(data)


def _text_from(data: Any) -> str:
    if isinstance(data, str):
        return data
    if isinstance(data, list):
        return _text_from(data[0]) if data else ""
    if isinstance(data, dict):
        for key in _TEXT_FIELDS:
            value = data.get(key)
            if isinstance(value, str) and value:
                return value
        return ""
    return ""
