"""Core type definitions for the streaming conversation engine.

All value objects are frozen dataclasses (immutable).  The only mutable
state in the engine lives in :class:`~chatbridge.ai.session_store.StreamSession`.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Literal, Union


# ---------------------------------------------------------------------------
# Literal type aliases
# ---------------------------------------------------------------------------

Role = Literal["user", "model"]

ResponseKind = Literal["unset", "content", "function_call", "error", "timeout"]
"""Classification of a sub-turn.  ``unset`` until the first classifiable chunk."""

ChunkKind = Literal["content", "function_call"]

FailureKind = Literal["timeout", "error", "cancelled"]


# ---------------------------------------------------------------------------
# Content dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TextPart:
    """A block of text."""

    text: str
    type: Literal["text"] = "text"


@dataclass(frozen=True)
class InlineDataPart:
    """Raw binary payload (e.g. a captured JPEG) tagged with its mime type."""

    data: bytes
    mime_type: str
    type: Literal["inline_data"] = "inline_data"


@dataclass(frozen=True)
class FunctionCallPart:
    """A function invocation issued by the model."""

    name: str
    args: dict[str, Any]
    type: Literal["function_call"] = "function_call"


Part = Union[TextPart, InlineDataPart, FunctionCallPart]
"""Union of all part types."""


@dataclass(frozen=True)
class Content:
    """One conversation turn."""

    role: Role
    parts: list[Part]

    @property
    def text(self) -> str:
        """Concatenated text of every :class:`TextPart`."""
        return "".join(p.text for p in self.parts if isinstance(p, TextPart))


def user_text(text: str) -> Content:
    return Content(role="user", parts=[TextPart(text=text)])


def model_text(text: str) -> Content:
    return Content(role="model", parts=[TextPart(text=text)])


# ---------------------------------------------------------------------------
# Request-side dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FunctionDeclaration:
    """Description of a function the model may call."""

    name: str
    description: str
    parameters: dict[str, Any]


@dataclass(frozen=True)
class GenerationConfig:
    """Sampling parameters sent as ``generationConfig``."""

    temperature: float | None = None
    top_p: float | None = None
    top_k: int | None = None
    max_output_tokens: int | None = None
    stop_sequences: list[str] | None = None


@dataclass(frozen=True)
class TurnOptions:
    """Per-request options shared by every sub-turn of one request."""

    custom_parameters: dict[str, Any] | None = None
    custom_headers: dict[str, str] | None = None
    use_functions: bool = True
    abort_event: asyncio.Event | None = None


# ---------------------------------------------------------------------------
# Result dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FunctionCallResult:
    """A completed function call.

    ``arguments`` is ``None`` when the concatenated argument deltas do not
    form a single JSON object; ``raw_arguments`` always holds the text.
    """

    name: str
    arguments: dict[str, Any] | None
    raw_arguments: str


@dataclass(frozen=True)
class StreamResult:
    """Outcome of a successful request, possibly spanning several sub-turns."""

    text: str
    response_kind: ResponseKind
    contexts: list[Content]
    turns: int
    function_call: FunctionCallResult | None = None
