"""Decode raw chunks delivered by the transport bridge.

The bridge forwards the body of a ``streamGenerateContent`` response as it
arrives, which is a JSON array written one element at a time::

    [{"candidates": [...]}
    ,{"candidates": [...]}
    ]

Each delivery is prefixed with the session id and ``::``.  Fragments that
do not parse are expected mid-stream and are dropped without failing the
session.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

from chatbridge.ai.types import ChunkKind

logger = logging.getLogger(__name__)

SESSION_SEPARATOR = "::"


@dataclass(frozen=True)
class ChunkIncrement:
    """Normalized result of decoding one chunk."""

    text: str = ""
    kind: ChunkKind | None = None
    function_name: str | None = None
    end_of_stream: bool = False
    error_message: str | None = None


_END_OF_STREAM = ChunkIncrement(end_of_stream=True)


def split_delivery(payload: str) -> tuple[str, str]:
    """Split ``"<session_id>::<chunk>"`` on the first separator.

    Raises
    ------
    ValueError
        If the separator is missing or the session id is empty.
    """
    session_id, sep, chunk = payload.partition(SESSION_SEPARATOR)
    if not sep:
        raise ValueError("Delivered payload has no session separator")
    if not session_id:
        raise ValueError("Delivered payload has an empty session id")
    return session_id, chunk


def decode_chunk(chunk: str) -> ChunkIncrement | None:
    """Decode one chunk into an increment, or ``None`` if it carries nothing.

    An empty chunk and a chunk ending with the array-close ``]`` both mark
    the end of the stream.
    """
    if chunk == "":
        return _END_OF_STREAM

    body = chunk.strip()
    end_of_stream = False
    if body.startswith(("[", ",")):
        body = body[1:]
    if body.endswith("]"):
        body = body[:-1]
        end_of_stream = True
    body = body.strip()

    if not body:
        return _END_OF_STREAM if end_of_stream else None

    try:
        data = json.loads(body)
    except json.JSONDecodeError:
        logger.debug("Discarding unparseable chunk: %r", body[:200])
        return _END_OF_STREAM if end_of_stream else None

    if not isinstance(data, dict):
        return _END_OF_STREAM if end_of_stream else None

    return _increment_from_response(data, end_of_stream)


def _increment_from_response(data: dict[str, Any], end_of_stream: bool) -> ChunkIncrement:
    error = data.get("error")
    if isinstance(error, dict):
        return ChunkIncrement(
            end_of_stream=end_of_stream,
            error_message=str(error.get("message") or error.get("status") or "unknown error"),
        )

    part = _first_part(data)
    if part is None:
        return ChunkIncrement(end_of_stream=end_of_stream)

    # Function calls take precedence over text in the same part.
    function_call = part.get("functionCall")
    if isinstance(function_call, dict):
        return ChunkIncrement(
            text=json.dumps(function_call.get("args") or {}, ensure_ascii=False),
            kind="function_call",
            function_name=function_call.get("name") or None,
            end_of_stream=end_of_stream,
        )

    text = part.get("text")
    return ChunkIncrement(
        text=text if isinstance(text, str) else "",
        kind="content",
        end_of_stream=end_of_stream,
    )


def _first_part(data: dict[str, Any]) -> dict[str, Any] | None:
    """Return ``candidates[0].content.parts[0]`` if every level is present."""
    candidates = data.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        return None
    content = candidates[0].get("content") if isinstance(candidates[0], dict) else None
    if not isinstance(content, dict):
        return None
    parts = content.get("parts")
    if not isinstance(parts, list) or not parts or not isinstance(parts[0], dict):
        return None
    return parts[0]
