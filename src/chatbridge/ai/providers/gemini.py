"""Gemini ``streamGenerateContent`` request construction.

Converts chatbridge content types to the REST JSON shape (camelCase keys,
base64 inline data) and assembles the single serialized body handed to the
transport bridge.
"""

from __future__ import annotations

import base64
import re
from typing import TYPE_CHECKING, Any

from chatbridge.ai.types import FunctionCallPart, InlineDataPart, TextPart

if TYPE_CHECKING:
    from chatbridge.ai.types import Content, FunctionDeclaration, GenerationConfig

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"


# ---------------------------------------------------------------------------
# Surrogate sanitisation
# ---------------------------------------------------------------------------

_SURROGATE_RE = re.compile(r"[\ud800-\udfff]")


def _sanitize_surrogates(text: str) -> str:
    """Replace unpaired Unicode surrogates with the replacement character."""
    return _SURROGATE_RE.sub("\ufffd", text)


# ---------------------------------------------------------------------------
# Model-id helpers
# ---------------------------------------------------------------------------


def generate_content_url(model: str, override: str | None = None) -> str:
    """Return the streaming endpoint for *model* unless *override* is set."""
    if override:
        return override
    return f"{DEFAULT_BASE_URL}/models/{model}:streamGenerateContent"


def supports_function_calling(model: str) -> bool:
    """Vision-only model variants reject ``tools`` in the request."""
    return "vision" not in model.lower()


# ---------------------------------------------------------------------------
# Content conversion  (chatbridge -> REST JSON)
# ---------------------------------------------------------------------------


def serialize_contents(contents: list[Content]) -> list[dict[str, Any]]:
    """Convert turns to ``[{"role": ..., "parts": [...]}]``."""
    serialized: list[dict[str, Any]] = []
    for content in contents:
        parts: list[dict[str, Any]] = []
        for part in content.parts:
            if isinstance(part, TextPart):
                parts.append({"text": _sanitize_surrogates(part.text)})
            elif isinstance(part, InlineDataPart):
                parts.append({
                    "inlineData": {
                        "mimeType": part.mime_type,
                        "data": base64.b64encode(part.data).decode("ascii"),
                    },
                })
            elif isinstance(part, FunctionCallPart):
                parts.append({"functionCall": {"name": part.name, "args": part.args}})
        if not parts:
            continue
        serialized.append({"role": content.role, "parts": parts})
    return serialized


def convert_tools(tools: list[FunctionDeclaration]) -> list[dict[str, Any]] | None:
    """Convert declarations to ``[{"functionDeclarations": [...]}]``."""
    if not tools:
        return None
    declarations = [
        {
            "name": t.name,
            "description": t.description,
            "parameters": t.parameters,
        }
        for t in tools
    ]
    return [{"functionDeclarations": declarations}]


def _generation_config_dict(config: GenerationConfig) -> dict[str, Any]:
    fields = {
        "temperature": config.temperature,
        "topP": config.top_p,
        "topK": config.top_k,
        "maxOutputTokens": config.max_output_tokens,
        "stopSequences": config.stop_sequences or None,
    }
    return {key: value for key, value in fields.items() if value is not None}


# ---------------------------------------------------------------------------
# Request body builder
# ---------------------------------------------------------------------------


def build_request_body(
    model: str,
    contexts: list[Content],
    generation_config: GenerationConfig,
    tools: list[FunctionDeclaration] | None = None,
    use_functions: bool = True,
    custom_parameters: dict[str, Any] | None = None,
    system_instruction: str | None = None,
) -> dict[str, Any]:
    """Return the JSON-ready request body.

    Tool declarations are omitted when *use_functions* is false, when no
    tools are given, or when the model variant cannot call functions.
    Custom parameters are merged last at the top level and win on conflict.
    """
    body: dict[str, Any] = {
        "contents": serialize_contents(contexts),
        "generationConfig": _generation_config_dict(generation_config),
    }

    if system_instruction:
        body["systemInstruction"] = {
            "parts": [{"text": _sanitize_surrogates(system_instruction)}],
        }

    if use_functions and tools and supports_function_calling(model):
        converted = convert_tools(tools)
        if converted:
            body["tools"] = converted

    for key, value in (custom_parameters or {}).items():
        body[key] = value

    return body
