"""Transport bridge backed by the ``google-genai`` async client.

Runs ``generate_content_stream`` in a background task and re-serializes each
SDK chunk into the REST JSON shape, delivering it the way the raw HTTP body
arrives: ``[`` before the first element, ``,`` before every following one,
and a closing ``]``.  A failed call delivers an empty chunk so the engine
sees the stream end without content.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING, Any, Callable

from google import genai
from google.genai import types as gtypes

from chatbridge.ai.chunk_decoder import SESSION_SEPARATOR

if TYPE_CHECKING:
    from chatbridge.ai.transports.base import DeliverCallback, TransportRequest

logger = logging.getLogger(__name__)

ClientFactory = Callable[[str, dict[str, str] | None], Any]

# Top-level body keys that map onto GenerateContentConfig.
_CONFIG_KEYS = ("safetySettings", "toolConfig", "cachedContent", "labels")


def _create_client(
    api_key: str,
    headers: dict[str, str] | None = None,
    base_url: str | None = None,
) -> genai.Client:
    """Instantiate a ``google.genai`` client (its ``aio`` surface is used)."""
    http_options: dict[str, Any] = {}
    if base_url:
        http_options["base_url"] = base_url
    if headers:
        http_options["headers"] = dict(headers)

    return genai.Client(
        api_key=api_key,
        http_options=http_options if http_options else None,
    )


def _convert_tools(raw_tools: list[dict[str, Any]]) -> list[gtypes.Tool]:
    tools: list[gtypes.Tool] = []
    for raw in raw_tools:
        declarations = [
            gtypes.FunctionDeclaration(
                name=d["name"],
                description=d.get("description"),
                parameters_json_schema=d.get("parameters"),
            )
            for d in raw.get("functionDeclarations") or raw.get("function_declarations") or []
        ]
        tools.append(gtypes.Tool(function_declarations=declarations))
    return tools


def build_sdk_arguments(
    body: dict[str, Any],
) -> tuple[list[gtypes.Content], gtypes.GenerateContentConfig]:
    """Split a REST request body into ``(contents, config)`` for the SDK.

    JSON-mode validation is used so base64 ``inlineData`` decodes to bytes.
    """
    body = dict(body)
    contents = [
        gtypes.Content.model_validate_json(json.dumps(item))
        for item in body.pop("contents", [])
    ]

    config_fields: dict[str, Any] = dict(body.pop("generationConfig", None) or {})
    system_instruction = body.pop("systemInstruction", None)
    raw_tools = body.pop("tools", None)
    for key in _CONFIG_KEYS:
        if key in body:
            config_fields[key] = body.pop(key)
    for key in body:
        logger.warning("Request parameter %r is not supported by the genai transport; ignored", key)

    config = gtypes.GenerateContentConfig.model_validate_json(json.dumps(config_fields))
    if system_instruction is not None:
        config.system_instruction = gtypes.Content.model_validate_json(
            json.dumps(system_instruction),
        )
    if raw_tools:
        config.tools = _convert_tools(raw_tools)
    return contents, config


class GenaiTransport:
    """:class:`~chatbridge.ai.transports.base.StreamTransport` over ``google-genai``."""

    def __init__(
        self,
        base_url: str | None = None,
        client_factory: ClientFactory | None = None,
    ) -> None:
        self._base_url = base_url
        self._client_factory = client_factory
        self._tasks: dict[str, asyncio.Task[None]] = {}

    @property
    def supports_custom_headers(self) -> bool:
        return True

    def start(self, request: TransportRequest, deliver: DeliverCallback) -> None:
        loop = asyncio.get_running_loop()
        task = loop.create_task(self._pump(request, deliver))
        self._tasks[request.session_id] = task

    def abort(self, session_id: str) -> None:
        task = self._tasks.pop(session_id, None)
        if task is not None and not task.done():
            task.cancel()

    def _client(self, request: TransportRequest) -> Any:
        if self._client_factory is not None:
            return self._client_factory(request.api_key, request.headers)
        return _create_client(request.api_key, request.headers, self._base_url)

    async def _pump(self, request: TransportRequest, deliver: DeliverCallback) -> None:
        prefix = f"{request.session_id}{SESSION_SEPARATOR}"
        try:
            contents, config = build_sdk_arguments(json.loads(request.body))
            client = self._client(request)
            google_stream = await client.aio.models.generate_content_stream(
                model=request.model,
                contents=contents,
                config=config,
            )
            opener = "["
            async for chunk in google_stream:
                payload = chunk.model_dump(mode="json", by_alias=True, exclude_none=True)
                deliver(prefix + opener + json.dumps(payload, ensure_ascii=False))
                opener = ","
            deliver(prefix + "]")
        except asyncio.CancelledError:
            logger.debug("Gemini stream aborted: %s", request.session_id)
            raise
        except Exception:
            logger.warning("Gemini stream failed: %s", request.session_id, exc_info=True)
            deliver(prefix)
        finally:
            if self._tasks.get(request.session_id) is asyncio.current_task():
                del self._tasks[request.session_id]
