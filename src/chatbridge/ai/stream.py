"""Unified entry point: wire settings, transport and collaborators together."""

from __future__ import annotations

from typing import TYPE_CHECKING

from chatbridge.ai.env_api_keys import resolve_api_key
from chatbridge.ai.orchestrator import TurnOrchestrator
from chatbridge.ai.stream_driver import StreamDriver
from chatbridge.ai.types import TurnOptions

if TYPE_CHECKING:
    import asyncio

    from chatbridge.ai.orchestrator import CaptureImage, TagHandler
    from chatbridge.ai.transports.base import StreamTransport
    from chatbridge.ai.types import Content, FunctionDeclaration, StreamResult
    from chatbridge.config.settings import Settings


def create_orchestrator(
    settings: Settings,
    transport: StreamTransport | None = None,
    tools: list[FunctionDeclaration] | None = None,
    capture_image: CaptureImage | None = None,
    on_tags_extracted: TagHandler | None = None,
) -> TurnOrchestrator:
    """Build a :class:`TurnOrchestrator` from *settings*.

    When *transport* is omitted a :class:`GenaiTransport` is created.

    Raises
    ------
    ValueError
        If no API key is configured or found in the environment.
    """
    api_key = resolve_api_key(settings.gemini.api_key)
    if transport is None:
        from chatbridge.ai.transports.genai import GenaiTransport

        transport = GenaiTransport(base_url=settings.gemini.base_url)

    driver = StreamDriver(
        transport=transport,
        api_key=api_key,
        gemini=settings.gemini,
        stream=settings.stream,
        tools=tools,
        debug=settings.debug,
    )
    return TurnOrchestrator(
        driver=driver,
        vision=settings.vision,
        capture_image=capture_image,
        on_tags_extracted=on_tags_extracted,
    )


async def complete(
    orchestrator: TurnOrchestrator,
    prompt: str,
    history: list[Content] | None = None,
    abort_event: asyncio.Event | None = None,
    use_functions: bool = True,
) -> StreamResult:
    """Run one request and return the finished :class:`StreamResult`.

    Raises
    ------
    StreamFailure
        If a sub-turn times out, errors or is cancelled.
    """
    return await orchestrator.generate(
        history if history is not None else [],
        prompt,
        TurnOptions(abort_event=abort_event, use_functions=use_functions),
    )
