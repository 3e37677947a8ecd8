"""Turn orchestrator: tags, vision continuation and finalization.

A request starts with one sub-turn.  When the assembled text of a sub-turn
contains a ``vision`` directive, the orchestrator captures an image, appends
it to the conversation and runs one more sub-turn on the same session.  The
``vision_allowed`` flag on the session limits this to a single continuation
per request.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from chatbridge.ai.session_store import StreamSession
from chatbridge.ai.stream_driver import parse_function_call
from chatbridge.ai.tags import extract_tags
from chatbridge.ai.types import (
    Content,
    InlineDataPart,
    StreamResult,
    TextPart,
    TurnOptions,
    user_text,
)

if TYPE_CHECKING:
    from chatbridge.ai.stream_driver import StreamDriver
    from chatbridge.config.settings import VisionConfig

logger = logging.getLogger(__name__)

CaptureImage = Callable[[str], Awaitable[bytes | None]]
TagHandler = Callable[[dict[str, str], StreamSession], Any]

VISION_TAG = "vision"
CAPTURE_FAILED_PROMPT = "Please inform the user that an error occurred while capturing the image."


class TurnOrchestrator:
    """Public streaming entry point built on a :class:`StreamDriver`."""

    def __init__(
        self,
        driver: StreamDriver,
        vision: VisionConfig,
        capture_image: CaptureImage | None = None,
        on_tags_extracted: TagHandler | None = None,
    ) -> None:
        self._driver = driver
        self._vision = vision
        self._capture_image = capture_image
        self._on_tags_extracted = on_tags_extracted
        self._background: set[asyncio.Task[Any]] = set()

    @property
    def driver(self) -> StreamDriver:
        return self._driver

    async def generate(
        self,
        history: list[Content],
        message: str | Content,
        options: TurnOptions | None = None,
    ) -> StreamResult:
        """Send *message* after *history* and return the finished response.

        *history* is extended in place with the new turns only when the whole
        request succeeds.  A :class:`~chatbridge.ai.errors.StreamFailure`
        from any sub-turn propagates unchanged and leaves *history* as it was.
        """
        options = options or TurnOptions()
        user_turn = user_text(message) if isinstance(message, str) else message
        session = StreamSession(contexts=[*history, user_turn])
        store = self._driver.store
        store.create(session)

        try:
            turns = 0
            while True:
                turns += 1
                await self._driver.run_turn(session, options)

                tags = extract_tags(session.current_turn_buffer)
                if tags:
                    self._notify_tags(tags, session)

                if not self._wants_vision(tags, session):
                    break
                await self._attach_capture(session, tags[VISION_TAG])

            session.is_response_done = True
        finally:
            session.close()
            store.remove(session.id)

        history.extend(session.contexts[len(history):])

        kind = session.response_kind
        function_call = None
        if kind == "function_call" and session.pending_function_name:
            function_call = parse_function_call(
                session.pending_function_name, session.current_turn_buffer,
            )

        logger.debug("Response from Gemini: %r", session.raw_stream_buffer)
        return StreamResult(
            text=session.raw_stream_buffer,
            response_kind=kind,
            contexts=list(session.contexts),
            turns=turns,
            function_call=function_call,
        )

    # ------------------------------------------------------------------
    # Tags
    # ------------------------------------------------------------------

    def _notify_tags(self, tags: dict[str, str], session: StreamSession) -> None:
        """Fire-and-forget notification; handler errors are only logged."""
        handler = self._on_tags_extracted
        if handler is None:
            return
        try:
            result = handler(dict(tags), session)
        except Exception:
            logger.warning("Error in tag handler", exc_info=True)
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._background.add(task)
            task.add_done_callback(self._on_handler_done)

    def _on_handler_done(self, task: asyncio.Future[Any]) -> None:
        self._background.discard(task)  # type: ignore[arg-type]
        if not task.cancelled() and task.exception() is not None:
            logger.warning("Error in tag handler", exc_info=task.exception())

    # ------------------------------------------------------------------
    # Vision continuation
    # ------------------------------------------------------------------

    def _wants_vision(self, tags: dict[str, str], session: StreamSession) -> bool:
        return (
            VISION_TAG in tags
            and self._capture_image is not None
            and self._vision.enabled
            and session.vision_allowed
        )

    async def _attach_capture(self, session: StreamSession, source: str) -> None:
        # Prevent an infinite capture loop
        session.consume_vision()

        image = await self._capture(source)
        if image:
            # Image first, then text, for better accuracy
            session.contexts.append(Content(
                role="user",
                parts=[
                    InlineDataPart(data=image, mime_type=self._vision.mime_type),
                    TextPart(text=f"This is the image you captured. (source: {source})"),
                ],
            ))
        else:
            session.contexts.append(user_text(CAPTURE_FAILED_PROMPT))

    async def _capture(self, source: str) -> bytes | None:
        """Call the capture collaborator; any failure becomes ``None``."""
        assert self._capture_image is not None
        try:
            return await asyncio.wait_for(
                self._capture_image(source),
                timeout=self._vision.capture_timeout_sec,
            )
        except asyncio.TimeoutError:
            logger.warning("Image capture timed out: %s", source)
        except Exception:
            logger.error("Error at image capture: %s", source, exc_info=True)
        return None
