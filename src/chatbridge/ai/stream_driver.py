"""Stream driver: one request/stream-until-terminal cycle per sub-turn.

The driver sends the request through the transport bridge and then polls the
session on a short fixed tick.  Chunks reach the session through
:meth:`StreamDriver.deliver`, which the bridge may call from any thread, so
there is no shared wakeup primitive between the two sides.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING

from chatbridge.ai.chunk_decoder import decode_chunk, split_delivery
from chatbridge.ai.errors import StreamFailure, StreamTimeoutError
from chatbridge.ai.providers.gemini import build_request_body, generate_content_url
from chatbridge.ai.session_store import SessionStore
from chatbridge.ai.transports.base import TransportRequest
from chatbridge.ai.types import (
    Content,
    FunctionCallPart,
    FunctionCallResult,
    GenerationConfig,
    TextPart,
    TurnOptions,
)

if TYPE_CHECKING:
    from chatbridge.ai.session_store import StreamSession
    from chatbridge.ai.transports.base import StreamTransport
    from chatbridge.ai.types import FunctionDeclaration, ResponseKind
    from chatbridge.config.settings import GeminiConfig, StreamConfig

logger = logging.getLogger(__name__)


def parse_function_call(name: str, raw_arguments: str) -> FunctionCallResult:
    """Rebuild a function call from its concatenated argument deltas."""
    try:
        arguments = json.loads(raw_arguments) if raw_arguments else {}
    except json.JSONDecodeError:
        arguments = None
    if not isinstance(arguments, dict):
        arguments = None
    return FunctionCallResult(name=name, arguments=arguments, raw_arguments=raw_arguments)


class StreamDriver:
    """Owns the request lifecycle of each sub-turn."""

    def __init__(
        self,
        transport: StreamTransport,
        api_key: str,
        gemini: GeminiConfig,
        stream: StreamConfig,
        tools: list[FunctionDeclaration] | None = None,
        store: SessionStore | None = None,
        name: str = "chatbridge",
        debug: bool = False,
    ) -> None:
        self._transport = transport
        self._api_key = api_key
        self._gemini = gemini
        self._stream = stream
        self._tools = list(tools or [])
        self._store = store if store is not None else SessionStore()
        self._name = name
        self._debug = debug

    @property
    def store(self) -> SessionStore:
        return self._store

    @property
    def transport(self) -> StreamTransport:
        return self._transport

    # ------------------------------------------------------------------
    # Inbound chunk callback
    # ------------------------------------------------------------------

    def deliver(self, payload: str) -> None:
        """Route one ``"<session_id>::<chunk>"`` delivery into its session.

        Never raises: malformed chunks and chunks for unknown or finalized
        sessions are logged and dropped.
        """
        try:
            session_id, chunk = split_delivery(payload)
        except ValueError as e:
            logger.warning("Discarding delivery: %s", e)
            return

        if self._debug:
            logger.debug("Chunk from Gemini: %s", chunk)

        session = self._store.get(session_id)
        if session is None:
            logger.warning("Session not found, chunk discarded: %s", session_id)
            return

        increment = decode_chunk(chunk)
        if increment is None:
            return
        if not session.apply(increment):
            logger.debug("Session %s already finalized, chunk discarded", session_id)

    # ------------------------------------------------------------------
    # Sub-turn
    # ------------------------------------------------------------------

    async def run_turn(
        self,
        session: StreamSession,
        options: TurnOptions | None = None,
    ) -> ResponseKind:
        """Stream one sub-turn to a terminal state.

        On success the sub-turn is committed to ``session.contexts`` as a
        ``model`` turn and its response kind is returned.

        Raises
        ------
        StreamTimeoutError
            If no data arrived before ``no_data_timeout_sec``.
        StreamFailure
            If the bridge ended the stream without content (``kind="error"``)
            or the transport could not start the request (``kind="error"``),
            or the abort event was set (``kind="cancelled"``).
        """
        options = options or TurnOptions()
        session.begin_turn()

        if options.abort_event is not None and options.abort_event.is_set():
            logger.info("Streaming canceled before the request was sent: %s", session.id)
            session.fail("cancelled")
            self._store.remove(session.id)
            self._raise_for_failure(session)

        request = self._build_request(session, options)
        if self._debug:
            logger.debug("Request to Gemini: %s", request.body)
        try:
            self._transport.start(request, self.deliver)
        except Exception as e:
            logger.error("Transport failed to start the request: %s", session.id, exc_info=True)
            session.fail("error")
            self._store.remove(session.id)
            raise StreamFailure(f"Gemini request could not be sent: {e}") from e

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._stream.no_data_timeout_sec
        interval = self._stream.poll_interval_ms / 1000

        while True:
            snap = session.snapshot()

            # Success
            if snap.buffer and snap.is_complete:
                break

            # Timeout with no response data
            if not snap.buffer and loop.time() > deadline:
                self._transport.abort(session.id)
                session.fail("timeout")
                self._store.remove(session.id)
                break

            # Bridge finished without content
            if snap.is_complete:
                logger.error(
                    "Gemini stream ended with error: %s",
                    session.error_message or "no content received",
                )
                session.fail("error")
                self._store.remove(session.id)
                break

            # Cancel
            if options.abort_event is not None and options.abort_event.is_set():
                logger.info("Streaming response from Gemini canceled: %s", session.id)
                session.fail("cancelled")
                self._store.remove(session.id)
                self._transport.abort(session.id)
                break

            await asyncio.sleep(interval)

        self._raise_for_failure(session)

        session.contexts.append(self._model_turn(session))
        return session.response_kind

    def _raise_for_failure(self, session: StreamSession) -> None:
        failure = session.failure
        if failure is not None:
            logger.warning(
                "Messages are not added to histories for response type is not success: %s",
                session.response_kind,
            )
            if failure == "timeout":
                raise StreamTimeoutError(
                    f"No data from Gemini within {self._stream.no_data_timeout_sec}s",
                )
            if failure == "cancelled":
                raise StreamFailure("Streaming was canceled", kind="cancelled")
            raise StreamFailure(
                f"Gemini ends with error: {session.error_message or 'no content received'}",
            )

    def _build_request(self, session: StreamSession, options: TurnOptions) -> TransportRequest:
        gemini = self._gemini
        custom_parameters = {**self._stream.custom_parameters, **(options.custom_parameters or {})}
        body = build_request_body(
            model=gemini.model,
            contexts=session.contexts,
            generation_config=GenerationConfig(
                temperature=gemini.temperature,
                top_p=gemini.top_p,
                top_k=gemini.top_k,
                max_output_tokens=gemini.max_output_tokens,
                stop_sequences=gemini.stop_sequences or None,
            ),
            tools=self._tools,
            use_functions=options.use_functions and self._stream.use_functions,
            custom_parameters=custom_parameters,
            system_instruction=gemini.system_instruction,
        )

        headers: dict[str, str] | None = {
            **self._stream.custom_headers,
            **(options.custom_headers or {}),
        }
        if headers and not self._transport.supports_custom_headers:
            logger.warning("Custom headers are not supported by this transport; sending without them")
            headers = None

        return TransportRequest(
            target=self._name,
            session_id=session.id,
            url=generate_content_url(gemini.model, gemini.generate_content_url),
            api_key=self._api_key,
            model=gemini.model,
            body=json.dumps(body, ensure_ascii=False),
            headers=headers or None,
        )

    @staticmethod
    def _model_turn(session: StreamSession) -> Content:
        text = session.current_turn_buffer
        name = session.pending_function_name
        if session.response_kind == "function_call" and name:
            call = parse_function_call(name, text)
            if call.arguments is not None:
                return Content(role="model", parts=[FunctionCallPart(name=name, args=call.arguments)])
        return Content(role="model", parts=[TextPart(text=text)])
