"""Tests for chatbridge.ai.stream_driver: request lifecycle and polling."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import pytest

from chatbridge.ai.errors import StreamFailure, StreamTimeoutError
from chatbridge.ai.session_store import StreamSession
from chatbridge.ai.stream_driver import StreamDriver, parse_function_call
from chatbridge.ai.types import FunctionCallPart, FunctionDeclaration, TextPart, TurnOptions, user_text
from tests.conftest import ScriptedTransport, make_driver, make_settings, response_json, text_chunks


def _register(driver: StreamDriver) -> StreamSession:
    session = StreamSession(contexts=[user_text("hello")])
    driver.store.create(session)
    return session


class TestSuccess:
    async def test_reassembles_text(self) -> None:
        transport = ScriptedTransport([["[", response_json("Hi"), ",", response_json(" there"), "]"]])
        driver = make_driver(transport)
        session = _register(driver)

        kind = await driver.run_turn(session)

        assert kind == "content"
        assert session.raw_stream_buffer == "Hi there"
        assert session.current_turn_buffer == "Hi there"
        assert session.contexts[-1].role == "model"
        assert session.contexts[-1].parts == [TextPart(text="Hi there")]
        assert transport.aborted == []

    async def test_malformed_fragment_is_skipped(self) -> None:
        chunks = ["[" + response_json("a"), '{"candidates": [', "," + response_json("b"), "]"]
        driver = make_driver(ScriptedTransport([chunks]))
        session = _register(driver)

        await driver.run_turn(session)

        assert session.current_turn_buffer == "ab"
        assert session.response_kind == "content"

    async def test_delivery_from_another_thread(self) -> None:
        transport = ScriptedTransport([text_chunks("one ", "two ", "three")], threaded=True, delay=0.005)
        driver = make_driver(transport, make_settings(no_data_timeout_sec=2.0))
        session = _register(driver)

        await driver.run_turn(session)

        assert session.current_turn_buffer == "one two three"

    async def test_function_call(self) -> None:
        chunk = "[" + response_json(function_call={"name": "get_weather", "args": {"city": "Tokyo"}}) + "]"
        driver = make_driver(ScriptedTransport([[chunk]]))
        session = _register(driver)

        kind = await driver.run_turn(session)

        assert kind == "function_call"
        assert session.pending_function_name == "get_weather"
        assert session.contexts[-1].parts == [FunctionCallPart(name="get_weather", args={"city": "Tokyo"})]

    async def test_first_chunk_kind_is_sticky(self) -> None:
        chunks = [
            "[" + response_json("text first"),
            "," + response_json(function_call={"name": "f", "args": {}}),
            "]",
        ]
        driver = make_driver(ScriptedTransport([chunks]))
        session = _register(driver)

        kind = await driver.run_turn(session)

        assert kind == "content"
        assert session.pending_function_name is None


class TestRequest:
    async def test_request_fields(self) -> None:
        transport = ScriptedTransport([text_chunks("ok")])
        driver = make_driver(transport)
        session = _register(driver)

        await driver.run_turn(session)

        request = transport.requests[0]
        assert request.session_id == session.id
        assert request.api_key == "test-key"
        assert request.model == "gemini-2.0-flash"
        assert request.url.endswith("models/gemini-2.0-flash:streamGenerateContent")
        body = transport.body()
        assert body["contents"] == [{"role": "user", "parts": [{"text": "hello"}]}]
        assert body["generationConfig"]["temperature"] == 0.5

    async def test_tools_and_custom_parameters(self) -> None:
        tool = FunctionDeclaration(name="f", description="d", parameters={"type": "object"})
        transport = ScriptedTransport([text_chunks("ok"), text_chunks("ok")])
        driver = make_driver(transport, tools=[tool])
        session = _register(driver)

        await driver.run_turn(session, TurnOptions(custom_parameters={"cachedContent": "c1"}))
        assert "tools" in transport.body(0)
        assert transport.body(0)["cachedContent"] == "c1"

        await driver.run_turn(session, TurnOptions(use_functions=False))
        assert "tools" not in transport.body(1)

    async def test_custom_headers_forwarded(self) -> None:
        transport = ScriptedTransport([text_chunks("ok")])
        driver = make_driver(transport)
        session = _register(driver)

        await driver.run_turn(session, TurnOptions(custom_headers={"X-Trace": "1"}))

        assert transport.requests[0].headers == {"X-Trace": "1"}

    async def test_unsupported_custom_headers_warn_and_proceed(
        self, caplog: pytest.LogCaptureFixture,
    ) -> None:
        transport = ScriptedTransport([text_chunks("ok")], supports_custom_headers=False)
        driver = make_driver(transport)
        session = _register(driver)

        with caplog.at_level(logging.WARNING, logger="chatbridge.ai.stream_driver"):
            await driver.run_turn(session, TurnOptions(custom_headers={"X-Trace": "1"}))

        assert transport.requests[0].headers is None
        assert "Custom headers are not supported" in caplog.text
        assert session.current_turn_buffer == "ok"


class TestTimeout:
    async def test_no_data_times_out(self) -> None:
        transport = ScriptedTransport([[]])
        driver = make_driver(transport, make_settings(no_data_timeout_sec=0.05))
        session = _register(driver)
        before = list(session.contexts)

        with pytest.raises(StreamTimeoutError) as exc_info:
            await driver.run_turn(session)

        assert exc_info.value.kind == "timeout"
        assert exc_info.value.retryable is True
        assert transport.aborted == [session.id]
        assert session.id not in driver.store
        assert session.response_kind == "timeout"
        assert session.contexts == before

    async def test_started_stream_does_not_time_out(self) -> None:
        chunks = ["[" + response_json("slow"), "," + response_json(" stream"), "]"]
        transport = ScriptedTransport([chunks], delay=0.04)
        driver = make_driver(transport, make_settings(no_data_timeout_sec=0.1))
        session = _register(driver)

        await driver.run_turn(session)

        assert session.current_turn_buffer == "slow stream"
        assert transport.aborted == []


class TestBridgeError:
    async def test_done_without_content_is_error(self) -> None:
        transport = ScriptedTransport([[""]])
        driver = make_driver(transport)
        session = _register(driver)

        with pytest.raises(StreamFailure) as exc_info:
            await driver.run_turn(session)

        assert exc_info.value.kind == "error"
        assert exc_info.value.retryable is False
        assert session.response_kind == "error"
        assert session.id not in driver.store
        assert len(session.contexts) == 1

    async def test_error_object_message_is_surfaced(self) -> None:
        transport = ScriptedTransport([['[{"error": {"code": 403, "message": "permission denied"}}]']])
        driver = make_driver(transport)
        session = _register(driver)

        with pytest.raises(StreamFailure, match="permission denied"):
            await driver.run_turn(session)

    async def test_transport_start_failure_is_classified(self) -> None:
        class RefusingTransport(ScriptedTransport):
            def start(self, request: Any, deliver: Any) -> None:
                raise ConnectionError("bridge unavailable")

        transport = RefusingTransport()
        driver = make_driver(transport)
        session = _register(driver)

        with pytest.raises(StreamFailure, match="bridge unavailable") as exc_info:
            await driver.run_turn(session)

        assert exc_info.value.kind == "error"
        assert isinstance(exc_info.value.__cause__, ConnectionError)
        assert session.response_kind == "error"
        assert session.closed is True
        assert session.id not in driver.store
        assert len(session.contexts) == 1

    async def test_preset_abort_event_sends_nothing(self) -> None:
        transport = ScriptedTransport([text_chunks("unused")])
        driver = make_driver(transport)
        session = _register(driver)
        abort_event = asyncio.Event()
        abort_event.set()

        with pytest.raises(StreamFailure) as exc_info:
            await driver.run_turn(session, TurnOptions(abort_event=abort_event))

        assert exc_info.value.kind == "cancelled"
        assert transport.requests == []
        assert session.id not in driver.store


class TestCancellation:
    async def test_cancel_aborts_transport_once(self) -> None:
        # Content arrives but the stream never completes.
        transport = ScriptedTransport([["[" + response_json("partial")]])
        driver = make_driver(transport, make_settings(no_data_timeout_sec=5.0))
        session = _register(driver)
        abort_event = asyncio.Event()

        async def cancel_soon() -> None:
            await asyncio.sleep(0.03)
            abort_event.set()

        canceller = asyncio.create_task(cancel_soon())
        with pytest.raises(StreamFailure) as exc_info:
            await driver.run_turn(session, TurnOptions(abort_event=abort_event))
        await canceller

        assert exc_info.value.kind == "cancelled"
        assert transport.aborted == [session.id]
        assert session.response_kind == "error"
        assert session.id not in driver.store

        raw_before = session.raw_stream_buffer
        driver.deliver(f"{session.id}::," + response_json(" late") + "]")
        assert session.raw_stream_buffer == raw_before
        assert session.is_complete is False
        assert transport.aborted == [session.id]


class TestDeliver:
    def test_unknown_session_is_discarded(self, caplog: pytest.LogCaptureFixture) -> None:
        driver = make_driver(ScriptedTransport())
        with caplog.at_level(logging.WARNING, logger="chatbridge.ai.stream_driver"):
            driver.deliver("unknown::[" + response_json("x"))
        assert "Session not found" in caplog.text
        assert len(driver.store) == 0

    def test_unknown_session_does_not_touch_known_sessions(self) -> None:
        driver = make_driver(ScriptedTransport())
        session = _register(driver)
        driver.deliver("other::[" + response_json("x") + "]")
        assert session.raw_stream_buffer == ""
        assert session.is_complete is False

    def test_missing_session_id_is_discarded(self) -> None:
        driver = make_driver(ScriptedTransport())
        driver.deliver("::[" + response_json("x"))
        driver.deliver("no separator")

    def test_routes_to_session(self) -> None:
        driver = make_driver(ScriptedTransport())
        session = _register(driver)
        for chunk in text_chunks("a", "b", "c"):
            driver.deliver(f"{session.id}::{chunk}")
        assert session.current_turn_buffer == "abc"
        assert session.is_complete is True


class TestParseFunctionCall:
    def test_valid_arguments(self) -> None:
        call = parse_function_call("f", '{"a": 1}')
        assert call.arguments == {"a": 1}
        assert call.raw_arguments == '{"a": 1}'

    def test_concatenated_arguments_are_not_parsed(self) -> None:
        call = parse_function_call("f", '{"a": 1}{"b": 2}')
        assert call.arguments is None
        assert call.raw_arguments == '{"a": 1}{"b": 2}'
