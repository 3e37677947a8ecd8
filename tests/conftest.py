"""Shared test fixtures for the chatbridge test suite."""

from __future__ import annotations

import asyncio
import json
import threading
import time
from typing import TYPE_CHECKING, Any

import pytest

from chatbridge.ai.orchestrator import TurnOrchestrator
from chatbridge.ai.stream_driver import StreamDriver
from chatbridge.config.settings import GeminiConfig, Settings, StreamConfig, VisionConfig

if TYPE_CHECKING:
    from chatbridge.ai.orchestrator import CaptureImage, TagHandler
    from chatbridge.ai.transports.base import DeliverCallback, TransportRequest
    from chatbridge.ai.types import FunctionDeclaration

# ---------------------------------------------------------------------------
# Chunk helpers
# ---------------------------------------------------------------------------


def response_json(text: str | None = None, function_call: dict[str, Any] | None = None) -> str:
    """Serialize one streamGenerateContent array element."""
    part: dict[str, Any] = {"functionCall": function_call} if function_call else {"text": text or ""}
    return json.dumps({"candidates": [{"content": {"role": "model", "parts": [part]}}]})


def text_chunks(*texts: str) -> list[str]:
    """Chunks as the bridge delivers them: ``[obj``, ``,obj``, ..., ``]``."""
    chunks = [("[" if i == 0 else ",") + response_json(t) for i, t in enumerate(texts)]
    chunks.append("]")
    return chunks


# ---------------------------------------------------------------------------
# Scripted transport
# ---------------------------------------------------------------------------


class ScriptedTransport:
    """Transport bridge that plays one chunk script per ``start`` call.

    An empty (or missing) script never delivers anything.  With
    ``threaded=True`` chunks are delivered from a worker thread.
    """

    def __init__(
        self,
        scripts: list[list[str]] | None = None,
        *,
        supports_custom_headers: bool = True,
        delay: float = 0.0,
        threaded: bool = False,
    ) -> None:
        self.scripts = list(scripts or [])
        self.requests: list[TransportRequest] = []
        self.aborted: list[str] = []
        self._supports_custom_headers = supports_custom_headers
        self._delay = delay
        self._threaded = threaded
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def supports_custom_headers(self) -> bool:
        return self._supports_custom_headers

    def start(self, request: TransportRequest, deliver: DeliverCallback) -> None:
        self.requests.append(request)
        chunks = self.scripts.pop(0) if self.scripts else []
        if not chunks:
            return
        prefix = f"{request.session_id}::"
        if self._threaded:
            threading.Thread(
                target=self._play_blocking, args=(prefix, chunks, deliver), daemon=True,
            ).start()
        else:
            self._tasks.append(asyncio.get_running_loop().create_task(
                self._play(prefix, chunks, deliver),
            ))

    def abort(self, session_id: str) -> None:
        self.aborted.append(session_id)
        for task in self._tasks:
            task.cancel()

    async def _play(self, prefix: str, chunks: list[str], deliver: DeliverCallback) -> None:
        for chunk in chunks:
            await asyncio.sleep(self._delay)
            deliver(prefix + chunk)

    def _play_blocking(self, prefix: str, chunks: list[str], deliver: DeliverCallback) -> None:
        for chunk in chunks:
            time.sleep(self._delay)
            deliver(prefix + chunk)

    def body(self, index: int = -1) -> dict[str, Any]:
        return json.loads(self.requests[index].body)


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


def make_settings(
    no_data_timeout_sec: float = 0.2,
    poll_interval_ms: int = 1,
    model: str = "gemini-2.0-flash",
    **stream_overrides: Any,
) -> Settings:
    """Create fast-polling settings for tests."""
    return Settings(
        gemini=GeminiConfig(model=model, api_key="test-key"),
        stream=StreamConfig(
            no_data_timeout_sec=no_data_timeout_sec,
            poll_interval_ms=poll_interval_ms,
            **stream_overrides,
        ),
        vision=VisionConfig(capture_timeout_sec=0.2),
    )


def make_driver(
    transport: ScriptedTransport,
    settings: Settings | None = None,
    tools: list[FunctionDeclaration] | None = None,
) -> StreamDriver:
    settings = settings or make_settings()
    return StreamDriver(
        transport=transport,
        api_key="test-key",
        gemini=settings.gemini,
        stream=settings.stream,
        tools=tools,
    )


def make_orchestrator(
    transport: ScriptedTransport,
    settings: Settings | None = None,
    capture_image: CaptureImage | None = None,
    on_tags_extracted: TagHandler | None = None,
) -> TurnOrchestrator:
    settings = settings or make_settings()
    return TurnOrchestrator(
        driver=make_driver(transport, settings),
        vision=settings.vision,
        capture_image=capture_image,
        on_tags_extracted=on_tags_extracted,
    )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture(autouse=True)
def _no_env_keys(monkeypatch: pytest.MonkeyPatch) -> None:
    for var in ("GOOGLE_API_KEY", "GEMINI_API_KEY"):
        monkeypatch.delenv(var, raising=False)
    for var in (
        "CHATBRIDGE_MODEL", "CHATBRIDGE_GENERATE_CONTENT_URL", "CHATBRIDGE_TEMPERATURE",
        "CHATBRIDGE_NO_DATA_TIMEOUT", "CHATBRIDGE_POLL_INTERVAL_MS", "CHATBRIDGE_USE_FUNCTIONS",
        "CHATBRIDGE_VISION", "CHATBRIDGE_DEBUG",
    ):
        monkeypatch.delenv(var, raising=False)
