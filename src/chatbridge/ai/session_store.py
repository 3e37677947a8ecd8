"""In-flight session state and the concurrent session table.

Chunks are written into a :class:`StreamSession` by the transport bridge's
delivery callback, which may run on another thread, while the stream driver
polls the same session from the event loop.  The fields the delivery path
writes (buffers, kind, function name, completion, failure) are read and
written under the session lock.  ``contexts``, ``vision_allowed`` and
``is_response_done`` are plain attributes owned by the event loop.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING
from uuid import uuid4

if TYPE_CHECKING:
    from chatbridge.ai.chunk_decoder import ChunkIncrement
    from chatbridge.ai.types import Content, FailureKind, ResponseKind


@dataclass(frozen=True)
class TurnSnapshot:
    """Consistent view of the fields the poller watches."""

    buffer: str
    is_complete: bool
    response_kind: ResponseKind


class StreamSession:
    """Mutable state for one request and all of its continuation sub-turns."""

    def __init__(self, contexts: list[Content]) -> None:
        self.id: str = ""
        self.contexts: list[Content] = list(contexts)
        self.vision_allowed: bool = True
        self.is_response_done: bool = False

        self._raw_stream_buffer: str = ""
        self._current_turn_buffer: str = ""
        self._response_kind: ResponseKind = "unset"
        self._pending_function_name: str | None = None
        self._is_complete: bool = False
        self._failure: FailureKind | None = None
        self._error_message: str | None = None
        self._closed: bool = False
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Read accessors
    # ------------------------------------------------------------------

    @property
    def raw_stream_buffer(self) -> str:
        with self._lock:
            return self._raw_stream_buffer

    @property
    def current_turn_buffer(self) -> str:
        with self._lock:
            return self._current_turn_buffer

    @property
    def response_kind(self) -> ResponseKind:
        with self._lock:
            return self._response_kind

    @property
    def pending_function_name(self) -> str | None:
        with self._lock:
            return self._pending_function_name

    @property
    def is_complete(self) -> bool:
        with self._lock:
            return self._is_complete

    @property
    def failure(self) -> FailureKind | None:
        with self._lock:
            return self._failure

    @property
    def error_message(self) -> str | None:
        with self._lock:
            return self._error_message

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed

    def snapshot(self) -> TurnSnapshot:
        with self._lock:
            return TurnSnapshot(
                buffer=self._current_turn_buffer,
                is_complete=self._is_complete,
                response_kind=self._response_kind,
            )

    # ------------------------------------------------------------------
    # Writers
    # ------------------------------------------------------------------

    def begin_turn(self) -> None:
        """Reset the per-sub-turn fields before a new request is sent."""
        with self._lock:
            self._current_turn_buffer = ""
            self._response_kind = "unset"
            self._pending_function_name = None
            self._is_complete = False
            self._error_message = None

    def apply(self, increment: ChunkIncrement) -> bool:
        """Fold one decoded chunk into the buffers.

        The first classifiable chunk fixes ``response_kind`` for the rest of
        the sub-turn.  Returns ``False`` when the session is already closed
        and the increment was ignored.
        """
        with self._lock:
            if self._closed:
                return False
            if increment.kind is not None and self._response_kind == "unset":
                self._response_kind = increment.kind
                if increment.kind == "function_call" and not self._pending_function_name:
                    self._pending_function_name = increment.function_name
            if increment.error_message and self._error_message is None:
                self._error_message = increment.error_message
            self._current_turn_buffer += increment.text
            self._raw_stream_buffer += increment.text
            if increment.end_of_stream:
                self._is_complete = True
            return True

    def fail(self, kind: FailureKind) -> None:
        """Record a terminal failure and stop accepting chunks."""
        with self._lock:
            self._failure = kind
            self._response_kind = "timeout" if kind == "timeout" else "error"
            self._closed = True

    def close(self) -> None:
        with self._lock:
            self._closed = True

    def consume_vision(self) -> bool:
        """Spend the one-shot vision continuation.  Returns whether it was available."""
        with self._lock:
            allowed = self.vision_allowed
            self.vision_allowed = False
            return allowed


class SessionStore:
    """Thread-safe map from session id to :class:`StreamSession`."""

    def __init__(self) -> None:
        self._sessions: dict[str, StreamSession] = {}
        self._lock = threading.Lock()

    def create(self, session: StreamSession) -> str:
        """Assign a fresh id to *session*, register it and return the id."""
        session_id = uuid4().hex
        session.id = session_id
        with self._lock:
            self._sessions[session_id] = session
        return session_id

    def get(self, session_id: str) -> StreamSession | None:
        """Look up a session by ID.  Returns None if not found."""
        with self._lock:
            return self._sessions.get(session_id)

    def remove(self, session_id: str) -> bool:
        """Remove a session.  Returns True if found, False otherwise."""
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def list_ids(self) -> list[str]:
        """Return all in-flight session IDs."""
        with self._lock:
            return list(self._sessions.keys())

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._sessions

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
