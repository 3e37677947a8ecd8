"""Transport bridge protocol.

The engine never talks HTTP itself.  It hands a fully serialized request to
a bridge and receives the response body back, chunk by chunk, through a
delivery callback that may fire on any thread.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Protocol, runtime_checkable

DeliverCallback = Callable[[str], None]
"""Receives ``"<session_id>::<raw chunk>"``.  An empty chunk ends the stream."""


@dataclass(frozen=True)
class TransportRequest:
    """Everything a bridge needs to start one streaming call."""

    target: str
    session_id: str
    url: str
    api_key: str
    model: str
    body: str
    headers: dict[str, str] | None = None


@runtime_checkable
class StreamTransport(Protocol):
    """Protocol that every transport bridge must satisfy.

    * :pymeth:`start` must return without waiting for the response; chunks
      are pushed later through *deliver*.
    * :pymeth:`abort` stops the in-flight call for *session_id*.  Chunks that
      still arrive afterwards are discarded by the engine.
    """

    @property
    def supports_custom_headers(self) -> bool:
        """Whether :attr:`TransportRequest.headers` is honoured."""
        ...

    def start(self, request: TransportRequest, deliver: DeliverCallback) -> None:
        """Begin streaming *request*, delivering raw chunks via *deliver*."""
        ...

    def abort(self, session_id: str) -> None:
        """Abort the in-flight call started for *session_id*."""
        ...
