"""Failures raised from the public streaming entry point."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from chatbridge.ai.types import FailureKind


class StreamFailure(RuntimeError):
    """A sub-turn ended without a usable response.

    ``kind`` distinguishes a retryable ``timeout`` from a terminal
    ``error`` and from a caller-requested ``cancelled``.
    """

    def __init__(self, message: str, kind: FailureKind = "error") -> None:
        super().__init__(message)
        self.kind: FailureKind = kind

    @property
    def retryable(self) -> bool:
        return self.kind == "timeout"


class StreamTimeoutError(StreamFailure):
    """No data arrived before the no-data deadline."""

    def __init__(self, message: str) -> None:
        super().__init__(message, kind="timeout")
