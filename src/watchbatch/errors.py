"""Error types raised by watchbatch.

Construction-time problems surface synchronously as ``ConfigurationError``.
Failures of an asynchronous operation surface once, through that
operation's coroutine, as ``TransportError``. ``ScanError`` describes a
single failed stat during the baseline scan and is tolerated internally.
"""

from __future__ import annotations


class WatchbatchError(Exception):
    """Base class for all watchbatch errors."""


class ConfigurationError(WatchbatchError, ValueError):
    """Missing or invalid required configuration."""


class ScanError(WatchbatchError, OSError):
    """A single path could not be stat'ed during the baseline scan.

    Attributes:
        path: The path that failed.
    """

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Cannot stat {path}: {reason}")
        self.path = path
        self.reason = reason


class TransportError(WatchbatchError):
    """Capability negotiation, subscribe, or command failure.

    Attributes:
        command: The transport command that failed, if known.
    """

    def __init__(self, message: str, command: str | None = None) -> None:
        super().__init__(message)
        self.command = command


class FramingError(TransportError):
    """A PDU on the transport socket could not be decoded or encoded."""


class StateError(WatchbatchError):
    """An operation was attempted in a state that does not allow it."""
