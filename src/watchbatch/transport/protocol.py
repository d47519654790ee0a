"""Transport boundary used by the subscription adapter."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

PDU = dict[str, Any]
PDUListener = Callable[[PDU], None]


@runtime_checkable
class WatchTransport(Protocol):
    """A connection to a change-notification service.

    Implementations:
    - WatchmanClient: Watchman JSON protocol over its unix socket
    - tests.utils.FakeTransport: in-memory double for tests

    Responses carrying an ``error`` field are raised as TransportError by
    ``command`` and ``capability_check``. Unsolicited PDUs (subscription
    notifications) go to every registered listener, in arrival order.
    """

    @property
    def connected(self) -> bool:
        """Whether the connection is open."""
        ...

    async def connect(self) -> None:
        """Open the connection if it is not open yet."""
        ...

    async def capability_check(
        self,
        required: Sequence[str] = (),
        optional: Sequence[str] = (),
    ) -> PDU:
        """Verify the service supports ``required`` capabilities."""
        ...

    async def command(self, *args: Any) -> PDU:
        """Send one command and return its response."""
        ...

    def add_listener(self, callback: PDUListener) -> Callable[[], None]:
        """Register a listener for unsolicited PDUs; returns an unregister function."""
        ...

    async def close(self) -> None:
        """Close the connection and fail any pending commands."""
        ...


@dataclass(frozen=True)
class SubscriptionFile:
    """One file entry of a subscription notification."""

    name: str
    exists: bool
    mtime_ms: float | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SubscriptionFile:
        """Parse a ``files`` entry requested with fields name/mtime_ms/exists."""
        mtime = data.get("mtime_ms")
        return cls(
            name=str(data["name"]),
            exists=bool(data.get("exists", True)),
            mtime_ms=float(mtime) if mtime is not None else None,
        )
