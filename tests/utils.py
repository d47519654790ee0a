"""Shared test utilities for watchbatch tests."""

from __future__ import annotations

import asyncio
import os
from collections.abc import Callable, Iterable, Sequence
from pathlib import Path
from typing import Any

from watchbatch.errors import TransportError
from watchbatch.transport.protocol import PDU, PDUListener

DEFAULT_CAPABILITIES = {"cmd-watch-project": True, "relative_root": True}


class FakeTransport:
    """In-memory WatchTransport.

    Records every command, answers with canned responses, can fail or hold
    chosen commands, and pushes subscription notifications to listeners.
    """

    def __init__(
        self,
        watch_root: str = "/project",
        *,
        relative_path: str | None = None,
        clock: str = "c:1:1",
        capabilities: dict[str, bool] | None = None,
        warning: str | None = None,
    ) -> None:
        self.watch_root = watch_root
        self.commands: list[tuple[Any, ...]] = []
        self.failures: dict[str, TransportError] = {}
        self.gates: dict[str, asyncio.Event] = {}
        self.capabilities = DEFAULT_CAPABILITIES if capabilities is None else capabilities
        self.subscription_name: str | None = None
        self.close_count = 0
        self._listeners: list[PDUListener] = []
        self._connected = False

        watch_response: PDU = {"version": "2023.01.30.00", "watch": watch_root}
        if relative_path is not None:
            watch_response["relative_path"] = relative_path
        if warning is not None:
            watch_response["warning"] = warning
        self.responses: dict[str, PDU] = {
            "watch-project": watch_response,
            "subscribe": {"clock": clock},
            "unsubscribe": {"deleted": True},
        }

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def command_names(self) -> list[str]:
        return [str(args[0]) for args in self.commands]

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def fail(self, name: str, message: str = "simulated failure") -> None:
        """Make every later ``name`` command raise TransportError."""
        self.failures[name] = TransportError(message, command=name)

    def hold(self, name: str) -> asyncio.Event:
        """Block ``name`` commands until the returned event is set."""
        gate = asyncio.Event()
        self.gates[name] = gate
        return gate

    async def connect(self) -> None:
        self._connected = True

    async def command(self, *args: Any) -> PDU:
        name = str(args[0])
        self.commands.append(args)
        await self.connect()
        if name in self.gates:
            await self.gates[name].wait()
        if name in self.failures:
            raise self.failures[name]
        if name == "subscribe":
            self.subscription_name = str(args[2])
        if name == "version":
            return {"version": "2023.01.30.00", "capabilities": dict(self.capabilities)}
        return dict(self.responses.get(name, {}))

    async def capability_check(
        self,
        required: Sequence[str] = (),
        optional: Sequence[str] = (),
    ) -> PDU:
        response = await self.command(
            "version", {"required": list(required), "optional": list(optional)}
        )
        missing = [name for name in required if not response["capabilities"].get(name)]
        if missing:
            raise TransportError(f"Missing required capabilities: {missing}", command="version")
        return response

    def add_listener(self, callback: PDUListener) -> Callable[[], None]:
        self._listeners.append(callback)

        def unregister() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unregister

    async def close(self) -> None:
        self.close_count += 1
        self._connected = False

    def push(
        self,
        files: Iterable[dict[str, Any]],
        *,
        clock: str | None = None,
        subscription: str | None = None,
    ) -> None:
        """Deliver one subscription notification to all listeners."""
        pdu: PDU = {
            "unilateral": True,
            "subscription": subscription or self.subscription_name,
            "root": self.watch_root,
            "files": list(files),
        }
        if clock is not None:
            pdu["clock"] = clock
        for listener in list(self._listeners):
            listener(pdu)


def changed(name: str, mtime_ms: float) -> dict[str, Any]:
    """A notification entry for an existing file."""
    return {"name": name, "exists": True, "mtime_ms": mtime_ms}


def removed(name: str) -> dict[str, Any]:
    """A notification entry for a deleted file."""
    return {"name": name, "exists": False}


def make_files(root: Path, names: Iterable[str], mtime_ms: int | None = None) -> list[str]:
    """Create files under ``root`` and return their absolute paths.

    Args:
        root: Directory to create them in.
        names: Relative file names.
        mtime_ms: Optional modification time to set on each file.
    """
    paths = []
    for name in names:
        path = root / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(name)
        if mtime_ms is not None:
            os.utime(path, ns=(mtime_ms * 1_000_000, mtime_ms * 1_000_000))
        paths.append(str(path))
    return paths


async def wait_for_condition(
    predicate: Callable[[], bool],
    timeout: float = 2.0,
    interval: float = 0.01,
) -> None:
    """Poll until ``predicate()`` is true.

    Raises:
        asyncio.TimeoutError: If timeout is exceeded
    """

    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(interval)

    await asyncio.wait_for(_poll(), timeout=timeout)
