"""Subscription adapter between a WatchTransport and the aggregator.

Turns "watch these paths under this root since this cursor" into the
transport's capability check, ``watch-project`` and ``subscribe`` commands,
and turns each notification into ``(absolute_path, mtime_ms | None)`` calls,
where None means the path no longer exists.
"""

from __future__ import annotations

import os
from collections.abc import Callable, Iterable
from typing import Any

from watchbatch.errors import TransportError
from watchbatch.logging import TRACE, get_logger
from watchbatch.transport.protocol import PDU, SubscriptionFile, WatchTransport

log = get_logger("subscription")

REQUIRED_CAPABILITIES = ("cmd-watch-project", "relative_root")
SUBSCRIPTION_FIELDS = ["name", "mtime_ms", "exists"]

Deliver = Callable[[str, "float | None"], None]


def since_clause(since: str | float) -> str | int:
    """Translate a resume point for the subscribe command.

    A string is a transport clock and passes through. A number is a
    millisecond timestamp and is sent as whole seconds.
    """
    if isinstance(since, str):
        return since
    return int(since // 1000)


class SubscriptionAdapter:
    """Owns one named subscription on one transport connection.

    Notifications for other subscription names are ignored, so a shared
    connection cannot leak events between watches.
    """

    def __init__(
        self,
        transport: WatchTransport,
        root_path: str,
        subscription_name: str,
        deliver: Deliver,
        on_clock: Callable[[str], None] | None = None,
    ) -> None:
        """Initialize the adapter.

        Args:
            transport: Connection to subscribe on; owned and closed by this adapter.
            root_path: Project root; notification names are joined onto it.
            subscription_name: Name to subscribe under and filter by.
            deliver: Called once per file in a notification.
            on_clock: Called with the clock of the subscribe reply and of
                every notification, before its files are delivered.
        """
        self._transport = transport
        self._root_path = root_path
        self._name = subscription_name
        self._deliver = deliver
        self._on_clock = on_clock
        self._watch_root: str | None = None
        self._unregister: Callable[[], None] | None = None
        self._closed = False

    @property
    def subscribed(self) -> bool:
        return self._watch_root is not None

    @property
    def subscription_name(self) -> str:
        return self._name

    def build_subscription(
        self,
        paths: Iterable[str],
        since: str | float,
        relative_root: str | None = None,
    ) -> dict[str, Any]:
        """Build the subscribe command's query object."""
        names = sorted({os.path.relpath(path, self._root_path) for path in paths})
        query: dict[str, Any] = {
            "expression": ["allof", ["name", names, "wholename"]],
            "fields": list(SUBSCRIPTION_FIELDS),
            "since": since_clause(since),
        }
        if relative_root:
            query["relative_root"] = relative_root
        return query

    async def subscribe(self, paths: Iterable[str], since: str | float) -> str | None:
        """Negotiate capabilities, watch the project and subscribe.

        Returns:
            The clock reported by the subscribe reply, if any.

        Raises:
            TransportError: If any step fails. Nothing is retried.
        """
        if self._closed:
            raise TransportError("Subscription adapter is closed")

        await self._transport.capability_check(required=REQUIRED_CAPABILITIES)
        log.debug("Capability check passed")

        watch_response = await self._transport.command("watch-project", self._root_path)
        if "warning" in watch_response:
            log.warning("watchman: %s", watch_response["warning"])
        watch_root = watch_response.get("watch")
        if not watch_root:
            raise TransportError("watch-project reply has no 'watch' root", command="watch-project")
        log.debug("watch-project %s -> %s", self._root_path, watch_root)

        query = self.build_subscription(paths, since, watch_response.get("relative_path"))

        if self._unregister is None:
            self._unregister = self._transport.add_listener(self.handle_pdu)

        log.log(TRACE, "subscribe %s %s", self._name, query)
        response = await self._transport.command("subscribe", watch_root, self._name, query)
        self._watch_root = watch_root
        log.debug("Subscribed %s on %s", self._name, watch_root)

        clock = response.get("clock")
        if clock is not None and self._on_clock is not None:
            self._on_clock(str(clock))
        return str(clock) if clock is not None else None

    def handle_pdu(self, pdu: PDU) -> None:
        """Translate one unilateral PDU into deliver() calls."""
        if self._closed or pdu.get("subscription") != self._name:
            return

        clock = pdu.get("clock")
        if clock is not None and self._on_clock is not None:
            self._on_clock(str(clock))

        files = pdu.get("files") or []
        log.log(TRACE, "Notification for %s: %d files", self._name, len(files))
        for entry in files:
            try:
                file = SubscriptionFile.from_dict(entry)
            except (KeyError, TypeError, ValueError) as e:
                log.warning("Skipping malformed subscription entry %r: %s", entry, e)
                continue

            path = os.path.join(self._root_path, file.name)
            if not file.exists:
                self._deliver(path, None)
            elif file.mtime_ms is None:
                log.warning("Subscription entry for %s has no mtime_ms", path)
            else:
                self._deliver(path, file.mtime_ms)

    async def close(self) -> None:
        """Unsubscribe (best effort) and release the transport. Idempotent."""
        if self._closed:
            return
        self._closed = True

        if self._unregister is not None:
            self._unregister()
            self._unregister = None

        if self._watch_root is not None and self._transport.connected:
            try:
                await self._transport.command("unsubscribe", self._watch_root, self._name)
            except TransportError as e:
                log.warning("Unsubscribe of %s failed: %s", self._name, e)
        self._watch_root = None

        try:
            await self._transport.close()
        except Exception as e:
            log.warning("Error closing transport: %s", e)
