"""Events raised to consumers and the hub that delivers them."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

from watchbatch.logging import get_logger

log = get_logger("events")


class EventKind(Enum):
    """Topics a consumer can subscribe to."""

    CHANGE = "change"
    REMOVAL = "removal"
    AGGREGATED = "aggregated"


@dataclass(frozen=True)
class ChangeEvent:
    """A single live update, delivered without delay."""

    path: str
    mtime: float

    kind = EventKind.CHANGE


@dataclass(frozen=True)
class RemovalEvent:
    """A single live deletion, delivered without delay."""

    path: str

    kind = EventKind.REMOVAL


@dataclass(frozen=True)
class AggregatedEvent:
    """The settled result of one debounce window.

    Both path sequences are sorted; a path appears in at most one of them.
    """

    changed: tuple[str, ...]
    removed: tuple[str, ...]
    cursor: str | None

    kind = EventKind.AGGREGATED

    @property
    def paths(self) -> tuple[str, ...]:
        """Sorted union of changed and removed paths."""
        return tuple(sorted(set(self.changed) | set(self.removed)))

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON output."""
        return {
            "changed": list(self.changed),
            "removed": list(self.removed),
            "cursor": self.cursor,
        }


WatchEvent = Union[ChangeEvent, RemovalEvent, AggregatedEvent]
Listener = Callable[[Any], None]


@dataclass
class _Subscription:
    callback: Listener
    once: bool


class EventHub:
    """Named-topic publish/subscribe for watch events.

    Any number of listeners may subscribe to each topic. A listener that
    raises is logged and does not stop delivery to the others. Subscribing
    or unsubscribing from inside a listener is allowed; the change applies
    from the next emit.
    """

    def __init__(self) -> None:
        self._listeners: dict[EventKind, list[_Subscription]] = {kind: [] for kind in EventKind}

    def subscribe(
        self,
        kind: EventKind,
        callback: Listener,
        *,
        once: bool = False,
    ) -> Callable[[], None]:
        """Register ``callback`` for ``kind``.

        Args:
            kind: Topic to listen on.
            callback: Called with the event payload.
            once: Drop the listener after its first delivery.

        Returns:
            A function that unregisters the listener.
        """
        entry = _Subscription(callback=callback, once=once)
        self._listeners[kind].append(entry)

        def unsubscribe() -> None:
            if entry in self._listeners[kind]:
                self._listeners[kind].remove(entry)

        return unsubscribe

    def emit(self, event: WatchEvent) -> None:
        """Deliver ``event`` to every listener of its topic."""
        entries = self._listeners[event.kind]
        for entry in list(entries):
            if entry.once:
                if entry not in entries:
                    continue
                entries.remove(entry)
            try:
                entry.callback(event)
            except Exception:
                log.exception("Error in %s listener", event.kind.value)

    def listener_count(self, kind: EventKind | None = None) -> int:
        """Number of listeners for ``kind``, or for all topics."""
        if kind is not None:
            return len(self._listeners[kind])
        return sum(len(entries) for entries in self._listeners.values())

    def clear(self) -> None:
        """Detach all listeners."""
        for entries in self._listeners.values():
            entries.clear()
