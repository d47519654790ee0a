"""Lifecycle states of a change aggregator."""

from __future__ import annotations

from enum import Enum

from watchbatch.errors import StateError


class SessionState(Enum):
    """Lifecycle of one aggregator.

    - IDLE: constructed, nothing watched yet (or the last watch failed)
    - SCANNING: baseline scan in progress, live events are queued
    - ACTIVE: live events are applied and aggregated
    - PAUSED: live events are dropped, subscription kept
    - CLOSED: torn down; a new watch() starts a fresh session
    """

    IDLE = "idle"
    SCANNING = "scanning"
    ACTIVE = "active"
    PAUSED = "paused"
    CLOSED = "closed"

    @property
    def is_live(self) -> bool:
        """Whether a session (and its transport) currently exists."""
        return self in (SessionState.SCANNING, SessionState.ACTIVE, SessionState.PAUSED)

    def can_transition(self, target: SessionState) -> bool:
        """Check whether moving to ``target`` is legal."""
        return target in _TRANSITIONS[self]

    def transition(self, target: SessionState) -> SessionState:
        """Return ``target`` if the move is legal.

        Raises:
            StateError: If the move is not in the transition table.
        """
        if not self.can_transition(target):
            raise StateError(f"Illegal state transition: {self.value} -> {target.value}")
        return target


_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.IDLE: frozenset({SessionState.SCANNING, SessionState.CLOSED}),
    SessionState.SCANNING: frozenset(
        {SessionState.ACTIVE, SessionState.PAUSED, SessionState.CLOSED, SessionState.IDLE}
    ),
    # -> IDLE when the subscription fails after the scan already finished
    SessionState.ACTIVE: frozenset({SessionState.PAUSED, SessionState.CLOSED, SessionState.IDLE}),
    # PAUSED -> SCANNING when resumed before the baseline scan finished
    SessionState.PAUSED: frozenset(
        {SessionState.ACTIVE, SessionState.SCANNING, SessionState.CLOSED, SessionState.IDLE}
    ),
    SessionState.CLOSED: frozenset({SessionState.SCANNING}),
}
