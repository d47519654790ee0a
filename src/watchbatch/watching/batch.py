"""Pending change/removal sets for one debounce window."""

from __future__ import annotations


class PendingBatch:
    """Deduplicated changes and removals accumulated between flushes.

    A path is in at most one of the two sets; the most recent event for a
    path decides which.
    """

    def __init__(self) -> None:
        self._changed: set[str] = set()
        self._removed: set[str] = set()

    def add_change(self, path: str) -> None:
        self._removed.discard(path)
        self._changed.add(path)

    def add_removal(self, path: str) -> None:
        self._changed.discard(path)
        self._removed.add(path)

    def drain(self) -> tuple[tuple[str, ...], tuple[str, ...]]:
        """Return sorted (changed, removed) and empty both sets."""
        changed = tuple(sorted(self._changed))
        removed = tuple(sorted(self._removed))
        self._changed = set()
        self._removed = set()
        return changed, removed

    @property
    def changed(self) -> frozenset[str]:
        return frozenset(self._changed)

    @property
    def removed(self) -> frozenset[str]:
        return frozenset(self._removed)

    def __len__(self) -> int:
        return len(self._changed) + len(self._removed)

    def __bool__(self) -> bool:
        return bool(self._changed or self._removed)
