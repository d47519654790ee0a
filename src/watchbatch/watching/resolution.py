"""Timestamp resolution estimation.

A raw stat of a file and the transport's report of the same unmodified file
can disagree by up to one unit of the filesystem's timestamp resolution.
``ResolutionEstimator`` infers that resolution from the modification times it
sees and offsets recorded times by it, so a scan-derived time never looks
older than a notification-derived time for the same edit.
"""

from __future__ import annotations

# Candidate resolutions in milliseconds, coarsest first.
RESOLUTION_LADDER: tuple[int, ...] = (2000, 1000, 100, 10, 1)


class ResolutionEstimator:
    """Running estimate of the timestamp resolution, in milliseconds.

    Starts at the coarsest step of RESOLUTION_LADDER. Every observed time that
    is not a whole multiple of the current step moves the estimate to the
    matching finer step; the estimate never moves back. One estimator lives
    per aggregator and is not reset between scans.
    """

    def __init__(self, ladder: tuple[int, ...] = RESOLUTION_LADDER) -> None:
        if not ladder or list(ladder) != sorted(ladder, reverse=True):
            raise ValueError("ladder must be a non-empty, coarsest-first sequence")
        self._ladder = ladder
        self._current = ladder[0]

    @property
    def current(self) -> int:
        """The current resolution estimate."""
        return self._current

    def observe(self, mtime: float) -> int:
        """Fold one modification time into the estimate and return it.

        The new estimate is the finest step that does not divide ``mtime``
        evenly, e.g. ``1234`` gives 10 and ``1500`` gives 1000; a fractional
        time drops straight to the finest step.
        """
        if self._current == self._ladder[-1]:
            return self._current

        for index in range(len(self._ladder) - 1, -1, -1):
            step = self._ladder[index]
            if step >= self._current:
                break
            if mtime % step != 0:
                self._current = step
                break
        return self._current

    def normalize(self, mtime: float) -> float:
        """Offset ``mtime`` by the current resolution."""
        return mtime + self._current

    def record(self, mtime: float) -> float:
        """Observe ``mtime`` and return its normalized value."""
        self.observe(mtime)
        return self.normalize(mtime)
