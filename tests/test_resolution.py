"""Tests for timestamp resolution estimation."""

from __future__ import annotations

import pytest

from watchbatch.watching.resolution import RESOLUTION_LADDER, ResolutionEstimator


class TestResolutionEstimator:
    """Tests for ResolutionEstimator."""

    def test_starts_at_coarsest_step(self) -> None:
        """A fresh estimator assumes the coarsest resolution."""
        assert ResolutionEstimator().current == RESOLUTION_LADDER[0] == 2000

    def test_even_multiple_keeps_estimate(self) -> None:
        """Times divisible by the current step do not change it."""
        estimator = ResolutionEstimator()
        estimator.observe(1_700_000_000_000)
        assert estimator.current == 2000

    @pytest.mark.parametrize(
        ("mtime", "expected"),
        [
            (1000, 2000),
            (1500, 1000),
            (1200, 1000),
            (1230, 100),
            (1234, 10),
            (1234.5, 1),
        ],
    )
    def test_observe_picks_finest_non_dividing_step(self, mtime: float, expected: int) -> None:
        """The estimate drops to the finest step that does not divide the time."""
        estimator = ResolutionEstimator()
        assert estimator.observe(mtime) == expected
        assert estimator.current == expected

    def test_estimate_never_moves_back(self) -> None:
        """Once refined, coarser times do not widen the estimate again."""
        estimator = ResolutionEstimator()
        estimator.observe(1230)
        estimator.observe(4000)
        estimator.observe(1500)
        assert estimator.current == 100

    def test_refines_in_steps(self) -> None:
        """Successive observations refine step by step."""
        estimator = ResolutionEstimator()
        estimator.observe(5500)
        assert estimator.current == 1000
        estimator.observe(5550)
        assert estimator.current == 100
        estimator.observe(5555)
        assert estimator.current == 10

    def test_finest_step_is_terminal(self) -> None:
        """At the finest step nothing changes the estimate."""
        estimator = ResolutionEstimator()
        estimator.observe(0.5)
        estimator.observe(2000)
        assert estimator.current == 1

    def test_normalize_adds_current_resolution(self) -> None:
        """normalize() offsets by the current estimate."""
        estimator = ResolutionEstimator()
        assert estimator.normalize(4000) == 6000
        estimator.observe(1230)
        assert estimator.normalize(1230) == 1330

    def test_record_observes_then_normalizes(self) -> None:
        """record() uses the estimate after folding in the new time."""
        estimator = ResolutionEstimator()
        assert estimator.record(1500) == 2500

    def test_custom_ladder(self) -> None:
        """A custom ladder is used as given."""
        estimator = ResolutionEstimator((100, 1))
        assert estimator.current == 100
        estimator.observe(150.5)
        assert estimator.current == 1

    @pytest.mark.parametrize("ladder", [(), (1, 10), (10, 100, 1)])
    def test_invalid_ladder_rejected(self, ladder: tuple[int, ...]) -> None:
        """Empty or not coarsest-first ladders are rejected."""
        with pytest.raises(ValueError, match="coarsest-first"):
            ResolutionEstimator(ladder)
