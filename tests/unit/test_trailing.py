"""
Unit tests for the trailing stop-loss calculator.
"""

import math
import random

import pytest

from services.monitor.trailing import (
    DEFAULT_INITIAL_STOP_LOSS_PCT,
    DEFAULT_TRAILING_STEP_PCT,
    calculate_trailing_stop_loss,
    sanitize_settings,
)
from shared.models import TrailingSettings


@pytest.fixture
def settings():
    """Default trailing settings: 1, 1, 2, 1, 1, 0.5."""
    return TrailingSettings()


def run_session(settings, mtm_sequence, previous=0.0):
    """Feed a sequence of MTM values through the calculator."""
    level = None
    results = []
    for mtm in mtm_sequence:
        result = calculate_trailing_stop_loss(settings, mtm, level, previous)
        level = result.last_trailing_level_pct
        previous = result.stop_loss_pct
        results.append(result)
    return results


class TestBaseline:
    """Tests for the initial stop loss."""

    def test_fresh_session_starts_at_negative_initial(self, settings):
        """A zero floor with no history resets to -initial."""
        result = calculate_trailing_stop_loss(settings, 0.0, None, 0.0)

        assert result.stop_loss_pct == -1.0
        assert result.last_trailing_level_pct is None
        assert result.should_exit is False

    def test_small_loss_does_not_exit(self, settings):
        """MTM above the stop keeps monitoring."""
        result = calculate_trailing_stop_loss(settings, -0.5, None, -1.0)

        assert result.stop_loss_pct == -1.0
        assert result.should_exit is False

    def test_loss_at_stop_exits(self, settings):
        """MTM equal to the stop triggers an exit."""
        result = calculate_trailing_stop_loss(settings, -1.0, None, -1.0)

        assert result.should_exit is True

    def test_loss_beyond_stop_exits(self, settings):
        """MTM below the stop triggers an exit."""
        result = calculate_trailing_stop_loss(settings, -1.7, None, -1.0)

        assert result.stop_loss_pct == -1.0
        assert result.should_exit is True

    def test_non_finite_previous_resets(self, settings):
        """A NaN previous stop is replaced by -initial."""
        result = calculate_trailing_stop_loss(settings, 0.2, None, float("nan"))

        assert result.stop_loss_pct == -1.0

    def test_non_finite_mtm_treated_as_flat(self, settings):
        """Non-finite MTM is evaluated as zero."""
        result = calculate_trailing_stop_loss(settings, float("inf"), None, -1.0)

        assert result.stop_loss_pct == -1.0
        assert result.should_exit is False


class TestBreakEvenAndProfitLock:
    """Tests for break-even and profit lock rules."""

    def test_break_even_moves_stop_to_zero(self, settings):
        """Reaching the break-even trigger moves the stop to 0."""
        result = calculate_trailing_stop_loss(settings, 1.2, None, -1.0)

        assert result.stop_loss_pct == 0.0
        assert result.should_exit is False

    def test_profit_lock_locks_profit(self, settings):
        """Reaching the profit lock trigger locks the configured profit."""
        result = calculate_trailing_stop_loss(settings, 2.0, None, 0.0)

        assert result.stop_loss_pct == 1.0
        assert result.last_trailing_level_pct is None
        assert result.should_exit is False

    def test_profit_lock_never_below_break_even(self):
        """Locked profit below the break-even trigger is raised to it."""
        settings = TrailingSettings(
            break_even_trigger_pct=1.5,
            profit_lock_trigger_pct=2.0,
            locked_profit_pct=0.5,
        )

        result = calculate_trailing_stop_loss(settings, 2.0, None, 0.0)

        assert result.stop_loss_pct == 1.5


class TestTrailing:
    """Tests for the trailing rule."""

    def test_trailing_engages_after_one_step(self, settings):
        """One full step past the profit lock trails the stop."""
        result = calculate_trailing_stop_loss(settings, 3.0, None, 1.0)

        assert result.last_trailing_level_pct == 3.0
        assert result.stop_loss_pct == 2.5

    def test_partial_step_keeps_level(self, settings):
        """Less than a full step leaves the level and stop unchanged."""
        result = calculate_trailing_stop_loss(settings, 3.9, 3.0, 2.5)

        assert result.last_trailing_level_pct == 3.0
        assert result.stop_loss_pct == 2.5

    def test_multi_step_jump(self, settings):
        """A gap-up advances the level by every whole step at once."""
        result = calculate_trailing_stop_loss(settings, 5.4, None, 1.0)

        assert result.last_trailing_level_pct == 5.0
        assert result.stop_loss_pct == pytest.approx(4.9)

    def test_fractional_steps_are_not_lost_to_float_drift(self):
        """0.3 + 3 * 0.1 counts as three steps."""
        settings = TrailingSettings(
            break_even_trigger_pct=0.1,
            profit_lock_trigger_pct=0.3,
            locked_profit_pct=0.1,
            trailing_step_pct=0.1,
            trailing_gap_pct=0.05,
        )

        result = calculate_trailing_stop_loss(settings, 0.6, None, 0.1)

        assert result.last_trailing_level_pct == pytest.approx(0.6)
        assert result.stop_loss_pct == pytest.approx(0.55)

    def test_zero_gap_trails_to_mtm(self):
        """Without a gap the stop trails right up to MTM."""
        settings = TrailingSettings(trailing_gap_pct=0)

        result = calculate_trailing_stop_loss(settings, 3.0, None, 1.0)

        assert result.stop_loss_pct == 3.0

    def test_trailing_candidate_clamped_at_zero(self):
        """A gap larger than MTM never pushes the trailing stop negative."""
        settings = TrailingSettings(trailing_gap_pct=10)

        result = calculate_trailing_stop_loss(settings, 3.0, None, -1.0)

        assert result.stop_loss_pct == 1.0


class TestSessionScenario:
    """Tests for multi-tick sessions."""

    def test_rise_then_collapse(self, settings):
        """Stop ratchets up with profit and fires on the collapse."""
        results = run_session(settings, [0, 1, 2, 3, 0])

        assert [r.stop_loss_pct for r in results] == [-1, 0, 1, 2.5, 2.5]
        assert [r.should_exit for r in results] == [False, False, False, False, True]

    def test_dip_does_not_lower_stop(self, settings):
        """A dip that stays above the stop keeps the stop where it was."""
        results = run_session(settings, [1.5, 0.5])

        assert [r.stop_loss_pct for r in results] == [0, 0]
        assert results[-1].should_exit is False

    def test_settings_change_does_not_lower_stop(self, settings):
        """Loosening settings mid-session never lowers the floor."""
        first = calculate_trailing_stop_loss(settings, 3.0, None, 1.0)
        looser = TrailingSettings(initial_stop_loss_pct=5, trailing_gap_pct=2)

        second = calculate_trailing_stop_loss(
            looser, 3.0, first.last_trailing_level_pct, first.stop_loss_pct
        )

        assert second.stop_loss_pct >= first.stop_loss_pct

    @pytest.mark.parametrize("seed", [1, 7, 42, 1337])
    def test_stop_never_decreases(self, settings, seed):
        """Random walks produce a non-decreasing stop sequence."""
        rng = random.Random(seed)
        mtm = 0.0
        sequence = []
        for _ in range(200):
            mtm += rng.uniform(-0.8, 1.0)
            sequence.append(round(mtm, 4))

        results = run_session(settings, sequence)
        stops = [r.stop_loss_pct for r in results]

        assert all(b >= a for a, b in zip(stops, stops[1:]))

    @pytest.mark.parametrize("seed", [3, 11])
    def test_level_never_decreases(self, settings, seed):
        """The trailing level only moves up."""
        rng = random.Random(seed)
        sequence = [rng.uniform(-2, 12) for _ in range(100)]

        levels = [
            r.last_trailing_level_pct
            for r in run_session(settings, sequence)
            if r.last_trailing_level_pct is not None
        ]

        assert all(b >= a for a, b in zip(levels, levels[1:]))


class TestSanitizeSettings:
    """Tests for settings sanitizing."""

    def test_non_positive_values_fall_back(self):
        """Zero or negative thresholds use the fixed defaults."""
        s = sanitize_settings(
            TrailingSettings(initial_stop_loss_pct=0, trailing_step_pct=-1)
        )

        assert s.initial_stop_loss_pct == DEFAULT_INITIAL_STOP_LOSS_PCT
        assert s.trailing_step_pct == DEFAULT_TRAILING_STEP_PCT

    def test_nan_values_fall_back(self):
        """NaN thresholds use the fixed defaults."""
        s = sanitize_settings(TrailingSettings(initial_stop_loss_pct=float("nan")))

        assert s.initial_stop_loss_pct == DEFAULT_INITIAL_STOP_LOSS_PCT

    def test_profit_lock_raised_to_break_even(self):
        """Profit lock trigger below break-even is raised."""
        s = sanitize_settings(
            TrailingSettings(break_even_trigger_pct=2, profit_lock_trigger_pct=1)
        )

        assert s.profit_lock_trigger_pct == 2

    def test_locked_profit_clamped(self):
        """Locked profit stays within [0, profit lock trigger]."""
        high = sanitize_settings(TrailingSettings(locked_profit_pct=9))
        low = sanitize_settings(TrailingSettings(locked_profit_pct=-3))

        assert high.locked_profit_pct == 2
        assert low.locked_profit_pct == 0

    def test_negative_gap_is_zero(self):
        """A negative gap becomes zero."""
        s = sanitize_settings(TrailingSettings(trailing_gap_pct=-0.5))

        assert s.trailing_gap_pct == 0

    def test_malformed_settings_never_raise(self):
        """Garbage settings still produce a finite stop."""
        settings = TrailingSettings(
            initial_stop_loss_pct=float("nan"),
            break_even_trigger_pct=-1,
            profit_lock_trigger_pct=float("inf"),
            locked_profit_pct=float("nan"),
            trailing_step_pct=0,
            trailing_gap_pct=float("-inf"),
        )

        result = calculate_trailing_stop_loss(settings, 0.75, None, -1.0)

        # break-even falls back to 0.5 and the profit lock is raised to match
        assert math.isfinite(result.stop_loss_pct)
        assert result.stop_loss_pct == 0.5
        assert result.should_exit is False
