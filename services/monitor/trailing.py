"""
Trailing stop-loss calculation.

A pure function of settings, current MTM and the previous trailing state.
All values are percentages of allocated capital.

Policy, applied in order (each rule can only raise the stop):
1. Baseline at -initial_stop_loss_pct.
2. Break-even: at break_even_trigger_pct the stop moves to 0.
3. Profit lock: at profit_lock_trigger_pct the stop moves to
   max(locked_profit_pct, break_even_trigger_pct).
4. Trailing: past the profit lock, every whole trailing_step_pct the MTM
   advances beyond the last trailing level pulls the stop up to
   MTM - trailing_gap_pct (never below 0).
5. The stop never decreases within a session.
"""

import math

from shared.models import TrailingResult, TrailingSettings

# Fallbacks for settings that must be strictly positive
DEFAULT_INITIAL_STOP_LOSS_PCT = 1.0
DEFAULT_BREAK_EVEN_TRIGGER_PCT = 0.5
DEFAULT_TRAILING_STEP_PCT = 0.5

# Float slack for step comparisons (0.1 + 0.2 style drift)
_EPSILON = 1e-9


def _finite(value: float | None) -> bool:
    return value is not None and not isinstance(value, bool) and math.isfinite(value)


def sanitize_settings(settings: TrailingSettings) -> TrailingSettings:
    """
    Replace unusable settings with safe values.

    Non-positive or non-finite initial stop, break-even trigger and
    trailing step fall back to fixed defaults. The profit-lock trigger is
    raised to at least the break-even trigger, the locked profit is
    clamped into [0, profit_lock_trigger_pct] and the gap is never negative.
    """
    initial = settings.initial_stop_loss_pct
    if not _finite(initial) or initial <= 0:
        initial = DEFAULT_INITIAL_STOP_LOSS_PCT

    break_even = settings.break_even_trigger_pct
    if not _finite(break_even) or break_even <= 0:
        break_even = DEFAULT_BREAK_EVEN_TRIGGER_PCT

    profit_lock = settings.profit_lock_trigger_pct
    if not _finite(profit_lock) or profit_lock < break_even:
        profit_lock = break_even

    locked = settings.locked_profit_pct
    if not _finite(locked):
        locked = 0.0
    locked = min(max(locked, 0.0), profit_lock)

    step = settings.trailing_step_pct
    if not _finite(step) or step <= 0:
        step = DEFAULT_TRAILING_STEP_PCT

    gap = settings.trailing_gap_pct
    if not _finite(gap) or gap < 0:
        gap = 0.0

    return TrailingSettings(
        initial_stop_loss_pct=initial,
        break_even_trigger_pct=break_even,
        profit_lock_trigger_pct=profit_lock,
        locked_profit_pct=locked,
        trailing_step_pct=step,
        trailing_gap_pct=gap,
    )


def calculate_trailing_stop_loss(
    settings: TrailingSettings,
    current_mtm_pct: float,
    last_trailing_level_pct: float | None,
    previous_stop_loss_pct: float,
) -> TrailingResult:
    """
    Compute the updated stop loss and exit decision.

    Args:
        settings: Trailing parameters, sanitized before use
        current_mtm_pct: Current MTM as % of capital (1.5 means +1.5%)
        last_trailing_level_pct: MTM % at which the stop last trailed,
            None if trailing never engaged
        previous_stop_loss_pct: Stop loss % returned by the previous tick

    Returns:
        TrailingResult with the new stop loss, trailing level and whether
        the MTM has reached the stop
    """
    s = sanitize_settings(settings)

    mtm = current_mtm_pct if _finite(current_mtm_pct) else 0.0
    last_level = last_trailing_level_pct if _finite(last_trailing_level_pct) else None

    # A zero floor with no history and flat MTM is an uninitialized session,
    # not a real break-even stop.
    previous = previous_stop_loss_pct
    if not _finite(previous) or (previous == 0 and last_level is None and mtm == 0):
        previous = -s.initial_stop_loss_pct

    candidate = -abs(s.initial_stop_loss_pct)
    new_level = last_level

    if mtm >= s.break_even_trigger_pct:
        candidate = max(candidate, 0.0)

    if mtm >= s.profit_lock_trigger_pct:
        candidate = max(candidate, s.locked_profit_pct, s.break_even_trigger_pct)

        level = last_level if last_level is not None else s.profit_lock_trigger_pct
        if mtm - level + _EPSILON >= s.trailing_step_pct:
            steps = math.floor((mtm - level) / s.trailing_step_pct + _EPSILON)
            new_level = round(level + steps * s.trailing_step_pct, 6)
            candidate = max(candidate, max(mtm - s.trailing_gap_pct, 0.0))

    stop_loss = max(previous, candidate)
    if previous <= mtm:
        stop_loss = min(stop_loss, mtm)

    stop_loss = round(stop_loss, 2)

    return TrailingResult(
        stop_loss_pct=stop_loss,
        last_trailing_level_pct=new_level,
        should_exit=mtm <= stop_loss,
    )
