"""
Session state for the auto-exit monitor.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from shared.models import TrailingResult


class TrailingState(BaseModel):
    """Trailing values carried from one tick to the next."""

    last_trailing_level_pct: float | None = None
    previous_stop_loss_pct: float | None = None

    @classmethod
    def fresh(cls, initial_stop_loss_pct: float | None = None) -> "TrailingState":
        """
        State for a newly started session.

        Without a known initial stop the floor is left unset and resolved
        on the first tick from that tick's settings.
        """
        previous = -abs(initial_stop_loss_pct) if initial_stop_loss_pct is not None else None
        return cls(last_trailing_level_pct=None, previous_stop_loss_pct=previous)

    def apply(self, result: TrailingResult) -> None:
        """Carry a calculator result into the next tick."""
        self.last_trailing_level_pct = result.last_trailing_level_pct
        self.previous_stop_loss_pct = result.stop_loss_pct


class MonitorState(BaseModel):
    """
    Mutable record of one monitoring session.

    Once ``exited`` is set, ``running`` stays false and only the
    liquidation summary may still be written.
    """

    running: bool = False
    exited: bool = False
    mtm: float | None = None
    trailing_sl: float | None = None
    mtm_pct: float | None = None
    trailing_sl_pct: float | None = None
    cut_reason: str | None = None
    summary: Any = None
    logs: list[str] = Field(default_factory=list)
    max_logs: int = 100

    def add_log(self, message: str) -> None:
        """Append a timestamped line, keeping only the newest entries."""
        self.logs.append(f"[{datetime.now().strftime('%H:%M:%S')}] {message}")
        if len(self.logs) > self.max_logs:
            del self.logs[: len(self.logs) - self.max_logs]

    def begin(self) -> None:
        """Enter the running state for a new session."""
        self.running = True
        self.exited = False
        self.cut_reason = None
        self.summary = None
        self.mtm_pct = None
        self.trailing_sl_pct = None

    def record_tick(self, mtm: float, mtm_pct: float, trailing_sl: float, trailing_sl_pct: float) -> bool:
        """
        Store the figures of an evaluated tick.

        Returns:
            False if the session already exited and the figures were dropped
        """
        if self.exited:
            return False
        self.mtm = mtm
        self.mtm_pct = mtm_pct
        self.trailing_sl = trailing_sl
        self.trailing_sl_pct = trailing_sl_pct
        return True

    def mark_exited(self, reason: str) -> None:
        """Terminal transition after the stop loss was hit."""
        self.running = False
        self.exited = True
        self.cut_reason = reason

    def mark_stopped(self, reason: str) -> None:
        """Leave the running state without an exit."""
        self.running = False
        self.exited = False
        self.cut_reason = reason

    def mark_failed(self, reason: str) -> None:
        """Halt after a tick failure; an earlier exit is kept."""
        self.running = False
        self.cut_reason = reason
