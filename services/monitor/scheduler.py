"""
Repeating asyncio task used to drive monitor ticks.
"""

import asyncio
from collections.abc import Awaitable, Callable

import structlog

logger = structlog.get_logger(__name__)


class RepeatingTask:
    """
    Call an async callback every ``interval_seconds`` until cancelled.

    Each run is awaited before the next sleep starts, so runs never
    overlap. Runs are shielded: cancelling the timer (including from inside
    the callback) lets the current run finish.
    """

    def __init__(
        self,
        interval_seconds: float,
        callback: Callable[[], Awaitable[object]],
        name: str = "repeating-task",
    ):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.interval_seconds = interval_seconds
        self.callback = callback
        self.name = name
        self._task: asyncio.Task | None = None
        self._current: asyncio.Future | None = None
        self._cancelled = False

    @property
    def active(self) -> bool:
        """Whether the timer is scheduled."""
        return self._task is not None and not self._task.done() and not self._cancelled

    def start(self) -> None:
        """Schedule the loop on the running event loop."""
        if self._task is not None:
            raise RuntimeError(f"{self.name} already started")
        self._task = asyncio.get_running_loop().create_task(self._run(), name=self.name)

    def cancel(self) -> bool:
        """
        Stop future runs.

        Returns:
            True if the timer was active
        """
        was_active = self.active
        self._cancelled = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
        return was_active

    async def wait_closed(self) -> None:
        """Wait for the loop task and any in-flight run to finish after cancel()."""
        if self._task is None:
            return
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        if self._current is not None and not self._current.done():
            await asyncio.wait([self._current])

    async def _run(self) -> None:
        while not self._cancelled:
            await asyncio.sleep(self.interval_seconds)
            if self._cancelled:
                break
            try:
                # held so a shielded run outlives the timer task
                self._current = asyncio.ensure_future(self.callback())
                await asyncio.shield(self._current)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("repeating_task_error", task=self.name, error=str(e))
