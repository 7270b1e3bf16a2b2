"""
Auto-exit monitor service implementation.

Evaluates the trailing stop loss against live MTM on every tick and
exits all positions once, when the stop is hit.
"""

import asyncio
from typing import Any

import structlog

from shared.audit_log import AuditLog, fire_and_forget
from shared.config import Settings, get_settings
from shared.firestore_client import FirestoreClient, get_firestore_client
from shared.models import ActionResponse, MonitorSnapshot
from services.monitor.scheduler import RepeatingTask
from services.monitor.snapshot import SnapshotPublisher
from services.monitor.sources import (
    FirestoreSettingsSource,
    LiquidationAction,
    PositionsSource,
    SettingsSource,
    TraderLiquidation,
    TraderPositionsSource,
)
from services.monitor.state import MonitorState, TrailingState
from services.monitor.trailing import calculate_trailing_stop_loss

logger = structlog.get_logger(__name__)

MONITOR_ERROR_REASON = "Error in auto-exit monitoring."
STOPPED_REASON = "Stopped by user."


class MonitorService:
    """
    Service driving the auto-exit monitoring session.

    Ticks run one at a time under a lock and return immediately when the
    session is not running or has already exited, so liquidation is
    triggered at most once per session whether ticks come from the
    internal timer or from an external scheduler.
    """

    def __init__(
        self,
        positions_source: PositionsSource | None = None,
        settings_source: SettingsSource | None = None,
        liquidation: LiquidationAction | None = None,
        audit_log: AuditLog | None = None,
        publisher: SnapshotPublisher | None = None,
        firestore_client: FirestoreClient | None = None,
        settings: Settings | None = None,
    ):
        """
        Initialize monitor service.

        Args:
            positions_source: Source of open positions
            settings_source: Source of trading settings
            liquidation: Exit-all action
            audit_log: Optional audit trail
            publisher: Optional snapshot publisher
            firestore_client: Optional Firestore client for status persistence
            settings: Optional Settings instance
        """
        self.settings = settings or get_settings()
        self._firestore_client = firestore_client

        self.positions_source = positions_source or TraderPositionsSource()
        self.settings_source = settings_source or FirestoreSettingsSource(firestore_client)
        self.liquidation = liquidation or TraderLiquidation()
        self.audit_log = audit_log or AuditLog(
            firestore_client=firestore_client,
            persist=self.settings.monitor.persist_status,
        )

        log_size = self.settings.monitor.log_buffer_size
        self.publisher = publisher or SnapshotPublisher(log_limit=log_size)
        self.state = MonitorState(max_logs=log_size)
        self.trailing = TrailingState.fresh()

        self._lock = asyncio.Lock()
        self._timer: RepeatingTask | None = None
        self._session = 0
        self._frequency_ms: int | None = None
        self._persist_paused = False

        if self.settings.monitor.persist_status:
            self.publisher.subscribe(self._persist_snapshot)

    @property
    def firestore_client(self) -> FirestoreClient:
        """Get or create Firestore client."""
        if self._firestore_client is None:
            self._firestore_client = get_firestore_client()
        return self._firestore_client

    @property
    def timer_active(self) -> bool:
        """Whether the internal timer is scheduled."""
        return self._timer is not None and self._timer.active

    # =========================================================================
    # Actions
    # =========================================================================

    async def start(self) -> ActionResponse:
        """
        Start a monitoring session.

        Runs one tick immediately, then schedules recurring ticks unless
        ticks are driven externally.

        Returns:
            Failure if a session is already running
        """
        if self.state.running:
            # only the operator log changes; session figures stay as they are
            self.state.add_log("Start requested but already running.")
            self.publisher.publish(self.state)
            logger.info("monitor_start_rejected")
            return ActionResponse(success=False, error="Already running")

        self._cancel_timer()
        self._session += 1
        session = self._session
        self.state.begin()
        self.trailing = TrailingState.fresh()
        self.state.add_log("Auto-exit started.")
        self.publisher.publish(self.state)
        self.audit_log.record("info", "Auto-exit monitor started", {"session": session})
        logger.info("monitor_started", session=session)

        await self.tick()

        # a stop/start during the first tick hands the timer to the newer session
        if session != self._session:
            logger.info("monitor_start_superseded", session=session)
            return ActionResponse(success=True)

        if self.state.running and self.settings.monitor.use_internal_scheduler:
            frequency_ms = self._frequency_ms or self.settings.monitor.default_frequency_ms
            self._cancel_timer()
            self._timer = RepeatingTask(
                frequency_ms / 1000,
                self.tick,
                name=f"auto-exit-monitor-{session}",
            )
            self._timer.start()
            logger.info("monitor_timer_scheduled", frequency_ms=frequency_ms)

        return ActionResponse(success=True)

    async def stop(self) -> ActionResponse:
        """
        Stop the session. Safe to call when nothing is running.

        Returns:
            Always success
        """
        was_active = self._cancel_timer()
        if was_active:
            self.state.add_log("Cleared backend polling interval.")
        else:
            self.state.add_log("Stop requested but no interval was running.")

        was_running = self.state.running
        self.state.mark_stopped(STOPPED_REASON)
        self.trailing = TrailingState.fresh()
        self.publisher.publish(self.state)

        if was_running:
            self.audit_log.record("info", "Auto-exit monitor stopped", {"session": self._session})
        logger.info("monitor_stopped", was_running=was_running, timer_was_active=was_active)
        return ActionResponse(success=True)

    async def tick(self) -> ActionResponse:
        """
        Evaluate the trailing stop once.

        Returns:
            Always success; failures are reported through the snapshot
        """
        async with self._lock:
            if not self.state.running or self.state.exited:
                return ActionResponse(success=True)

            session = self._session
            try:
                await self._evaluate(session)
            except Exception as e:
                self._handle_tick_error(session, e)

        return ActionResponse(success=True)

    async def handle_action(self, action: str) -> ActionResponse:
        """
        Dispatch a start, stop or tick command.

        Args:
            action: Command name

        Returns:
            Result of the command, or a failure for unknown commands
        """
        handlers = {"start": self.start, "stop": self.stop, "tick": self.tick}
        handler = handlers.get(action)
        if handler is None:
            logger.warning("monitor_invalid_action", action=action)
            return ActionResponse(success=False, error="Invalid action")
        return await handler()

    # =========================================================================
    # Snapshot
    # =========================================================================

    def get_snapshot(self) -> MonitorSnapshot:
        """Return the latest published snapshot."""
        return self.publisher.get()

    async def clear_snapshot(self, clear_persisted: bool = True) -> MonitorSnapshot:
        """
        Reset the published snapshot to its initial empty state.

        A running session keeps running; its next tick publishes again.

        Args:
            clear_persisted: Also delete the persisted trailing status

        Returns:
            The reset snapshot
        """
        if not self.state.running:
            self.state = MonitorState(max_logs=self.settings.monitor.log_buffer_size)
            self.trailing = TrailingState.fresh()

        self._persist_paused = True
        try:
            snapshot = self.publisher.reset()
        finally:
            self._persist_paused = False

        if clear_persisted and self.settings.monitor.persist_status:
            await self.firestore_client.clear_trailing_status()

        logger.info("monitor_snapshot_cleared", running=self.state.running)
        return snapshot

    async def shutdown(self) -> None:
        """Cancel the timer and wait for it to finish."""
        timer = self._timer
        self._cancel_timer()
        if timer is not None:
            await timer.wait_closed()
        logger.info("monitor_shutdown")

    # =========================================================================
    # Internals
    # =========================================================================

    async def _evaluate(self, session: int) -> None:
        """Run one evaluation for the given session."""
        positions = await self.positions_source.fetch()
        mtm = sum(p.unrealized for p in positions)

        trading = await self.settings_source.fetch()
        self._frequency_ms = trading.scheduler_frequency_ms
        capital = trading.total_capital
        mtm_pct = mtm / capital * 100 if capital else 0.0

        trailing_settings = trading.to_trailing_settings()
        previous = self.trailing.previous_stop_loss_pct
        if previous is None:
            previous = -trailing_settings.initial_stop_loss_pct

        result = calculate_trailing_stop_loss(
            trailing_settings,
            mtm_pct,
            self.trailing.last_trailing_level_pct,
            previous,
        )

        if session != self._session:
            logger.info("monitor_stale_tick_dropped", session=session)
            return

        self.trailing.apply(result)
        trailing_sl = capital * result.stop_loss_pct / 100

        if not self.state.record_tick(mtm, mtm_pct, trailing_sl, result.stop_loss_pct):
            return

        self.state.add_log(
            f"MTM {mtm:.2f} ({mtm_pct:.2f}%) | TSL {trailing_sl:.2f} ({result.stop_loss_pct:.2f}%)"
        )
        self.publisher.publish(self.state)
        logger.debug(
            "tick_evaluated",
            mtm=mtm,
            mtm_pct=mtm_pct,
            stop_loss_pct=result.stop_loss_pct,
            trailing_level_pct=result.last_trailing_level_pct,
            should_exit=result.should_exit,
        )

        if result.should_exit and self.state.running and not self.state.exited:
            await self._exit(trailing_sl, mtm)

    async def _exit(self, trailing_sl: float, mtm: float) -> None:
        """Terminal transition: cut the session and liquidate once."""
        currency = self.settings.monitor.currency_symbol
        reason = f"MTM hit trailing stop loss ({currency}{trailing_sl:.2f}). Trade auto-cut."

        self.state.mark_exited(reason)
        self._cancel_timer()
        self.state.add_log(reason)
        self.publisher.publish(self.state)
        self.audit_log.record("warn", reason, {"mtm": mtm, "trailing_sl": trailing_sl})
        logger.warning("monitor_stop_loss_hit", mtm=mtm, trailing_sl=trailing_sl)

        try:
            summary: Any = await self.liquidation.exit_all()
        except Exception as e:
            logger.error("monitor_liquidation_failed", error=str(e))
            summary = {"success": False, "error": str(e)}

        self.state.summary = summary
        self.state.add_log("Exit orders placed.")
        self.publisher.publish(self.state)
        self.trailing = TrailingState.fresh()
        self.audit_log.record("info", "Exit all completed", {"summary": summary})

    def _handle_tick_error(self, session: int, error: Exception) -> None:
        """Halt the session after a failed tick."""
        logger.error("monitor_tick_failed", error=str(error), session=session)
        self._cancel_timer()

        if session != self._session or not self.state.running:
            return

        self.state.mark_failed(MONITOR_ERROR_REASON)
        self.state.add_log(f"Error: {error}")
        self.publisher.publish(self.state)
        self.audit_log.record("error", MONITOR_ERROR_REASON, {"error": str(error)})

    def _cancel_timer(self) -> bool:
        """Cancel the internal timer, returning whether it was active."""
        if self._timer is None:
            return False
        was_active = self._timer.cancel()
        self._timer = None
        return was_active

    def _persist_snapshot(self, snapshot: MonitorSnapshot) -> None:
        """Snapshot listener writing the latest status to Firestore."""
        if self._persist_paused:
            return
        status = snapshot.model_dump(mode="json", by_alias=True)
        fire_and_forget(
            self.firestore_client.save_trailing_status(status),
            label="trailing_status_persist",
        )


# Factory function
def get_monitor_service() -> MonitorService:
    """Create and return a MonitorService instance."""
    return MonitorService()
