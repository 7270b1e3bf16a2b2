"""
Snapshot publisher for the auto-exit monitor.

Readers (dashboard polling, persistence) only ever see complete,
immutable snapshots; writers replace the whole snapshot in one assignment.
"""

import copy
from collections.abc import Callable
from datetime import datetime

import structlog

from services.monitor.state import MonitorState
from shared.models import MonitorSnapshot

logger = structlog.get_logger(__name__)

SnapshotListener = Callable[[MonitorSnapshot], None]

INITIAL_SNAPSHOT = MonitorSnapshot()


class SnapshotPublisher:
    """Holds the latest monitor snapshot with last-write-wins semantics."""

    def __init__(self, log_limit: int = 100):
        """
        Initialize publisher.

        Args:
            log_limit: Number of session log lines carried in a snapshot
        """
        self.log_limit = log_limit
        self._snapshot = INITIAL_SNAPSHOT
        self._listeners: list[SnapshotListener] = []

    def get(self) -> MonitorSnapshot:
        """Return the current snapshot."""
        return self._snapshot

    def publish(self, state: MonitorState) -> MonitorSnapshot:
        """
        Replace the snapshot with a copy of the given state.

        Args:
            state: Current session state

        Returns:
            The newly published snapshot
        """
        snapshot = MonitorSnapshot(
            running=state.running,
            exited=state.exited,
            mtm=state.mtm,
            trailing_sl=state.trailing_sl,
            trailing_sl_pct=state.trailing_sl_pct,
            mtm_pct=state.mtm_pct,
            cut_reason=state.cut_reason,
            summary=copy.deepcopy(state.summary),
            logs=tuple(state.logs[-self.log_limit:]),
            updated_at=datetime.utcnow(),
        )
        self._swap(snapshot)
        return snapshot

    def reset(self) -> MonitorSnapshot:
        """Restore the initial empty snapshot."""
        snapshot = INITIAL_SNAPSHOT.model_copy(update={"updated_at": datetime.utcnow()})
        self._swap(snapshot)
        return snapshot

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """
        Register a listener called after every publish or reset.

        Returns:
            Callable that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _swap(self, snapshot: MonitorSnapshot) -> None:
        self._snapshot = snapshot
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.warning("snapshot_listener_error", error=str(e))
