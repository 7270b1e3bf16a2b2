"""
Unit tests for monitor session state and the snapshot publisher.
"""

import pydantic
import pytest

from services.monitor.snapshot import INITIAL_SNAPSHOT, SnapshotPublisher
from services.monitor.state import MonitorState, TrailingState
from shared.models import TrailingResult


class TestMonitorState:
    """Tests for MonitorState transitions."""

    def test_log_buffer_is_bounded(self):
        """Only the newest lines are kept."""
        state = MonitorState(max_logs=3)

        for i in range(5):
            state.add_log(f"line {i}")

        assert len(state.logs) == 3
        assert state.logs[0].endswith("line 2")
        assert state.logs[-1].endswith("line 4")

    def test_log_lines_are_timestamped(self):
        """Lines carry an HH:MM:SS prefix."""
        state = MonitorState()

        state.add_log("hello")

        assert state.logs[0].startswith("[")
        assert state.logs[0][10:] == " hello"

    def test_begin_clears_previous_outcome(self):
        """Starting a session clears exit data."""
        state = MonitorState()
        state.mark_exited("hit")
        state.summary = {"success": True}

        state.begin()

        assert state.running is True
        assert state.exited is False
        assert state.cut_reason is None
        assert state.summary is None

    def test_record_tick_dropped_after_exit(self):
        """Figures are not overwritten once exited."""
        state = MonitorState()
        state.begin()
        state.record_tick(-1000, -1, -1000, -1)
        state.mark_exited("hit")

        recorded = state.record_tick(500, 0.5, -1000, -1)

        assert recorded is False
        assert state.mtm == -1000

    def test_mark_failed_keeps_exit(self):
        """A failure after an exit leaves exited set."""
        state = MonitorState()
        state.mark_exited("hit")

        state.mark_failed("boom")

        assert state.exited is True
        assert state.running is False
        assert state.cut_reason == "boom"


class TestTrailingState:
    """Tests for TrailingState."""

    def test_fresh_without_initial(self):
        """Fresh state leaves the floor unset."""
        state = TrailingState.fresh()

        assert state.last_trailing_level_pct is None
        assert state.previous_stop_loss_pct is None

    def test_fresh_with_initial(self):
        """Fresh state with a known initial stop starts below zero."""
        assert TrailingState.fresh(1.5).previous_stop_loss_pct == -1.5

    def test_apply(self):
        """Applying a result carries it forward."""
        state = TrailingState.fresh()

        state.apply(TrailingResult(stop_loss_pct=2.5, last_trailing_level_pct=3.0))

        assert state.previous_stop_loss_pct == 2.5
        assert state.last_trailing_level_pct == 3.0


class TestSnapshotPublisher:
    """Tests for SnapshotPublisher."""

    def test_initial_snapshot(self):
        """A new publisher serves the empty snapshot."""
        publisher = SnapshotPublisher()

        assert publisher.get() is INITIAL_SNAPSHOT
        assert publisher.get().running is False

    def test_publish_copies_state(self):
        """Later state mutations do not leak into a published snapshot."""
        publisher = SnapshotPublisher()
        state = MonitorState()
        state.begin()
        state.summary = {"results": [{"scripCode": 1}]}
        state.add_log("first")

        snapshot = publisher.publish(state)
        state.summary["results"].append({"scripCode": 2})
        state.add_log("second")
        state.running = False

        assert snapshot.running is True
        assert len(snapshot.summary["results"]) == 1
        assert len(snapshot.logs) == 1
        assert snapshot.updated_at is not None

    def test_snapshot_is_frozen(self):
        """Readers cannot mutate a snapshot."""
        publisher = SnapshotPublisher()
        snapshot = publisher.publish(MonitorState(running=True))

        with pytest.raises(pydantic.ValidationError):
            snapshot.running = False

    def test_snapshot_log_limit(self):
        """Snapshots carry at most log_limit lines."""
        publisher = SnapshotPublisher(log_limit=2)
        state = MonitorState()
        for i in range(4):
            state.add_log(str(i))

        snapshot = publisher.publish(state)

        assert len(snapshot.logs) == 2

    def test_reset(self):
        """Reset restores the empty snapshot with a fresh timestamp."""
        publisher = SnapshotPublisher()
        publisher.publish(MonitorState(running=True, mtm=10.0))

        snapshot = publisher.reset()

        assert snapshot.running is False
        assert snapshot.mtm is None
        assert snapshot.updated_at is not None

    def test_serializes_with_camel_case_aliases(self):
        """Dumped snapshots use the dashboard field names."""
        publisher = SnapshotPublisher()
        state = MonitorState(running=True, trailing_sl=-1000.0, trailing_sl_pct=-1.0, mtm_pct=0.0)

        data = publisher.publish(state).model_dump(mode="json", by_alias=True)

        assert data["trailingSL"] == -1000.0
        assert data["trailingSLPct"] == -1.0
        assert data["mtmPct"] == 0.0
        assert "cutReason" in data
        assert "updatedAt" in data

    def test_listeners_notified(self):
        """Subscribers see every published snapshot."""
        publisher = SnapshotPublisher()
        seen = []
        unsubscribe = publisher.subscribe(seen.append)

        publisher.publish(MonitorState(running=True))
        publisher.reset()
        unsubscribe()
        publisher.publish(MonitorState())

        assert len(seen) == 2
        assert seen[0].running is True

    def test_failing_listener_does_not_block_publish(self):
        """A broken listener is logged and skipped."""
        publisher = SnapshotPublisher()

        def broken(snapshot):
            raise RuntimeError("boom")

        publisher.subscribe(broken)
        snapshot = publisher.publish(MonitorState(running=True))

        assert publisher.get() is snapshot
