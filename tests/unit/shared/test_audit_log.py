"""
Unit tests for shared/audit_log.py and shared/logging.py
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
import structlog

from shared.audit_log import AuditLog, fire_and_forget
from shared.config import LoggingConfig
from shared.logging import configure_logging


class TestFireAndForget:
    """Tests for background task scheduling."""

    @pytest.mark.asyncio
    async def test_runs_coroutine(self):
        """The coroutine runs in the background."""
        done = []

        async def work():
            done.append(1)

        task = fire_and_forget(work(), label="test")
        await task

        assert done == [1]

    @pytest.mark.asyncio
    async def test_failure_is_swallowed(self):
        """Exceptions in the background do not propagate."""

        async def broken():
            raise RuntimeError("boom")

        task = fire_and_forget(broken(), label="test")
        await asyncio.sleep(0.01)

        assert task.done()

    def test_without_running_loop(self):
        """Outside a loop the coroutine is discarded."""

        async def work():
            return 1

        assert fire_and_forget(work(), label="test") is None


class TestAuditLog:
    """Tests for AuditLog."""

    def test_record_buffers_entries(self):
        """Entries are kept newest first."""
        audit = AuditLog(persist=False)

        audit.record("info", "first")
        audit.record("warn", "second", {"mtm": -1000})

        entries = audit.entries()
        assert [e.message for e in entries] == ["second", "first"]
        assert entries[0].meta == {"mtm": -1000}

    def test_buffer_is_bounded(self):
        """Old entries are dropped."""
        audit = AuditLog(persist=False, max_entries=2)

        for i in range(3):
            audit.record("info", str(i))

        assert [e.message for e in audit.entries()] == ["2", "1"]

    def test_metadata_made_storable(self):
        """Values Firestore cannot store are stringified."""
        audit = AuditLog(persist=False)

        entry = audit.record("error", "failed", {"error": ValueError("bad"), "count": 2})

        assert entry.meta == {"error": "bad", "count": 2}

    def test_clear(self):
        """Clearing empties the buffer."""
        audit = AuditLog(persist=False)
        audit.record("info", "x")

        audit.clear()

        assert audit.entries() == []

    @pytest.mark.asyncio
    async def test_persists_in_background(self, mock_firestore_client):
        """Entries are written to Firestore."""
        audit = AuditLog(firestore_client=mock_firestore_client)

        entry = audit.record("info", "Auto-exit monitor started")
        await asyncio.sleep(0)

        mock_firestore_client.add_log.assert_awaited_once_with(entry)

    @pytest.mark.asyncio
    async def test_persist_failure_never_raises(self, mock_firestore_client):
        """A failing write does not reach the caller."""
        mock_firestore_client.add_log = AsyncMock(side_effect=Exception("unavailable"))
        audit = AuditLog(firestore_client=mock_firestore_client)

        audit.record("error", "boom")
        await asyncio.sleep(0.01)

        assert len(audit.entries()) == 1

    def test_client_creation_failure_never_raises(self):
        """Errors building the persistence call are swallowed."""
        client = MagicMock()
        client.add_log = MagicMock(side_effect=Exception("no credentials"))
        audit = AuditLog(firestore_client=client)

        entry = audit.record("info", "x")

        assert entry.message == "x"


class TestConfigureLogging:
    """Tests for structlog configuration."""

    def test_json_logging(self):
        """JSON output is configured."""
        configure_logging(LoggingConfig(level="DEBUG", format="json"), force=True)

        processors = structlog.get_config()["processors"]
        assert isinstance(processors[-1], structlog.processors.JSONRenderer)

    def test_console_logging(self):
        """Console output is configured."""
        configure_logging(LoggingConfig(format="console"), force=True)

        processors = structlog.get_config()["processors"]
        assert isinstance(processors[-1], structlog.dev.ConsoleRenderer)

    def test_second_call_is_noop(self):
        """Without force only the first configuration applies."""
        configure_logging(LoggingConfig(format="json"), force=True)
        configure_logging(LoggingConfig(format="console"))

        processors = structlog.get_config()["processors"]
        assert isinstance(processors[-1], structlog.processors.JSONRenderer)
