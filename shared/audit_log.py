"""
Audit log for AutoExit.

Records operator-facing events (monitor started, stop hit, exit placed)
in memory and persists them to Firestore in the background.
"""

import asyncio
from collections import deque
from collections.abc import Coroutine
from typing import Any

import structlog

from shared.firestore_client import FirestoreClient, get_firestore_client
from shared.models import AuditEntry

logger = structlog.get_logger(__name__)

_background_tasks: set[asyncio.Task] = set()


def fire_and_forget(coro: Coroutine[Any, Any, Any], label: str) -> asyncio.Task | None:
    """
    Run a coroutine in the background and drop its result.

    Failures are logged at debug level and never propagate. Outside a
    running event loop the coroutine is discarded.

    Args:
        coro: Coroutine to run
        label: Name used in log events

    Returns:
        The scheduled task, or None if no loop is running
    """
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        coro.close()
        return None

    task = loop.create_task(coro)
    _background_tasks.add(task)

    def _done(t: asyncio.Task) -> None:
        _background_tasks.discard(t)
        if t.cancelled():
            return
        exc = t.exception()
        if exc is not None:
            logger.debug("background_task_failed", task=label, error=str(exc))

    task.add_done_callback(_done)
    return task


def _jsonable(metadata: dict[str, Any] | None) -> dict[str, Any]:
    """Stringify values Firestore cannot store (exceptions, models)."""
    if not metadata:
        return {}
    safe: dict[str, Any] = {}
    for key, value in metadata.items():
        if value is None or isinstance(value, (str, int, float, bool, list, dict)):
            safe[key] = value
        else:
            safe[key] = str(value)
    return safe


class AuditLog:
    """
    Write-only audit trail.

    ``record`` never blocks and never raises; persistence happens in a
    background task.
    """

    def __init__(
        self,
        firestore_client: FirestoreClient | None = None,
        max_entries: int = 500,
        persist: bool = True,
    ):
        """
        Initialize audit log.

        Args:
            firestore_client: Optional Firestore client for persistence
            max_entries: Size of the in-memory buffer
            persist: Whether entries are written to Firestore
        """
        self._firestore_client = firestore_client
        self._entries: deque[AuditEntry] = deque(maxlen=max_entries)
        self.persist = persist

    @property
    def firestore_client(self) -> FirestoreClient:
        """Get or create Firestore client."""
        if self._firestore_client is None:
            self._firestore_client = get_firestore_client()
        return self._firestore_client

    def record(self, level: str, message: str, metadata: dict[str, Any] | None = None) -> AuditEntry:
        """
        Record an audit entry.

        Args:
            level: info, warn or error
            message: Human readable message
            metadata: Extra context

        Returns:
            The recorded entry
        """
        entry = AuditEntry(level=level, message=message, meta=_jsonable(metadata))
        self._entries.append(entry)

        log = {"warn": logger.warning, "warning": logger.warning, "error": logger.error}.get(
            level, logger.info
        )
        log("audit_event", audit_message=message, meta=entry.meta)

        if self.persist:
            try:
                fire_and_forget(self.firestore_client.add_log(entry), label="audit_log_persist")
            except Exception as e:
                logger.debug("audit_persist_skipped", error=str(e))

        return entry

    def entries(self) -> list[AuditEntry]:
        """Return buffered entries, newest first."""
        return list(reversed(self._entries))

    def clear(self) -> None:
        """Drop buffered entries."""
        self._entries.clear()
