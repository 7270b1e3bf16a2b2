"""
Firestore client for AutoExit.

Provides async interface to Google Cloud Firestore for:
- Trading settings
- Audit log entries
- Last published trailing stop-loss status
"""

from datetime import datetime
from typing import Any

import structlog
from google.cloud import firestore
from google.cloud.firestore_v1 import AsyncClient

from shared.config import Settings, get_settings
from shared.models import AuditEntry, TradingSettings

logger = structlog.get_logger(__name__)


class FirestoreError(Exception):
    """Custom exception for Firestore errors."""

    pass


class FirestoreClient:
    """
    Async client for Google Cloud Firestore.

    Persistence is best effort: monitoring keeps running on in-memory
    state when writes fail.
    """

    # Collection names
    SETTINGS_COLLECTION = "settings"
    LOGS_COLLECTION = "logs"
    TRAILING_STATUS_COLLECTION = "trailing_sl_status"

    SETTINGS_DOCUMENT = "trading"
    TRAILING_STATUS_DOCUMENT = "current"

    def __init__(self, settings: Settings | None = None):
        """
        Initialize Firestore client.

        Args:
            settings: Settings instance. If None, loads from environment.
        """
        self.settings = settings or get_settings()
        self._db: AsyncClient | None = None

    @property
    def db(self) -> AsyncClient:
        """Get Firestore client, creating if needed."""
        if self._db is None:
            self._db = firestore.AsyncClient(project=self.settings.gcp_project_id)
        return self._db

    async def close(self) -> None:
        """Close the Firestore client."""
        if self._db:
            self._db.close()
            self._db = None

    # =========================================================================
    # Settings Operations
    # =========================================================================

    async def get_trading_settings_document(self) -> dict[str, Any]:
        """
        Get the raw trading settings document.

        Returns:
            Stored fields, or an empty dict if nothing was saved yet
        """
        try:
            doc_ref = self.db.collection(self.SETTINGS_COLLECTION).document(self.SETTINGS_DOCUMENT)
            doc = await doc_ref.get()

            if not doc.exists:
                return {}

            return doc.to_dict() or {}
        except Exception as e:
            logger.error("get_trading_settings_error", error=str(e))
            raise FirestoreError(f"Failed to get trading settings: {str(e)}")

    async def get_trading_settings(self) -> TradingSettings:
        """
        Get normalized trading settings.

        Returns:
            TradingSettings with defaults filled in for missing fields
        """
        data = await self.get_trading_settings_document()
        return TradingSettings.model_validate(data)

    async def update_trading_settings(self, data: dict[str, Any]) -> dict[str, Any]:
        """
        Merge fields into the trading settings document.

        Args:
            data: Fields to set, as sent by the settings form

        Returns:
            The stored document after the merge
        """
        try:
            doc_ref = self.db.collection(self.SETTINGS_COLLECTION).document(self.SETTINGS_DOCUMENT)
            await doc_ref.set(data, merge=True)
            logger.info("trading_settings_updated", fields=sorted(data.keys()))
        except Exception as e:
            logger.error("update_trading_settings_error", error=str(e))
            raise FirestoreError(f"Failed to update trading settings: {str(e)}")

        return await self.get_trading_settings_document()

    # =========================================================================
    # Audit Log Operations
    # =========================================================================

    async def add_log(self, entry: AuditEntry) -> None:
        """
        Persist an audit log entry.

        Args:
            entry: Entry to store
        """
        try:
            await self.db.collection(self.LOGS_COLLECTION).add(entry.model_dump(mode="json"))
        except Exception as e:
            raise FirestoreError(f"Failed to add log: {str(e)}")

    async def get_logs(self, limit: int = 200) -> list[AuditEntry]:
        """
        Get audit log entries.

        Args:
            limit: Maximum number of entries

        Returns:
            List of AuditEntry objects (newest first)
        """
        try:
            query = (
                self.db.collection(self.LOGS_COLLECTION)
                .order_by("timestamp", direction=firestore.Query.DESCENDING)
                .limit(limit)
            )

            entries = []
            async for doc in query.stream():
                try:
                    entries.append(AuditEntry(**doc.to_dict()))
                except Exception as e:
                    logger.warning("parse_log_error", doc_id=doc.id, error=str(e))
                    continue

            return entries
        except Exception as e:
            logger.error("get_logs_error", error=str(e))
            raise FirestoreError(f"Failed to get logs: {str(e)}")

    async def clear_logs(self) -> int:
        """
        Delete all audit log entries.

        Returns:
            Number of deleted entries
        """
        return await self._clear_collection(self.LOGS_COLLECTION)

    # =========================================================================
    # Trailing Status Operations
    # =========================================================================

    async def save_trailing_status(self, status: dict[str, Any]) -> None:
        """
        Store the last published monitor snapshot.

        Args:
            status: JSON-compatible snapshot
        """
        try:
            doc_ref = self.db.collection(self.TRAILING_STATUS_COLLECTION).document(
                self.TRAILING_STATUS_DOCUMENT
            )
            await doc_ref.set({**status, "savedAt": datetime.utcnow().isoformat()})
        except Exception as e:
            raise FirestoreError(f"Failed to save trailing status: {str(e)}")

    async def get_trailing_status(self) -> dict[str, Any] | None:
        """
        Get the last stored monitor snapshot.

        Returns:
            Stored snapshot or None if nothing was saved
        """
        try:
            doc_ref = self.db.collection(self.TRAILING_STATUS_COLLECTION).document(
                self.TRAILING_STATUS_DOCUMENT
            )
            doc = await doc_ref.get()

            if not doc.exists:
                return None

            return doc.to_dict()
        except Exception as e:
            logger.error("get_trailing_status_error", error=str(e))
            raise FirestoreError(f"Failed to get trailing status: {str(e)}")

    async def clear_trailing_status(self) -> int:
        """
        Delete all stored trailing status entries.

        Returns:
            Number of deleted documents
        """
        return await self._clear_collection(self.TRAILING_STATUS_COLLECTION)

    async def _clear_collection(self, name: str) -> int:
        """Delete every document in a collection."""
        deleted = 0
        try:
            async for doc in self.db.collection(name).stream():
                await doc.reference.delete()
                deleted += 1
        except Exception as e:
            logger.error("clear_collection_error", collection=name, error=str(e))
            raise FirestoreError(f"Failed to clear {name}: {str(e)}")

        logger.info("collection_cleared", collection=name, deleted=deleted)
        return deleted


# Convenience function for creating client
def get_firestore_client() -> FirestoreClient:
    """Create and return a Firestore client instance."""
    return FirestoreClient()
