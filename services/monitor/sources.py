"""
Collaborators consumed by the monitor loop.

The loop only depends on the protocols below; the adapters wire them to
the trader service and Firestore.
"""

from typing import Any, Protocol

from services.trader.service import TraderService, get_trader_service
from shared.firestore_client import FirestoreClient, get_firestore_client
from shared.models import BrokerPosition, TradingSettings


class PositionsSource(Protocol):
    """Supplies the currently open positions."""

    async def fetch(self) -> list[BrokerPosition]: ...


class SettingsSource(Protocol):
    """Supplies normalized trading settings."""

    async def fetch(self) -> TradingSettings: ...


class LiquidationAction(Protocol):
    """Closes every open position. Called at most once per exit."""

    async def exit_all(self) -> Any: ...


class TraderPositionsSource:
    """Open option positions from the trader service."""

    def __init__(self, trader_service: TraderService | None = None):
        self._trader_service = trader_service

    @property
    def trader_service(self) -> TraderService:
        if self._trader_service is None:
            self._trader_service = get_trader_service()
        return self._trader_service

    async def fetch(self) -> list[BrokerPosition]:
        return await self.trader_service.get_positions()


class FirestoreSettingsSource:
    """Trading settings document from Firestore."""

    def __init__(self, firestore_client: FirestoreClient | None = None):
        self._firestore_client = firestore_client

    @property
    def firestore_client(self) -> FirestoreClient:
        if self._firestore_client is None:
            self._firestore_client = get_firestore_client()
        return self._firestore_client

    async def fetch(self) -> TradingSettings:
        return await self.firestore_client.get_trading_settings()


class TraderLiquidation:
    """Exit-all through the trader service; returns a JSON-ready summary."""

    def __init__(self, trader_service: TraderService | None = None):
        self._trader_service = trader_service

    @property
    def trader_service(self) -> TraderService:
        if self._trader_service is None:
            self._trader_service = get_trader_service()
        return self._trader_service

    async def exit_all(self) -> dict[str, Any]:
        summary = await self.trader_service.exit_all_positions()
        return summary.model_dump(mode="json", by_alias=True, exclude_none=True)
