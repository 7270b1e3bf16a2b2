"""
Trader service implementation.

Reads open option positions and exits them, either against the 5paisa
API or against a local mock positions file.
"""

import json
import time
from pathlib import Path
from typing import Any

import structlog

from shared.broker_client import BrokerAPIError, FivePaisaClient
from shared.config import Settings, get_settings
from shared.models import BrokerPosition, ExitOrderResult, ExitSummary

logger = structlog.get_logger(__name__)


def is_open_option_row(row: dict[str, Any]) -> bool:
    """Check if a raw row is an option position that still has quantity."""
    scrip_name = row.get("ScripName")
    scrip_code = row.get("ScripCode")
    try:
        net_qty = float(row.get("NetQty") or 0)
    except (TypeError, ValueError):
        return False
    return (
        row.get("ExchType") == "D"
        and isinstance(scrip_code, int)
        and not isinstance(scrip_code, bool)
        and isinstance(scrip_name, str)
        and (" CE " in scrip_name or " PE " in scrip_name)
        and net_qty != 0
    )


class TraderService:
    """
    Service for reading and closing option positions.

    With ``display_mock_data`` enabled, positions come from the mock file
    and exits are simulated without calling the broker.
    """

    def __init__(
        self,
        broker_client: FivePaisaClient | None = None,
        settings: Settings | None = None,
    ):
        """
        Initialize trader service.

        Args:
            broker_client: Optional 5paisa client
            settings: Optional Settings instance
        """
        self.settings = settings or get_settings()
        self._broker_client = broker_client

    @property
    def broker_client(self) -> FivePaisaClient:
        """Get or create broker client."""
        if self._broker_client is None:
            self._broker_client = FivePaisaClient(self.settings)
        return self._broker_client

    @property
    def mock_mode(self) -> bool:
        """Whether positions are served from the mock file."""
        return self.settings.broker.display_mock_data

    @property
    def mock_positions_path(self) -> Path:
        """Location of the mock positions file."""
        return Path(self.settings.broker.mock_positions_path)

    # =========================================================================
    # Mock Positions
    # =========================================================================

    def load_mock_positions(self) -> list[dict[str, Any]]:
        """
        Read the mock positions file.

        Returns:
            Raw mock position entries, empty if the file does not exist
        """
        path = self.mock_positions_path
        if not path.exists():
            return []
        with open(path) as f:
            data = json.load(f)
        if isinstance(data, dict):
            data = data.get("positions", [])
        return data if isinstance(data, list) else []

    def save_mock_positions(self, positions: list[dict[str, Any]]) -> None:
        """
        Replace the mock positions file.

        Args:
            positions: Position entries to store
        """
        path = self.mock_positions_path
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump({"success": True, "positions": positions}, f, indent=2)
        logger.info("mock_positions_saved", count=len(positions))

    # =========================================================================
    # Positions
    # =========================================================================

    async def get_positions(self) -> list[BrokerPosition]:
        """
        Get open option positions.

        Returns:
            List of positions with unrealized P&L
        """
        if self.mock_mode:
            positions = []
            for item in self.load_mock_positions():
                try:
                    positions.append(BrokerPosition.model_validate(item))
                except Exception as e:
                    logger.warning("parse_mock_position_error", error=str(e))
            return positions

        async with self.broker_client as client:
            return await client.get_positions()

    # =========================================================================
    # Exit
    # =========================================================================

    async def exit_all_positions(self) -> ExitSummary:
        """
        Close every open option position at market.

        Each position is reversed for its exact net quantity. Failures on
        one order do not stop the others; each broker reply is kept in the
        summary.

        Returns:
            ExitSummary describing every order sent
        """
        if self.mock_mode:
            return self._exit_mock_positions()

        try:
            async with self.broker_client as client:
                rows = await client.get_net_positions()
                open_rows = [row for row in rows if is_open_option_row(row)]

                if not open_rows:
                    logger.info("exit_all_nothing_open")
                    return ExitSummary(success=True, message="No open option positions")

                results = []
                for i, row in enumerate(open_rows):
                    results.append(await self._exit_row(client, row, i))
        except BrokerAPIError as e:
            logger.error("exit_all_failed", error=str(e))
            return ExitSummary(success=False, error=str(e))

        logger.info("exit_all_complete", exited_count=len(results))
        return ExitSummary(success=True, exited_count=len(results), results=results)

    async def _exit_row(self, client: FivePaisaClient, row: dict[str, Any], index: int) -> ExitOrderResult:
        """Send the reversing market order for one raw position row."""
        net_qty = float(row["NetQty"])
        quantity = int(abs(net_qty))
        order_type = "Buy" if net_qty < 0 else "Sell"

        response = await client.place_order(
            exchange=row.get("Exch") or "N",
            scrip_code=row["ScripCode"],
            order_type=order_type,
            quantity=quantity,
            # OrderFor "D" is carry forward
            is_intraday=row.get("OrderFor") != "D",
            remote_order_id=f"EXIT_OPT_{int(time.time() * 1000)}_{index}",
        )

        body = response.get("body") if isinstance(response.get("body"), dict) else {}
        return ExitOrderResult(
            scrip_code=row["ScripCode"],
            scrip_name=row["ScripName"],
            exited_qty=quantity,
            response=response,
            message=str(body.get("Message") or ""),
        )

    def _exit_mock_positions(self) -> ExitSummary:
        """Simulated exit for mock mode."""
        results = []
        for item in self.load_mock_positions():
            position = BrokerPosition.model_validate(item)
            if position.net_qty == 0:
                continue
            results.append(
                ExitOrderResult(
                    scrip_code=position.raw.get("ScripCode"),
                    scrip_name=position.raw.get("ScripName") or position.symbol,
                    exited_qty=abs(position.net_qty),
                    response={"mock": True},
                    message="Mock exit",
                )
            )

        if not results:
            return ExitSummary(success=True, message="No open option positions")

        logger.info("mock_exit_all_complete", exited_count=len(results))
        return ExitSummary(success=True, exited_count=len(results), results=results)


# Factory function
def get_trader_service() -> TraderService:
    """Create and return a TraderService instance."""
    return TraderService()
