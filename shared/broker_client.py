"""
5paisa API client for AutoExit.

Provides async interface to the 5paisa Open API for:
- Fetching net-wise positions
- Placing market exit orders
"""

import re
from typing import Any

import httpx
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from shared.config import Settings, get_settings
from shared.models import BrokerPosition

logger = structlog.get_logger(__name__)

# e.g. "NIFTY 25 NOV 2025 CE 26450.00"
SCRIP_NAME_PATTERN = re.compile(
    r"([A-Z]+)\s+(\d{2})\s+([A-Z]{3})\s+(\d{4})\s+(CE|PE)\s+(\d+(?:\.\d+)?)",
    re.IGNORECASE,
)


class BrokerAPIError(Exception):
    """Custom exception for brokerage API errors."""

    def __init__(self, message: str, status_code: int | None = None, response: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.response = response


class FivePaisaClient:
    """
    Async client for the 5paisa vendor API.

    Authentication is a bearer access token obtained out of band; the
    client only signs requests with it.
    """

    POSITIONS_PATH = "/V3/NetPositionNetWise"
    PLACE_ORDER_PATH = "/V1/PlaceOrderRequest"

    def __init__(self, settings: Settings | None = None):
        """
        Initialize 5paisa client.

        Args:
            settings: Settings instance. If None, loads from environment.
        """
        self.settings = settings or get_settings()
        broker = self.settings.broker
        self.base_url = broker.base_url.rstrip("/")
        self.app_key = broker.app_key
        self.access_token = broker.access_token
        self.client_code = broker.client_code
        self.timeout = broker.request_timeout
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "FivePaisaClient":
        """Async context manager entry."""
        self._client = httpx.AsyncClient(
            timeout=self.timeout,
            headers=self._get_base_headers(),
        )
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _get_base_headers(self) -> dict[str, str]:
        """Get base headers for requests."""
        return {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def _auth_headers(self) -> dict[str, str]:
        """Bearer header for authenticated calls."""
        if not self.access_token:
            raise BrokerAPIError("Broker access token is not configured", status_code=401)
        return {"Authorization": f"Bearer {self.access_token}"}

    @property
    def client(self) -> httpx.AsyncClient:
        """Get HTTP client, creating if needed."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers=self._get_base_headers(),
            )
        return self._client

    async def _send(self, path: str, body: dict[str, Any]) -> httpx.Response:
        """POST a ``{head, body}`` envelope to the vendor API once."""
        payload = {"head": {"key": self.app_key}, "body": body}
        logger.debug("broker_request", path=path)
        return await self.client.post(
            f"{self.base_url}{path}",
            json=payload,
            headers=self._auth_headers(),
        )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _post(self, path: str, body: dict[str, Any]) -> httpx.Response:
        """Retried POST. Only for reads; a timed out order may have been accepted."""
        return await self._send(path, body)

    async def get_net_positions(self) -> list[dict[str, Any]]:
        """
        Get raw net-wise position rows for the configured client.

        Returns:
            List of raw position rows as returned by the broker

        Raises:
            BrokerAPIError: If the request fails or the payload has no rows
        """
        if not self.client_code:
            raise BrokerAPIError("Broker client code is not configured", status_code=401)

        try:
            response = await self._post(self.POSITIONS_PATH, {"ClientCode": self.client_code})
        except httpx.HTTPError as e:
            logger.error("get_positions_request_error", error=str(e))
            raise BrokerAPIError(f"Request failed: {str(e)}")

        if response.status_code >= 400:
            raise BrokerAPIError(
                f"positions_fetch_failed: {response.status_code}",
                status_code=response.status_code,
                response=response.text,
            )

        data = response.json() if response.content else {}
        body = data.get("body") if isinstance(data, dict) else None
        rows = None
        if isinstance(body, dict):
            rows = body.get("NetPositionDetail") or body.get("NetPositions") or body.get("Positions")
        elif isinstance(body, list):
            rows = body

        if rows is None:
            return []
        if not isinstance(rows, list):
            raise BrokerAPIError("no_positions_found", response=data)
        return rows

    async def get_positions(self) -> list[BrokerPosition]:
        """
        Get open option positions with unrealized P&L.

        Returns:
            List of BrokerPosition objects
        """
        rows = await self.get_net_positions()
        positions = []
        for row in rows:
            if not is_option_row(row):
                continue
            try:
                positions.append(parse_position(row))
            except Exception as e:
                logger.warning("parse_position_error", error=str(e))
                continue
        return positions

    async def place_order(
        self,
        exchange: str,
        scrip_code: int,
        order_type: str,
        quantity: int,
        is_intraday: bool,
        remote_order_id: str,
        price: float = 0,
    ) -> dict[str, Any]:
        """
        Place an order. A price of 0 places a market order.

        Args:
            exchange: Exchange code (N, B, M)
            scrip_code: Numeric scrip code
            order_type: "Buy" or "Sell"
            quantity: Number of units
            is_intraday: Must match the position's product type
            remote_order_id: Caller-side order reference
            price: Limit price, 0 for market

        Returns:
            Parsed broker response. Non-JSON responses are wrapped as
            ``{"error": "NON_JSON_RESPONSE", "raw": text}``.
        """
        body = {
            "Exchange": exchange,
            "ExchangeType": "D",
            "ScripCode": int(scrip_code),
            "OrderType": order_type,
            "Qty": quantity,
            "Price": price,
            "IsIntraday": is_intraday,
            "iOrderValidity": 0,
            "AHPlaced": "N",
            "RemoteOrderID": remote_order_id,
        }

        text = ""
        try:
            # sent once; a timed out order may already be live
            response = await self._send(self.PLACE_ORDER_PATH, body)
            text = response.text
            parsed = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("place_order_error", scrip_code=scrip_code, error=str(e))
            return {"error": "NON_JSON_RESPONSE", "raw": text}

        logger.info(
            "order_placed",
            scrip_code=scrip_code,
            order_type=order_type,
            quantity=quantity,
            remote_order_id=remote_order_id,
        )
        return parsed if isinstance(parsed, dict) else {"raw": parsed}


def is_option_row(row: dict[str, Any]) -> bool:
    """Check if a raw row is a derivative CE/PE position."""
    exch_type = str(row.get("ExchType") or row.get("ExchangeType") or "").upper()
    symbol = str(row.get("Symbol") or row.get("ScripName") or row.get("ScripData") or "")
    has_option = "CE" in symbol or "PE" in symbol or bool(row.get("OptionType")) or bool(row.get("CEPE"))
    return exch_type == "D" and has_option


def parse_position(row: dict[str, Any]) -> BrokerPosition:
    """Map a raw broker row to a BrokerPosition."""
    net_qty = row.get("NetQty", row.get("NetQuantity"))
    if net_qty is None:
        net_qty = float(row.get("BuyQty") or 0) - float(row.get("SellQty") or 0)
    net_qty = float(net_qty or 0)
    avg_price = float(row.get("AvgRate") or row.get("AveragePrice") or row.get("BookedAvgPrice") or 0)
    ltp = float(row.get("LTP") or row.get("LastTradedPrice") or row.get("LastPrice") or 0)

    symbol_raw = str(row.get("Symbol") or row.get("ScripName") or row.get("ScripData") or "")
    option_type = str(row.get("OptionType") or row.get("CEPE") or "")
    expiry = str(row.get("ExpiryDate") or row.get("Expiry") or "")
    strike = str(row.get("StrikePrice") or row.get("Strike") or "")
    symbol = symbol_raw

    match = SCRIP_NAME_PATTERN.search(symbol_raw)
    if match:
        symbol = match.group(1)
        option_type = option_type or match.group(5).upper()
        expiry = expiry or f"{match.group(2)} {match.group(3)} {match.group(4)}"
        strike_raw = match.group(6)
        if strike_raw.endswith(".00"):
            strike_raw = strike_raw[:-3]
        strike = strike or strike_raw

    side = "Sell" if net_qty < 0 else "Buy"

    return BrokerPosition(
        symbol=symbol,
        expiry=expiry,
        option_type=f"{side} - {option_type}",
        strike=strike,
        net_qty=net_qty,
        avg_price=avg_price,
        ltp=ltp,
        unrealized=net_qty * (ltp - avg_price),
        raw=row,
    )


def get_broker_client() -> FivePaisaClient:
    """Create and return a 5paisa client instance."""
    return FivePaisaClient()
