"""
Shared pytest fixtures and test configuration for AutoExit.
"""

import json
import os
from pathlib import Path
from typing import Any, Generator
from unittest.mock import AsyncMock, MagicMock

import pytest
from faker import Faker

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["GCP_PROJECT_ID"] = "test-project"
os.environ["BROKER__APP_KEY"] = "test-app-key"
os.environ["BROKER__ACCESS_TOKEN"] = "test-access-token"
os.environ["BROKER__CLIENT_CODE"] = "50012345"
os.environ["BROKER__DISPLAY_MOCK_DATA"] = "false"
os.environ["MONITOR__PERSIST_STATUS"] = "false"
os.environ["MONITOR__USE_INTERNAL_SCHEDULER"] = "true"

from shared.config import Settings, reset_settings
from shared.models import BrokerPosition, TradingSettings

fake = Faker()

FIXTURES_DIR = Path(__file__).parent / "fixtures"


# ============================================================================
# Fixture Loading Helpers
# ============================================================================


def load_fixture(filename: str) -> dict[str, Any]:
    """Load a JSON fixture file."""
    filepath = FIXTURES_DIR / filename
    with open(filepath) as f:
        return json.load(f)


def _make_position(unrealized: float, **kwargs: Any) -> BrokerPosition:
    """Build a position with the given unrealized P&L."""
    strike = kwargs.pop("strike", str(fake.random_int(min=200, max=600) * 50))
    return BrokerPosition(
        symbol=kwargs.pop("symbol", "NIFTY"),
        expiry=kwargs.pop("expiry", "25 NOV 2025"),
        option_type=kwargs.pop("option_type", "Sell - CE"),
        strike=strike,
        net_qty=kwargs.pop("net_qty", -75),
        unrealized=unrealized,
        **kwargs,
    )


@pytest.fixture
def position_factory():
    """Factory for positions with a given unrealized P&L."""
    return _make_position


# ============================================================================
# Broker Data Fixtures
# ============================================================================


@pytest.fixture
def net_position_rows() -> list[dict[str, Any]]:
    """Raw NetPositionNetWise rows from fixtures."""
    return load_fixture("net_positions.json")["body"]["NetPositionDetail"]


@pytest.fixture
def net_position_response() -> dict[str, Any]:
    """Full NetPositionNetWise response body."""
    return load_fixture("net_positions.json")


@pytest.fixture
def order_response() -> dict[str, Any]:
    """PlaceOrderRequest response."""
    return {
        "head": {"responseCode": "5PPlaceOrdReqV1", "status": "0", "statusDescription": "Success"},
        "body": {
            "BrokerOrderID": fake.random_int(min=100000, max=999999),
            "Message": "Success",
            "Status": 0,
        },
    }


# ============================================================================
# Settings Fixtures
# ============================================================================


@pytest.fixture
def trading_settings() -> TradingSettings:
    """Trading settings with 100000 capital and default trailing values."""
    return TradingSettings(total_capital=100000, scheduler_frequency_ms=2000)


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Settings for tests with persistence off and a temp mock file."""
    return Settings(
        environment="test",
        broker={
            "app_key": "test-app-key",
            "access_token": "test-access-token",
            "client_code": "50012345",
            "mock_positions_path": str(tmp_path / "mock_positions.json"),
        },
        monitor={"persist_status": False, "use_internal_scheduler": True},
    )


# ============================================================================
# Mock Client Fixtures
# ============================================================================


@pytest.fixture
def mock_firestore_client() -> MagicMock:
    """Create a mocked Firestore client."""
    client = MagicMock()
    client.get_trading_settings = AsyncMock(return_value=TradingSettings(total_capital=100000))
    client.get_trading_settings_document = AsyncMock(return_value={})
    client.update_trading_settings = AsyncMock(return_value={})
    client.add_log = AsyncMock()
    client.get_logs = AsyncMock(return_value=[])
    client.clear_logs = AsyncMock(return_value=0)
    client.save_trailing_status = AsyncMock()
    client.get_trailing_status = AsyncMock(return_value=None)
    client.clear_trailing_status = AsyncMock(return_value=1)
    return client


@pytest.fixture
def mock_httpx_client() -> MagicMock:
    """Create a mocked httpx async client."""
    client = MagicMock()
    client.get = AsyncMock()
    client.post = AsyncMock()
    client.aclose = AsyncMock()
    client.__aenter__ = AsyncMock(return_value=client)
    client.__aexit__ = AsyncMock(return_value=None)
    return client


# ============================================================================
# FastAPI Test Client Fixtures
# ============================================================================


@pytest.fixture
def anyio_backend() -> str:
    """Configure anyio backend for async tests."""
    return "asyncio"


# ============================================================================
# Cleanup Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def reset_environment() -> Generator[None, None, None]:
    """Reset environment variables and cached settings after each test."""
    original_env = os.environ.copy()
    yield
    os.environ.clear()
    os.environ.update(original_env)
    reset_settings()
