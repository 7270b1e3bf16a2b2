"""
Trader Service - FastAPI Application

Provides endpoints for reading open option positions and exiting them.
"""

from typing import Any

import structlog
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from services.trader.service import TraderService, get_trader_service
from shared.broker_client import BrokerAPIError
from shared.config import get_settings
from shared.logging import configure_logging
from shared.models import BrokerPosition, ExitSummary, HealthResponse

settings = get_settings()
configure_logging(settings.logging)

logger = structlog.get_logger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="AutoExit - Trader",
    description="Option positions and exit-all liquidation against 5paisa",
    version="0.1.0",
)

# CORS removed - requests come through the monitor and dashboard (server-to-server)

# Service instance
_trader_service: TraderService | None = None


def get_service() -> TraderService:
    """Get or create trader service instance."""
    global _trader_service
    if _trader_service is None:
        _trader_service = get_trader_service()
    return _trader_service


# =============================================================================
# Request/Response Models
# =============================================================================


class PositionsResponse(BaseModel):
    """Response model for open positions."""

    success: bool = True
    positions: list[BrokerPosition] = Field(default_factory=list)
    mock: bool = False


class MockPositionsRequest(BaseModel):
    """Request model for replacing mock positions."""

    positions: list[dict[str, Any]] = Field(..., description="Mock position entries")


# =============================================================================
# Health Endpoints
# =============================================================================


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(status="healthy", version="0.1.0")


# =============================================================================
# Position Endpoints
# =============================================================================


@app.get("/positions", tags=["Positions"])
async def get_positions() -> dict[str, Any]:
    """
    Get open option positions with unrealized P&L.
    """
    service = get_service()

    try:
        positions = await service.get_positions()
        response = PositionsResponse(positions=positions, mock=service.mock_mode)
        return response.model_dump(by_alias=True)
    except BrokerAPIError as e:
        logger.error("get_positions_error", error=str(e), status_code=e.status_code)
        raise HTTPException(status_code=e.status_code or 502, detail=str(e))
    except Exception as e:
        logger.error("get_positions_error", error=str(e))
        raise HTTPException(status_code=500, detail=str(e))


@app.post("/positions/auto-exit", tags=["Positions"])
async def exit_all_positions() -> dict[str, Any]:
    """
    Exit every open option position at market.
    """
    service = get_service()

    try:
        summary: ExitSummary = await service.exit_all_positions()
        return summary.model_dump(mode="json", by_alias=True, exclude_none=True)
    except Exception as e:
        logger.error("exit_all_error", error=str(e))
        raise HTTPException(status_code=500, detail=str(e))


# =============================================================================
# Mock Position Endpoints
# =============================================================================


@app.get("/mock/positions", tags=["Mock"])
async def get_mock_positions() -> dict[str, Any]:
    """Get the stored mock positions."""
    service = get_service()

    try:
        return {"success": True, "positions": service.load_mock_positions()}
    except Exception as e:
        logger.error("get_mock_positions_error", error=str(e))
        raise HTTPException(status_code=500, detail=str(e))


@app.post("/mock/positions", tags=["Mock"])
async def save_mock_positions(request: MockPositionsRequest) -> dict[str, Any]:
    """Replace the stored mock positions."""
    service = get_service()

    try:
        service.save_mock_positions(request.positions)
        return {"success": True, "count": len(request.positions)}
    except Exception as e:
        logger.error("save_mock_positions_error", error=str(e))
        raise HTTPException(status_code=500, detail=str(e))


# =============================================================================
# Main Entry Point
# =============================================================================


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host=settings.api.host,
        port=settings.api.port + 4,
        reload=settings.api.debug,
    )
