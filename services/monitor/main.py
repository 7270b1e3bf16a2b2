"""
Auto-Exit Monitor Service - FastAPI Application

Provides endpoints for starting, stopping and ticking the trailing
stop-loss monitor and for reading its status, settings and logs.
"""

import secrets
from contextlib import asynccontextmanager
from typing import Any

import structlog
from fastapi import FastAPI, Header, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware

from shared.config import get_settings
from shared.logging import configure_logging
from shared.models import ActionRequest, ActionResponse, HealthResponse, TradingSettings
from services.monitor.service import MonitorService, get_monitor_service

settings = get_settings()
configure_logging(settings.logging)

logger = structlog.get_logger(__name__)

# Service instance
_monitor_service: MonitorService | None = None


def get_service() -> MonitorService:
    """Get or create monitor service instance."""
    global _monitor_service
    if _monitor_service is None:
        _monitor_service = get_monitor_service()
    return _monitor_service


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Cancel the monitor timer on shutdown."""
    yield
    if _monitor_service is not None:
        await _monitor_service.shutdown()


# Initialize FastAPI app
app = FastAPI(
    title="AutoExit - Monitor",
    description="Trailing stop-loss monitor with automatic exit",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.api.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _scheduler_secret_valid(*candidates: str | None) -> bool:
    """Check a request header against the configured scheduler secret."""
    expected = get_settings().monitor.scheduler_secret
    if not expected:
        return True
    return any(c is not None and secrets.compare_digest(c, expected) for c in candidates)


# =============================================================================
# Health Endpoints
# =============================================================================


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(status="healthy", version="0.1.0")


# =============================================================================
# Monitor Endpoints
# =============================================================================


@app.post("/auto-exit-monitor", response_model=ActionResponse, response_model_exclude_none=True, tags=["Monitor"])
async def auto_exit_monitor(
    request: ActionRequest,
    x_scheduler_secret: str | None = Header(default=None),
    x_internal_secret: str | None = Header(default=None),
) -> ActionResponse:
    """
    Run a monitor command.

    Actions are ``start``, ``stop`` and ``tick``. External schedulers
    calling ``tick`` must send the scheduler secret when one is set.
    """
    if request.action == "tick" and not _scheduler_secret_valid(x_scheduler_secret, x_internal_secret):
        logger.warning("scheduler_secret_rejected")
        raise HTTPException(status_code=401, detail="Unauthorized")

    service = get_service()

    try:
        return await service.handle_action(request.action)
    except Exception as e:
        logger.error("monitor_action_error", action=request.action, error=str(e))
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/auto-exit-monitor", tags=["Monitor"])
async def get_monitor_snapshot() -> dict[str, Any]:
    """Get the latest monitor snapshot."""
    return get_service().get_snapshot().model_dump(mode="json", by_alias=True)


@app.get("/trailing-sl-status", tags=["Monitor"])
async def get_trailing_sl_status() -> dict[str, Any]:
    """
    Get the last persisted trailing stop-loss status.

    Falls back to the in-memory snapshot when nothing was persisted.
    """
    service = get_service()

    try:
        status = None
        if settings.monitor.persist_status:
            status = await service.firestore_client.get_trailing_status()
        return status or service.get_snapshot().model_dump(mode="json", by_alias=True)
    except Exception as e:
        logger.error("get_trailing_status_error", error=str(e))
        raise HTTPException(status_code=500, detail=str(e))


@app.post("/trailing-sl-status/clear", tags=["Monitor"])
async def clear_trailing_sl_status() -> dict[str, Any]:
    """Reset the snapshot and delete the persisted status."""
    service = get_service()

    try:
        snapshot = await service.clear_snapshot()
        return {"success": True, "snapshot": snapshot.model_dump(mode="json", by_alias=True)}
    except Exception as e:
        logger.error("clear_trailing_status_error", error=str(e))
        raise HTTPException(status_code=500, detail=str(e))


# =============================================================================
# Settings Endpoints
# =============================================================================


@app.get("/settings", tags=["Settings"])
async def get_trading_settings() -> dict[str, Any]:
    """Get normalized trading settings."""
    service = get_service()

    try:
        trading = await service.firestore_client.get_trading_settings()
        return trading.model_dump(by_alias=True)
    except Exception as e:
        logger.error("get_settings_error", error=str(e))
        raise HTTPException(status_code=500, detail=str(e))


@app.post("/settings", tags=["Settings"])
async def update_trading_settings(data: dict[str, Any]) -> dict[str, Any]:
    """
    Merge fields into the trading settings document.

    Returns the normalized settings after the update.
    """
    service = get_service()

    try:
        stored = await service.firestore_client.update_trading_settings(data)
        return TradingSettings.model_validate(stored).model_dump(by_alias=True)
    except Exception as e:
        logger.error("update_settings_error", error=str(e))
        raise HTTPException(status_code=500, detail=str(e))


# =============================================================================
# Log Endpoints
# =============================================================================


@app.get("/logs", tags=["Logs"])
async def get_logs(
    limit: int = Query(default=200, ge=1, le=1000, description="Max entries"),
) -> list[dict[str, Any]]:
    """Get audit log entries, newest first."""
    service = get_service()

    try:
        if settings.monitor.persist_status:
            entries = await service.firestore_client.get_logs(limit=limit)
        else:
            entries = service.audit_log.entries()[:limit]
        return [entry.model_dump(mode="json") for entry in entries]
    except Exception as e:
        logger.error("get_logs_error", error=str(e))
        raise HTTPException(status_code=500, detail=str(e))


@app.delete("/logs/clear", tags=["Logs"])
async def clear_logs() -> dict[str, Any]:
    """Delete all audit log entries."""
    service = get_service()

    try:
        service.audit_log.clear()
        deleted = 0
        if settings.monitor.persist_status:
            deleted = await service.firestore_client.clear_logs()
        return {"success": True, "deleted": deleted}
    except Exception as e:
        logger.error("clear_logs_error", error=str(e))
        raise HTTPException(status_code=500, detail=str(e))


# =============================================================================
# Configuration Endpoint
# =============================================================================


@app.get("/config", tags=["Configuration"])
async def get_monitor_config() -> dict[str, Any]:
    """
    Get current monitor configuration.
    """
    monitor = settings.monitor
    return {
        "default_frequency_ms": monitor.default_frequency_ms,
        "log_buffer_size": monitor.log_buffer_size,
        "use_internal_scheduler": monitor.use_internal_scheduler,
        "scheduler_secret_set": monitor.scheduler_secret is not None,
        "persist_status": monitor.persist_status,
        "display_mock_data": settings.broker.display_mock_data,
    }


# =============================================================================
# Main Entry Point
# =============================================================================


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host=settings.api.host,
        port=settings.api.port + 3,
        reload=settings.api.debug,
    )
