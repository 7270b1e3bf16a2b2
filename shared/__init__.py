"""
AutoExit Shared Modules

This package contains shared utilities, clients, and models used across all services.
"""

from shared.config import Settings, get_settings
from shared.models import (
    ActionResponse,
    AuditEntry,
    BrokerPosition,
    ExitOrderResult,
    ExitSummary,
    MonitorSnapshot,
    TradingSettings,
    TrailingResult,
    TrailingSettings,
)

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Models
    "TradingSettings",
    "TrailingSettings",
    "TrailingResult",
    "BrokerPosition",
    "ExitOrderResult",
    "ExitSummary",
    "MonitorSnapshot",
    "AuditEntry",
    "ActionResponse",
]
