"""
Auto-Exit Monitor Service

Tracks MTM against a trailing stop loss and exits all open option
positions once the stop is hit.
"""

from services.monitor.service import MonitorService
from services.monitor.trailing import calculate_trailing_stop_loss

__all__ = ["MonitorService", "calculate_trailing_stop_loss"]
