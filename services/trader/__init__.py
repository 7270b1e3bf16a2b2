"""
Trader Service

Reads open option positions from 5paisa and exits them at market.
"""

from services.trader.service import TraderService

__all__ = ["TraderService"]
