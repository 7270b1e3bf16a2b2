"""
Pydantic models for AutoExit.

Defines all data models used across services.
"""

import math
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator, model_validator
from pydantic.alias_generators import to_camel


def coerce_number(value: Any) -> float | None:
    """
    Convert loosely typed input (form fields, Firestore values) to a float.

    Returns None for anything that is not a finite number.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return number


# =============================================================================
# Trading Settings Models
# =============================================================================


class TrailingSettings(BaseModel):
    """Trailing stop-loss parameters, all in % of allocated capital."""

    initial_stop_loss_pct: float = 1.0
    break_even_trigger_pct: float = 1.0
    profit_lock_trigger_pct: float = 2.0
    locked_profit_pct: float = 1.0
    trailing_step_pct: float = 1.0
    trailing_gap_pct: float = 0.5


class TradingSettings(BaseModel):
    """
    Trading settings document as edited from the dashboard.

    Every field is normalized on the way in: missing, non-numeric, NaN or
    out-of-range values fall back to the field default instead of failing
    validation, so a half-filled settings form never stops monitoring.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    total_capital: float = 0.0
    scheduler_frequency_ms: int = 2000
    initial_stop_loss_pct: float = 1.0
    break_even_trigger_pct: float = 1.0
    profit_lock_trigger_pct: float = 2.0
    locked_profit_pct: float = 1.0
    trailing_step_pct: float = 1.0
    trailing_gap_pct: float = 0.5

    @model_validator(mode="before")
    @classmethod
    def accept_legacy_frequency_key(cls, data: Any) -> Any:
        """Older documents store the frequency as ``schedulerFrequency``."""
        if isinstance(data, dict) and "schedulerFrequency" in data:
            data = dict(data)
            legacy = data.pop("schedulerFrequency")
            data.setdefault("schedulerFrequencyMs", legacy)
        return data

    @field_validator("total_capital", mode="before")
    @classmethod
    def normalize_capital(cls, v: Any) -> float:
        """Unset or negative capital means no percentage can be computed."""
        number = coerce_number(v)
        if number is None or number < 0:
            return 0.0
        return number

    @field_validator("scheduler_frequency_ms", mode="before")
    @classmethod
    def normalize_frequency(cls, v: Any, info: ValidationInfo) -> int:
        """Frequency must be a positive number of milliseconds."""
        number = coerce_number(v)
        if number is None or number < 1:
            return cls.model_fields[info.field_name].default
        return int(round(number))

    @field_validator(
        "initial_stop_loss_pct",
        "break_even_trigger_pct",
        "profit_lock_trigger_pct",
        "trailing_step_pct",
        mode="before",
    )
    @classmethod
    def normalize_positive(cls, v: Any, info: ValidationInfo) -> float:
        """Thresholds and steps must be strictly positive."""
        number = coerce_number(v)
        if number is None or number <= 0:
            return cls.model_fields[info.field_name].default
        return number

    @field_validator("locked_profit_pct", "trailing_gap_pct", mode="before")
    @classmethod
    def normalize_non_negative(cls, v: Any, info: ValidationInfo) -> float:
        """Locked profit and gap may be zero but never negative."""
        number = coerce_number(v)
        if number is None or number < 0:
            return cls.model_fields[info.field_name].default
        return number

    def to_trailing_settings(self) -> TrailingSettings:
        """Extract the trailing stop-loss parameters."""
        return TrailingSettings(
            initial_stop_loss_pct=self.initial_stop_loss_pct,
            break_even_trigger_pct=self.break_even_trigger_pct,
            profit_lock_trigger_pct=self.profit_lock_trigger_pct,
            locked_profit_pct=self.locked_profit_pct,
            trailing_step_pct=self.trailing_step_pct,
            trailing_gap_pct=self.trailing_gap_pct,
        )


class TrailingResult(BaseModel):
    """Outcome of one trailing stop-loss evaluation."""

    stop_loss_pct: float
    last_trailing_level_pct: float | None = None
    should_exit: bool = False


# =============================================================================
# Position Models
# =============================================================================


class BrokerPosition(BaseModel):
    """An open option position as reported by the broker."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    symbol: str = ""
    expiry: str = ""
    option_type: str = ""
    strike: str = ""
    net_qty: float = 0.0
    avg_price: float = 0.0
    ltp: float = 0.0
    unrealized: float = 0.0
    raw: dict[str, Any] = Field(default_factory=dict)

    @field_validator("net_qty", "avg_price", "ltp", "unrealized", mode="before")
    @classmethod
    def coerce_numeric(cls, v: Any) -> float:
        """Broker payloads mix strings and numbers; garbage counts as zero."""
        number = coerce_number(v)
        return 0.0 if number is None else number


class ExitOrderResult(BaseModel):
    """Result of a single exit order."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    scrip_code: int | None = None
    scrip_name: str = ""
    exited_qty: float = 0.0
    response: dict[str, Any] = Field(default_factory=dict)
    message: str = ""


class ExitSummary(BaseModel):
    """Summary returned by an exit-all liquidation."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    success: bool
    exited_count: int = 0
    message: str | None = None
    error: str | None = None
    results: list[ExitOrderResult] = Field(default_factory=list)


# =============================================================================
# Monitor Models
# =============================================================================


class MonitorSnapshot(BaseModel):
    """
    Read model of the auto-exit monitor as seen by dashboard pollers.

    Instances are immutable; the publisher swaps whole snapshots.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    running: bool = False
    exited: bool = False
    mtm: float | None = None
    trailing_sl: float | None = Field(default=None, alias="trailingSL")
    trailing_sl_pct: float | None = Field(default=None, alias="trailingSLPct")
    mtm_pct: float | None = Field(default=None, alias="mtmPct")
    cut_reason: str | None = Field(default=None, alias="cutReason")
    summary: Any = None
    logs: tuple[str, ...] = ()
    updated_at: datetime | None = Field(default=None, alias="updatedAt")


class AuditEntry(BaseModel):
    """An audit log entry."""

    timestamp: datetime = Field(default_factory=datetime.utcnow)
    level: str = "info"
    message: str
    meta: dict[str, Any] = Field(default_factory=dict)


# =============================================================================
# API Models
# =============================================================================


class ActionRequest(BaseModel):
    """Command sent to the auto-exit monitor."""

    action: str = ""


class ActionResponse(BaseModel):
    """Result of a monitor command."""

    success: bool
    error: str | None = None
    message: str | None = None


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "healthy"
    version: str = "0.1.0"
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class ErrorResponse(BaseModel):
    """Error response model."""

    error: str
    detail: str | None = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)
