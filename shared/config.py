"""
Configuration management for AutoExit.

Loads configuration from YAML files and environment variables.
Environment variables take precedence over YAML config.
"""

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ENVIRONMENTS = frozenset({"development", "staging", "production", "test"})

# Points at an alternative YAML file
CONFIG_PATH_ENV = "AUTOEXIT_CONFIG"


class BrokerConfig(BaseSettings):
    """5paisa brokerage configuration."""

    base_url: str = "https://Openapi.5paisa.com/VendorsAPI/Service1.svc"
    app_key: str = ""
    access_token: str = ""
    client_code: str = ""
    request_timeout: float = 30.0
    display_mock_data: bool = False
    mock_positions_path: str = "config/mock_positions.json"


class MonitorConfig(BaseSettings):
    """Auto-exit monitor configuration."""

    default_frequency_ms: int = 2000
    log_buffer_size: int = 100
    use_internal_scheduler: bool = True
    scheduler_secret: str | None = None
    currency_symbol: str = "₹"
    persist_status: bool = True

    @field_validator("default_frequency_ms", "log_buffer_size")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Frequencies and buffer sizes must be positive."""
        if v <= 0:
            raise ValueError("must be positive")
        return v

    @field_validator("scheduler_secret", mode="before")
    @classmethod
    def empty_secret_is_none(cls, v: Any) -> str | None:
        """Treat an empty secret as not configured."""
        if v is None or (isinstance(v, str) and not v.strip()):
            return None
        return v


class APIConfig(BaseSettings):
    """HTTP server settings shared by the monitor and trader apps."""

    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])

    @field_validator("cors_origins", mode="before")
    @classmethod
    def split_origins(cls, v: Any) -> list[str]:
        """Accept a JSON array, a comma separated string or one origin."""
        if isinstance(v, list):
            return v
        if not isinstance(v, str) or not v.strip():
            return ["*"]
        text = v.strip()
        if text.startswith("["):
            return list(json.loads(text))
        return [part.strip() for part in text.split(",") if part.strip()]


class LoggingConfig(BaseSettings):
    """structlog output settings."""

    level: str = "INFO"
    format: str = "json"


class Settings(BaseSettings):
    """
    Process configuration for the AutoExit services.

    Precedence, lowest first: field defaults, the YAML file, environment
    variables. Nested fields use a double underscore in variable names
    (``MONITOR__DEFAULT_FREQUENCY_MS``).

    Trading parameters (capital, trailing percentages) are not part of
    process configuration; they are stored in Firestore and edited at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    environment: str = Field(default="development")
    gcp_project_id: str = Field(default="")

    broker: BrokerConfig = Field(default_factory=BrokerConfig)
    monitor: MonitorConfig = Field(default_factory=MonitorConfig)
    api: APIConfig = Field(default_factory=APIConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("environment")
    @classmethod
    def check_environment(cls, v: str) -> str:
        name = v.lower()
        if name not in ENVIRONMENTS:
            raise ValueError(f"environment must be one of {sorted(ENVIRONMENTS)}")
        return name

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def is_test(self) -> bool:
        return self.environment == "test"


def _config_candidates() -> list[Path]:
    """Places searched for the YAML file, first match wins."""
    override = os.environ.get(CONFIG_PATH_ENV)
    if override:
        return [Path(override)]
    return [
        Path("config/config.yaml"),
        Path(__file__).resolve().parent.parent / "config" / "config.yaml",
    ]


def load_yaml_config(config_path: Path | None = None) -> dict[str, Any]:
    """
    Read the YAML configuration file.

    Args:
        config_path: Explicit file. When omitted, ``AUTOEXIT_CONFIG`` or
            the default locations are searched.

    Returns:
        Parsed mapping, empty when no file exists
    """
    if config_path is None:
        config_path = next((p for p in _config_candidates() if p.exists()), None)

    if config_path is None or not config_path.exists():
        return {}

    with open(config_path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def flatten_dict(d: dict[str, Any], parent_key: str = "", sep: str = "__") -> dict[str, Any]:
    """Join nested keys with ``sep`` so they match env variable names."""
    flat: dict[str, Any] = {}
    for key, value in d.items():
        name = f"{parent_key}{sep}{key}" if parent_key else key
        if isinstance(value, dict):
            flat.update(flatten_dict(value, name, sep))
        else:
            flat[name] = value
    return flat


def _env_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, dict)):
        return json.dumps(value)
    return str(value)


@lru_cache
def get_settings() -> Settings:
    """
    Return the process-wide settings, loading them on first use.

    YAML values are exported as environment variables unless one is
    already set, so the environment always wins.
    """
    for key, value in flatten_dict(load_yaml_config()).items():
        name = key.upper()
        if value is not None and name not in os.environ:
            os.environ[name] = _env_value(value)

    return Settings()


def reset_settings() -> None:
    """Drop the cached settings. Used by tests."""
    get_settings.cache_clear()
