"""Configuration loader with Pydantic validation and environment variable interpolation."""

from __future__ import annotations

import os
import re
from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml
from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator

# Load environment variables at module level
load_dotenv(find_dotenv(usecwd=True))

from simterm.constants import (  # noqa: E402
    DEFAULT_BOT_INTERVAL_MS,
    DEFAULT_FILL_LATENCY_MAX_MS,
    DEFAULT_FILL_LATENCY_MIN_MS,
    DEFAULT_FRAME_MS,
    DEFAULT_INITIAL_CASH,
    DEFAULT_INSTRUMENTS,
    DEFAULT_JOURNAL_FLUSH_MS,
    DEFAULT_JOURNAL_PATH,
    DEFAULT_LATENCY_BUFFER_SIZE,
    DEFAULT_MAX_OPEN_POSITIONS,
    DEFAULT_MAX_ORDER_NOTIONAL,
    DEFAULT_MAX_ORDER_QTY,
    DEFAULT_MAX_TICKS_PER_SECOND,
    DEFAULT_METRICS_PUBLISH_MS,
    DEFAULT_METRICS_WINDOW_SEC,
    DEFAULT_MIN_TICKS_PER_SECOND,
    DEFAULT_PORTFOLIO_DEBOUNCE_MS,
    DEFAULT_STRATEGY,
    LogLevel,
)


def interpolate_env_vars(value: Any) -> Any:
    """
    Interpolate environment variables in string values.

    Supports formats:
    - ${VAR_NAME} - required, empty string if not set
    - ${VAR_NAME:default} - optional with default value
    """
    if not isinstance(value, str):
        return value

    pattern = r"\$\{([^}:]+)(?::([^}]*))?\}"

    def replacer(match: re.Match[str]) -> str:
        var_name = match.group(1)
        default = match.group(2)

        env_value = os.environ.get(var_name)

        if env_value is not None:
            return env_value
        elif default is not None:
            return default
        else:
            return ""

    return re.sub(pattern, replacer, value)


def process_config_dict(data: dict[str, Any]) -> dict[str, Any]:
    """Recursively process config dict to interpolate env vars."""
    result = {}
    for key, value in data.items():
        if isinstance(value, dict):
            result[key] = process_config_dict(value)
        elif isinstance(value, list):
            result[key] = [
                process_config_dict(item) if isinstance(item, dict) else interpolate_env_vars(item)
                for item in value
            ]
        else:
            result[key] = interpolate_env_vars(value)
    return result


def _to_decimal(v: Any) -> Decimal:
    if isinstance(v, Decimal):
        return v
    return Decimal(str(v))


# ============================================
# Pydantic Configuration Models
# ============================================


class EnvironmentConfig(BaseModel):
    """Environment and runtime settings."""

    log_level: LogLevel = LogLevel.INFO
    seed: int | None = None

    @field_validator("seed", mode="before")
    @classmethod
    def empty_seed_is_none(cls, v: Any) -> Any:
        """Treat an unset interpolated seed as no seed."""
        if isinstance(v, str) and not v.strip():
            return None
        return v


class FeedConfig(BaseModel):
    """Synthetic market feed configuration."""

    min_ticks_per_second: int = DEFAULT_MIN_TICKS_PER_SECOND
    max_ticks_per_second: int = DEFAULT_MAX_TICKS_PER_SECOND
    frame_ms: int = DEFAULT_FRAME_MS

    @field_validator("min_ticks_per_second", "max_ticks_per_second", "frame_ms")
    @classmethod
    def validate_positive_int(cls, v: int) -> int:
        """Validate positive integers."""
        if v <= 0:
            raise ValueError(f"Value must be positive, got: {v}")
        return v

    @model_validator(mode="after")
    def validate_rate_bounds(self) -> FeedConfig:
        """Validate the tick rate range is ordered."""
        if self.min_ticks_per_second > self.max_ticks_per_second:
            raise ValueError(
                f"min_ticks_per_second ({self.min_ticks_per_second}) must not exceed "
                f"max_ticks_per_second ({self.max_ticks_per_second})"
            )
        return self


class RiskConfig(BaseModel):
    """Pre-trade risk limits."""

    max_order_qty: Decimal = DEFAULT_MAX_ORDER_QTY
    max_order_notional: Decimal = DEFAULT_MAX_ORDER_NOTIONAL
    max_open_positions: int = DEFAULT_MAX_OPEN_POSITIONS

    @field_validator("max_order_qty", "max_order_notional", mode="before")
    @classmethod
    def convert_to_decimal(cls, v: Any) -> Decimal:
        """Convert numeric values to Decimal."""
        return _to_decimal(v)

    @field_validator("max_order_qty", "max_order_notional")
    @classmethod
    def validate_positive_decimal(cls, v: Decimal) -> Decimal:
        if v <= 0:
            raise ValueError(f"Limit must be positive, got: {v}")
        return v

    @field_validator("max_open_positions")
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"Value must be non-negative, got: {v}")
        return v


class EngineConfig(BaseModel):
    """Simulated execution engine settings."""

    initial_cash: Decimal = DEFAULT_INITIAL_CASH
    default_strategy: str = DEFAULT_STRATEGY
    fill_latency_min_ms: int = DEFAULT_FILL_LATENCY_MIN_MS
    fill_latency_max_ms: int = DEFAULT_FILL_LATENCY_MAX_MS
    portfolio_debounce_ms: int = DEFAULT_PORTFOLIO_DEBOUNCE_MS
    bot_interval_ms: int = DEFAULT_BOT_INTERVAL_MS

    @field_validator("initial_cash", mode="before")
    @classmethod
    def convert_to_decimal(cls, v: Any) -> Decimal:
        return _to_decimal(v)

    @model_validator(mode="after")
    def validate_latency_range(self) -> EngineConfig:
        """Validate fill latency bounds."""
        if self.fill_latency_min_ms < 0 or self.fill_latency_min_ms > self.fill_latency_max_ms:
            raise ValueError(
                f"Invalid fill latency range: [{self.fill_latency_min_ms}, {self.fill_latency_max_ms}]"
            )
        return self


class MetricsConfig(BaseModel):
    """Metrics aggregator settings."""

    window_sec: int = DEFAULT_METRICS_WINDOW_SEC
    publish_ms: int = DEFAULT_METRICS_PUBLISH_MS
    latency_buffer_size: int = DEFAULT_LATENCY_BUFFER_SIZE

    @field_validator("window_sec", "publish_ms", "latency_buffer_size")
    @classmethod
    def validate_positive_int(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"Value must be positive, got: {v}")
        return v


class JournalConfig(BaseModel):
    """Event journal configuration."""

    enabled: bool = True
    path: str = DEFAULT_JOURNAL_PATH
    flush_ms: int = DEFAULT_JOURNAL_FLUSH_MS

    @field_validator("flush_ms")
    @classmethod
    def validate_positive_int(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"Value must be positive, got: {v}")
        return v


class UIConfig(BaseModel):
    """Console dashboard settings."""

    dashboard: bool = True
    refresh_ms: int = 1000
    log_buffer: int = 250
    sparkline_width: int = 24

    @field_validator("refresh_ms", "log_buffer", "sparkline_width")
    @classmethod
    def validate_positive_int(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"Value must be positive, got: {v}")
        return v


class AppConfig(BaseModel):
    """Root application configuration."""

    environment: EnvironmentConfig = Field(default_factory=EnvironmentConfig)
    instruments: list[str] = Field(default_factory=lambda: list(DEFAULT_INSTRUMENTS))
    feed: FeedConfig = Field(default_factory=FeedConfig)
    engine: EngineConfig = Field(default_factory=EngineConfig)
    risk: RiskConfig = Field(default_factory=RiskConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)
    journal: JournalConfig = Field(default_factory=JournalConfig)
    ui: UIConfig = Field(default_factory=UIConfig)

    @field_validator("instruments")
    @classmethod
    def validate_instruments(cls, v: list[str]) -> list[str]:
        """Validate at least one unique instrument is configured."""
        if not v:
            raise ValueError("At least one instrument must be configured")
        if len(set(v)) != len(v):
            raise ValueError(f"Duplicate instruments: {v}")
        return v


# ============================================
# Configuration Loader
# ============================================


class ConfigLoader:
    """Load and validate configuration from YAML files with env var interpolation."""

    def __init__(self, config_path: str | Path) -> None:
        self.config_path = Path(config_path)
        self._config: AppConfig | None = None

    def load(self) -> AppConfig:
        """
        Load and validate configuration.

        Returns:
            Validated AppConfig instance.

        Raises:
            FileNotFoundError: If config file doesn't exist.
            yaml.YAMLError: If YAML is invalid.
            pydantic.ValidationError: If config validation fails.
        """
        if not self.config_path.exists():
            raise FileNotFoundError(f"Config file not found: {self.config_path}")

        with open(self.config_path, encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)

        if raw_config is None:
            raw_config = {}

        processed_config = process_config_dict(raw_config)
        self._config = AppConfig.model_validate(processed_config)

        return self._config

    @property
    def config(self) -> AppConfig:
        """Get loaded config, loading if necessary."""
        if self._config is None:
            return self.load()
        return self._config


def load_config(config_path: str | Path) -> AppConfig:
    """Convenience function to load configuration."""
    loader = ConfigLoader(config_path)
    return loader.load()


def load_config_with_overrides(
    config_path: str | Path | None,
    *,
    seed: int | None = None,
    dashboard: bool | None = None,
    journal_path: str | None = None,
) -> AppConfig:
    """
    Load configuration with CLI overrides.

    A ``None`` config path yields the built-in defaults.
    """
    config = load_config(config_path) if config_path is not None else AppConfig()

    updates: dict[str, Any] = {}

    if seed is not None:
        updates["environment"] = config.environment.model_copy(update={"seed": seed})

    if dashboard is not None:
        updates["ui"] = config.ui.model_copy(update={"dashboard": dashboard})

    if journal_path is not None:
        updates["journal"] = config.journal.model_copy(update={"path": journal_path})

    if updates:
        return config.model_copy(update=updates)

    return config
