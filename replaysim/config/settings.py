"""
Global settings and configuration management for the replay simulator.

This module provides centralized configuration using Pydantic for validation
and environment variable support. Run-specific inputs (symbol, dates, margin
rates) are NOT settings; they are passed to the engine as run parameters.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineSettings(BaseSettings):
    """Engine defaults."""

    model_config = SettingsConfigDict(
        env_prefix="REPLAYSIM_ENGINE_",
        env_file=".env",
        extra="ignore"
    )

    # Used when the run parameters carry no random_seed
    default_random_seed: int = 1

    # Default execution model: latency drawn from [0, max_latency_ms)
    max_latency_ms: int = 100
    # Default execution model: slippage drawn from [-max_slippage_bps, +max_slippage_bps)
    max_slippage_bps: float = 5.0

    # Timeframes for which candle-only input triggers the sanity warning
    coarse_candle_timeframes: list[str] = Field(default=["1m"])

    @field_validator("max_latency_ms")
    @classmethod
    def non_negative_latency(cls, v: int) -> int:
        if v < 0:
            raise ValueError("max_latency_ms must be non-negative")
        return v


class FillModelSettings(BaseSettings):
    """Venue constraints, fees, latencies and slippage for the fill model."""

    model_config = SettingsConfigDict(
        env_prefix="REPLAYSIM_FILL_",
        env_file=".env",
        extra="ignore"
    )

    # Exchange constraints
    tick_size: Optional[float] = None
    step_size: Optional[float] = None
    min_notional: Optional[float] = None
    min_qty: Optional[float] = None
    max_qty: Optional[float] = None

    # Fees (fraction of notional)
    maker_fee_rate: float = 0.0
    taker_fee_rate: float = 0.0

    # Latencies
    order_latency_ms: int = 0
    cancel_latency_ms: int = 0

    # Slippage for the synthetic (book-less) fill
    slippage_type: Literal["simple_fixed", "pct_of_spread", "liquidity_based"] = "simple_fixed"
    slippage_fixed: float = 0.0
    slippage_pct: float = 0.0
    slippage_base: float = 0.0
    slippage_k: float = 0.0

    @field_validator("order_latency_ms", "cancel_latency_ms")
    @classmethod
    def non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("latencies must be non-negative")
        return v


class LoggingSettings(BaseSettings):
    """Logging configuration settings."""

    model_config = SettingsConfigDict(
        env_prefix="REPLAYSIM_LOG_",
        env_file=".env",
        extra="ignore"
    )

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_file: Path | None = None
    trade_log_file: Path | None = None
    rotation: str = "10 MB"
    retention: str = "30 days"
    serialize: bool = False  # JSON logging


class Settings(BaseSettings):
    """Main settings container combining all configuration sections."""

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore"
    )

    engine: EngineSettings = Field(default_factory=EngineSettings)
    fill: FillModelSettings = Field(default_factory=FillModelSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


_settings: Settings | None = None


def get_settings() -> Settings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    """Reload settings from environment and config files."""
    global _settings
    _settings = Settings()
    return _settings
