"""
Core module for the replay simulator.

Shared error hierarchy and enumerations.
"""

from replaysim.core.exceptions import (
    BacktestError,
    ConfigurationError,
    DataError,
    EventValidationError,
    ReplaySimError,
    UnknownEventError,
)
from replaysim.core.types import LimitMode, Liquidity, MarketType, OrderType, Side

__all__ = [
    "ReplaySimError",
    "ConfigurationError",
    "DataError",
    "EventValidationError",
    "BacktestError",
    "UnknownEventError",
    "MarketType",
    "Side",
    "OrderType",
    "LimitMode",
    "Liquidity",
]
