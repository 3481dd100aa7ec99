"""
Core enumerations shared across the simulator.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class Side(str, Enum):
    """Order / fill direction."""

    BUY = "buy"
    SELL = "sell"

    @property
    def sign(self) -> int:
        """+1 for buys, -1 for sells."""
        return 1 if self is Side.BUY else -1

    @property
    def opposite(self) -> "Side":
        return Side.SELL if self is Side.BUY else Side.BUY

    @classmethod
    def parse(cls, value: Any) -> "Side":
        """Parse a side from an enum member or a case-insensitive string."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        raise ValueError(f"side must be 'buy' or 'sell', got {value!r}")


class MarketType(str, Enum):
    """Market types supported by a run."""

    SPOT = "spot"
    FUTURES = "futures"
    PERPETUAL = "perpetual"

    @property
    def is_margin_bearing(self) -> bool:
        """Margin, funding and liquidation only apply to derivatives."""
        return self in (MarketType.FUTURES, MarketType.PERPETUAL)


class OrderType(str, Enum):
    """Order types accepted in signals."""

    MARKET = "market"
    LIMIT = "limit"


class LimitMode(str, Enum):
    """
    Limit order behaviour.

    PASSIVE orders rest until the opposite best price crosses them (maker).
    AGGRESSIVE orders take any liquidity at or better than the limit (taker).
    """

    PASSIVE = "passive"
    AGGRESSIVE = "aggressive"


class Liquidity(str, Enum):
    """Liquidity indicator of a fill."""

    MAKER = "maker"
    TAKER = "taker"
