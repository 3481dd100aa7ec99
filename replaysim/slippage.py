"""
Slippage models for synthetic (book-less) fills.

Slippage represents the difference between the reference price and the
actual fill price. Models return a non-negative magnitude; ``impact``
signs it by side (+ for buys, - for sells) so it always worsens the fill.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Mapping, Optional, Union

from replaysim.core.exceptions import ConfigurationError
from replaysim.core.types import Side


class SlippageModel(ABC):
    """
    Abstract base class for slippage models.
    """

    type_name: str = ""

    @abstractmethod
    def calculate_slippage(
        self,
        qty: float,
        spread: float = 0.0,
        avg_volume: Optional[float] = None,
    ) -> float:
        """
        Calculate the slippage magnitude.

        Args:
            qty: Order quantity
            spread: Current bid/ask spread
            avg_volume: Average traded volume (liquidity proxy)

        Returns:
            Slippage amount in price units
        """
        pass

    def impact(
        self,
        side: Union[Side, str],
        qty: float,
        spread: float = 0.0,
        avg_volume: Optional[float] = None,
    ) -> float:
        """Signed price impact: positive for buys, negative for sells."""
        return Side.parse(side).sign * self.calculate_slippage(qty, spread=spread, avg_volume=avg_volume)


class NoSlippage(SlippageModel):
    """No slippage model - fills at reference price."""

    type_name = "none"

    def calculate_slippage(self, qty: float, spread: float = 0.0, avg_volume: Optional[float] = None) -> float:
        return 0.0


class FixedSlippage(SlippageModel):
    """
    Fixed slippage model.

    Applies a constant price offset per fill.
    """

    type_name = "simple_fixed"

    def __init__(self, fixed: float = 0.0):
        self.fixed = fixed

    def calculate_slippage(self, qty: float, spread: float = 0.0, avg_volume: Optional[float] = None) -> float:
        return self.fixed


class SpreadPctSlippage(SlippageModel):
    """
    Spread-proportional slippage.

    Slippage is a fraction of the current bid/ask spread.
    """

    type_name = "pct_of_spread"

    def __init__(self, pct: float = 0.0):
        self.pct = pct

    def calculate_slippage(self, qty: float, spread: float = 0.0, avg_volume: Optional[float] = None) -> float:
        return spread * self.pct


class LiquiditySlippage(SlippageModel):
    """
    Liquidity-based slippage.

    Slippage grows linearly with order size relative to average volume.

    Formula:
        slippage = base + k * |qty| / avg_volume
        (avg_volume <= 0 or missing is treated as 1)
    """

    type_name = "liquidity_based"

    def __init__(self, base: float = 0.0, k: float = 0.0):
        self.base = base
        self.k = k

    def calculate_slippage(self, qty: float, spread: float = 0.0, avg_volume: Optional[float] = None) -> float:
        denom = avg_volume if avg_volume is not None and avg_volume > 0 else 1.0
        return self.base + self.k * (abs(qty) / denom)


def build_slippage_model(config: Union[SlippageModel, Mapping[str, Any], None]) -> SlippageModel:
    """
    Build a slippage model from a mapping.

    Accepted shapes:
        {"type": "simple_fixed", "fixed": 0.5}
        {"type": "pct_of_spread", "pct": 0.5}
        {"type": "liquidity_based", "base": 0.1, "k": 0.5}

    Raises:
        ConfigurationError: Unknown slippage type or non-numeric parameter
    """
    if config is None:
        return NoSlippage()
    if isinstance(config, SlippageModel):
        return config

    kind = config.get("type")
    try:
        if kind in (None, "none"):
            return NoSlippage()
        if kind == FixedSlippage.type_name:
            return FixedSlippage(fixed=float(config.get("fixed") or 0.0))
        if kind == SpreadPctSlippage.type_name:
            return SpreadPctSlippage(pct=float(config.get("pct") or 0.0))
        if kind == LiquiditySlippage.type_name:
            return LiquiditySlippage(
                base=float(config.get("base") or 0.0),
                k=float(config.get("k") or 0.0),
            )
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid slippage parameters: {dict(config)}") from exc

    raise ConfigurationError(f"Unknown slippage model type: {kind}")
