"""
Account and risk events.

This module provides:
- FundingPaymentEvent: Periodic perpetual funding cash flow
- MarginUpdateEvent: Margin snapshot published after risk evaluation
- LiquidatedEvent: Forced close of the position (terminal)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, Dict, Optional

from replaysim.events.base import Event, EventType, _to_float, _to_optional_float


@dataclass(frozen=True)
class FundingPaymentEvent(Event):
    """
    Funding cash flow. ``amount`` is added to cash (negative = paid).
    """

    event_type: ClassVar[EventType] = EventType.FUNDING_PAYMENT

    amount: float = 0.0
    rate: float = 0.0
    notional: float = 0.0

    @classmethod
    def _coerce(cls, values: Dict[str, Any]) -> Dict[str, Any]:
        for name in ("amount", "rate", "notional"):
            values[name] = _to_float(name, values.get(name) or 0.0)
        return values


@dataclass(frozen=True)
class MarginUpdateEvent(Event):
    """
    Margin snapshot. Fields left as None do not overwrite account state.
    """

    event_type: ClassVar[EventType] = EventType.MARGIN_UPDATE

    margin: Optional[float] = None
    maintenance_margin: Optional[float] = None
    unrealized_pnl: Optional[float] = None
    position_notional: Optional[float] = None
    mark_price: Optional[float] = None

    @classmethod
    def _coerce(cls, values: Dict[str, Any]) -> Dict[str, Any]:
        for name in ("margin", "maintenance_margin", "unrealized_pnl", "position_notional", "mark_price"):
            values[name] = _to_optional_float(name, values.get(name))
        return values


@dataclass(frozen=True)
class LiquidatedEvent(Event):
    """
    Liquidation of the open position.

    Attributes:
        price: Liquidation price (defaults to mark, last, then average price)
        penalty: Penalty deducted from cash
        reason: Why the position was liquidated
        order_id: Identifier for the synthesized closing fill
    """

    event_type: ClassVar[EventType] = EventType.LIQUIDATED

    price: Optional[float] = None
    penalty: float = 0.0
    reason: str = ""
    order_id: Optional[str] = None

    @classmethod
    def _coerce(cls, values: Dict[str, Any]) -> Dict[str, Any]:
        values["price"] = _to_optional_float("price", values.get("price"))
        values["penalty"] = _to_float("penalty", values.get("penalty") or 0.0)
        values["reason"] = str(values.get("reason") or "")
        if values.get("order_id") is not None:
            values["order_id"] = str(values["order_id"])
        return values
