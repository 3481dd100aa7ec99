"""
Order lifecycle events.

This module provides:
- OrderSubmittedEvent: An order accepted by the execution model
- OrderCancelledEvent: An order cancelled (user cancel, TTL, rejection)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, Dict, Optional

from replaysim.core.exceptions import EventValidationError
from replaysim.core.types import OrderType, Side
from replaysim.events.base import Event, EventType, _to_float, _to_optional_float, _to_side


def _require_order_id(values: Dict[str, Any]) -> str:
    order_id = values.get("order_id")
    if order_id is None or order_id == "":
        raise EventValidationError("order events must include order_id")
    return str(order_id)


@dataclass(frozen=True)
class OrderSubmittedEvent(Event):
    """
    Order submission.

    Attributes:
        order_id: Order identifier
        side: Buy or sell
        qty: Order quantity
        price: Limit price or reference price, if any
        order_type: Market or limit
    """

    event_type: ClassVar[EventType] = EventType.ORDER_SUBMITTED

    order_id: str = ""
    side: Side = Side.BUY
    qty: float = 0.0
    price: Optional[float] = None
    order_type: OrderType = OrderType.MARKET

    @classmethod
    def _coerce(cls, values: Dict[str, Any]) -> Dict[str, Any]:
        values["order_id"] = _require_order_id(values)
        values["side"] = _to_side(values.get("side"))
        values["qty"] = _to_float("qty", values.get("qty"))
        values["price"] = _to_optional_float("price", values.get("price"))
        try:
            values["order_type"] = OrderType(str(values.get("order_type") or "market").lower())
        except ValueError as exc:
            raise EventValidationError(str(exc)) from exc
        return values


@dataclass(frozen=True)
class OrderCancelledEvent(Event):
    """Order cancellation with its reason."""

    event_type: ClassVar[EventType] = EventType.ORDER_CANCELLED

    order_id: str = ""
    reason: str = ""

    @classmethod
    def _coerce(cls, values: Dict[str, Any]) -> Dict[str, Any]:
        values["order_id"] = _require_order_id(values)
        values["reason"] = str(values.get("reason") or "")
        return values
