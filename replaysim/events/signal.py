"""
Signal events emitted by strategies.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, Dict, Optional

from replaysim.core.exceptions import EventValidationError
from replaysim.core.types import LimitMode, OrderType, Side
from replaysim.events.base import Event, EventType, _to_float, _to_optional_float, _to_side


@dataclass(frozen=True)
class SignalEvent(Event):
    """
    Trading intent produced by a strategy.

    A signal with ``cancel_order_id`` set is a cancel request for a resting
    limit order; side/qty are ignored in that case.

    Attributes:
        side: Buy or sell
        qty: Requested quantity (positive)
        price: Optional price hint (reference for market orders)
        reason: Free-form reason string
        order_type: Market or limit
        limit_price: Limit price for limit orders
        mode: Passive or aggressive (limit orders only)
        ttl_ms: Time-to-live for limit orders
        cancel_order_id: Order to cancel
    """

    event_type: ClassVar[EventType] = EventType.SIGNAL_GENERATED

    side: Side = Side.BUY
    qty: float = 0.0
    price: Optional[float] = None
    reason: str = ""
    order_type: OrderType = OrderType.MARKET
    limit_price: Optional[float] = None
    mode: LimitMode = LimitMode.PASSIVE
    ttl_ms: Optional[int] = None
    cancel_order_id: Optional[str] = None

    @property
    def is_cancel(self) -> bool:
        return self.cancel_order_id is not None

    @property
    def signed_qty(self) -> float:
        return self.side.sign * abs(self.qty)

    @classmethod
    def _coerce(cls, values: Dict[str, Any]) -> Dict[str, Any]:
        if values.get("cancel_order_id") is None:
            values["side"] = _to_side(values.get("side"))
            values["qty"] = _to_float("qty", values.get("qty"))
        else:
            values["cancel_order_id"] = str(values["cancel_order_id"])
            if values.get("side") is not None:
                values["side"] = _to_side(values["side"])
            values["qty"] = _to_float("qty", values.get("qty") or 0.0)

        values["price"] = _to_optional_float("price", values.get("price"))
        values["limit_price"] = _to_optional_float("limit_price", values.get("limit_price"))
        values["reason"] = str(values.get("reason") or "")

        try:
            values["order_type"] = OrderType(str(values.get("order_type") or "market").lower())
            values["mode"] = LimitMode(str(values.get("mode") or "passive").lower())
        except ValueError as exc:
            raise EventValidationError(str(exc)) from exc

        if values.get("ttl_ms") is not None:
            values["ttl_ms"] = int(_to_float("ttl_ms", values["ttl_ms"]))
        return values
