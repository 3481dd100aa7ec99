"""
Fill events.

An OrderFilledEvent is the only way cash and position change through
trading; the engine applies it to the account and the ledger.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, Dict, Optional

from replaysim.core.exceptions import EventValidationError
from replaysim.core.types import Liquidity, Side
from replaysim.events.base import Event, EventType, _to_float, _to_optional_float, _to_side
from replaysim.events.order import _require_order_id


@dataclass(frozen=True)
class OrderFilledEvent(Event):
    """
    Execution of (part of) an order.

    Attributes:
        order_id: Order identifier
        side: Buy or sell
        qty: Filled quantity
        price: Execution price; when absent the engine uses the last price
        fee: Fee paid in quote currency
        liquidity: Maker or taker
    """

    event_type: ClassVar[EventType] = EventType.ORDER_FILLED

    order_id: str = ""
    side: Side = Side.BUY
    qty: float = 0.0
    price: Optional[float] = None
    fee: float = 0.0
    liquidity: Liquidity = Liquidity.TAKER

    @property
    def signed_qty(self) -> float:
        return self.side.sign * abs(self.qty)

    @property
    def notional(self) -> Optional[float]:
        if self.price is None:
            return None
        return abs(self.qty) * self.price

    @classmethod
    def _coerce(cls, values: Dict[str, Any]) -> Dict[str, Any]:
        values["order_id"] = _require_order_id(values)
        values["side"] = _to_side(values.get("side"))
        values["qty"] = _to_float("qty", values.get("qty"))
        values["price"] = _to_optional_float("price", values.get("price"))
        values["fee"] = _to_float("fee", values.get("fee") or 0.0)
        try:
            values["liquidity"] = Liquidity(str(values.get("liquidity") or "taker").lower())
        except ValueError as exc:
            raise EventValidationError(str(exc)) from exc
        return values
