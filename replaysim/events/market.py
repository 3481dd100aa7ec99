"""
Market data events for the replay.

This module provides market data event types:
- TickEvent: Individual trade/quote observations
- CandleEvent: OHLCV bar data

Both may carry an optional mark price and a level-2 book snapshot
(``bids``/``asks``), which the fill model consumes.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, ClassVar, Dict, Iterable, Optional, Tuple

from replaysim.core.exceptions import EventValidationError
from replaysim.events.base import Event, EventType, _to_float, _to_optional_float


@dataclass(frozen=True)
class OrderBookLevel:
    """
    Single level in the order book.

    Attributes:
        price: Price level
        qty: Total quantity at this level
    """
    price: float
    qty: float

    def to_dict(self) -> Dict[str, float]:
        return {"price": self.price, "qty": self.qty}


def parse_book_levels(raw: Any) -> Tuple[OrderBookLevel, ...]:
    """
    Parse one side of a book.

    Levels may be ``OrderBookLevel`` instances, mappings with ``price`` and
    ``qty`` (or ``size``) keys, or ``[price, qty]`` pairs. Levels with a
    non-finite price/qty or a non-positive qty are dropped.
    """
    if raw is None:
        return ()
    if isinstance(raw, (str, bytes)) or not isinstance(raw, Iterable):
        raise EventValidationError(f"book side must be a list of levels, got {type(raw).__name__}")

    levels = []
    for item in raw:
        if isinstance(item, OrderBookLevel):
            price, qty = item.price, item.qty
        elif isinstance(item, dict):
            price, qty = item.get("price"), item.get("qty", item.get("size"))
        else:
            try:
                price, qty = item
            except (TypeError, ValueError) as exc:
                raise EventValidationError(f"invalid book level: {item!r}") from exc
        try:
            price, qty = float(price), float(qty)
        except (TypeError, ValueError):
            continue
        if math.isfinite(price) and math.isfinite(qty) and qty > 0:
            levels.append(OrderBookLevel(price=price, qty=qty))
    return tuple(levels)


@dataclass(frozen=True)
class MarketEvent(Event):
    """
    Base class for market data events.

    Attributes:
        symbol: Trading symbol
        volume: Traded volume
        mark_price: Optional mark price (derivatives)
        bid: Explicit best bid quote
        ask: Explicit best ask quote
        bids: Bid levels of the attached book snapshot
        asks: Ask levels of the attached book snapshot
    """

    symbol: str = ""
    volume: float = 0.0
    mark_price: Optional[float] = None
    bid: Optional[float] = None
    ask: Optional[float] = None
    bids: Tuple[OrderBookLevel, ...] = ()
    asks: Tuple[OrderBookLevel, ...] = ()

    @property
    def reference_price(self) -> Optional[float]:
        """Price used as the last traded price."""
        return None

    @property
    def best_bid(self) -> Optional[float]:
        if self.bid is not None:
            return self.bid
        if self.bids:
            return max(level.price for level in self.bids)
        return None

    @property
    def best_ask(self) -> Optional[float]:
        if self.ask is not None:
            return self.ask
        if self.asks:
            return min(level.price for level in self.asks)
        return None

    @property
    def mid_price(self) -> Optional[float]:
        bid, ask = self.best_bid, self.best_ask
        if bid is None or ask is None:
            return None
        return (bid + ask) / 2

    @property
    def spread(self) -> float:
        bid, ask = self.best_bid, self.best_ask
        if bid is None or ask is None:
            return 0.0
        return ask - bid

    @property
    def has_book(self) -> bool:
        return bool(self.bids or self.asks)

    @classmethod
    def _coerce(cls, values: Dict[str, Any]) -> Dict[str, Any]:
        metadata = values["metadata"]
        book = metadata.pop("orderbook", None)
        if isinstance(book, dict):
            values.setdefault("bids", book.get("bids"))
            values.setdefault("asks", book.get("asks"))

        values["bids"] = parse_book_levels(values.get("bids"))
        values["asks"] = parse_book_levels(values.get("asks"))
        values["volume"] = _to_float("volume", values.get("volume") or 0.0)
        for name in ("mark_price", "bid", "ask"):
            values[name] = _to_optional_float(name, values.get(name))
        if values.get("symbol") is None:
            values["symbol"] = ""
        return values


@dataclass(frozen=True)
class TickEvent(MarketEvent):
    """
    Trade or quote tick.

    Attributes:
        price: Last traded price
    """

    event_type: ClassVar[EventType] = EventType.TICK

    price: Optional[float] = None

    @property
    def reference_price(self) -> Optional[float]:
        return self.price

    @classmethod
    def _coerce(cls, values: Dict[str, Any]) -> Dict[str, Any]:
        values = super()._coerce(values)
        values["price"] = _to_optional_float("price", values.get("price"))
        return values


@dataclass(frozen=True)
class CandleEvent(MarketEvent):
    """
    OHLCV candle.

    The candle close is treated as the last traded price.
    """

    event_type: ClassVar[EventType] = EventType.CANDLE

    open: Optional[float] = None
    high: Optional[float] = None
    low: Optional[float] = None
    close: Optional[float] = None

    @property
    def reference_price(self) -> Optional[float]:
        return self.close

    @property
    def range(self) -> Optional[float]:
        if self.high is None or self.low is None:
            return None
        return self.high - self.low

    @classmethod
    def _coerce(cls, values: Dict[str, Any]) -> Dict[str, Any]:
        values = super()._coerce(values)
        for name in ("open", "high", "low", "close"):
            values[name] = _to_optional_float(name, values.get(name))
        return values
