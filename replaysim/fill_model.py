"""
Fill simulation.

This module turns order intents into fills under venue constraints:
- Tick/lot rounding and order validation (returned as rejections)
- Market orders walking the book, with a slippage-priced synthetic
  fill for any remainder
- Limit orders with activation latency, TTL, latent cancels, and
  passive (maker) or aggressive (taker) matching

Validation failures are data, not exceptions: every entry point returns
an ``ExecutionResult`` whose status says what happened.

Resting limit orders are evaluated FIFO by submission at each market
event. Book liquidity taken from a market event, by a resting order or
a market order, is not available to later orders against the same event.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from replaysim.config.settings import FillModelSettings, get_settings
from replaysim.core.types import LimitMode, Liquidity, Side
from replaysim.events.market import MarketEvent, parse_book_levels
from replaysim.ledger import QTY_EPSILON, PositionLedger
from replaysim.slippage import NoSlippage, SlippageModel, build_slippage_model
from replaysim.utils.logger import get_logger

logger = get_logger(__name__)

# Absorbs binary representation error in value / step (e.g. 0.15 / 0.05)
_ROUNDING_EPSILON = 1e-9


def _step_decimals(step: float) -> int:
    exponent = Decimal(str(step)).as_tuple().exponent
    return max(0, -int(exponent))


def round_to_step(value: float, step: Optional[float]) -> float:
    """
    Round ``value`` to the nearest multiple of ``step``.

    Halves round up (``floor(value / step + 0.5)``) and the result is
    trimmed to the step's decimal precision. A missing or non-positive
    step leaves the value unchanged.
    """
    if step is None or not math.isfinite(step) or step <= 0:
        return value
    if not math.isfinite(value):
        return value
    scaled = math.floor(value / step + 0.5 + _ROUNDING_EPSILON)
    return round(scaled * step, _step_decimals(step))


def round_to_tick(price: float, tick_size: Optional[float]) -> float:
    return round_to_step(price, tick_size)


def round_to_lot(qty: float, step_size: Optional[float]) -> float:
    return round_to_step(qty, step_size)


class ExecutionStatus(str, Enum):
    """Outcome of a fill model request."""
    FILLED = "filled"
    PARTIAL = "partial"
    REJECTED = "rejected"
    ACCEPTED = "accepted"
    CANCEL_REQUESTED = "cancel_requested"


class RejectReason(str, Enum):
    """Reasons a request is rejected."""
    INVALID_QTY = "invalid_qty"
    MIN_QTY_VIOLATION = "min_qty_violation"
    MAX_QTY_VIOLATION = "max_qty_violation"
    MIN_NOTIONAL_VIOLATION = "min_notional_violation"
    ORDER_NOT_OPEN = "order_not_open"


class CancelReason(str, Enum):
    """Reasons a resting order is cancelled."""
    USER_CANCEL = "user_cancel"
    TTL_TIMEOUT = "ttl_timeout"
    INSUFFICIENT_LIQUIDITY = "insufficient_liquidity"


class OrderStatus(str, Enum):
    OPEN = "open"
    FILLED = "filled"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class Fill:
    """
    Single execution against one book level or the synthetic price.

    Attributes:
        order_id: Order identifier
        timestamp: Execution time (ms)
        side: Buy or sell
        qty: Executed quantity
        price: Tick-rounded execution price
        executed_notional: qty x price
        fee: Fee charged
        fee_rate: Rate the fee was charged at
        liquidity: Maker or taker
        realized_pnl_delta: Realized P&L of this fill on the model's ledger
    """
    order_id: str
    timestamp: int
    side: Side
    qty: float
    price: float
    executed_notional: float
    fee: float
    fee_rate: float
    liquidity: Liquidity
    realized_pnl_delta: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "order_id": self.order_id,
            "timestamp": self.timestamp,
            "side": self.side.value,
            "qty": self.qty,
            "price": self.price,
            "executed_notional": self.executed_notional,
            "fee": self.fee,
            "fee_rate": self.fee_rate,
            "liquidity": self.liquidity.value,
            "realized_pnl_delta": self.realized_pnl_delta,
        }


@dataclass(frozen=True)
class Cancellation:
    """A resting order cancelled during market event processing."""
    order_id: str
    reason: CancelReason
    timestamp: int


@dataclass
class LimitOrder:
    """
    Resting limit order.

    Attributes:
        order_id: Order identifier
        side: Buy or sell
        qty: Lot-rounded order quantity
        remaining_qty: Quantity still open
        price: Tick-rounded limit price
        mode: Passive (maker) or aggressive (taker)
        status: Open, filled or cancelled
        created_at: Submission time (ms)
        active_at: First time the order may match
        expires_at: TTL expiry time, if any
        cancel_requested_at: When a cancel was requested
        cancel_effective_at: When the cancel takes effect
        fills: Fills so far
        submission_seq: FIFO position
    """
    order_id: str
    side: Side
    qty: float
    remaining_qty: float
    price: float
    mode: LimitMode
    created_at: int
    active_at: int
    expires_at: Optional[int] = None
    status: OrderStatus = OrderStatus.OPEN
    cancel_requested_at: Optional[int] = None
    cancel_effective_at: Optional[int] = None
    fills: List[Fill] = field(default_factory=list)
    submission_seq: int = 0

    @property
    def is_open(self) -> bool:
        return self.status is OrderStatus.OPEN

    @property
    def filled_qty(self) -> float:
        return self.qty - self.remaining_qty

    def is_active(self, timestamp: int) -> bool:
        return self.is_open and timestamp >= self.active_at


@dataclass(frozen=True)
class MarketQuote:
    """
    Market context for a synthetic fill.

    Attributes:
        last_price: Last traded price (preferred reference)
        mid_price: Mid of best bid/ask (second choice)
        price: Any other price hint (last resort)
        spread: Bid/ask spread for spread-based slippage
        avg_volume: Liquidity proxy for liquidity-based slippage
    """
    last_price: Optional[float] = None
    mid_price: Optional[float] = None
    price: Optional[float] = None
    spread: float = 0.0
    avg_volume: Optional[float] = None

    @property
    def reference_price(self) -> Optional[float]:
        for candidate in (self.last_price, self.mid_price, self.price):
            if candidate is not None:
                return candidate
        return None

    @classmethod
    def from_event(cls, event: MarketEvent, last_price: Optional[float] = None) -> "MarketQuote":
        """Quote from a market event; ``last_price`` is used when the event has no price."""
        reference = event.reference_price
        return cls(
            last_price=reference if reference is not None else last_price,
            mid_price=event.mid_price,
            spread=event.spread,
            avg_volume=event.volume if event.volume > 0 else None,
        )

    @classmethod
    def coerce(cls, quote: Union["MarketQuote", Mapping[str, Any], None]) -> "MarketQuote":
        if quote is None:
            return cls()
        if isinstance(quote, MarketQuote):
            return quote
        return cls(
            last_price=quote.get("last_price"),
            mid_price=quote.get("mid_price"),
            price=quote.get("price"),
            spread=float(quote.get("spread") or 0.0),
            avg_volume=quote.get("avg_volume"),
        )


@dataclass(frozen=True)
class ExecutionResult:
    """
    Result of a fill model request.

    Attributes:
        status: What happened
        order_id: Order identifier (None for validation rejections)
        reason: Rejection reason
        requested_qty: Lot-rounded requested quantity
        filled_qty: Quantity executed
        remaining_qty: Quantity left unexecuted
        fills: Executions
        order: The accepted limit order
        effective_at: Time a requested cancel takes effect
        notional: Notional checked against the minimum, for rejections
    """
    status: ExecutionStatus
    order_id: Optional[str] = None
    reason: Optional[RejectReason] = None
    requested_qty: float = 0.0
    filled_qty: float = 0.0
    remaining_qty: float = 0.0
    fills: Tuple[Fill, ...] = ()
    order: Optional[LimitOrder] = None
    effective_at: Optional[int] = None
    notional: Optional[float] = None

    @property
    def is_rejected(self) -> bool:
        return self.status is ExecutionStatus.REJECTED

    @property
    def total_fees(self) -> float:
        return sum(f.fee for f in self.fills)

    @property
    def average_price(self) -> Optional[float]:
        qty = sum(f.qty for f in self.fills)
        if qty <= 0:
            return None
        return sum(f.executed_notional for f in self.fills) / qty


@dataclass(frozen=True)
class MarketEventOutcome:
    """Fills and cancellations produced by one market event."""
    fills: Tuple[Fill, ...] = ()
    cancellations: Tuple[Cancellation, ...] = ()


@dataclass
class FillModelConfig:
    """
    Venue constraints and cost parameters.

    Attributes:
        tick_size: Price increment
        step_size: Quantity increment
        min_notional: Minimum order notional
        min_qty: Minimum order quantity
        max_qty: Maximum order quantity
        maker_fee_rate: Fee rate for passive fills
        taker_fee_rate: Fee rate for aggressive/market fills
        slippage_model: Default model for synthetic fills
        order_latency_ms: Delay before a limit order can match
        cancel_latency_ms: Default delay before a cancel takes effect
    """
    tick_size: Optional[float] = None
    step_size: Optional[float] = None
    min_notional: Optional[float] = None
    min_qty: Optional[float] = None
    max_qty: Optional[float] = None
    maker_fee_rate: float = 0.0
    taker_fee_rate: float = 0.0
    slippage_model: SlippageModel = field(default_factory=NoSlippage)
    order_latency_ms: int = 0
    cancel_latency_ms: int = 0

    @classmethod
    def from_settings(cls, settings: Optional[FillModelSettings] = None) -> "FillModelConfig":
        """Build a config from settings (global settings by default)."""
        settings = settings or get_settings().fill
        slippage = build_slippage_model({
            "type": settings.slippage_type,
            "fixed": settings.slippage_fixed,
            "pct": settings.slippage_pct,
            "base": settings.slippage_base,
            "k": settings.slippage_k,
        })
        return cls(
            tick_size=settings.tick_size,
            step_size=settings.step_size,
            min_notional=settings.min_notional,
            min_qty=settings.min_qty,
            max_qty=settings.max_qty,
            maker_fee_rate=settings.maker_fee_rate,
            taker_fee_rate=settings.taker_fee_rate,
            slippage_model=slippage,
            order_latency_ms=settings.order_latency_ms,
            cancel_latency_ms=settings.cancel_latency_ms,
        )


BookInput = Union[MarketEvent, Mapping[str, Any], None]


def _book_levels(book: BookInput, side: Side) -> List[List[float]]:
    """
    Working copy of the side of the book a ``side`` order takes from.

    Returns mutable [price, qty] pairs, best price first.
    """
    if book is None:
        return []
    if isinstance(book, MarketEvent):
        raw = book.asks if side is Side.BUY else book.bids
    else:
        raw = parse_book_levels(book.get("asks") if side is Side.BUY else book.get("bids"))
    levels = [[level.price, level.qty] for level in raw]
    levels.sort(key=lambda level: level[0], reverse=side is Side.SELL)
    return levels


class FillModel:
    """
    Fill simulator with its own position ledger.

    Example:
        model = FillModel(FillModelConfig(tick_size=0.1, taker_fee_rate=0.001))
        result = model.execute_market_order(
            Side.BUY, 3, timestamp=1,
            book={"asks": [{"price": 100, "qty": 1}]},
            quote=MarketQuote(last_price=101),
            slippage_model=FixedSlippage(1),
        )
    """

    def __init__(self, config: Optional[FillModelConfig] = None, **overrides: Any) -> None:
        """
        Initialize the fill model.

        Args:
            config: Fill model configuration
            **overrides: FillModelConfig fields overriding ``config``
        """
        config = config or FillModelConfig()
        if overrides:
            if "slippage_model" in overrides:
                overrides["slippage_model"] = build_slippage_model(overrides["slippage_model"])
            config = FillModelConfig(**{**config.__dict__, **overrides})
        self.config = config
        self.ledger = PositionLedger()
        # Every order ever submitted; _open holds the live ones in submission order
        self.orders: Dict[str, LimitOrder] = {}
        self._open: Dict[str, LimitOrder] = {}
        self._book_event: Optional[MarketEvent] = None
        self._book_sides: Dict[Side, List[List[float]]] = {}
        self._next_id = 1
        self._submission_seq = 0

    def reset(self) -> None:
        """Forget all orders, fills and book depletion."""
        self.ledger.reset()
        self.orders.clear()
        self._open.clear()
        self._book_event = None
        self._book_sides = {}
        self._next_id = 1
        self._submission_seq = 0

    @property
    def open_orders(self) -> List[LimitOrder]:
        return list(self._open.values())

    def _levels(self, book: BookInput, side: Side) -> List[List[float]]:
        """
        Book levels an order on ``side`` consumes.

        Levels of a market event are shared by every order executed against
        that event, so liquidity taken once is gone until a new market event
        replaces the book. Mapping books are one-off snapshots.
        """
        if not isinstance(book, MarketEvent):
            return _book_levels(book, side)
        if book is not self._book_event:
            self._book_event = book
            self._book_sides = {}
        if side not in self._book_sides:
            self._book_sides[side] = _book_levels(book, side)
        return self._book_sides[side]

    def get_order(self, order_id: str) -> Optional[LimitOrder]:
        return self.orders.get(order_id)

    # =========================================================================
    # VALIDATION
    # =========================================================================

    def _validate(self, qty: float, price_hint: Optional[float]) -> Tuple[Optional[ExecutionResult], float]:
        cfg = self.config
        rounded = round_to_lot(qty, cfg.step_size)
        if not math.isfinite(rounded) or rounded <= 0:
            return ExecutionResult(ExecutionStatus.REJECTED, reason=RejectReason.INVALID_QTY), rounded

        if cfg.min_qty is not None and rounded < cfg.min_qty:
            return ExecutionResult(
                ExecutionStatus.REJECTED, reason=RejectReason.MIN_QTY_VIOLATION, requested_qty=rounded
            ), rounded

        if cfg.max_qty is not None and rounded > cfg.max_qty:
            return ExecutionResult(
                ExecutionStatus.REJECTED, reason=RejectReason.MAX_QTY_VIOLATION, requested_qty=rounded
            ), rounded

        if price_hint is not None and cfg.min_notional is not None:
            notional = rounded * price_hint
            if notional < cfg.min_notional:
                return ExecutionResult(
                    ExecutionStatus.REJECTED,
                    reason=RejectReason.MIN_NOTIONAL_VIOLATION,
                    requested_qty=rounded,
                    notional=notional,
                ), rounded

        return None, rounded

    def _new_id(self, prefix: str) -> str:
        order_id = f"{prefix}-{self._next_id}"
        self._next_id += 1
        return order_id

    # =========================================================================
    # EXECUTION
    # =========================================================================

    def _make_fill(
        self,
        order_id: str,
        timestamp: int,
        side: Side,
        qty: float,
        price: float,
        liquidity: Liquidity,
    ) -> Fill:
        fee_rate = self.config.taker_fee_rate if liquidity is Liquidity.TAKER else self.config.maker_fee_rate
        notional = qty * price
        fee = notional * fee_rate
        realized = self.ledger.apply_fill(side, qty, price, fee)
        return Fill(
            order_id=order_id,
            timestamp=timestamp,
            side=side,
            qty=qty,
            price=price,
            executed_notional=notional,
            fee=fee,
            fee_rate=fee_rate,
            liquidity=liquidity,
            realized_pnl_delta=realized,
        )

    def _book_fill(
        self,
        side: Side,
        qty: float,
        levels: List[List[float]],
        timestamp: int,
        order_id: str,
        liquidity: Liquidity,
        limit_price: Optional[float] = None,
    ) -> Tuple[List[Fill], float]:
        """Consume ``levels`` in place, best first, up to ``limit_price``."""
        fills: List[Fill] = []
        remaining = qty

        for level in levels:
            if remaining <= 0:
                break
            price, available = level
            if available <= 0:
                continue
            if limit_price is not None:
                if side is Side.BUY and price > limit_price:
                    break
                if side is Side.SELL and price < limit_price:
                    break

            executed = min(remaining, available)
            executed_price = round_to_tick(price, self.config.tick_size)
            fills.append(self._make_fill(order_id, timestamp, side, executed, executed_price, liquidity))

            level[1] = available - executed
            remaining -= executed
            if remaining < QTY_EPSILON:
                remaining = 0.0

        return fills, remaining

    def _synthetic_fill(
        self,
        side: Side,
        qty: float,
        quote: MarketQuote,
        timestamp: int,
        order_id: str,
        slippage_model: Optional[SlippageModel],
    ) -> Tuple[List[Fill], float]:
        reference = quote.reference_price
        if reference is None or not math.isfinite(reference):
            return [], qty

        model = slippage_model or self.config.slippage_model
        avg_volume = quote.avg_volume if quote.avg_volume is not None else qty
        slip = model.impact(side, qty, spread=quote.spread, avg_volume=avg_volume)
        price = round_to_tick(reference + slip, self.config.tick_size)
        return [self._make_fill(order_id, timestamp, side, qty, price, Liquidity.TAKER)], 0.0

    def execute_market_order(
        self,
        side: Union[Side, str],
        qty: float,
        timestamp: int,
        book: BookInput = None,
        quote: Union[MarketQuote, Mapping[str, Any], None] = None,
        slippage_model: Union[SlippageModel, Mapping[str, Any], None] = None,
        order_id: Optional[str] = None,
    ) -> ExecutionResult:
        """
        Execute a market order.

        The book is walked best price first; any remainder is filled at
        the quote's reference price plus slippage. Without a reference
        price the remainder stays unfilled (status ``partial``).

        Args:
            side: Buy or sell
            qty: Requested quantity (lot-rounded)
            timestamp: Execution time (ms)
            book: Market event or mapping with ``bids``/``asks``
            quote: Reference prices for the synthetic fill
            slippage_model: Overrides the configured model
            order_id: Order identifier (``mkt-N`` by default)

        Returns:
            ExecutionResult with status filled, partial or rejected
        """
        side = Side.parse(side)
        quote = MarketQuote.coerce(quote)
        rejection, rounded = self._validate(qty, quote.reference_price)
        if rejection is not None:
            logger.debug(f"Market order rejected: {rejection.reason.value} (qty={qty})")
            return rejection

        order_id = order_id or self._new_id("mkt")
        model = build_slippage_model(slippage_model) if slippage_model is not None else None

        fills, remaining = self._book_fill(
            side, rounded, self._levels(book, side), timestamp, order_id, Liquidity.TAKER
        )
        if remaining > 0:
            synthetic, remaining = self._synthetic_fill(side, remaining, quote, timestamp, order_id, model)
            fills.extend(synthetic)

        return ExecutionResult(
            status=ExecutionStatus.FILLED if remaining == 0 else ExecutionStatus.PARTIAL,
            order_id=order_id,
            requested_qty=rounded,
            filled_qty=rounded - remaining,
            remaining_qty=remaining,
            fills=tuple(fills),
        )

    # =========================================================================
    # LIMIT ORDERS
    # =========================================================================

    def submit_limit_order(
        self,
        side: Union[Side, str],
        qty: float,
        price: float,
        timestamp: int,
        mode: Union[LimitMode, str] = LimitMode.PASSIVE,
        ttl_ms: Optional[int] = None,
        order_id: Optional[str] = None,
    ) -> ExecutionResult:
        """
        Submit a limit order.

        The order becomes eligible at ``timestamp + order_latency_ms`` and,
        with a TTL, expires at ``timestamp + ttl_ms``.

        Returns:
            ExecutionResult with status accepted (and the order) or rejected
        """
        side = Side.parse(side)
        mode = LimitMode(mode)
        rounded_price = round_to_tick(price, self.config.tick_size)
        rejection, rounded = self._validate(qty, rounded_price)
        if rejection is not None:
            logger.debug(f"Limit order rejected: {rejection.reason.value} (qty={qty}, price={price})")
            return rejection

        order_id = order_id or self._new_id("lmt")
        order = LimitOrder(
            order_id=order_id,
            side=side,
            qty=rounded,
            remaining_qty=rounded,
            price=rounded_price,
            mode=mode,
            created_at=timestamp,
            active_at=timestamp + self.config.order_latency_ms,
            expires_at=timestamp + ttl_ms if ttl_ms is not None else None,
            submission_seq=self._submission_seq,
        )
        self._submission_seq += 1
        self.orders[order_id] = order
        self._open[order_id] = order
        return ExecutionResult(
            status=ExecutionStatus.ACCEPTED,
            order_id=order_id,
            requested_qty=rounded,
            remaining_qty=rounded,
            order=order,
        )

    def request_cancel(self, order_id: str, timestamp: int, latency_ms: Optional[int] = None) -> ExecutionResult:
        """
        Request cancellation of an open order.

        The cancel takes effect at ``timestamp + max(0, latency)``; fills
        before that time still execute.

        Returns:
            ExecutionResult with status cancel_requested, or rejected with
            ``order_not_open``
        """
        order = self.orders.get(order_id)
        if order is None or not order.is_open:
            return ExecutionResult(ExecutionStatus.REJECTED, order_id=order_id, reason=RejectReason.ORDER_NOT_OPEN)

        latency = self.config.cancel_latency_ms if latency_ms is None else latency_ms
        order.cancel_requested_at = timestamp
        order.cancel_effective_at = timestamp + max(0, int(latency))
        return ExecutionResult(
            status=ExecutionStatus.CANCEL_REQUESTED,
            order_id=order_id,
            remaining_qty=order.remaining_qty,
            effective_at=order.cancel_effective_at,
        )

    def process_market_event(self, event: MarketEvent) -> MarketEventOutcome:
        """
        Advance resting limit orders through one market event.

        For each open order in submission order: skip if not yet active;
        cancel if a requested cancel is effective, else if the TTL has
        elapsed; otherwise try to match against the event's book.

        Returns:
            MarketEventOutcome with the fills and cancellations
        """
        timestamp = event.timestamp
        fills: List[Fill] = []
        cancellations: List[Cancellation] = []
        # A new event replaces the book; later market orders share what is left
        self._book_event = event
        self._book_sides = {}

        for order in list(self._open.values()):
            if not order.is_active(timestamp):
                continue

            if order.cancel_effective_at is not None and timestamp >= order.cancel_effective_at:
                order.status = OrderStatus.CANCELLED
                cancellations.append(Cancellation(order.order_id, CancelReason.USER_CANCEL, timestamp))
            elif order.expires_at is not None and timestamp >= order.expires_at:
                order.status = OrderStatus.CANCELLED
                cancellations.append(Cancellation(order.order_id, CancelReason.TTL_TIMEOUT, timestamp))
            else:
                fills.extend(self._match_limit_order(order, event, self._levels(event, order.side)))

            if not order.is_open:
                del self._open[order.order_id]

        return MarketEventOutcome(fills=tuple(fills), cancellations=tuple(cancellations))

    def _match_limit_order(self, order: LimitOrder, event: MarketEvent, levels: List[List[float]]) -> List[Fill]:
        if order.side is Side.BUY:
            best_ask = event.best_ask
            crossed = best_ask is not None and best_ask <= order.price
        else:
            best_bid = event.best_bid
            crossed = best_bid is not None and best_bid >= order.price

        if not crossed and order.mode is LimitMode.PASSIVE:
            return []

        liquidity = Liquidity.TAKER if order.mode is LimitMode.AGGRESSIVE else Liquidity.MAKER
        fills, remaining = self._book_fill(
            order.side,
            order.remaining_qty,
            levels,
            event.timestamp,
            order.order_id,
            liquidity,
            limit_price=order.price,
        )
        if fills:
            order.fills.extend(fills)
            order.remaining_qty = remaining
            if remaining <= 0:
                order.status = OrderStatus.FILLED
        return fills
