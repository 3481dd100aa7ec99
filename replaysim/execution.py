"""
Execution models.

This module provides:
- DefaultExecution: immediate fills with random latency and slippage
  drawn from the run's seeded random source
- FillModelExecution: routes signals through a FillModel (book walking,
  fees, venue constraints, limit-order lifecycle)

Both return order lifecycle events; the engine applies them to the
account when they are dispatched.
"""

from __future__ import annotations

import math
from typing import List, Optional

from replaysim.config.settings import EngineSettings, get_settings
from replaysim.core.types import OrderType
from replaysim.events import (
    Event,
    MarketEvent,
    OrderCancelledEvent,
    OrderFilledEvent,
    OrderSubmittedEvent,
    SignalEvent,
)
from replaysim.fill_model import (
    CancelReason,
    ExecutionStatus,
    Fill,
    FillModel,
    FillModelConfig,
    MarketQuote,
)
from replaysim.interfaces import EngineContext
from replaysim.utils.logger import get_logger

logger = get_logger(__name__)

SOURCE = "execution"


class DefaultExecution:
    """
    Simple execution model used when none is configured.

    Every non-cancel signal becomes an order submitted at the signal time
    and filled in full ``floor(random() * max_latency_ms)`` ms later at the
    reference price shifted by ``(random() - 0.5) * 2 * max_slippage_bps``
    basis points. The reference is the signal price, else the last price,
    else 0.

    Order ids are ``order-<n>``, counted per instance and reset per run.
    """

    def __init__(self, settings: Optional[EngineSettings] = None) -> None:
        settings = settings or get_settings().engine
        self.max_latency_ms = settings.max_latency_ms
        self.max_slippage_bps = settings.max_slippage_bps
        self._order_counter = 0

    def reset(self) -> None:
        self._order_counter = 0

    def on_signal(self, signal: SignalEvent, context: EngineContext) -> List[Event]:
        if signal.is_cancel or not signal.qty:
            return []

        self._order_counter += 1
        order_id = f"order-{self._order_counter}"

        latency_ms = math.floor(context.random.random() * self.max_latency_ms)
        slippage_bps = (context.random.random() - 0.5) * 2 * self.max_slippage_bps

        if signal.price is not None:
            reference = signal.price
        elif context.last_price is not None:
            reference = context.last_price
        else:
            reference = 0.0
        fill_price = reference * (1 + slippage_bps / 10_000)

        return [
            OrderSubmittedEvent(
                timestamp=signal.timestamp,
                source=SOURCE,
                order_id=order_id,
                side=signal.side,
                qty=signal.qty,
                price=reference,
                order_type=signal.order_type,
            ),
            OrderFilledEvent(
                timestamp=signal.timestamp + latency_ms,
                source=SOURCE,
                order_id=order_id,
                side=signal.side,
                qty=signal.qty,
                price=fill_price,
            ),
        ]

    def on_market_event(self, event: MarketEvent, context: EngineContext) -> List[Event]:
        return []


class FillModelExecution:
    """
    Execution model backed by a FillModel.

    Market signals execute immediately against the most recent market
    event's book, falling back to a slippage-priced synthetic fill. Limit
    signals rest in the fill model and fill (or expire) on later market
    events. A signal carrying ``cancel_order_id`` requests a latent cancel.

    Rejections surface as ``order_cancelled`` events with the rejection
    reason, so they appear in the trade log.
    """

    def __init__(self, fill_model: Optional[FillModel] = None, config: Optional[FillModelConfig] = None) -> None:
        self.fill_model = fill_model or FillModel(config)
        self._last_market_event: Optional[MarketEvent] = None
        self._order_counter = 0

    def reset(self) -> None:
        self.fill_model.reset()
        self._last_market_event = None
        self._order_counter = 0

    def _next_order_id(self) -> str:
        self._order_counter += 1
        return f"order-{self._order_counter}"

    def on_signal(self, signal: SignalEvent, context: EngineContext) -> List[Event]:
        if signal.is_cancel:
            result = self.fill_model.request_cancel(signal.cancel_order_id, signal.timestamp)
            if result.is_rejected:
                logger.debug(f"Cancel for {signal.cancel_order_id} ignored: {result.reason.value}")
            return []

        order_id = self._next_order_id()
        if signal.order_type is OrderType.LIMIT:
            return self._submit_limit(signal, order_id)
        return self._execute_market(signal, order_id, context)

    def on_market_event(self, event: MarketEvent, context: EngineContext) -> List[Event]:
        self._last_market_event = event
        outcome = self.fill_model.process_market_event(event)

        events: List[Event] = [self._fill_event(fill) for fill in outcome.fills]
        events.extend(
            OrderCancelledEvent(
                timestamp=cancel.timestamp,
                source=SOURCE,
                order_id=cancel.order_id,
                reason=cancel.reason.value,
            )
            for cancel in outcome.cancellations
        )
        return events

    def _execute_market(self, signal: SignalEvent, order_id: str, context: EngineContext) -> List[Event]:
        reference = signal.price if signal.price is not None else context.last_price
        book = self._last_market_event
        if book is not None:
            quote = MarketQuote.from_event(book, last_price=reference)
            if signal.price is not None:
                quote = MarketQuote(
                    last_price=signal.price,
                    mid_price=quote.mid_price,
                    spread=quote.spread,
                    avg_volume=quote.avg_volume,
                )
        else:
            quote = MarketQuote(last_price=reference)

        result = self.fill_model.execute_market_order(
            signal.side,
            signal.qty,
            signal.timestamp,
            book=book,
            quote=quote,
            order_id=order_id,
        )
        if result.is_rejected:
            return [self._rejection(signal, order_id, result.reason.value)]

        events: List[Event] = [
            OrderSubmittedEvent(
                timestamp=signal.timestamp,
                source=SOURCE,
                order_id=order_id,
                side=signal.side,
                qty=result.requested_qty,
                price=quote.reference_price,
                order_type=OrderType.MARKET,
            )
        ]
        events.extend(self._fill_event(fill) for fill in result.fills)
        if result.status is ExecutionStatus.PARTIAL:
            events.append(self._rejection(signal, order_id, CancelReason.INSUFFICIENT_LIQUIDITY.value))
        return events

    def _submit_limit(self, signal: SignalEvent, order_id: str) -> List[Event]:
        price = signal.limit_price if signal.limit_price is not None else signal.price
        if price is None:
            return [self._rejection(signal, order_id, "missing_limit_price")]

        result = self.fill_model.submit_limit_order(
            signal.side,
            signal.qty,
            price,
            signal.timestamp,
            mode=signal.mode,
            ttl_ms=signal.ttl_ms,
            order_id=order_id,
        )
        if result.is_rejected:
            return [self._rejection(signal, order_id, result.reason.value)]

        order = result.order
        return [
            OrderSubmittedEvent(
                timestamp=signal.timestamp,
                source=SOURCE,
                order_id=order.order_id,
                side=order.side,
                qty=order.qty,
                price=order.price,
                order_type=OrderType.LIMIT,
            )
        ]

    @staticmethod
    def _rejection(signal: SignalEvent, order_id: str, reason: str) -> OrderCancelledEvent:
        return OrderCancelledEvent(timestamp=signal.timestamp, source=SOURCE, order_id=order_id, reason=reason)

    @staticmethod
    def _fill_event(fill: Fill) -> OrderFilledEvent:
        return OrderFilledEvent(
            timestamp=fill.timestamp,
            source=SOURCE,
            order_id=fill.order_id,
            side=fill.side,
            qty=fill.qty,
            price=fill.price,
            fee=fill.fee,
            liquidity=fill.liquidity,
        )
