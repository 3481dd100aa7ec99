"""
Event system for the replay engine.

The event union is closed: every kind has one dataclass, registered under
its ``EventType`` when its module is imported here.
"""

from replaysim.events.base import (
    EVENT_CLASSES,
    EVENT_PRIORITY,
    Event,
    EventPriority,
    EventType,
    as_event_list,
    normalize_event,
    to_epoch_ms,
)
from replaysim.events.market import CandleEvent, MarketEvent, OrderBookLevel, TickEvent, parse_book_levels
from replaysim.events.signal import SignalEvent
from replaysim.events.order import OrderCancelledEvent, OrderSubmittedEvent
from replaysim.events.fill import OrderFilledEvent
from replaysim.events.account import FundingPaymentEvent, LiquidatedEvent, MarginUpdateEvent
from replaysim.events.queue import EventScheduler

__all__ = [
    # Base
    "Event",
    "EventType",
    "EventPriority",
    "EVENT_PRIORITY",
    "EVENT_CLASSES",
    "normalize_event",
    "as_event_list",
    "to_epoch_ms",
    # Market
    "MarketEvent",
    "TickEvent",
    "CandleEvent",
    "OrderBookLevel",
    "parse_book_levels",
    # Strategy / orders
    "SignalEvent",
    "OrderSubmittedEvent",
    "OrderFilledEvent",
    "OrderCancelledEvent",
    # Account
    "FundingPaymentEvent",
    "MarginUpdateEvent",
    "LiquidatedEvent",
    # Scheduler
    "EventScheduler",
]
