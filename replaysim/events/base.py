"""
Base event classes for the event-driven replay.

This module defines the core event infrastructure including:
- Event kinds (a closed set) and their fixed scheduling priorities
- The frozen base Event dataclass
- Normalization of raw adapter/collaborator output into typed events
- Timestamp conversion to integer epoch milliseconds

Every concrete event class declares its kind through the ``event_type``
class variable and registers itself, so dispatch and priority lookup are
exhaustive over the registered kinds.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, fields, replace
from datetime import date, datetime
from enum import Enum, IntEnum
from typing import Any, ClassVar, Dict, Iterable, List, Mapping, Optional, Tuple, Type

import numpy as np
import pandas as pd

from replaysim.core.exceptions import EventValidationError
from replaysim.core.types import Side


class EventType(str, Enum):
    """Kinds of events in the replay. Values are the wire names."""

    # Market events
    TICK = "tick"
    CANDLE = "candle"

    # Strategy output
    SIGNAL_GENERATED = "signal_generated"

    # Order lifecycle
    ORDER_SUBMITTED = "order_submitted"
    ORDER_FILLED = "order_filled"
    ORDER_CANCELLED = "order_cancelled"

    # Account / risk
    FUNDING_PAYMENT = "funding_payment"
    MARGIN_UPDATE = "margin_update"
    LIQUIDATED = "liquidated"

    @property
    def is_market_data(self) -> bool:
        return self in (EventType.TICK, EventType.CANDLE)


class EventPriority(IntEnum):
    """
    Event processing priority for events sharing a timestamp.

    Lower values are processed first: market data, then the signals it
    triggers, then the order lifecycle, then account and risk events.
    """
    MARKET_DATA = 10
    SIGNAL = 20
    ORDER_SUBMITTED = 30
    ORDER_FILLED = 40
    ORDER_CANCELLED = 50
    FUNDING = 60
    MARGIN_UPDATE = 70
    LIQUIDATION = 80


EVENT_PRIORITY: Dict[EventType, EventPriority] = {
    EventType.TICK: EventPriority.MARKET_DATA,
    EventType.CANDLE: EventPriority.MARKET_DATA,
    EventType.SIGNAL_GENERATED: EventPriority.SIGNAL,
    EventType.ORDER_SUBMITTED: EventPriority.ORDER_SUBMITTED,
    EventType.ORDER_FILLED: EventPriority.ORDER_FILLED,
    EventType.ORDER_CANCELLED: EventPriority.ORDER_CANCELLED,
    EventType.FUNDING_PAYMENT: EventPriority.FUNDING,
    EventType.MARGIN_UPDATE: EventPriority.MARGIN_UPDATE,
    EventType.LIQUIDATED: EventPriority.LIQUIDATION,
}

# Registry of concrete event classes, filled by Event.__init_subclass__
EVENT_CLASSES: Dict[EventType, Type["Event"]] = {}


def to_epoch_ms(value: Any) -> int:
    """
    Convert a timestamp to integer epoch milliseconds.

    Accepts ints, finite floats (truncated), digit strings, and anything
    ``pandas.Timestamp`` can parse (ISO strings, datetimes). Naive values
    are read as UTC.

    Raises:
        EventValidationError: If the value cannot be parsed
    """
    if value is None or isinstance(value, bool):
        raise EventValidationError(f"Invalid timestamp: {value!r}")

    if isinstance(value, (int, np.integer)):
        return int(value)

    if isinstance(value, (float, np.floating)):
        if not math.isfinite(value):
            raise EventValidationError(f"Invalid timestamp: {value!r}")
        return int(value)

    if isinstance(value, str):
        text = value.strip()
        if text.lstrip("-").isdigit():
            return int(text)
        if not text:
            raise EventValidationError(f"Invalid timestamp: {value!r}")

    if not isinstance(value, (str, datetime, date, pd.Timestamp, np.datetime64)):
        raise EventValidationError(f"Invalid timestamp: {value!r}")

    try:
        ts = pd.Timestamp(value)
    except (ValueError, TypeError, OverflowError) as exc:
        raise EventValidationError(f"Invalid timestamp: {value!r}") from exc

    if ts is pd.NaT:
        raise EventValidationError(f"Invalid timestamp: {value!r}")

    # .value is nanoseconds since epoch in UTC for both naive and aware stamps
    return int(ts.value // 1_000_000)


def _to_float(name: str, value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise EventValidationError(f"{name} must be a number, got {value!r}") from exc
    if not math.isfinite(number):
        raise EventValidationError(f"{name} must be a finite number, got {value!r}")
    return number


def _to_optional_float(name: str, value: Any) -> Optional[float]:
    if value is None:
        return None
    return _to_float(name, value)


def _to_side(value: Any) -> Side:
    try:
        return Side.parse(value)
    except ValueError as exc:
        raise EventValidationError(str(exc)) from exc


@dataclass(frozen=True)
class Event:
    """
    Base class for all replay events.

    Events are immutable. The scheduler assigns ``sequence`` at enqueue
    time by stamping a copy (see ``with_sequence``); before that it is -1.

    Attributes:
        timestamp: Event time in epoch milliseconds
        sequence: Monotonic enqueue sequence number
        source: Origin of the event (adapter, strategy, execution, engine)
        metadata: Extra raw fields carried through untouched
    """

    event_type: ClassVar[EventType]

    timestamp: int
    sequence: int = -1
    source: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        event_type = cls.__dict__.get("event_type")
        if isinstance(event_type, EventType):
            EVENT_CLASSES[event_type] = cls

    @property
    def kind(self) -> str:
        """Wire name of the event kind."""
        return self.event_type.value

    @property
    def priority(self) -> EventPriority:
        """Fixed priority derived from the event kind."""
        return EVENT_PRIORITY[self.event_type]

    @property
    def sort_key(self) -> Tuple[int, int, int]:
        """Total order used by the scheduler."""
        return (self.timestamp, int(self.priority), self.sequence)

    def with_sequence(self, sequence: int) -> "Event":
        """Return a copy stamped with a scheduler sequence number."""
        return replace(self, sequence=sequence)

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert event to a plain dictionary.

        Enum members are written as their values and book levels as
        ``{"price", "qty"}`` mappings.
        """
        data: Dict[str, Any] = {
            "kind": self.kind,
            "timestamp": self.timestamp,
            "priority": int(self.priority),
            "sequence": self.sequence,
        }
        for f in fields(self):
            if f.name in data:
                continue
            data[f.name] = _plain(getattr(self, f.name))
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Event":
        """
        Build an event of this class from a raw mapping.

        Keys matching dataclass fields are coerced and used; any other key
        (except ``kind``/``type``/``priority``) lands in ``metadata``.
        """
        if data.get("timestamp") is None:
            raise EventValidationError("each event must include timestamp")

        known = {f.name for f in fields(cls)}
        values: Dict[str, Any] = {}
        extras: Dict[str, Any] = dict(data.get("metadata") or {})
        for key, value in data.items():
            if key in ("kind", "type", "priority", "metadata"):
                continue
            if key in known:
                values[key] = value
            else:
                extras[key] = value

        values["timestamp"] = to_epoch_ms(data["timestamp"])
        values["metadata"] = extras
        values = cls._coerce(values)
        try:
            return cls(**values)
        except TypeError as exc:
            raise EventValidationError(f"invalid {cls.event_type.value} event: {exc}") from exc

    @classmethod
    def _coerce(cls, values: Dict[str, Any]) -> Dict[str, Any]:
        """Hook for subclasses to coerce raw field values."""
        return values


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, tuple):
        return [_plain(v) for v in value]
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if hasattr(value, "to_dict"):
        return value.to_dict()
    return value


def normalize_event(raw: Any) -> Event:
    """
    Normalize a raw event into a typed, validated Event.

    Args:
        raw: An Event instance or a mapping with ``kind`` (alias ``type``)
            and ``timestamp`` keys

    Returns:
        Typed event with an integer millisecond timestamp

    Raises:
        EventValidationError: Missing kind/timestamp, unknown kind or
            unparsable timestamp
    """
    if isinstance(raw, Event):
        if isinstance(raw.timestamp, (int, np.integer)) and not isinstance(raw.timestamp, bool):
            return raw
        return replace(raw, timestamp=to_epoch_ms(raw.timestamp))

    if not isinstance(raw, Mapping):
        raise EventValidationError(f"each event must be a mapping or Event, got {type(raw).__name__}")

    kind = raw.get("kind", raw.get("type"))
    if not isinstance(kind, str) or not kind:
        raise EventValidationError('each event must include string "kind"')

    try:
        event_type = EventType(kind)
    except ValueError as exc:
        raise EventValidationError(f"Unknown event kind: {kind}") from exc

    event_cls = EVENT_CLASSES.get(event_type)
    if event_cls is None:
        raise EventValidationError(f"Unknown event kind: {kind}")

    return event_cls.from_dict(raw)


def as_event_list(value: Any) -> List[Event]:
    """
    Normalize collaborator output (None, one event, or an iterable) to a list.
    """
    if value is None:
        return []
    if isinstance(value, (Event, Mapping)):
        return [normalize_event(value)]
    if isinstance(value, Iterable):
        return [normalize_event(item) for item in value]
    raise EventValidationError(f"expected events, got {type(value).__name__}")
