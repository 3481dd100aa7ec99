"""
Market data adapters.

Reference implementations of the ``DataAdapter`` protocol:
- StaticAdapter: replays an in-memory list of raw events
- DataFrameAdapter: turns a pandas OHLCV (or tick) frame into events
- CsvAdapter: reads CSV/JSON files with duplicate and gap policies

plus ``aggregate_candles_from_ticks`` for building candles from ticks.
"""

from __future__ import annotations

import math
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Literal, Optional, Sequence, Union

import pandas as pd

from replaysim.core.exceptions import DataError
from replaysim.events import CandleEvent, Event, TickEvent, normalize_event, to_epoch_ms
from replaysim.utils.logger import get_logger

if TYPE_CHECKING:
    from replaysim.engine import RunParameters

logger = get_logger(__name__)

TIMEFRAME_TO_MS: Dict[str, int] = {
    "1m": 60 * 1000,
    "5m": 5 * 60 * 1000,
    "15m": 15 * 60 * 1000,
    "1h": 60 * 60 * 1000,
    "4h": 4 * 60 * 60 * 1000,
    "1d": 24 * 60 * 60 * 1000,
}

_CANDLE_COLUMNS = ("open", "high", "low", "close")


def timeframe_to_ms(timeframe: str) -> int:
    """Length of a timeframe in milliseconds."""
    try:
        return TIMEFRAME_TO_MS[timeframe]
    except KeyError:
        raise DataError(
            f"Unsupported timeframe: {timeframe} (expected one of {', '.join(TIMEFRAME_TO_MS)})"
        ) from None


def _in_range(event: Event, params: Optional["RunParameters"]) -> bool:
    if params is None:
        return True
    return params.start_ms <= event.timestamp <= params.end_ms


class StaticAdapter:
    """
    Adapter replaying a fixed list of events.

    Args:
        events: Raw events (mappings or Event instances)
        filter_range: Keep only events inside [start_date, end_date]
    """

    def __init__(self, events: Iterable[Union[Event, Dict[str, Any]]], filter_range: bool = True) -> None:
        self.events = list(events)
        self.filter_range = filter_range

    def load(self, params: Optional["RunParameters"] = None) -> List[Event]:
        events = [normalize_event(raw) for raw in self.events]
        if self.filter_range:
            events = [event for event in events if _in_range(event, params)]
        return events


def _row_value(row: Dict[str, Any], name: str) -> Optional[float]:
    value = row.get(name)
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise DataError(f"{name} must be a finite number, got {value!r}") from exc
    if math.isnan(number):
        return None
    if not math.isfinite(number):
        raise DataError(f"{name} must be a finite number, got {value!r}")
    return number


def row_to_event(row: Dict[str, Any], symbol: str = "") -> Event:
    """
    Convert one data row into a tick or candle event.

    Rows with a ``price`` become ticks; rows with all of open/high/low/close
    become candles. The timestamp comes from ``timestamp``, ``time`` or
    ``open_time``.

    Raises:
        DataError: Row is neither a tick nor a candle, or has bad numbers
    """
    raw_ts = next((row[key] for key in ("timestamp", "time", "open_time") if row.get(key) is not None), None)
    timestamp = to_epoch_ms(raw_ts)
    volume = _row_value(row, "volume") or 0.0
    mark_price = _row_value(row, "mark_price")
    row_symbol = row.get("symbol")
    if isinstance(row_symbol, str) and row_symbol:
        symbol = row_symbol

    price = _row_value(row, "price")
    if price is not None:
        return TickEvent(
            timestamp=timestamp,
            source="adapter",
            symbol=symbol,
            price=price,
            volume=volume,
            mark_price=mark_price,
            bid=_row_value(row, "bid"),
            ask=_row_value(row, "ask"),
        )

    ohlc = {name: _row_value(row, name) for name in _CANDLE_COLUMNS}
    if all(value is not None for value in ohlc.values()):
        return CandleEvent(
            timestamp=timestamp,
            source="adapter",
            symbol=symbol,
            volume=volume,
            mark_price=mark_price,
            **ohlc,
        )

    raise DataError("row must represent either tick (price) or candle (open/high/low/close)")


def frame_to_events(frame: pd.DataFrame, symbol: str = "") -> List[Event]:
    """
    Convert a DataFrame into events.

    The timestamp is taken from a ``timestamp``/``time``/``open_time``
    column, else from a DatetimeIndex. Naive datetimes are read as UTC.
    """
    if frame.empty:
        return []

    data = frame
    if not any(column in frame.columns for column in ("timestamp", "time", "open_time")):
        if not isinstance(frame.index, pd.DatetimeIndex):
            raise DataError("frame needs a timestamp column or a DatetimeIndex")
        data = frame.rename_axis("timestamp").reset_index()

    return [row_to_event(row, symbol=symbol) for row in data.to_dict(orient="records")]


class DataFrameAdapter:
    """
    Adapter over a pandas DataFrame of candles or ticks.

    Args:
        frame: OHLCV frame (open/high/low/close[/volume][/mark_price]) or
            tick frame (price[/volume][/bid][/ask][/mark_price])
        symbol: Symbol stamped on the events (defaults to the run symbol)
        filter_range: Keep only rows inside [start_date, end_date]
    """

    def __init__(self, frame: pd.DataFrame, symbol: Optional[str] = None, filter_range: bool = True) -> None:
        self.frame = frame
        self.symbol = symbol
        self.filter_range = filter_range

    def load(self, params: Optional["RunParameters"] = None) -> List[Event]:
        symbol = self.symbol or (params.symbol if params is not None else "")
        events = frame_to_events(self.frame, symbol=symbol)
        if self.filter_range:
            events = [event for event in events if _in_range(event, params)]
        return sorted(events, key=lambda event: event.timestamp)


class CsvAdapter:
    """
    File adapter for CSV or JSON market data.

    Args:
        path: Data file; ``params.data_path`` takes precedence when set
        duplicate_policy: ``drop`` keeps the first row per (kind, timestamp),
            ``reject`` raises on duplicates
        missing_data_policy: For candle-only data, ``drop`` leaves gaps,
            ``reject`` raises on a gap, ``interpolate`` fills gaps linearly
    """

    def __init__(
        self,
        path: Optional[Union[str, Path]] = None,
        duplicate_policy: Literal["drop", "reject"] = "drop",
        missing_data_policy: Literal["drop", "reject", "interpolate"] = "drop",
    ) -> None:
        if duplicate_policy not in ("drop", "reject"):
            raise DataError(f"Unsupported duplicate_policy: {duplicate_policy}")
        if missing_data_policy not in ("drop", "reject", "interpolate"):
            raise DataError(f"Unsupported missing_data_policy: {missing_data_policy}")
        self.path = Path(path) if path is not None else None
        self.duplicate_policy = duplicate_policy
        self.missing_data_policy = missing_data_policy

    def load(self, params: Optional["RunParameters"] = None) -> List[Event]:
        path = params.data_path if params is not None and params.data_path else self.path
        if path is None:
            raise DataError("CSV adapter requires a data path")
        path = Path(path)

        frame = self._read(path)
        symbol = params.symbol if params is not None else ""
        events = frame_to_events(frame, symbol=symbol)
        events = self._apply_duplicate_policy(events)
        events = self._apply_missing_data_policy(events, params.timeframe if params is not None else None)

        logger.debug(f"Loaded {len(events)} events from {path}")
        return sorted(events, key=lambda event: event.timestamp)

    @staticmethod
    def _read(path: Path) -> pd.DataFrame:
        if not path.exists():
            raise DataError(f"Data file not found: {path}")
        if path.suffix.lower() == ".json":
            frame = pd.read_json(path, convert_dates=False)
            if "data" in frame.columns and len(frame.columns) == 1:
                frame = pd.DataFrame(list(frame["data"]))
            return frame
        return pd.read_csv(path, skipinitialspace=True)

    def _apply_duplicate_policy(self, events: List[Event]) -> List[Event]:
        seen = set()
        out = []
        for event in events:
            key = (event.kind, event.timestamp)
            if key in seen:
                if self.duplicate_policy == "reject":
                    raise DataError(f"Duplicate data point detected for {event.kind}:{event.timestamp}")
                continue
            seen.add(key)
            out.append(event)
        return out

    def _apply_missing_data_policy(self, events: List[Event], timeframe: Optional[str]) -> List[Event]:
        if not events or self.missing_data_policy == "drop":
            return events
        if any(isinstance(event, TickEvent) for event in events):
            return events

        candles = [event for event in events if isinstance(event, CandleEvent)]
        interval = timeframe_to_ms(timeframe or "")
        if self.missing_data_policy == "reject":
            assert_no_candle_gaps(candles, interval)
            return events
        return interpolate_candle_gaps(candles, interval)


def assert_no_candle_gaps(candles: Sequence[CandleEvent], interval_ms: int) -> None:
    """Raise DataError when consecutive candles are more than one interval apart."""
    ordered = sorted(candles, key=lambda candle: candle.timestamp)
    for prev, current in zip(ordered, ordered[1:]):
        if current.timestamp - prev.timestamp > interval_ms:
            raise DataError(
                f"Missing candle data gap detected between {prev.timestamp} and {current.timestamp}"
            )


def _lerp(a: float, b: float, t: float) -> float:
    return a + (b - a) * t


def interpolate_candle_gaps(candles: Sequence[CandleEvent], interval_ms: int) -> List[CandleEvent]:
    """
    Fill missing candles by linear interpolation between their neighbours.
    """
    ordered = sorted(candles, key=lambda candle: candle.timestamp)
    if len(ordered) < 2:
        return list(ordered)

    out: List[CandleEvent] = []
    for current, following in zip(ordered, ordered[1:]):
        out.append(current)
        gap = following.timestamp - current.timestamp
        if gap <= interval_ms:
            continue

        missing = gap // interval_ms - 1
        for step in range(1, missing + 1):
            t = step / (missing + 1)
            out.append(CandleEvent(
                timestamp=current.timestamp + interval_ms * step,
                source="interpolated",
                symbol=current.symbol,
                open=_lerp(current.open, following.open, t),
                high=_lerp(current.high, following.high, t),
                low=_lerp(current.low, following.low, t),
                close=_lerp(current.close, following.close, t),
                volume=_lerp(current.volume, following.volume, t),
            ))
    out.append(ordered[-1])
    return out


def aggregate_candles_from_ticks(ticks: Iterable[Union[TickEvent, Dict[str, Any]]], timeframe: str) -> List[CandleEvent]:
    """
    Bucket ticks into OHLCV candles.

    Each candle is stamped with its bucket start
    (``floor(timestamp / interval) * interval``).
    """
    window = timeframe_to_ms(timeframe)
    rows = []
    for raw in ticks:
        tick = normalize_event({"kind": "tick", **raw} if isinstance(raw, dict) else raw)
        if not isinstance(tick, TickEvent) or tick.price is None:
            raise DataError("ticks must carry a price")
        rows.append({"timestamp": tick.timestamp, "price": tick.price, "volume": tick.volume, "symbol": tick.symbol})

    if not rows:
        return []

    frame = pd.DataFrame(rows).sort_values("timestamp", kind="stable")
    frame["bucket"] = (frame["timestamp"] // window) * window
    grouped = frame.groupby("bucket", sort=True)
    bars = grouped["price"].agg(["first", "max", "min", "last"]).join(grouped["volume"].sum())
    symbols = grouped["symbol"].first()

    return [
        CandleEvent(
            timestamp=int(bucket),
            source="aggregated",
            symbol=str(symbols.loc[bucket]),
            open=float(bar["first"]),
            high=float(bar["max"]),
            low=float(bar["min"]),
            close=float(bar["last"]),
            volume=float(bar["volume"]),
        )
        for bucket, bar in bars.iterrows()
    ]
