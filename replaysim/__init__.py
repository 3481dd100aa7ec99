"""
replaysim - deterministic event-driven backtest replay.

Replays a time-ordered stream of ticks or candles against a pluggable
strategy and execution model, producing a trade log, an equity series and
a final account snapshot. Supports fees, slippage, latency, partial fills,
limit-order lifecycle, and margin/funding/liquidation for futures and
perpetual markets.
"""

from replaysim.adapters import CsvAdapter, DataFrameAdapter, StaticAdapter, aggregate_candles_from_ticks
from replaysim.core import (
    BacktestError,
    ConfigurationError,
    DataError,
    EventValidationError,
    LimitMode,
    Liquidity,
    MarketType,
    OrderType,
    ReplaySimError,
    Side,
    UnknownEventError,
)
from replaysim.engine import (
    AccountSnapshot,
    EngineStatus,
    EquityPoint,
    ReplayEngine,
    RunParameters,
    RunResult,
)
from replaysim.execution import DefaultExecution, FillModelExecution
from replaysim.fill_model import FillModel, FillModelConfig, MarketQuote
from replaysim.interfaces import DataAdapter, EngineContext, ExecutionModel, Strategy
from replaysim.ledger import PositionLedger, PositionSnapshot
from replaysim.margin import MarginModel, MarginSnapshot
from replaysim.rng import SeededRandom

__version__ = "1.0.0"

__all__ = [
    "ReplayEngine",
    "RunParameters",
    "RunResult",
    "EngineStatus",
    "AccountSnapshot",
    "EquityPoint",
    "DataAdapter",
    "Strategy",
    "ExecutionModel",
    "EngineContext",
    "StaticAdapter",
    "DataFrameAdapter",
    "CsvAdapter",
    "aggregate_candles_from_ticks",
    "DefaultExecution",
    "FillModelExecution",
    "FillModel",
    "FillModelConfig",
    "MarketQuote",
    "PositionLedger",
    "PositionSnapshot",
    "MarginModel",
    "MarginSnapshot",
    "SeededRandom",
    "MarketType",
    "Side",
    "OrderType",
    "LimitMode",
    "Liquidity",
    "ReplaySimError",
    "ConfigurationError",
    "DataError",
    "EventValidationError",
    "BacktestError",
    "UnknownEventError",
]
