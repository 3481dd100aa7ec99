"""
Event-driven replay engine.

This module provides:
- RunParameters: validated inputs of one run
- AccountState / AccountSnapshot: the simulated account
- ReplayEngine: the state machine replaying an event stream against a
  strategy and an execution model
- RunResult: trade log, equity series and final account snapshot

The engine is a single-threaded reducer. Every event, whether loaded by
the adapter or produced while processing, goes through one scheduler
ordered by (timestamp, priority, sequence); handlers mutate the account
and may enqueue further events. Latency and TTL are future timestamps,
so nothing ever waits.

Example:
    engine = ReplayEngine()
    engine.configure(StaticAdapter(events), MyStrategy())
    result = engine.run({
        "symbol": "BTCUSDT",
        "timeframe": "1m",
        "market_type": "perpetual",
        "start_date": "2024-01-01",
        "end_date": "2024-01-02",
        "initial_cash": 10_000,
        "funding_rate": 0.0001,
        "funding_interval_ms": 8 * 60 * 60 * 1000,
    })
    print(result.final_state.equity)
"""

from __future__ import annotations

import asyncio
import copy
import inspect
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Union

import pandas as pd
from pydantic import BaseModel, ConfigDict, Field, StrictInt, ValidationError, field_validator, model_validator

from replaysim.config.settings import Settings, get_settings
from replaysim.core.exceptions import BacktestError, ConfigurationError, DataError, EventValidationError, UnknownEventError
from replaysim.core.types import MarketType, Side
from replaysim.events import (
    CandleEvent,
    Event,
    EventScheduler,
    EventType,
    FundingPaymentEvent,
    LiquidatedEvent,
    MarginUpdateEvent,
    MarketEvent,
    OrderCancelledEvent,
    OrderFilledEvent,
    OrderSubmittedEvent,
    SignalEvent,
    TickEvent,
    as_event_list,
    normalize_event,
    to_epoch_ms,
)
from replaysim.execution import DefaultExecution
from replaysim.interfaces import DataAdapter, EngineContext, EventOutput, ExecutionModel, Strategy, reset_collaborator
from replaysim.ledger import PositionLedger, PositionSnapshot
from replaysim.margin import MarginModel, unrealized_pnl
from replaysim.rng import SeededRandom
from replaysim.utils.logger import TradeLogger, get_logger

logger = get_logger(__name__)

SOURCE = "engine"


# =============================================================================
# RUN PARAMETERS
# =============================================================================

class RunParameters(BaseModel):
    """
    Validated parameters of one run.

    Dates accept anything ``to_epoch_ms`` does and are stored as epoch
    milliseconds. Unknown keys are kept (strategies may read them).
    """

    model_config = ConfigDict(
        frozen=True,
        extra="allow",
        str_strip_whitespace=True,
        allow_inf_nan=False,
    )

    symbol: str = Field(min_length=1)
    timeframe: str = Field(min_length=1)
    market_type: MarketType
    start_date: int
    end_date: int
    initial_cash: float = Field(default=0.0, ge=0)
    random_seed: Optional[StrictInt] = None

    # Perpetual funding
    funding_rate: Optional[float] = None
    funding_interval_ms: Optional[int] = Field(default=None, gt=0)

    # Margin model
    initial_margin_rate: float = 0.0
    maintenance_margin_rate: float = 0.0
    liquidation_penalty_rate: float = 0.0

    # File adapters
    data_path: Optional[str] = None

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def parse_date(cls, v: Any) -> int:
        try:
            return to_epoch_ms(v)
        except EventValidationError as exc:
            raise ValueError("must be a valid date value") from exc

    @model_validator(mode="after")
    def check_range(self) -> "RunParameters":
        if self.start_date > self.end_date:
            raise ValueError("start_date must be less than or equal to end_date")
        return self

    @property
    def start_ms(self) -> int:
        return self.start_date

    @property
    def end_ms(self) -> int:
        return self.end_date

    @property
    def is_margin_bearing(self) -> bool:
        return self.market_type.is_margin_bearing

    @property
    def funding_enabled(self) -> bool:
        return self.is_margin_bearing and self.funding_rate is not None and self.funding_interval_ms is not None

    @classmethod
    def coerce(cls, params: Union["RunParameters", Mapping[str, Any]]) -> "RunParameters":
        """
        Validate raw parameters.

        Raises:
            ConfigurationError: Parameters are missing or invalid
        """
        if isinstance(params, cls):
            return params
        if not isinstance(params, Mapping):
            raise ConfigurationError("run params must be a mapping or RunParameters")
        try:
            return cls.model_validate(dict(params))
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid run parameters: {exc}") from exc


# =============================================================================
# ACCOUNT STATE
# =============================================================================

@dataclass(frozen=True)
class AccountSnapshot:
    """
    Immutable copy of the account.

    Attributes:
        cash: Cash balance
        equity: cash + unrealized P&L
        margin: Initial margin (or last published margin)
        maintenance_margin: Maintenance margin
        unrealized_pnl: Unrealized P&L at the valuation price
        last_price: Last traded price
        mark_price: Last mark price
        position: Position snapshot
        liquidated: Whether the account was liquidated
    """
    cash: float
    equity: float
    margin: float
    maintenance_margin: float
    unrealized_pnl: float
    last_price: Optional[float]
    mark_price: Optional[float]
    position: PositionSnapshot
    liquidated: bool

    @property
    def realized_pnl(self) -> float:
        return self.position.realized_pnl

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cash": self.cash,
            "equity": self.equity,
            "margin": self.margin,
            "maintenance_margin": self.maintenance_margin,
            "unrealized_pnl": self.unrealized_pnl,
            "last_price": self.last_price,
            "mark_price": self.mark_price,
            "position": self.position.to_dict(),
            "liquidated": self.liquidated,
        }


@dataclass
class AccountState:
    """Mutable account owned by the engine."""
    cash: float = 0.0
    equity: float = 0.0
    margin: float = 0.0
    maintenance_margin: float = 0.0
    unrealized_pnl: float = 0.0
    last_price: Optional[float] = None
    mark_price: Optional[float] = None
    position: PositionLedger = field(default_factory=PositionLedger)
    liquidated: bool = False

    def snapshot(self) -> AccountSnapshot:
        return AccountSnapshot(
            cash=self.cash,
            equity=self.equity,
            margin=self.margin,
            maintenance_margin=self.maintenance_margin,
            unrealized_pnl=self.unrealized_pnl,
            last_price=self.last_price,
            mark_price=self.mark_price,
            position=self.position.snapshot(),
            liquidated=self.liquidated,
        )


@dataclass(frozen=True)
class EquityPoint:
    """Account valuation recorded after each processed event."""
    timestamp: int
    equity: float
    cash: float
    margin: float
    maintenance_margin: float
    unrealized_pnl: float
    realized_pnl: float
    position_qty: float
    position_avg_price: float
    last_price: Optional[float]
    mark_price: Optional[float]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "equity": self.equity,
            "cash": self.cash,
            "margin": self.margin,
            "maintenance_margin": self.maintenance_margin,
            "unrealized_pnl": self.unrealized_pnl,
            "realized_pnl": self.realized_pnl,
            "position_qty": self.position_qty,
            "position_avg_price": self.position_avg_price,
            "last_price": self.last_price,
            "mark_price": self.mark_price,
        }


class EngineStatus(str, Enum):
    """Engine lifecycle states."""
    CONFIGURING = "configuring"
    RUNNING = "running"
    COMPLETED = "completed"
    LIQUIDATED = "liquidated"
    FAILED = "failed"


@dataclass
class RunResult:
    """
    Output of one run.

    Attributes:
        trade_log: Order lifecycle and account events, in processing order
        equity_series: One point per processed event
        final_state: Account snapshot at the end of the run
        status: Completed or liquidated
        params: Run parameters
        events_processed: Number of events dispatched
    """
    trade_log: List[Dict[str, Any]]
    equity_series: List[EquityPoint]
    final_state: AccountSnapshot
    status: EngineStatus
    params: RunParameters
    events_processed: int = 0

    def trades(self, kind: Union[EventType, str, None] = None) -> List[Dict[str, Any]]:
        """Trade log entries, optionally of one kind."""
        if kind is None:
            return list(self.trade_log)
        kind = EventType(kind).value
        return [entry for entry in self.trade_log if entry["kind"] == kind]

    def trade_frame(self) -> pd.DataFrame:
        """Trade log as a DataFrame (nested position columns flattened)."""
        if not self.trade_log:
            return pd.DataFrame(columns=["timestamp", "kind"])
        return pd.json_normalize(self.trade_log, sep="_")

    def equity_frame(self) -> pd.DataFrame:
        """Equity series as a DataFrame indexed by UTC datetime."""
        if not self.equity_series:
            return pd.DataFrame(columns=list(EquityPoint.__dataclass_fields__))
        frame = pd.DataFrame([point.to_dict() for point in self.equity_series])
        frame.index = pd.to_datetime(frame["timestamp"], unit="ms", utc=True)
        frame.index.name = "datetime"
        return frame

    @property
    def equity_curve(self) -> pd.Series:
        """Equity at the last processed event of each timestamp."""
        if not self.equity_series:
            return pd.Series(dtype=float)
        frame = self.equity_frame()
        return frame["equity"].groupby(level=0).last()


# =============================================================================
# ENGINE
# =============================================================================

async def _resolve(awaitable: Awaitable[Any]) -> Any:
    return await awaitable


class ReplayEngine:
    """
    Replay engine state machine.

    Lifecycle: ``configuring`` until ``run`` is called, ``running`` while
    the loop drains the scheduler, then ``completed`` or ``liquidated``
    (``failed`` if the run raised). Every run starts from a fresh account,
    scheduler, order registry and random source.

    Args:
        execution: Execution model (DefaultExecution when omitted)
        settings: Settings (global settings when omitted)
        random_seed: Seed used when run parameters carry none
    """

    def __init__(
        self,
        execution: Optional[ExecutionModel] = None,
        settings: Optional[Settings] = None,
        random_seed: Optional[int] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._default_seed = random_seed if random_seed is not None else self.settings.engine.default_random_seed

        self._adapter: Optional[DataAdapter] = None
        self._strategy: Optional[Strategy] = None
        self._execution: ExecutionModel = DefaultExecution(self.settings.engine)
        if execution is not None:
            self.set_execution(execution)

        self.status = EngineStatus.CONFIGURING
        self._trade_logger = TradeLogger()
        self._handlers: Dict[EventType, Callable[[Any], None]] = {}
        self._register_handlers()
        self._reset(None)

    def _register_handlers(self) -> None:
        """Build the dispatch table; every event kind has exactly one handler."""
        self._handlers[EventType.TICK] = self._handle_market_event
        self._handlers[EventType.CANDLE] = self._handle_market_event
        self._handlers[EventType.SIGNAL_GENERATED] = self._handle_signal
        self._handlers[EventType.ORDER_SUBMITTED] = self._handle_order_submitted
        self._handlers[EventType.ORDER_FILLED] = self._handle_order_filled
        self._handlers[EventType.ORDER_CANCELLED] = self._handle_order_cancelled
        self._handlers[EventType.FUNDING_PAYMENT] = self._handle_funding_payment
        self._handlers[EventType.MARGIN_UPDATE] = self._handle_margin_update
        self._handlers[EventType.LIQUIDATED] = self._handle_liquidated

    # -------------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------------

    def set_adapter(self, adapter: DataAdapter) -> "ReplayEngine":
        if not isinstance(adapter, DataAdapter):
            raise ConfigurationError("adapter must implement load(params)")
        self._adapter = adapter
        return self

    def set_strategy(self, strategy: Strategy) -> "ReplayEngine":
        if not isinstance(strategy, Strategy):
            raise ConfigurationError("strategy must implement on_event(event, context)")
        self._strategy = strategy
        return self

    def set_execution(self, execution: ExecutionModel) -> "ReplayEngine":
        if not isinstance(execution, ExecutionModel):
            raise ConfigurationError("execution must implement on_signal(...) and on_market_event(...)")
        self._execution = execution
        return self

    def configure(
        self,
        adapter: DataAdapter,
        strategy: Strategy,
        execution: Optional[ExecutionModel] = None,
    ) -> "ReplayEngine":
        """Set adapter, strategy and (optionally) execution model."""
        self.set_adapter(adapter)
        self.set_strategy(strategy)
        if execution is not None:
            self.set_execution(execution)
        return self

    @property
    def execution(self) -> ExecutionModel:
        return self._execution

    # -------------------------------------------------------------------------
    # State access
    # -------------------------------------------------------------------------

    @property
    def snapshot(self) -> AccountSnapshot:
        """Current account snapshot."""
        return self._state.snapshot()

    @property
    def trade_log(self) -> List[Dict[str, Any]]:
        return copy.deepcopy(self._trade_log)

    @property
    def equity_series(self) -> List[EquityPoint]:
        return list(self._equity_series)

    @property
    def orders(self) -> Dict[str, Dict[str, Any]]:
        """Order registry (copy): order id -> order record."""
        return copy.deepcopy(self._orders)

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    def load_data(self, params: Union[RunParameters, Mapping[str, Any]]) -> List[Event]:
        """
        Validate parameters, load and normalize the event stream.

        An adapter returning an awaitable is driven with ``asyncio.run``;
        inside a running event loop use ``load_data_async``.

        Raises:
            ConfigurationError: Bad parameters or no adapter configured
            DataError: The adapter output is not a sequence of events
        """
        params = RunParameters.coerce(params)
        raw = self._require_adapter().load(params)
        if inspect.isawaitable(raw):
            raw = asyncio.run(_resolve(raw))
        return self._prepare_events(raw, params)

    async def load_data_async(self, params: Union[RunParameters, Mapping[str, Any]]) -> List[Event]:
        """Async variant of ``load_data``."""
        params = RunParameters.coerce(params)
        raw = self._require_adapter().load(params)
        if inspect.isawaitable(raw):
            raw = await raw
        return self._prepare_events(raw, params)

    def _require_adapter(self) -> DataAdapter:
        if self._adapter is None:
            raise ConfigurationError("adapter is not configured; call set_adapter(adapter)")
        return self._adapter

    def _prepare_events(self, raw: Any, params: RunParameters) -> List[Event]:
        if raw is None or isinstance(raw, (str, bytes, Mapping)) or not isinstance(raw, Iterable):
            raise DataError("adapter.load(params) must return a sequence of events")
        events = [normalize_event(item) for item in raw]
        self._warn_on_coarse_input(events, params)
        return events

    def _warn_on_coarse_input(self, events: List[Event], params: RunParameters) -> None:
        if not events:
            return
        has_ticks = any(isinstance(event, TickEvent) for event in events)
        has_candles = any(isinstance(event, CandleEvent) for event in events)
        if has_ticks or not has_candles:
            return
        if params.timeframe not in self.settings.engine.coarse_candle_timeframes:
            return
        logger.warning(
            f"Running backtest with only {params.timeframe} candles. Partial fills and intrabar "
            f"execution may be less accurate without tick-level data."
        )

    # -------------------------------------------------------------------------
    # Running
    # -------------------------------------------------------------------------

    def run(self, params: Union[RunParameters, Mapping[str, Any]]) -> RunResult:
        """
        Replay the adapter's events.

        Args:
            params: Run parameters (mapping or RunParameters)

        Returns:
            RunResult, independent of later engine activity

        Raises:
            ConfigurationError: Bad parameters or missing collaborators
            DataError: Malformed input events
            BacktestError: Fatal condition while replaying
        """
        params = self._start(params)
        try:
            events = self.load_data(params)
            return self._replay(events)
        except Exception as e:
            self._fail(e)
            raise

    async def run_async(self, params: Union[RunParameters, Mapping[str, Any]]) -> RunResult:
        """Async variant of ``run`` (awaits async adapters)."""
        params = self._start(params)
        try:
            events = await self.load_data_async(params)
            return self._replay(events)
        except Exception as e:
            self._fail(e)
            raise

    def _start(self, params: Union[RunParameters, Mapping[str, Any]]) -> RunParameters:
        params = RunParameters.coerce(params)
        self._require_adapter()
        if self._strategy is None:
            raise ConfigurationError("strategy is not configured; call set_strategy(strategy)")
        self._reset(params)
        self.status = EngineStatus.RUNNING
        return params

    def _fail(self, error: Exception) -> None:
        self.status = EngineStatus.FAILED
        logger.error(f"Replay failed: {type(error).__name__}: {error}")

    def _reset(self, params: Optional[RunParameters]) -> None:
        """Discard all per-run state."""
        self._params = params
        self._scheduler = EventScheduler()
        self._state = AccountState()
        self._orders: Dict[str, Dict[str, Any]] = {}
        self._trade_log: List[Dict[str, Any]] = []
        self._equity_series: List[EquityPoint] = []
        self._next_funding_at: Optional[int] = None
        self._liquidation_pending = False

        seed = self._default_seed
        if params is not None and params.random_seed is not None:
            seed = params.random_seed
        self._random = SeededRandom(seed)

        if params is None:
            self._margin_model = MarginModel()
            return

        self._margin_model = MarginModel(
            initial_margin_rate=params.initial_margin_rate,
            maintenance_margin_rate=params.maintenance_margin_rate,
            liquidation_penalty_rate=params.liquidation_penalty_rate,
        )
        self._state.cash = params.initial_cash
        self._state.equity = params.initial_cash
        self._trade_logger = TradeLogger(run_id=f"{params.symbol}-{params.start_date}")
        reset_collaborator(self._execution)

    def _replay(self, events: List[Event]) -> RunResult:
        params = self._params
        logger.info(
            f"Starting replay: {params.symbol} {params.market_type.value} {params.timeframe}, "
            f"{len(events)} events, seed={self._random.seed}"
        )

        self._scheduler.enqueue(events)
        while (event := self._scheduler.next()) is not None:
            self.process_event(event)
            if self._state.liquidated:
                break

        self.status = EngineStatus.LIQUIDATED if self._state.liquidated else EngineStatus.COMPLETED
        final_state = self._state.snapshot()
        logger.info(
            f"Replay {self.status.value}: events={self._scheduler.processed_count}, "
            f"log entries={len(self._trade_log)}, equity={final_state.equity:.4f}"
        )

        return RunResult(
            trade_log=copy.deepcopy(self._trade_log),
            equity_series=list(self._equity_series),
            final_state=final_state,
            status=self.status,
            params=params,
            events_processed=self._scheduler.processed_count,
        )

    def process_event(self, event: Event) -> None:
        """
        Dispatch one event and revalue the account.

        Raises:
            UnknownEventError: No handler for the event's kind
        """
        handler = self._handlers.get(getattr(event, "event_type", None))
        if handler is None:
            raise UnknownEventError(f"Unknown event kind: {getattr(event, 'kind', type(event).__name__)}")
        handler(event)
        self._update_equity(event.timestamp)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _enqueue(self, output: EventOutput) -> List[Event]:
        return self._scheduler.enqueue(as_event_list(output))

    def _context(self, timestamp: int) -> EngineContext:
        return EngineContext(
            snapshot=self._state.snapshot(),
            params=self._params,
            timestamp=timestamp,
            mark_price=self._state.mark_price,
            last_price=self._state.last_price,
            random=self._random,
            enqueue=self._enqueue,
        )

    @property
    def _margin_bearing(self) -> bool:
        return self._params is not None and self._params.is_margin_bearing

    def _valuation_price(self) -> Optional[float]:
        """Mark price for derivatives, last price for spot; each falls back to the other."""
        state = self._state
        if self._margin_bearing:
            return state.mark_price if state.mark_price is not None else state.last_price
        return state.last_price if state.last_price is not None else state.mark_price

    def _revalue(self) -> None:
        state = self._state
        state.unrealized_pnl = unrealized_pnl(state.position.snapshot(), self._valuation_price())
        state.equity = state.cash + state.unrealized_pnl

    def _update_equity(self, timestamp: int) -> None:
        self._revalue()
        state = self._state
        self._equity_series.append(EquityPoint(
            timestamp=timestamp,
            equity=state.equity,
            cash=state.cash,
            margin=state.margin,
            maintenance_margin=state.maintenance_margin,
            unrealized_pnl=state.unrealized_pnl,
            realized_pnl=state.position.realized_pnl,
            position_qty=state.position.qty,
            position_avg_price=state.position.avg_price,
            last_price=state.last_price,
            mark_price=state.mark_price,
        ))

    def _log(self, event: Event, **fields: Any) -> None:
        entry = {"timestamp": event.timestamp, "kind": event.kind}
        entry.update(fields)
        self._trade_log.append(entry)

    # -------------------------------------------------------------------------
    # Handlers
    # -------------------------------------------------------------------------

    def _handle_market_event(self, event: MarketEvent) -> None:
        state = self._state
        reference = event.reference_price
        if reference is not None:
            state.last_price = reference
        if event.mark_price is not None:
            state.mark_price = event.mark_price
        elif reference is not None:
            state.mark_price = reference
        self._revalue()

        self._enqueue(self._strategy.on_event(event, self._context(event.timestamp)))
        self._enqueue(self._execution.on_market_event(event, self._context(event.timestamp)))

        if self._margin_bearing:
            self._apply_funding(event.timestamp)
            self._evaluate_risk(event.timestamp)

    def _handle_signal(self, event: SignalEvent) -> None:
        self._enqueue(self._execution.on_signal(event, self._context(event.timestamp)))

    def _handle_order_submitted(self, event: OrderSubmittedEvent) -> None:
        self._orders[event.order_id] = {
            "order_id": event.order_id,
            "side": event.side.value,
            "qty": event.qty,
            "price": event.price,
            "order_type": event.order_type.value,
            "status": "submitted",
            "submitted_at": event.timestamp,
            "filled_qty": 0.0,
        }
        self._log(
            event,
            order_id=event.order_id,
            side=event.side.value,
            qty=event.qty,
            price=event.price,
            order_type=event.order_type.value,
        )
        self._trade_logger.log_order(event.timestamp, event.order_id, event.side.value, event.qty, event.price)

    def _handle_order_filled(self, event: OrderFilledEvent, evaluate_risk: bool = True) -> None:
        state = self._state
        price = event.price if event.price is not None else state.last_price
        if price is None:
            raise BacktestError(f"Order {event.order_id} filled without a price before any market price is known")

        state.cash -= event.signed_qty * price
        realized = state.position.apply_fill(event.side, event.qty, price, event.fee)

        order = self._orders.setdefault(event.order_id, {
            "order_id": event.order_id,
            "side": event.side.value,
            "qty": event.qty,
            "price": price,
            "filled_qty": 0.0,
        })
        order["filled_qty"] = order.get("filled_qty", 0.0) + abs(event.qty)
        order["status"] = "filled"
        order["filled_at"] = event.timestamp

        self._log(
            event,
            order_id=event.order_id,
            side=event.side.value,
            qty=event.qty,
            price=price,
            fee=event.fee,
            liquidity=event.liquidity.value,
            realized_pnl=realized,
            cash_after=state.cash,
            position_after=state.position.snapshot().to_dict(),
        )
        self._trade_logger.log_fill(
            event.timestamp, event.order_id, event.side.value, event.qty, price, event.fee, state.cash
        )

        if evaluate_risk:
            self._revalue()
            self._evaluate_risk(event.timestamp)

    def _handle_order_cancelled(self, event: OrderCancelledEvent) -> None:
        order = self._orders.get(event.order_id)
        if order is not None:
            order["status"] = "cancelled"
            order["cancel_reason"] = event.reason
        self._log(event, order_id=event.order_id, reason=event.reason)
        self._trade_logger.log_cancel(event.timestamp, event.order_id, event.reason)

    def _handle_funding_payment(self, event: FundingPaymentEvent) -> None:
        self._state.cash += event.amount
        self._log(
            event,
            amount=event.amount,
            rate=event.rate,
            notional=event.notional,
            cash_after=self._state.cash,
        )
        self._trade_logger.log_funding(event.timestamp, event.amount, event.rate, event.notional)
        self._revalue()
        self._evaluate_risk(event.timestamp)

    def _handle_margin_update(self, event: MarginUpdateEvent) -> None:
        state = self._state
        if event.margin is not None:
            state.margin = event.margin
        if event.maintenance_margin is not None:
            state.maintenance_margin = event.maintenance_margin
        if event.unrealized_pnl is not None:
            state.unrealized_pnl = event.unrealized_pnl
        self._log(
            event,
            margin=state.margin,
            maintenance_margin=state.maintenance_margin,
            unrealized_pnl=event.unrealized_pnl,
            position_notional=event.position_notional,
            mark_price=event.mark_price,
        )

    def _handle_liquidated(self, event: LiquidatedEvent) -> None:
        state = self._state
        position = state.position
        price = None
        if not position.is_flat:
            for candidate in (event.price, state.mark_price, state.last_price, position.avg_price):
                if candidate is not None:
                    price = candidate
                    break
            close = OrderFilledEvent(
                timestamp=event.timestamp,
                source=SOURCE,
                order_id=event.order_id or f"liq-{event.timestamp}",
                side=Side.SELL if position.qty > 0 else Side.BUY,
                qty=abs(position.qty),
                price=price,
            )
            self._handle_order_filled(close, evaluate_risk=False)

        state.cash -= event.penalty
        state.liquidated = True
        self._liquidation_pending = False

        self._log(
            event,
            price=price if price is not None else event.price,
            penalty=event.penalty,
            reason=event.reason,
            order_id=event.order_id,
            cash_after=state.cash,
        )
        self._trade_logger.log_risk_event(
            "liquidation",
            f"Position liquidated at {price} (penalty={event.penalty:.6f}, reason={event.reason or 'n/a'})",
            timestamp=event.timestamp,
        )

    # -------------------------------------------------------------------------
    # Funding and risk
    # -------------------------------------------------------------------------

    def _apply_funding(self, timestamp: int) -> None:
        params = self._params
        if not params.funding_enabled:
            return

        interval = params.funding_interval_ms
        if self._next_funding_at is None:
            self._next_funding_at = timestamp + interval
            return

        while self._next_funding_at <= timestamp:
            position = self._state.position
            if not position.is_flat:
                mark = self._valuation_price()
                if mark is None:
                    mark = position.avg_price
                notional = abs(position.qty * mark)
                self._enqueue(FundingPaymentEvent(
                    timestamp=timestamp,
                    source=SOURCE,
                    amount=-notional * params.funding_rate,
                    rate=params.funding_rate,
                    notional=notional,
                    metadata={"funding_time": self._next_funding_at},
                ))
            self._next_funding_at += interval

    def _evaluate_risk(self, timestamp: int) -> None:
        if not self._margin_bearing or self._liquidation_pending:
            return

        state = self._state
        assessment = self._margin_model.assess(state.cash, state.position.snapshot(), self._valuation_price())
        snap = assessment.snapshot
        self._enqueue(MarginUpdateEvent(
            timestamp=timestamp,
            source=SOURCE,
            margin=snap.initial_margin,
            maintenance_margin=snap.maintenance_margin,
            unrealized_pnl=snap.unrealized_pnl,
            position_notional=snap.position_notional,
            mark_price=snap.mark_price,
        ))

        if assessment.liquidate:
            self._liquidation_pending = True
            self._enqueue(LiquidatedEvent(
                timestamp=timestamp,
                source=SOURCE,
                price=snap.mark_price,
                penalty=assessment.penalty,
                reason="maintenance_margin_breach",
            ))
            logger.warning(
                f"Maintenance margin breached at t={timestamp}: equity={assessment.equity:.4f} "
                f"< maintenance={snap.maintenance_margin:.4f}, liquidating"
            )
