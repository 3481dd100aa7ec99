"""
Interfaces Module
=================

Protocols defining the contracts of the engine's collaborators:

- DataAdapter: loads the raw event stream for a run
- Strategy: reacts to market events with signals
- ExecutionModel: turns signals and market events into order lifecycle events

Collaborators never touch engine state directly. Each call receives an
``EngineContext``: a frozen view of the account plus a callback to enqueue
additional events.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Iterable, List, Optional, Protocol, Sequence, Union, runtime_checkable

from replaysim.events import Event, MarketEvent, SignalEvent
from replaysim.rng import SeededRandom

if TYPE_CHECKING:
    from replaysim.engine import AccountSnapshot, RunParameters
    from replaysim.ledger import PositionSnapshot


RawEvent = Union[Event, dict]
EventOutput = Union[None, RawEvent, Iterable[RawEvent]]


# =============================================================================
# ENGINE CONTEXT
# =============================================================================

@dataclass(frozen=True)
class EngineContext:
    """
    Read-only view handed to collaborators.

    Attributes:
        snapshot: Account snapshot at the time of the call
        params: Run parameters
        timestamp: Timestamp of the event being processed
        mark_price: Current mark price, if known
        last_price: Current last price, if known
        random: The run's seeded random source
        enqueue: Callback scheduling additional events
    """
    snapshot: "AccountSnapshot"
    params: "RunParameters"
    timestamp: int
    mark_price: Optional[float]
    last_price: Optional[float]
    random: SeededRandom
    enqueue: Callable[[EventOutput], List[Event]]

    @property
    def position(self) -> "PositionSnapshot":
        return self.snapshot.position

    @property
    def cash(self) -> float:
        return self.snapshot.cash

    @property
    def equity(self) -> float:
        return self.snapshot.equity


# =============================================================================
# COLLABORATOR PROTOCOLS
# =============================================================================

@runtime_checkable
class DataAdapter(Protocol):
    """
    Protocol for market data adapters.

    ``load`` returns the raw events of a run, either directly or as an
    awaitable (async adapters).
    """

    def load(self, params: "RunParameters") -> Union[Sequence[RawEvent], Awaitable[Sequence[RawEvent]]]:
        ...


@runtime_checkable
class Strategy(Protocol):
    """
    Protocol for strategies.

    ``on_event`` is called for every market event and may return None,
    one event, or an iterable of events (usually signals).
    """

    def on_event(self, event: MarketEvent, context: EngineContext) -> EventOutput:
        ...


@runtime_checkable
class ExecutionModel(Protocol):
    """
    Protocol for execution models.

    Implementations may also define ``reset()``; the engine calls it at the
    start of every run.
    """

    def on_signal(self, signal: SignalEvent, context: EngineContext) -> EventOutput:
        ...

    def on_market_event(self, event: MarketEvent, context: EngineContext) -> EventOutput:
        ...


def reset_collaborator(collaborator: Any) -> None:
    """Call the optional ``reset()`` hook of a collaborator."""
    reset = getattr(collaborator, "reset", None)
    if callable(reset):
        reset()
