"""
Pytest Configuration and Fixtures
==================================

Shared fixtures for the replay simulator tests: run parameter factories,
in-memory adapters, scripted strategies, an immediate execution model and
a loguru capture sink.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List

import pytest
from loguru import logger

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from replaysim.adapters import StaticAdapter
from replaysim.config.settings import Settings
from replaysim.engine import ReplayEngine
from replaysim.events import OrderFilledEvent, OrderSubmittedEvent


# =============================================================================
# COLLABORATORS
# =============================================================================

class NoopStrategy:
    """Strategy that never trades."""

    def on_event(self, event, context):
        return []


class LongOnFirstTickStrategy:
    """Buys ``qty`` at the first tick's price, then does nothing."""

    def __init__(self, qty: float = 1.0):
        self.qty = qty
        self.sent = False

    def on_event(self, event, context):
        if event.kind == "tick" and not self.sent:
            self.sent = True
            return {
                "kind": "signal_generated",
                "timestamp": event.timestamp,
                "side": "buy",
                "qty": self.qty,
                "price": event.price,
            }
        return []


class ScriptedStrategy:
    """
    Emits pre-scripted output keyed by market event timestamp.

    Also records the contexts it was called with.
    """

    def __init__(self, script: Dict[int, Any]):
        self.script = script
        self.contexts: List[Any] = []

    def on_event(self, event, context):
        self.contexts.append(context)
        return self.script.get(event.timestamp)


class ImmediateExecution:
    """Submits and fills every signal at the signal's timestamp and price."""

    def __init__(self):
        self.counter = 0

    def reset(self):
        self.counter = 0

    def on_signal(self, signal, context):
        self.counter += 1
        order_id = f"o-{self.counter}"
        return [
            OrderSubmittedEvent(
                timestamp=signal.timestamp,
                order_id=order_id,
                side=signal.side,
                qty=signal.qty,
                price=signal.price,
            ),
            OrderFilledEvent(
                timestamp=signal.timestamp,
                order_id=order_id,
                side=signal.side,
                qty=signal.qty,
                price=signal.price,
            ),
        ]

    def on_market_event(self, event, context):
        return []


class RecordingEngine(ReplayEngine):
    """Replay engine that keeps every event it dispatched, in order."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.dispatched: List[Any] = []

    def process_event(self, event):
        self.dispatched.append(event)
        super().process_event(event)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def make_params() -> Callable[..., Dict[str, Any]]:
    """Factory for run parameter mappings."""

    def _make(**overrides: Any) -> Dict[str, Any]:
        params = {
            "symbol": "BTCUSDT",
            "timeframe": "1m",
            "market_type": "spot",
            "start_date": 0,
            "end_date": 10_000,
            "initial_cash": 1000,
        }
        params.update(overrides)
        return params

    return _make


@pytest.fixture
def static_adapter() -> Callable[[Iterable[Any]], StaticAdapter]:
    """Factory for in-memory adapters."""

    def _make(events: Iterable[Any], filter_range: bool = True) -> StaticAdapter:
        return StaticAdapter(list(events), filter_range=filter_range)

    return _make


@pytest.fixture
def immediate_execution() -> ImmediateExecution:
    return ImmediateExecution()


@pytest.fixture
def noop_strategy() -> NoopStrategy:
    return NoopStrategy()


@pytest.fixture
def long_on_first_tick() -> Callable[..., LongOnFirstTickStrategy]:
    """Factory for strategies buying once on the first tick."""
    return LongOnFirstTickStrategy


@pytest.fixture
def scripted_strategy() -> Callable[[Dict[int, Any]], ScriptedStrategy]:
    """Factory for strategies emitting output keyed by timestamp."""
    return ScriptedStrategy


@pytest.fixture
def recording_engine() -> Callable[..., RecordingEngine]:
    """Factory for engines that keep the events they dispatched."""
    return RecordingEngine


@pytest.fixture
def settings() -> Settings:
    """Fresh settings, isolated from the global instance."""
    return Settings()


@pytest.fixture
def log_records():
    """Capture loguru records at DEBUG and above."""
    records: List[Dict[str, Any]] = []
    handler_id = logger.add(lambda message: records.append(message.record), level="DEBUG")
    yield records
    logger.remove(handler_id)


# =============================================================================
# MARKS
# =============================================================================

def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "integration: marks tests as integration tests")
