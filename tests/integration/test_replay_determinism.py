"""
Integration tests for whole replays: determinism, ordering and parity
with a naive reference executor.
"""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from replaysim import ReplayEngine, StaticAdapter

pytestmark = pytest.mark.integration


def replay_events():
    """Candles with signals embedded in the stream."""
    events = []
    for i in range(15):
        events.append({"kind": "candle", "timestamp": i + 1, "close": 100 + i})
        if i % 3 == 0:
            events.append({
                "kind": "signal_generated",
                "timestamp": i + 1,
                "side": "buy" if i % 2 == 0 else "sell",
                "qty": 0.1,
                "price": 100 + i,
            })
    return events


class EmaCrossStrategy:
    """Long-only EMA crossover trading a fixed quantity at the close."""

    def __init__(self, short_period=2, long_period=4, qty=1.0):
        self.short_alpha = 2 / (short_period + 1)
        self.long_alpha = 2 / (long_period + 1)
        self.qty = qty
        self.short_ema = None
        self.long_ema = None
        self.long = False

    def on_event(self, event, context):
        price = event.reference_price
        if self.short_ema is None:
            self.short_ema = self.long_ema = price
            return []

        self.short_ema += self.short_alpha * (price - self.short_ema)
        self.long_ema += self.long_alpha * (price - self.long_ema)

        if not self.long and self.short_ema > self.long_ema:
            self.long = True
            side = "buy"
        elif self.long and self.short_ema < self.long_ema:
            self.long = False
            side = "sell"
        else:
            return []

        return [{"kind": "signal_generated", "timestamp": event.timestamp, "side": side, "qty": self.qty, "price": price}]


def naive_replay(events, strategy, initial_cash=1000.0):
    """Reference executor: fills every signal at its price, no costs."""
    cash, qty, avg = initial_cash, 0.0, 0.0
    equity = initial_cash
    for event in events:
        for signal in strategy.on_event(event, None):
            signed = signal["qty"] if signal["side"] == "buy" else -signal["qty"]
            price = signal["price"]
            cash -= signed * price
            new_qty = qty + signed
            if new_qty == 0:
                avg = 0.0
            elif qty == 0 or (qty > 0) == (new_qty > 0):
                avg = (qty * avg + signed * price) / new_qty
            else:
                avg = price
            qty = new_qty
        equity = cash + qty * (event.reference_price - avg)
    return equity


class TestDeterminism:
    """Test identical inputs and seed give identical outputs."""

    def _run(self, noop_strategy, make_params, seed):
        engine = ReplayEngine(random_seed=seed)
        engine.configure(StaticAdapter(replay_events()), noop_strategy)
        return engine.run(make_params(end_date=999, random_seed=seed))

    def test_same_seed_same_results(self, noop_strategy, make_params):
        """Test two engines with the same seed produce equal logs and series."""
        run_a = self._run(noop_strategy, make_params, 42)
        run_b = self._run(noop_strategy, make_params, 42)

        assert run_a.trade_log == run_b.trade_log
        assert run_a.equity_series == run_b.equity_series
        assert run_a.final_state == run_b.final_state

    def test_different_seed_different_fills(self, noop_strategy, make_params):
        prices_a = [e["price"] for e in self._run(noop_strategy, make_params, 1).trades("order_filled")]
        prices_b = [e["price"] for e in self._run(noop_strategy, make_params, 2).trades("order_filled")]

        assert len(prices_a) == len(prices_b) == 5
        assert prices_a != prices_b

    def test_rerun_on_same_engine(self, noop_strategy, make_params):
        """Test a second run starts from a clean slate."""
        engine = ReplayEngine(random_seed=5)
        engine.configure(StaticAdapter(replay_events()), noop_strategy)

        first = engine.run(make_params(end_date=999))
        second = engine.run(make_params(end_date=999))

        assert first.trade_log == second.trade_log
        assert first.equity_series == second.equity_series

    def test_default_execution_bounds(self, noop_strategy, make_params):
        """Test fills land within the latency window and slippage band."""
        result = self._run(noop_strategy, make_params, 9)
        submitted = {e["order_id"]: e for e in result.trades("order_submitted")}

        for fill in result.trades("order_filled"):
            order = submitted[fill["order_id"]]
            assert 0 <= fill["timestamp"] - order["timestamp"] < 100
            assert fill["price"] == pytest.approx(order["price"], rel=5e-4)


class TestOrdering:
    """Test processing order of a shuffled stream."""

    def test_timestamps_never_decrease(self, noop_strategy, make_params):
        events = list(reversed(replay_events()))
        engine = ReplayEngine()
        engine.configure(StaticAdapter(events), noop_strategy)

        result = engine.run(make_params(end_date=999))
        stamps = [point.timestamp for point in result.equity_series]

        assert stamps == sorted(stamps)
        assert result.events_processed == len(events) + 2 * 5

    def test_dispatch_follows_scheduler_key(self, recording_engine, noop_strategy, make_params):
        """Test (timestamp, priority, sequence) never decreases, including latent fills."""
        engine = recording_engine(random_seed=3)
        engine.configure(StaticAdapter(list(reversed(replay_events()))), noop_strategy)

        engine.run(make_params(end_date=999, random_seed=3))
        keys = [event.sort_key for event in engine.dispatched]

        assert len(keys) == len(replay_events()) + 2 * 5
        assert keys == sorted(keys)
        assert len(set(keys)) == len(keys)

    def test_futures_cascades_keep_order(self, recording_engine, scripted_strategy, immediate_execution, make_params):
        """Test fills, funding and margin updates raised mid-run still dispatch in key order."""
        strategy = scripted_strategy({
            1: {"kind": "signal_generated", "timestamp": 1, "side": "buy", "qty": 1, "price": 100},
            3: {"kind": "signal_generated", "timestamp": 3, "side": "sell", "qty": 2, "price": 102},
        })
        engine = recording_engine(execution=immediate_execution)
        engine.configure(
            StaticAdapter([
                {"kind": "tick", "timestamp": t, "price": 100 + t - 1, "mark_price": 100 + t - 1}
                for t in range(1, 6)
            ]),
            strategy,
        )

        engine.run(make_params(market_type="perpetual", funding_rate=0.0001, funding_interval_ms=2))
        keys = [event.sort_key for event in engine.dispatched]
        kinds = {event.kind for event in engine.dispatched}

        assert {"order_filled", "funding_payment", "margin_update"} <= kinds
        assert keys == sorted(keys)


class TestPositionInvariants:
    """Test position bookkeeping across reduces and flips."""

    def test_avg_price_zero_exactly_when_flat(self, scripted_strategy, immediate_execution, make_params):
        def signal(timestamp, side, qty, price):
            return {"kind": "signal_generated", "timestamp": timestamp, "side": side, "qty": qty, "price": price}

        strategy = scripted_strategy({
            1: signal(1, "buy", 2, 100),
            2: signal(2, "sell", 1, 110),
            3: signal(3, "sell", 3, 120),
            4: signal(4, "buy", 2, 90),
        })
        engine = ReplayEngine(execution=immediate_execution)
        engine.configure(
            StaticAdapter([{"kind": "tick", "timestamp": t, "price": p} for t, p in enumerate([100, 110, 120, 90, 95], 1)]),
            strategy,
        )

        result = engine.run(make_params())
        quantities = [point.position_qty for point in result.equity_series]

        assert any(qty < 0 for qty in quantities)
        assert quantities[-1] == 0
        for point in result.equity_series:
            assert (point.position_avg_price == 0) == (point.position_qty == 0)


class TestNaiveParity:
    """Test the engine agrees with a naive executor when execution is ideal."""

    def test_ema_cross_matches_naive(self, immediate_execution, make_params):
        prices = [100, 101, 102, 103, 102, 101, 100, 99, 98, 99, 100, 101, 102, 103]
        raw = [
            {"kind": "candle", "timestamp": i + 1, "open": p, "high": p, "low": p, "close": p}
            for i, p in enumerate(prices)
        ]

        engine = ReplayEngine(random_seed=7)
        engine.configure(StaticAdapter(raw), EmaCrossStrategy(), immediate_execution)
        result = engine.run(make_params(end_date=999, random_seed=7))

        expected = naive_replay(StaticAdapter(raw).load(), EmaCrossStrategy())

        assert len(result.trades("order_filled")) >= 2
        assert result.final_state.equity == pytest.approx(expected, abs=1e-6)
