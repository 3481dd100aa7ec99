"""
Tests for the fill model.

These tests verify:
1. Tick/lot rounding
2. Order validation and its precedence
3. Market orders walking the book with a synthetic remainder
4. Limit order lifecycle: latency, TTL, latent cancels, FIFO matching
"""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from replaysim.config.settings import FillModelSettings
from replaysim.core.types import LimitMode, Liquidity, Side
from replaysim.events import TickEvent, normalize_event
from replaysim.fill_model import (
    CancelReason,
    ExecutionStatus,
    FillModel,
    FillModelConfig,
    MarketQuote,
    OrderStatus,
    RejectReason,
    round_to_lot,
    round_to_step,
    round_to_tick,
)
from replaysim.slippage import FixedSlippage, LiquiditySlippage


def book_event(timestamp, bids=(), asks=(), bid=None, ask=None, price=None):
    """Market event carrying a book snapshot."""
    return normalize_event({
        "kind": "tick",
        "timestamp": timestamp,
        "price": price,
        "bid": bid,
        "ask": ask,
        "bids": list(bids),
        "asks": list(asks),
    })


class TestRounding:
    """Test step rounding helpers."""

    def test_tick_and_lot(self):
        assert round_to_tick(100.03, 0.05) == pytest.approx(100.05)
        assert round_to_lot(1.234, 0.01) == pytest.approx(1.23)

    def test_halves_round_up(self):
        assert round_to_step(0.25, 0.1) == pytest.approx(0.3)
        assert round_to_step(-0.25, 0.1) == pytest.approx(-0.2)

    def test_binary_representation_error_absorbed(self):
        """Test values that are exact multiples stay put."""
        assert round_to_step(0.15, 0.05) == 0.15
        assert round_to_step(0.3, 0.1) == 0.3

    def test_trimmed_to_step_precision(self):
        assert round_to_step(1.23456, 0.001) == 1.235

    @pytest.mark.parametrize("step", [None, 0, -1, float("nan")])
    def test_missing_step_is_identity(self, step):
        assert round_to_step(1.2345, step) == 1.2345


class TestValidation:
    """Test order validation and its order of precedence."""

    def test_zero_qty(self):
        result = FillModel().execute_market_order(Side.BUY, 0, timestamp=1, quote={"last_price": 100})

        assert result.is_rejected
        assert result.reason is RejectReason.INVALID_QTY
        assert result.fills == ()

    def test_qty_rounding_to_zero_is_invalid(self):
        model = FillModel(FillModelConfig(step_size=0.1))
        result = model.execute_market_order(Side.BUY, 0.04, timestamp=1, quote={"last_price": 100})

        assert result.reason is RejectReason.INVALID_QTY

    def test_min_notional(self):
        """Test notional below the minimum is rejected without fills."""
        model = FillModel(FillModelConfig(min_notional=100, step_size=0.1))
        result = model.execute_market_order("buy", 0.5, timestamp=1, quote={"last_price": 100})

        assert result.status is ExecutionStatus.REJECTED
        assert result.reason is RejectReason.MIN_NOTIONAL_VIOLATION
        assert result.notional == pytest.approx(50.0)
        assert result.fills == ()
        assert model.ledger.is_flat

    def test_min_qty_checked_before_min_notional(self):
        model = FillModel(FillModelConfig(min_qty=1, min_notional=1000))
        result = model.execute_market_order(Side.BUY, 0.5, timestamp=1, quote={"last_price": 100})

        assert result.reason is RejectReason.MIN_QTY_VIOLATION

    def test_max_qty(self):
        model = FillModel(FillModelConfig(max_qty=2))
        result = model.execute_market_order(Side.BUY, 3, timestamp=1, quote={"last_price": 100})

        assert result.reason is RejectReason.MAX_QTY_VIOLATION
        assert result.requested_qty == pytest.approx(3.0)

    def test_min_notional_skipped_without_price(self):
        model = FillModel(FillModelConfig(min_notional=100))
        result = model.execute_market_order(Side.BUY, 1, timestamp=1)

        assert not result.is_rejected
        assert result.status is ExecutionStatus.PARTIAL

    def test_min_notional_uses_unrounded_reference(self):
        """Test the market notional check uses the raw reference price."""
        model = FillModel(FillModelConfig(tick_size=1, min_notional=100))
        result = model.execute_market_order(Side.BUY, 1, timestamp=1, quote={"last_price": 99.6})

        assert result.reason is RejectReason.MIN_NOTIONAL_VIOLATION

    def test_limit_notional_uses_rounded_price(self):
        model = FillModel(FillModelConfig(tick_size=1, min_notional=100))

        assert model.submit_limit_order(Side.BUY, 1, 99.6, timestamp=0).status is ExecutionStatus.ACCEPTED
        assert model.submit_limit_order(Side.BUY, 1, 99.4, timestamp=0).reason is RejectReason.MIN_NOTIONAL_VIOLATION


class TestMarketOrders:
    """Test market order execution."""

    def setup_method(self):
        self.model = FillModel(FillModelConfig(tick_size=0.1, step_size=0.1, taker_fee_rate=0.001))

    def test_book_then_synthetic(self):
        """Test buy 3 against 1 @ 100 with fixed +1 slippage on a 101 reference."""
        result = self.model.execute_market_order(
            Side.BUY,
            3,
            timestamp=1,
            book={"asks": [{"price": 100, "qty": 1}], "bids": []},
            quote={"last_price": 101, "spread": 2, "avg_volume": 10},
            slippage_model={"type": "simple_fixed", "fixed": 1},
        )

        assert result.status is ExecutionStatus.FILLED
        assert len(result.fills) == 2
        first, second = result.fills
        assert first.qty == pytest.approx(1.0)
        assert first.price == pytest.approx(100.0)
        assert first.fee == pytest.approx(0.1)
        assert second.qty == pytest.approx(2.0)
        assert second.price == pytest.approx(102.0)
        assert second.fee == pytest.approx(0.204)
        assert all(fill.liquidity is Liquidity.TAKER for fill in result.fills)
        assert result.filled_qty == pytest.approx(3.0)
        assert result.total_fees == pytest.approx(0.304)
        assert result.average_price == pytest.approx(304.0 / 3)

    def test_sell_walks_bids_best_first(self):
        result = self.model.execute_market_order(
            Side.SELL,
            2,
            timestamp=1,
            book={"bids": [[99, 1], [100, 1]]},
        )

        assert [fill.price for fill in result.fills] == [pytest.approx(100.0), pytest.approx(99.0)]
        assert self.model.ledger.qty == pytest.approx(-2.0)

    def test_partial_without_reference(self):
        result = self.model.execute_market_order(Side.BUY, 3, timestamp=1, book={"asks": [[100, 1]]})

        assert result.status is ExecutionStatus.PARTIAL
        assert result.filled_qty == pytest.approx(1.0)
        assert result.remaining_qty == pytest.approx(2.0)

    def test_mid_price_is_fallback_reference(self):
        result = self.model.execute_market_order(Side.BUY, 1, timestamp=1, quote=MarketQuote(mid_price=50.0))

        assert result.fills[0].price == pytest.approx(50.0)

    def test_configured_slippage_used_by_default(self):
        model = FillModel(slippage_model={"type": "simple_fixed", "fixed": 0.5})
        result = model.execute_market_order(Side.SELL, 1, timestamp=1, quote={"last_price": 10})

        assert isinstance(model.config.slippage_model, FixedSlippage)
        assert result.fills[0].price == pytest.approx(9.5)

    def test_liquidity_slippage_defaults_volume_to_qty(self):
        model = FillModel(FillModelConfig(slippage_model=LiquiditySlippage(base=0.0, k=1.0)))
        result = model.execute_market_order(Side.BUY, 2, timestamp=1, quote={"last_price": 10})

        assert result.fills[0].price == pytest.approx(11.0)

    def test_realized_pnl_on_partial_close(self):
        model = FillModel(FillModelConfig(step_size=1))
        model.execute_market_order(Side.BUY, 2, timestamp=1, quote={"last_price": 100})
        close = model.execute_market_order(Side.SELL, 1, timestamp=2, quote={"last_price": 110})

        assert close.fills[0].realized_pnl_delta == pytest.approx(10.0)

    def test_generated_ids(self):
        first = self.model.execute_market_order(Side.BUY, 1, timestamp=1, quote={"last_price": 1})
        second = self.model.execute_market_order(Side.BUY, 1, timestamp=1, quote={"last_price": 1})

        assert (first.order_id, second.order_id) == ("mkt-1", "mkt-2")

    def test_book_from_market_event(self):
        event = book_event(1, asks=[[100, 1], [101, 1]], price=100)
        result = self.model.execute_market_order(Side.BUY, 2, timestamp=1, book=event)

        assert [fill.price for fill in result.fills] == [pytest.approx(100.0), pytest.approx(101.0)]
        # the event itself is untouched
        assert event.asks[0].qty == pytest.approx(1.0)


class TestLimitOrders:
    """Test the limit order lifecycle."""

    def test_passive_partial_fill_then_ttl(self):
        """Test a passive order fills as maker, then expires on TTL."""
        model = FillModel(FillModelConfig(tick_size=1, step_size=1, maker_fee_rate=0.0005))
        submit = model.submit_limit_order(Side.BUY, 5, 100, timestamp=0, mode="passive", ttl_ms=10, order_id="L1")
        assert submit.status is ExecutionStatus.ACCEPTED

        outcome = model.process_market_event(book_event(5, bid=99, ask=100, asks=[[100, 2]]))
        assert len(outcome.fills) == 1
        assert outcome.fills[0].liquidity is Liquidity.MAKER
        assert outcome.fills[0].fee == pytest.approx(0.1)
        assert model.get_order("L1").remaining_qty == pytest.approx(3.0)

        outcome = model.process_market_event(book_event(11, bid=100, ask=101))
        assert len(outcome.cancellations) == 1
        assert outcome.cancellations[0].reason is CancelReason.TTL_TIMEOUT
        assert model.get_order("L1").status is OrderStatus.CANCELLED
        assert model.open_orders == []

    def test_fill_before_cancel_takes_effect(self):
        """Test a fill inside the cancel latency window executes."""
        model = FillModel(FillModelConfig(tick_size=1, step_size=1, cancel_latency_ms=5))
        model.submit_limit_order(Side.SELL, 1, 100, timestamp=0, mode=LimitMode.AGGRESSIVE, order_id="L2")
        requested = model.request_cancel("L2", 10)
        assert requested.status is ExecutionStatus.CANCEL_REQUESTED
        assert requested.effective_at == 15

        outcome = model.process_market_event(book_event(12, bid=100, ask=101, bids=[[100, 1]]))
        assert len(outcome.fills) == 1
        assert outcome.fills[0].liquidity is Liquidity.TAKER

        outcome = model.process_market_event(book_event(16, bid=99, ask=101))
        assert outcome.cancellations == ()
        assert model.get_order("L2").status is OrderStatus.FILLED

    def test_cancel_takes_effect(self):
        model = FillModel()
        model.submit_limit_order(Side.BUY, 1, 100, timestamp=0, order_id="L3")
        model.request_cancel("L3", 1, latency_ms=2)

        assert model.process_market_event(book_event(2, ask=101)).cancellations == ()
        outcome = model.process_market_event(book_event(3, ask=101))
        assert outcome.cancellations[0].reason is CancelReason.USER_CANCEL

    def test_cancel_unknown_or_closed_order(self):
        model = FillModel()

        assert model.request_cancel("nope", 1).reason is RejectReason.ORDER_NOT_OPEN

        model.submit_limit_order(Side.BUY, 1, 100, timestamp=0, order_id="L4")
        model.request_cancel("L4", 0)
        model.process_market_event(book_event(1))
        assert model.request_cancel("L4", 2).is_rejected

    def test_passive_waits_for_cross(self):
        model = FillModel()
        model.submit_limit_order(Side.BUY, 1, 100, timestamp=0)

        outcome = model.process_market_event(book_event(1, asks=[[100.5, 1]]))

        assert outcome.fills == ()

    def test_aggressive_respects_limit(self):
        """Test aggressive orders take only levels at or better than the limit."""
        model = FillModel()
        model.submit_limit_order(Side.BUY, 3, 100, timestamp=0, mode="aggressive")

        outcome = model.process_market_event(book_event(1, asks=[[101, 5], [99, 1], [100, 1]]))

        assert [fill.price for fill in outcome.fills] == [pytest.approx(99.0), pytest.approx(100.0)]
        assert model.open_orders[0].remaining_qty == pytest.approx(1.0)

    def test_order_latency(self):
        model = FillModel(FillModelConfig(order_latency_ms=5))
        submit = model.submit_limit_order(Side.BUY, 1, 100, timestamp=0)
        assert submit.order.active_at == 5

        assert model.process_market_event(book_event(3, asks=[[100, 1]])).fills == ()
        assert len(model.process_market_event(book_event(5, asks=[[100, 1]])).fills) == 1

    def test_fifo_with_shared_depletion(self):
        """Test earlier orders consume book liquidity before later ones."""
        model = FillModel()
        model.submit_limit_order(Side.BUY, 2, 100, timestamp=0, order_id="first")
        model.submit_limit_order(Side.BUY, 2, 100, timestamp=0, order_id="second")

        outcome = model.process_market_event(book_event(1, asks=[[100, 3]]))

        assert [(fill.order_id, fill.qty) for fill in outcome.fills] == [("first", 2.0), ("second", 1.0)]
        assert model.get_order("first").status is OrderStatus.FILLED
        assert model.get_order("second").remaining_qty == pytest.approx(1.0)

    def test_market_orders_share_event_book(self):
        """Test a second market order against the same event finds the level gone."""
        model = FillModel()
        event = book_event(1, asks=[[100, 1]])

        first = model.execute_market_order(Side.BUY, 1, timestamp=1, book=event)
        second = model.execute_market_order(Side.BUY, 1, timestamp=1, book=event)

        assert [(fill.qty, fill.price) for fill in first.fills] == [(1.0, 100.0)]
        assert second.status is ExecutionStatus.PARTIAL
        assert second.fills == ()
        assert second.remaining_qty == pytest.approx(1.0)

    def test_resting_order_depletes_book_for_market_order(self):
        model = FillModel()
        model.submit_limit_order(Side.BUY, 1, 100, timestamp=0, order_id="resting")
        event = book_event(1, asks=[[100, 1], [101, 1]])

        outcome = model.process_market_event(event)
        result = model.execute_market_order(Side.BUY, 1, timestamp=1, book=event)

        assert [fill.price for fill in outcome.fills] == [pytest.approx(100.0)]
        assert [fill.price for fill in result.fills] == [pytest.approx(101.0)]

    def test_new_event_replaces_depleted_book(self):
        model = FillModel()
        model.execute_market_order(Side.BUY, 1, timestamp=1, book=book_event(1, asks=[[100, 1]]))

        result = model.execute_market_order(Side.BUY, 1, timestamp=2, book=book_event(2, asks=[[100, 1]]))

        assert result.status is ExecutionStatus.FILLED
        assert result.fills[0].price == pytest.approx(100.0)

    def test_mapping_books_are_independent_snapshots(self):
        model = FillModel()
        book = {"asks": [[100, 1]]}

        model.execute_market_order(Side.BUY, 1, timestamp=1, book=book)
        result = model.execute_market_order(Side.BUY, 1, timestamp=1, book=book)

        assert result.status is ExecutionStatus.FILLED

    def test_closed_orders_leave_open_set(self):
        """Test filled and cancelled orders stop being evaluated but stay queryable."""
        model = FillModel()
        model.submit_limit_order(Side.BUY, 1, 100, timestamp=0, order_id="filled")
        model.submit_limit_order(Side.BUY, 1, 90, timestamp=0, ttl_ms=1, order_id="expired")
        model.submit_limit_order(Side.SELL, 1, 120, timestamp=0, order_id="resting")

        outcome = model.process_market_event(book_event(1, asks=[[100, 1]]))

        assert [fill.order_id for fill in outcome.fills] == ["filled"]
        assert [c.order_id for c in outcome.cancellations] == ["expired"]
        assert [order.order_id for order in model.open_orders] == ["resting"]
        assert set(model.orders) == {"filled", "expired", "resting"}
        assert model.get_order("filled").status is OrderStatus.FILLED

        assert model.process_market_event(book_event(2, asks=[[100, 1]])).fills == ()

    def test_tick_without_book_never_fills(self):
        model = FillModel()
        model.submit_limit_order(Side.BUY, 1, 100, timestamp=0, mode="aggressive")

        outcome = model.process_market_event(TickEvent(timestamp=1, price=90.0))

        assert outcome.fills == ()

    def test_limit_price_rounded_to_tick(self):
        model = FillModel(FillModelConfig(tick_size=0.5))
        result = model.submit_limit_order(Side.SELL, 1, 100.3, timestamp=0)

        assert result.order.price == pytest.approx(100.5)
        assert result.order_id == "lmt-1"

    def test_reset(self):
        model = FillModel()
        model.submit_limit_order(Side.BUY, 1, 100, timestamp=0)
        model.execute_market_order(Side.BUY, 1, timestamp=0, quote={"last_price": 100})
        model.reset()

        assert model.orders == {}
        assert model.ledger.is_flat
        assert model.submit_limit_order(Side.BUY, 1, 100, timestamp=0).order_id == "lmt-1"


class TestConfig:
    """Test fill model configuration."""

    def test_from_settings(self):
        settings = FillModelSettings(
            tick_size=0.1,
            taker_fee_rate=0.001,
            slippage_type="pct_of_spread",
            slippage_pct=0.5,
            cancel_latency_ms=7,
        )
        config = FillModelConfig.from_settings(settings)

        assert config.tick_size == pytest.approx(0.1)
        assert config.taker_fee_rate == pytest.approx(0.001)
        assert config.slippage_model.pct == pytest.approx(0.5)
        assert config.cancel_latency_ms == 7

    def test_overrides(self):
        model = FillModel(FillModelConfig(tick_size=1), taker_fee_rate=0.01)

        assert model.config.tick_size == 1
        assert model.config.taker_fee_rate == pytest.approx(0.01)

    def test_quote_from_event(self):
        quote = MarketQuote.from_event(book_event(1, price=100, bid=99, ask=101))

        assert quote.last_price == pytest.approx(100.0)
        assert quote.mid_price == pytest.approx(100.0)
        assert quote.spread == pytest.approx(2.0)
        assert quote.avg_volume is None
