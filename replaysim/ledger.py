"""
Position ledger.

Tracks a single signed position: quantity (negative = short), average
entry price, realized P&L and cumulative fees. Fills in the direction of
the position (or from flat) blend the average price by notional; fills
against it realize P&L on the closed portion, and a fill that flips the
position re-opens it at the fill price.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Union

from replaysim.core.types import Side

# Quantities this close to zero are treated as flat
QTY_EPSILON = 1e-12


def signed_qty(side: Union[Side, str], qty: float) -> float:
    """Signed quantity of a fill: +|qty| for buys, -|qty| for sells."""
    return Side.parse(side).sign * abs(qty)


def _sign(value: float) -> int:
    if value > 0:
        return 1
    if value < 0:
        return -1
    return 0


@dataclass(frozen=True)
class PositionSnapshot:
    """
    Immutable copy of the ledger state.

    Attributes:
        qty: Signed position quantity
        avg_price: Average entry price (0 when flat)
        realized_pnl: Cumulative realized P&L, net of fees
        fees_paid: Cumulative fees
    """
    qty: float = 0.0
    avg_price: float = 0.0
    realized_pnl: float = 0.0
    fees_paid: float = 0.0

    @property
    def is_flat(self) -> bool:
        return self.qty == 0

    @property
    def is_long(self) -> bool:
        return self.qty > 0

    @property
    def is_short(self) -> bool:
        return self.qty < 0

    @property
    def cost_basis(self) -> float:
        return abs(self.qty) * self.avg_price

    def to_dict(self) -> Dict[str, Any]:
        return {
            "qty": self.qty,
            "avg_price": self.avg_price,
            "realized_pnl": self.realized_pnl,
            "fees_paid": self.fees_paid,
        }


class PositionLedger:
    """
    Mutable single-instrument position.

    Example:
        ledger = PositionLedger()
        ledger.apply_fill(Side.BUY, 2, 100.0)
        ledger.apply_fill(Side.SELL, 1, 110.0)  # returns 10.0
    """

    def __init__(self) -> None:
        self.qty = 0.0
        self.avg_price = 0.0
        self.realized_pnl = 0.0
        self.fees_paid = 0.0

    @property
    def is_flat(self) -> bool:
        return self.qty == 0

    def apply_fill(self, side: Union[Side, str], qty: float, price: float, fee: float = 0.0) -> float:
        """
        Apply a fill to the position.

        Args:
            side: Fill side
            qty: Fill quantity (sign is taken from ``side``)
            price: Execution price
            fee: Fee charged on the fill

        Returns:
            Realized P&L delta of this fill, net of the fee
        """
        delta_qty = signed_qty(side, qty)
        prev_qty = self.qty
        prev_avg = self.avg_price

        realized = -fee
        self.fees_paid += fee

        if prev_qty == 0 or _sign(prev_qty) == _sign(delta_qty):
            new_qty = self._snap(prev_qty + delta_qty)
            if new_qty == 0:
                self.avg_price = 0.0
            else:
                weighted = abs(prev_qty) * prev_avg + abs(delta_qty) * price
                self.avg_price = weighted / abs(new_qty)
            self.qty = new_qty
            self.realized_pnl += realized
            return realized

        closing = min(abs(prev_qty), abs(delta_qty))
        if prev_qty > 0:
            realized += (price - prev_avg) * closing
        else:
            realized += (prev_avg - price) * closing

        remaining = self._snap(prev_qty + delta_qty)
        self.qty = remaining
        if remaining == 0:
            self.avg_price = 0.0
        elif _sign(remaining) == _sign(prev_qty):
            self.avg_price = prev_avg
        else:
            # Flipped through zero
            self.avg_price = price

        self.realized_pnl += realized
        return realized

    def snapshot(self) -> PositionSnapshot:
        return PositionSnapshot(
            qty=self.qty,
            avg_price=self.avg_price,
            realized_pnl=self.realized_pnl,
            fees_paid=self.fees_paid,
        )

    def reset(self) -> None:
        self.qty = 0.0
        self.avg_price = 0.0
        self.realized_pnl = 0.0
        self.fees_paid = 0.0

    @staticmethod
    def _snap(qty: float) -> float:
        return 0.0 if abs(qty) < QTY_EPSILON else qty

    def __repr__(self) -> str:
        return (
            f"PositionLedger(qty={self.qty}, avg_price={self.avg_price}, "
            f"realized_pnl={self.realized_pnl})"
        )
