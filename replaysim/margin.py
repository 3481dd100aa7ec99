"""
Margin and risk model for leveraged market types.

A deliberately simple model: initial and maintenance margin are fixed
fractions of the position notional at the mark price, and a position is
liquidatable when equity (cash + unrealized P&L) falls below maintenance
margin. Venue-specific tiers and insurance funds are out of scope.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict, Optional

from replaysim.ledger import PositionSnapshot


def _safe_mark(position: PositionSnapshot, mark_price: Optional[float]) -> float:
    if mark_price is None or not math.isfinite(mark_price):
        return position.avg_price
    return mark_price


def unrealized_pnl(position: PositionSnapshot, mark_price: Optional[float]) -> float:
    """
    Unrealized P&L of a position at the given mark.

    Falls back to the average price (zero P&L) when the mark is missing.
    """
    mark = _safe_mark(position, mark_price)
    return position.qty * (mark - position.avg_price)


@dataclass(frozen=True)
class MarginSnapshot:
    """
    Margin requirements of a position at a mark price.

    Attributes:
        mark_price: Mark used (average price if none was given)
        position_notional: |qty| x |mark|
        initial_margin: Notional x initial margin rate
        maintenance_margin: Notional x maintenance margin rate
        unrealized_pnl: qty x (mark - avg_price)
    """
    mark_price: float
    position_notional: float
    initial_margin: float
    maintenance_margin: float
    unrealized_pnl: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mark_price": self.mark_price,
            "position_notional": self.position_notional,
            "initial_margin": self.initial_margin,
            "maintenance_margin": self.maintenance_margin,
            "unrealized_pnl": self.unrealized_pnl,
        }


def margin_snapshot(
    position: PositionSnapshot,
    mark_price: Optional[float],
    initial_margin_rate: float = 0.0,
    maintenance_margin_rate: float = 0.0,
) -> MarginSnapshot:
    """
    Compute the margin snapshot of a position.

    Negative rates are treated as zero.

    Example:
        qty 3 @ 100, mark 90, rates 0.1 / 0.05 gives notional 270,
        initial 27, maintenance 13.5, unrealized -30.
    """
    mark = _safe_mark(position, mark_price)
    notional = abs(position.qty) * abs(mark)
    return MarginSnapshot(
        mark_price=mark,
        position_notional=notional,
        initial_margin=notional * max(0.0, initial_margin_rate),
        maintenance_margin=notional * max(0.0, maintenance_margin_rate),
        unrealized_pnl=unrealized_pnl(position, mark),
    )


def is_liquidatable(cash: float, position: PositionSnapshot, snapshot: MarginSnapshot) -> bool:
    """True when a position is open and cash + unrealized P&L < maintenance margin."""
    if position.is_flat:
        return False
    return cash + snapshot.unrealized_pnl < snapshot.maintenance_margin


def liquidation_penalty(position_notional: float, penalty_rate: Optional[float]) -> float:
    """Penalty charged on liquidation: notional x max(0, rate)."""
    return position_notional * max(0.0, penalty_rate or 0.0)


@dataclass(frozen=True)
class RiskAssessment:
    """Result of a risk evaluation."""
    snapshot: MarginSnapshot
    equity: float
    liquidate: bool
    penalty: float = 0.0

    @property
    def margin_ratio(self) -> float:
        """Maintenance margin / equity (inf when equity is not positive)."""
        if self.equity <= 0:
            return math.inf if self.snapshot.maintenance_margin > 0 else 0.0
        return self.snapshot.maintenance_margin / self.equity


class MarginModel:
    """
    Margin model bound to a run's rates.

    Args:
        initial_margin_rate: Fraction of notional required to open
        maintenance_margin_rate: Fraction of notional required to stay open
        liquidation_penalty_rate: Fraction of notional charged on liquidation
    """

    def __init__(
        self,
        initial_margin_rate: float = 0.0,
        maintenance_margin_rate: float = 0.0,
        liquidation_penalty_rate: float = 0.0,
    ) -> None:
        self.initial_margin_rate = initial_margin_rate
        self.maintenance_margin_rate = maintenance_margin_rate
        self.liquidation_penalty_rate = liquidation_penalty_rate

    def snapshot(self, position: PositionSnapshot, mark_price: Optional[float]) -> MarginSnapshot:
        return margin_snapshot(
            position,
            mark_price,
            initial_margin_rate=self.initial_margin_rate,
            maintenance_margin_rate=self.maintenance_margin_rate,
        )

    def assess(self, cash: float, position: PositionSnapshot, mark_price: Optional[float]) -> RiskAssessment:
        """
        Evaluate the account against maintenance margin.

        Returns:
            RiskAssessment with the snapshot, equity, whether to liquidate
            and the penalty that liquidation would charge
        """
        snap = self.snapshot(position, mark_price)
        liquidate = is_liquidatable(cash, position, snap)
        penalty = liquidation_penalty(snap.position_notional, self.liquidation_penalty_rate) if liquidate else 0.0
        return RiskAssessment(
            snapshot=snap,
            equity=cash + snap.unrealized_pnl,
            liquidate=liquidate,
            penalty=penalty,
        )
