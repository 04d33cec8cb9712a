"""
cryptofolio/valuation.py  —  Cost basis and portfolio valuation

Two cost-basis strategies are available:
  - AverageCost : weighted-average cost, recomputed on every outflow. This is
                  the system of record and the default for compute_metrics().
  - Fifo        : oldest lots are consumed first (tax-lot accounting).

Both fold one symbol's transactions into a PositionState. compute_metrics()
then prices each state against the quotes. Nothing here does I/O or raises:
missing quotes price at zero and over-withdrawals clamp holdings to zero.
"""

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from cryptofolio.models import (
    FifoLot, FifoResult, PortfolioMetrics, Position, Quote, Transaction,
)

_EPS = 1e-12


@dataclass
class PositionState:
    """Running totals for one symbol while folding its transactions."""
    total_amount: float = 0.0
    total_cost:   float = 0.0
    realized_pnl: float = 0.0
    total_fees:   float = 0.0


# ── Strategies ────────────────────────────────────────────────────────────────

class CostBasisStrategy(ABC):
    name = ""

    @abstractmethod
    def fold(self, transactions: Iterable[Transaction]) -> PositionState:
        """Fold one symbol's transactions (in the given order) into a state."""


class AverageCost(CostBasisStrategy):
    name = "average"

    def fold(self, transactions: Iterable[Transaction]) -> PositionState:
        state = PositionState()
        for t in transactions:
            if t.is_inflow:
                state.total_amount += t.amount
                state.total_cost   += t.value
            elif t.is_outflow:
                avg_cost = (state.total_cost / state.total_amount
                            if state.total_amount > 0 else 0.0)
                sold_value = t.amount * t.unit_price
                sold_cost  = t.amount * avg_cost
                state.realized_pnl += sold_value - sold_cost - t.fees
                state.total_amount -= t.amount
                state.total_cost   -= sold_cost
                # Over-withdrawal clamps instead of going short
                if state.total_amount < 0:
                    state.total_amount = 0.0
                if state.total_cost < 0:
                    state.total_cost = 0.0
            state.total_fees += t.fees
        return state


class Fifo(CostBasisStrategy):
    """
    Lot-based cost basis. Inflows open lots at value / amount per unit, so
    buy fees raise the basis. Outflows consume lots oldest-first by timestamp.
    """
    name = "fifo"

    def fold(self, transactions: Iterable[Transaction]) -> PositionState:
        state = PositionState()
        lots: List[FifoLot] = []

        for t in sorted(transactions, key=lambda x: x.timestamp):
            if t.is_inflow:
                if t.amount > 0:
                    lots.append(FifoLot(transaction_id=t.id, timestamp=t.timestamp,
                                        amount=t.amount,
                                        unit_price=t.value / t.amount))
            elif t.is_outflow:
                remaining  = t.amount
                cost_basis = 0.0
                while remaining > _EPS and lots:
                    lot     = lots[0]
                    matched = min(lot.amount, remaining)
                    cost_basis += matched * lot.unit_price
                    lot.amount -= matched
                    remaining  -= matched
                    if lot.amount < _EPS:
                        lots.pop(0)
                state.realized_pnl += t.amount * t.unit_price - cost_basis - t.fees
            state.total_fees += t.fees

        state.total_amount = sum(lot.amount for lot in lots)
        state.total_cost   = sum(lot.cost for lot in lots)
        return state


AVERAGE_COST = AverageCost()
FIFO         = Fifo()

STRATEGIES: Dict[str, CostBasisStrategy] = {
    AVERAGE_COST.name: AVERAGE_COST,
    FIFO.name:         FIFO,
}


def get_strategy(name: str) -> CostBasisStrategy:
    try:
        return STRATEGIES[name.lower()]
    except KeyError:
        raise ValueError(f"Unknown cost-basis strategy '{name}'. "
                         f"Choose one of: {', '.join(STRATEGIES)}") from None


# ── Standalone FIFO calculator ────────────────────────────────────────────────

def fifo_realized(symbol: str, sell_amount: float, sell_price: float,
                  buys: Iterable[Transaction]) -> FifoResult:
    """
    Realized P&L of selling sell_amount of symbol at sell_price, matched
    against prior inflows oldest-first. Profit per lot is
    (sell_price - lot price) × consumed amount; fees are not included.
    The result also lists what is left of each lot afterwards.
    """
    sorted_buys = sorted(
        (t for t in buys if t.symbol == symbol and t.is_inflow),
        key=lambda t: t.timestamp,
    )

    remaining_to_sell = sell_amount
    realized = 0.0
    remaining_lots: List[FifoLot] = []

    for buy in sorted_buys:
        if remaining_to_sell <= 0:
            remaining_lots.append(FifoLot(buy.id, buy.timestamp,
                                          buy.amount, buy.unit_price))
            continue

        consumed = min(remaining_to_sell, buy.amount)
        realized += (sell_price - buy.unit_price) * consumed
        remaining_to_sell -= consumed

        if buy.amount > consumed:
            remaining_lots.append(FifoLot(buy.id, buy.timestamp,
                                          buy.amount - consumed, buy.unit_price))

    return FifoResult(realized_pnl=realized, remaining_lots=remaining_lots)


# ── Portfolio metrics ─────────────────────────────────────────────────────────

def _price(quote: Optional[Quote]) -> float:
    if quote is None or not math.isfinite(quote.price_usd):
        return 0.0
    return quote.price_usd


def compute_metrics(transactions: Iterable[Transaction],
                    quotes: Iterable[Quote],
                    strategy: Optional[CostBasisStrategy] = None) -> PortfolioMetrics:
    """Value a transaction history against the latest quotes."""
    strategy = strategy or AVERAGE_COST

    grouped: Dict[str, List[Transaction]] = {}
    for t in transactions:
        grouped.setdefault(t.symbol, []).append(t)

    # First quote per symbol wins; cached quotes arrive newest-first
    by_symbol: Dict[str, Quote] = {}
    for q in quotes:
        by_symbol.setdefault(q.symbol, q)

    positions: List[Position] = []
    for symbol, txns in grouped.items():
        state = strategy.fold(txns)
        if state.total_amount <= 0:
            continue

        quote         = by_symbol.get(symbol)
        current_price = _price(quote)
        current_value = state.total_amount * current_price
        unrealized    = current_value - state.total_cost

        positions.append(Position(
            symbol=symbol,
            total_amount=state.total_amount,
            total_cost=state.total_cost,
            average_price=state.total_cost / state.total_amount,
            current_price=current_price,
            current_value=current_value,
            unrealized_pnl=unrealized,
            unrealized_pnl_percent=(unrealized / state.total_cost * 100
                                    if state.total_cost > 0 else 0.0),
            realized_pnl=state.realized_pnl,
            total_fees=state.total_fees,
            change_24h_percent=quote.change_24h_percent if quote else 0.0,
        ))

    total_value      = sum(p.current_value for p in positions)
    total_cost       = sum(p.total_cost for p in positions)
    total_unrealized = sum(p.unrealized_pnl for p in positions)
    total_realized   = sum(p.realized_pnl for p in positions)
    total_pnl        = total_unrealized + total_realized

    return PortfolioMetrics(
        total_value=total_value,
        total_cost=total_cost,
        total_unrealized_pnl=total_unrealized,
        total_realized_pnl=total_realized,
        total_pnl=total_pnl,
        total_pnl_percent=total_pnl / total_cost * 100 if total_cost > 0 else 0.0,
        total_fees=sum(p.total_fees for p in positions),
        positions=sorted(positions, key=lambda p: p.current_value, reverse=True),
    )
