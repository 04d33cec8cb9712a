"""Tests for the valuation engine: average-cost metrics and the FIFO paths."""

from __future__ import annotations

import pytest

from conftest import quote, txn
from cryptofolio.models import PortfolioMetrics
from cryptofolio.valuation import (
    AVERAGE_COST, FIFO, AverageCost, Fifo, compute_metrics, fifo_realized, get_strategy,
)


# ══════════════════════════════════════════════════════════════════════
# 1.  Average-cost scenarios
# ══════════════════════════════════════════════════════════════════════


class TestAverageCostScenarios:

    def test_single_buy_priced_against_quote(self):
        m = compute_metrics([txn("buy")], [quote(price=15_000)])
        p = m.positions[0]
        assert p.total_amount == 1
        assert p.total_cost == 10_000
        assert p.average_price == 10_000
        assert p.current_value == 15_000
        assert p.unrealized_pnl == 5_000
        assert p.unrealized_pnl_percent == pytest.approx(50)

    def test_partial_sell_realizes_against_average_cost(self):
        txns = [
            txn("buy"),
            txn("sell", amount=0.5, unit_price=20_000, fees=10, minutes=1),
        ]
        m = compute_metrics(txns, [quote(price=15_000)])
        p = m.positions[0]
        assert p.realized_pnl == pytest.approx(4_990)
        assert p.total_amount == pytest.approx(0.5)
        assert p.total_cost == pytest.approx(5_000)
        assert p.total_fees == pytest.approx(10)

    def test_over_sell_clamps_to_zero(self):
        txns = [
            txn("buy", amount=0.5, unit_price=10_000),
            txn("sell", amount=2, unit_price=12_000, minutes=1),
        ]
        state = AverageCost().fold(txns)
        assert state.total_amount == 0
        assert state.total_cost == 0

        m = compute_metrics(txns, [quote()])
        assert m.positions == []

    def test_withdrawal_after_clamp_never_goes_negative(self):
        txns = [
            txn("deposit", amount=1),
            txn("withdrawal", amount=3, minutes=1),
            txn("withdrawal", amount=1, minutes=2),
            txn("deposit", amount=2, unit_price=5_000, minutes=3),
        ]
        state = AVERAGE_COST.fold(txns)
        assert state.total_amount == pytest.approx(2)
        assert state.total_cost == pytest.approx(10_000)

    def test_empty_history_is_all_zero(self):
        m = compute_metrics([], [quote()])
        assert m == PortfolioMetrics.empty()
        assert m.positions == []
        assert m.total_pnl_percent == 0

    def test_missing_quote_values_position_at_zero(self):
        m = compute_metrics([txn("buy", symbol="ETH", unit_price=2_000)], [quote("BTC")])
        p = m.positions[0]
        assert p.current_price == 0
        assert p.current_value == 0
        assert p.unrealized_pnl == -p.total_cost
        assert m.total_pnl_percent == pytest.approx(-100)

    def test_symbol_match_is_case_sensitive(self):
        m = compute_metrics([txn("buy", symbol="btc")], [quote("BTC")])
        assert m.positions[0].current_value == 0

    def test_first_quote_per_symbol_wins(self):
        quotes = [quote(price=20_000, updated="2024-01-02"), quote(price=1, updated="2024-01-01")]
        m = compute_metrics([txn("buy")], quotes)
        assert m.positions[0].current_price == 20_000

    def test_positions_sorted_by_value_descending(self):
        txns = [
            txn("buy", symbol="ADA", amount=100, unit_price=1),
            txn("buy", symbol="BTC", amount=1, unit_price=10_000),
            txn("buy", symbol="ETH", amount=2, unit_price=2_000),
        ]
        quotes = [quote("ADA", 1.2), quote("BTC", 12_000), quote("ETH", 2_500)]
        m = compute_metrics(txns, quotes)
        assert [p.symbol for p in m.positions] == ["BTC", "ETH", "ADA"]
        assert sum(pct for _, pct in m.allocation()) == pytest.approx(100)

    def test_zero_cost_position_reports_zero_percent(self):
        m = compute_metrics([txn("deposit", value=0)], [quote()])
        assert m.positions[0].unrealized_pnl_percent == 0
        assert m.total_pnl_percent == 0

    def test_change_24h_copied_from_quote(self):
        m = compute_metrics([txn("buy")], [quote(change=-3.5)])
        assert m.positions[0].change_24h_percent == -3.5


# ══════════════════════════════════════════════════════════════════════
# 2.  Properties
# ══════════════════════════════════════════════════════════════════════


HISTORY = [
    txn("buy", "BTC", 1, 30_000, fees=15, value=30_015),
    txn("buy", "ETH", 10, 1_800, value=18_000, minutes=1),
    txn("sell", "BTC", 0.25, 40_000, fees=5, minutes=2),
    txn("deposit", "SOL", 50, 20, minutes=3),
    txn("withdrawal", "ETH", 12, 2_000, minutes=4),
    txn("buy", "BTC", 0.5, 35_000, minutes=5),
]
QUOTES = [quote("BTC", 42_000), quote("ETH", 2_100), quote("SOL", 25)]


class TestProperties:

    def test_inflows_only_sum_amount_and_value(self):
        txns = [
            txn("buy", "BTC", 0.3, 20_000, fees=3, value=6_003),
            txn("deposit", "BTC", 0.2, 25_000, minutes=1),
            txn("buy", "ETH", 4, 1_500, minutes=2),
        ]
        m = compute_metrics(txns, QUOTES)
        by_symbol = {p.symbol: p for p in m.positions}
        for symbol in ("BTC", "ETH"):
            own = [t for t in txns if t.symbol == symbol]
            assert by_symbol[symbol].total_amount == pytest.approx(sum(t.amount for t in own))
            assert by_symbol[symbol].total_cost == pytest.approx(sum(t.value for t in own))

    def test_amount_and_cost_never_negative(self):
        for strategy in (AVERAGE_COST, FIFO):
            for end in range(1, len(HISTORY) + 1):
                for symbol in ("BTC", "ETH", "SOL"):
                    state = strategy.fold([t for t in HISTORY[:end] if t.symbol == symbol])
                    assert state.total_amount >= 0
                    assert state.total_cost >= 0

    def test_idempotent(self):
        assert compute_metrics(HISTORY, QUOTES) == compute_metrics(HISTORY, QUOTES)

    def test_total_pnl_is_unrealized_plus_realized(self):
        m = compute_metrics(HISTORY, QUOTES)
        assert m.total_pnl == pytest.approx(m.total_unrealized_pnl + m.total_realized_pnl)

    def test_totals_match_positions(self):
        m = compute_metrics(HISTORY, QUOTES)
        assert m.total_value == pytest.approx(sum(p.current_value for p in m.positions))
        assert m.total_cost == pytest.approx(sum(p.total_cost for p in m.positions))
        assert m.total_fees == pytest.approx(sum(p.total_fees for p in m.positions))
        assert m.total_pnl_percent == pytest.approx(m.total_pnl / m.total_cost * 100)

    def test_inputs_are_not_mutated(self):
        before = list(HISTORY)
        compute_metrics(HISTORY, QUOTES, FIFO)
        assert HISTORY == before


# ══════════════════════════════════════════════════════════════════════
# 3.  FIFO
# ══════════════════════════════════════════════════════════════════════


class TestFifoRealized:

    def test_consumes_oldest_lots_first(self):
        buys = [
            txn("buy", amount=1, unit_price=200, minutes=10, id="late"),
            txn("buy", amount=1, unit_price=100, minutes=0, id="early"),
        ]
        result = fifo_realized("BTC", 1.5, 300, buys)
        assert result.realized_pnl == pytest.approx(200 + 50)
        assert len(result.remaining_lots) == 1
        lot = result.remaining_lots[0]
        assert lot.transaction_id == "late"
        assert lot.amount == pytest.approx(0.5)
        assert lot.cost == pytest.approx(100)

    def test_unconsumed_lots_are_returned_whole(self):
        buys = [txn("buy", amount=1, unit_price=100, minutes=m, id=f"b{m}") for m in range(3)]
        result = fifo_realized("BTC", 1, 150, buys)
        assert result.realized_pnl == pytest.approx(50)
        assert [lot.transaction_id for lot in result.remaining_lots] == ["b1", "b2"]
        assert result.remaining_amount == pytest.approx(2)

    def test_ignores_other_symbols_and_outflows(self):
        history = [
            txn("buy", "BTC", 1, 100),
            txn("buy", "ETH", 5, 10, minutes=1),
            txn("sell", "BTC", 1, 500, minutes=2),
            txn("deposit", "BTC", 1, 300, minutes=3),
        ]
        result = fifo_realized("BTC", 2, 400, history)
        assert result.realized_pnl == pytest.approx(300 + 100)
        assert result.remaining_lots == []


class TestStrategies:

    def test_fifo_fold_uses_lot_basis(self):
        txns = [
            txn("buy", amount=1, unit_price=100),
            txn("buy", amount=1, unit_price=200, minutes=1),
            txn("sell", amount=1, unit_price=300, minutes=2),
        ]
        fifo = Fifo().fold(txns)
        assert fifo.realized_pnl == pytest.approx(200)
        assert fifo.total_amount == pytest.approx(1)
        assert fifo.total_cost == pytest.approx(200)

        avg = AverageCost().fold(txns)
        assert avg.realized_pnl == pytest.approx(150)
        assert avg.total_cost == pytest.approx(150)

    def test_strategies_agree_without_outflows(self):
        txns = [t for t in HISTORY if t.is_inflow]
        assert compute_metrics(txns, QUOTES, FIFO) == compute_metrics(txns, QUOTES, AVERAGE_COST)

    def test_fifo_over_sell_clamps(self):
        state = FIFO.fold([txn("buy", amount=1), txn("sell", amount=5, minutes=1)])
        assert state.total_amount == 0
        assert state.total_cost == 0

    def test_get_strategy(self):
        assert get_strategy("FIFO") is FIFO
        assert get_strategy("average") is AVERAGE_COST
        with pytest.raises(ValueError):
            get_strategy("lifo")
