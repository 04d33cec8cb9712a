"""Tests for entry-time validation rules."""

from conftest import txn
from cryptofolio.validation import (
    held_amount, validate_symbol, validate_transaction, validate_transaction_list,
)


class TestSymbol:

    def test_accepts_common_tickers(self):
        for symbol in ("BTC", "eth", "BRK.B", "USDC-E", "1INCH"):
            assert validate_symbol(symbol) == []

    def test_rejects_empty_long_and_odd_symbols(self):
        assert validate_symbol("   ") == ["Symbol cannot be empty."]
        assert "too long" in validate_symbol("ABCDEFGHIJKLMN")[0]
        assert "invalid characters" in validate_symbol("BTC/USD")[0]


class TestTransaction:

    def test_valid_buy(self):
        assert validate_transaction("buy", 0.5, 40_000, fees=10) == []

    def test_unknown_type_short_circuits(self):
        errors = validate_transaction("airdrop", -1, -1)
        assert len(errors) == 1
        assert "Type must be one of" in errors[0]

    def test_non_positive_amount_and_price(self):
        errors = validate_transaction("buy", 0, 0)
        assert "Amount must be greater than zero." in errors
        assert "Price must be greater than zero." in errors

    def test_fees(self):
        assert "Fees cannot be negative." in validate_transaction("buy", 1, 100, fees=-1)
        assert any("exceed" in e for e in validate_transaction("buy", 1, 100, fees=101))

    def test_outflow_needs_holdings(self):
        assert validate_transaction("sell", 1, 100, held=0) == ["You have no units to sell."]
        assert any("only hold 0.5" in e
                   for e in validate_transaction("withdrawal", 1, 100, held=0.5))
        assert validate_transaction("sell", 0.5, 100, held=0.5) == []

    def test_inflow_ignores_holdings(self):
        assert validate_transaction("deposit", 3, 100, held=0) == []


class TestHistory:

    def test_held_amount_floors_at_zero(self):
        history = [
            txn("buy", amount=1),
            txn("sell", amount=3, minutes=1),
            txn("deposit", amount=0.25, minutes=2),
            txn("buy", "ETH", amount=10, minutes=3),
        ]
        assert held_amount(history, "BTC") == 0.25
        assert held_amount(history, "ETH") == 10
        assert held_amount(history, "SOL") == 0

    def test_list_flags_uncovered_outflows_in_time_order(self):
        history = [
            txn("sell", amount=0.5, minutes=10),
            txn("buy", amount=1, minutes=0),
            txn("withdrawal", amount=1, minutes=20),
        ]
        errors = validate_transaction_list(history)
        assert len(errors) == 1
        assert errors[0].startswith("Row 3 (BTC): withdrawal")

    def test_list_flags_bad_rows(self):
        history = [txn("buy", fees=-1), txn("airdrop", minutes=1)]
        errors = validate_transaction_list(history)
        assert errors == [
            "Row 1 (BTC): fees cannot be negative.",
            "Row 2 (BTC): unknown type 'airdrop'.",
        ]

    def test_clean_history(self):
        history = [txn("buy", amount=2), txn("sell", amount=2, minutes=1)]
        assert validate_transaction_list(history) == []
