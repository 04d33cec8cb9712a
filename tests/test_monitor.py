"""Tests for the daily portfolio increase monitor."""

import sqlite3
from datetime import timedelta

import pytest

from conftest import T0, quote, txn
from cryptofolio.monitor import PortfolioMonitor


def seed(db, user="alice", symbol="BTC", amount=1.0):
    db.add_transaction(user, txn("buy", symbol, amount, 10_000, id=f"{user}-{symbol}"))


def test_first_run_only_records_a_snapshot(db):
    seed(db)
    monitor = PortfolioMonitor(db)

    assert monitor.check_user("alice", [quote(price=10_000)], now=T0) is None
    assert db.lowest_snapshot_since("alice", T0 - timedelta(hours=1)) == 10_000


def test_increase_over_threshold_is_logged_once_per_day(db):
    seed(db)
    monitor = PortfolioMonitor(db, threshold=20)
    monitor.check_user("alice", [quote(price=10_000)], now=T0)

    found = monitor.check_user("alice", [quote(price=13_000)], now=T0 + timedelta(hours=1))
    assert found is not None
    assert found.logged
    assert found.previous_value == 10_000
    assert found.new_value == 13_000
    assert found.increase_percentage == pytest.approx(30)

    again = monitor.check_user("alice", [quote(price=14_000)], now=T0 + timedelta(hours=2))
    assert again is not None
    assert not again.logged
    assert len(db.daily_updates("alice")) == 1


def test_increase_below_threshold_is_ignored(db):
    seed(db)
    monitor = PortfolioMonitor(db, threshold=20)
    monitor.check_user("alice", [quote(price=10_000)], now=T0)
    assert monitor.check_user("alice", [quote(price=11_000)],
                              now=T0 + timedelta(hours=1)) is None
    assert db.daily_updates("alice") == []


def test_low_outside_window_is_not_compared(db):
    seed(db)
    monitor = PortfolioMonitor(db)
    monitor.check_user("alice", [quote(price=5_000)], now=T0)
    assert monitor.check_user("alice", [quote(price=10_000)],
                              now=T0 + timedelta(hours=25)) is None


def test_portfolio_value_reads_history_oldest_first(db):
    db.add_transaction("alice", txn("buy", amount=1, unit_price=10_000))
    db.add_transaction("alice", txn("sell", amount=1, unit_price=20_000, minutes=5))
    db.add_transaction("alice", txn("buy", "ETH", 2, 1_000, minutes=6))

    monitor = PortfolioMonitor(db)
    assert monitor.portfolio_value("alice", [quote("BTC", 15_000), quote("ETH", 1_500)]) == 3_000


def test_worthless_portfolio_is_skipped(db):
    seed(db)
    monitor = PortfolioMonitor(db)
    assert monitor.check_user("alice", [], now=T0) is None
    assert db.lowest_snapshot_since("alice", T0 - timedelta(days=1)) is None


def test_run_checks_every_user_with_cached_quotes(db):
    seed(db, "alice")
    seed(db, "bob", "ETH", 2.0)
    db.add_snapshot("alice", 8_000, T0 - timedelta(hours=3))
    db.add_snapshot("bob", 20_000, T0 - timedelta(hours=3))
    db.upsert_quotes([quote("BTC", 12_000), quote("ETH", 10_500)])

    report = PortfolioMonitor(db).run(now=T0)

    assert report.users_checked == 2
    assert report.increases_detected == 1
    assert report.details[0].user_id == "alice"
    assert report.details[0].increase_percentage == pytest.approx(50)
    assert report.timestamp == T0.isoformat()


class FlakyStore:
    """Delegates to the real database but fails reads for one user."""

    def __init__(self, db, broken_user):
        self.db = db
        self.broken_user = broken_user

    def get_history(self, user_id):
        if user_id == self.broken_user:
            raise sqlite3.OperationalError("database is locked")
        return self.db.get_history(user_id)

    def __getattr__(self, name):
        return getattr(self.db, name)


def test_run_continues_after_a_user_fails(db):
    seed(db, "alice")
    seed(db, "bob")
    db.add_snapshot("bob", 5_000, T0 - timedelta(hours=1))
    db.upsert_quotes([quote("BTC", 10_000)])

    report = PortfolioMonitor(FlakyStore(db, "alice")).run(now=T0)

    assert report.users_checked == 2
    assert [d.user_id for d in report.details] == ["bob"]
