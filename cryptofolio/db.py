"""
cryptofolio/db.py  —  SQLite database layer

One file backs three stores:
  - the transaction store : append-only history per user
  - the price cache       : last known quote per symbol, upserted on every fetch
  - the daily value log   : portfolio snapshots + at most one logged
                            ≥20% increase per user per day

Schema
──────
  transactions        : one row per buy/sell/deposit/withdrawal
  price_cache         : one row per symbol (conflict on symbol → overwrite)
  portfolio_snapshots : total portfolio value per user over time
  daily_value_updates : logged increases, UNIQUE(user_id, update_date)

All SQL uses parameterised queries.
"""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from cryptofolio import config
from cryptofolio.models import Quote, Transaction, TRANSACTION_TYPES

logger = logging.getLogger(__name__)

# ── Schema ────────────────────────────────────────────────────────────────────

_SCHEMA = f"""
PRAGMA journal_mode = WAL;

CREATE TABLE IF NOT EXISTS transactions (
    id          TEXT PRIMARY KEY,
    user_id     TEXT NOT NULL,
    symbol      TEXT NOT NULL,
    type        TEXT NOT NULL CHECK(type IN {TRANSACTION_TYPES!r}),
    amount      REAL NOT NULL CHECK(amount >= 0),
    unit_price  REAL NOT NULL,
    fees        REAL NOT NULL DEFAULT 0 CHECK(fees >= 0),
    value       REAL NOT NULL,
    created_at  TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_transactions_user ON transactions(user_id, created_at);

CREATE TABLE IF NOT EXISTS price_cache (
    symbol       TEXT PRIMARY KEY,
    price_usd    REAL NOT NULL,
    change_24h   REAL,
    market_cap   REAL,
    volume_24h   REAL,
    last_updated TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS portfolio_snapshots (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id     TEXT NOT NULL,
    total_value REAL NOT NULL,
    created_at  TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_snapshots_user ON portfolio_snapshots(user_id, created_at);

CREATE TABLE IF NOT EXISTS daily_value_updates (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id             TEXT NOT NULL,
    previous_value      REAL NOT NULL,
    new_value           REAL NOT NULL,
    increase_percentage REAL NOT NULL,
    crypto_symbol       TEXT NOT NULL DEFAULT 'PORTFOLIO',
    update_date         TEXT NOT NULL,
    created_at          TEXT NOT NULL,
    UNIQUE(user_id, update_date)
);
"""

# ── Connection management ─────────────────────────────────────────────────────

def _connect(path: str) -> sqlite3.Connection:
    conn = sqlite3.connect(path, check_same_thread=False)
    conn.row_factory = sqlite3.Row   # rows behave like dicts
    conn.executescript(_SCHEMA)
    return conn


@contextmanager
def _tx(conn: sqlite3.Connection, lock: threading.RLock):
    """Context manager that commits on success, rolls back on error."""
    with lock:
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _row_to_transaction(row: sqlite3.Row) -> Transaction:
    return Transaction(
        id=row["id"],
        symbol=row["symbol"],
        type=row["type"],
        amount=row["amount"],
        unit_price=row["unit_price"],
        fees=row["fees"],
        value=row["value"],
        timestamp=datetime.fromisoformat(row["created_at"]),
    )


def _row_to_quote(row: sqlite3.Row) -> Quote:
    return Quote(
        symbol=row["symbol"],
        price_usd=float(row["price_usd"]),
        change_24h_percent=float(row["change_24h"] or 0),
        market_cap_usd=float(row["market_cap"] or 0),
        volume_24h_usd=float(row["volume_24h"] or 0),
        last_updated=row["last_updated"],
    )


# ── Database class ────────────────────────────────────────────────────────────

class Database:
    """
    All reads and writes go through this class. The price feed uses it as the
    quote cache; the tracker and monitor use it as the transaction store.
    """

    def __init__(self, path: Optional[str] = None):
        self.path = path or config.DB_FILE
        self.conn = _connect(self.path)
        # One connection is shared with asyncio.to_thread workers
        self._lock = threading.RLock()

    def _query(self, sql: str, params: Iterable = ()) -> List[sqlite3.Row]:
        with self._lock:
            return self.conn.execute(sql, tuple(params)).fetchall()

    # ── Transactions ──────────────────────────────────────────────────────────

    def add_transaction(self, user_id: str, txn: Transaction) -> str:
        """Append a transaction; existing rows are never updated."""
        with _tx(self.conn, self._lock):
            self.conn.execute("""
                INSERT INTO transactions
                    (id, user_id, symbol, type, amount, unit_price, fees, value, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (txn.id, user_id, txn.symbol, txn.type, txn.amount,
                  txn.unit_price, txn.fees, txn.value, txn.timestamp.isoformat()))
        logger.debug("Recorded %s %s %s for %s", txn.type, txn.amount, txn.symbol, user_id)
        return txn.id

    def get_transactions(self, user_id: str) -> List[Transaction]:
        """A user's transactions, newest first (for listings)."""
        rows = self._query(
            "SELECT * FROM transactions WHERE user_id = ? ORDER BY created_at DESC, rowid DESC",
            (user_id,))
        return [_row_to_transaction(r) for r in rows]

    def get_history(self, user_id: str) -> List[Transaction]:
        """
        A user's transactions oldest first, ties in entry order. The
        average-cost fold is order dependent, so valuation reads this.
        """
        rows = self._query(
            "SELECT * FROM transactions WHERE user_id = ? ORDER BY created_at ASC, rowid ASC",
            (user_id,))
        return [_row_to_transaction(r) for r in rows]

    def users_with_transactions(self) -> List[str]:
        rows = self._query("SELECT DISTINCT user_id FROM transactions ORDER BY user_id")
        return [r["user_id"] for r in rows]

    def transaction_count(self, user_id: Optional[str] = None) -> int:
        if user_id is None:
            return self._query("SELECT COUNT(*) FROM transactions")[0][0]
        return self._query(
            "SELECT COUNT(*) FROM transactions WHERE user_id = ?", (user_id,))[0][0]

    # ── Price cache ───────────────────────────────────────────────────────────

    def get_cached_quotes(self, symbols: Iterable[str]) -> List[Quote]:
        """Cached quotes for the given symbols, most recently updated first."""
        symbols = list(symbols)
        if not symbols:
            return []
        placeholders = ", ".join("?" for _ in symbols)
        rows = self._query(
            f"SELECT * FROM price_cache WHERE symbol IN ({placeholders}) "
            f"ORDER BY last_updated DESC",
            symbols)
        return [_row_to_quote(r) for r in rows]

    def get_all_cached_quotes(self) -> List[Quote]:
        rows = self._query("SELECT * FROM price_cache ORDER BY last_updated DESC")
        return [_row_to_quote(r) for r in rows]

    def upsert_quotes(self, quotes: Iterable[Quote]) -> int:
        rows = [(q.symbol, q.price_usd, q.change_24h_percent, q.market_cap_usd,
                 q.volume_24h_usd, q.last_updated or _now())
                for q in quotes]
        if not rows:
            return 0
        with _tx(self.conn, self._lock):
            self.conn.executemany("""
                INSERT INTO price_cache
                    (symbol, price_usd, change_24h, market_cap, volume_24h, last_updated)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(symbol) DO UPDATE SET
                    price_usd    = excluded.price_usd,
                    change_24h   = excluded.change_24h,
                    market_cap   = excluded.market_cap,
                    volume_24h   = excluded.volume_24h,
                    last_updated = excluded.last_updated
            """, rows)
        return len(rows)

    # ── Portfolio snapshots / daily log ───────────────────────────────────────

    def add_snapshot(self, user_id: str, total_value: float,
                     created_at: Optional[datetime] = None) -> None:
        stamp = (created_at or datetime.now(timezone.utc)).isoformat()
        with _tx(self.conn, self._lock):
            self.conn.execute(
                "INSERT INTO portfolio_snapshots (user_id, total_value, created_at) "
                "VALUES (?, ?, ?)",
                (user_id, total_value, stamp))

    def lowest_snapshot_since(self, user_id: str, since: datetime) -> Optional[float]:
        rows = self._query(
            "SELECT MIN(total_value) AS low FROM portfolio_snapshots "
            "WHERE user_id = ? AND created_at >= ?",
            (user_id, since.isoformat()))
        return rows[0]["low"] if rows and rows[0]["low"] is not None else None

    def has_daily_update(self, user_id: str, update_date: str) -> bool:
        rows = self._query(
            "SELECT 1 FROM daily_value_updates WHERE user_id = ? AND update_date = ?",
            (user_id, update_date))
        return bool(rows)

    def log_daily_update(self, user_id: str, previous_value: float,
                         new_value: float, increase_percentage: float,
                         update_date: str, crypto_symbol: str = "PORTFOLIO") -> bool:
        """Insert today's increase; False if one is already logged for the day."""
        with _tx(self.conn, self._lock):
            cur = self.conn.execute("""
                INSERT INTO daily_value_updates
                    (user_id, previous_value, new_value, increase_percentage,
                     crypto_symbol, update_date, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(user_id, update_date) DO NOTHING
            """, (user_id, previous_value, new_value, increase_percentage,
                  crypto_symbol, update_date, _now()))
        return cur.rowcount == 1

    def daily_updates(self, user_id: str) -> List[dict]:
        rows = self._query(
            "SELECT * FROM daily_value_updates WHERE user_id = ? ORDER BY update_date",
            (user_id,))
        return [dict(r) for r in rows]

    def close(self) -> None:
        with self._lock:
            self.conn.close()
