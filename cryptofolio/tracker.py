"""
cryptofolio/tracker.py  —  Live portfolio state for the presentation layer

PortfolioTracker keeps a user's transactions and the latest quotes, recomputes
PortfolioMetrics whenever either changes, and holds at most one performance
alert plus the price-error banner. The symbol subscription follows the
transaction set: new symbols are added to it, and it is dropped when the
portfolio is empty.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Set

from cryptofolio import config
from cryptofolio.errors import PriceFeedError
from cryptofolio.feed import PriceFeedService, Subscription
from cryptofolio.models import PortfolioMetrics, Quote, Transaction
from cryptofolio.valuation import AVERAGE_COST, CostBasisStrategy, compute_metrics

logger = logging.getLogger(__name__)

MILESTONE     = "milestone"
PROFIT_TAKING = "profit_taking"
DECLINE       = "decline"


@dataclass(frozen=True)
class Alert:
    kind:        str
    message:     str
    pnl_percent: float


def _pct(value: float) -> str:
    sign = "+" if value >= 0 else ""
    return f"{sign}{value:.2f}%"


def evaluate_alert(total_pnl_percent: float,
                   threshold: float = config.PERFORMANCE_ALERT_THRESHOLD,
                   high_threshold: float = config.HIGH_PERFORMANCE_THRESHOLD) -> Optional[Alert]:
    """The single alert for a total P&L percentage, or None inside the band."""
    p = total_pnl_percent
    if p >= high_threshold:
        return Alert(PROFIT_TAKING,
                     f"Outstanding performance! Your portfolio has gained {_pct(p)}. "
                     f"You might consider taking some profits.", p)
    if p >= threshold:
        return Alert(MILESTONE,
                     f"Congratulations! Your portfolio has gained {_pct(p)}!", p)
    if p <= -threshold:
        return Alert(DECLINE,
                     f"Your portfolio has declined {_pct(abs(p))}. "
                     f"Consider reviewing your positions.", p)
    return None


class PortfolioTracker:
    def __init__(self, feed: PriceFeedService, store=None,
                 user_id: Optional[str] = None, *,
                 interval: Optional[float] = None,
                 strategy: Optional[CostBasisStrategy] = None):
        self.feed     = feed
        self.store    = store
        self.user_id  = user_id
        self.interval = interval
        self.strategy = strategy or AVERAGE_COST

        self.transactions: List[Transaction] = []
        self.quotes:       List[Quote] = []
        self.quote_source: Optional[str] = None
        self.metrics = PortfolioMetrics.empty()
        self.alert:        Optional[Alert] = None
        self.price_error:  Optional[str] = None
        self.price_error_attempts = 0

        self._subscription: Optional[Subscription] = None
        self._listeners: List[Callable[["PortfolioTracker"], None]] = []
        self._started = False

    # ── Inputs ────────────────────────────────────────────────────────────────

    @property
    def symbols(self) -> Set[str]:
        return {t.symbol for t in self.transactions}

    @property
    def subscription(self) -> Optional[Subscription]:
        return self._subscription

    def set_transactions(self, transactions: Iterable[Transaction]) -> None:
        """Replace the history. It is valued in the given order, oldest first."""
        self.transactions = list(transactions)
        self._recompute()
        self._sync_subscription()
        self._notify()

    def load_transactions(self) -> None:
        """Re-read the user's history from the transaction store."""
        if self.store is None or self.user_id is None:
            raise RuntimeError("PortfolioTracker has no store/user to load from")
        self.set_transactions(self.store.get_history(self.user_id))

    def set_strategy(self, strategy: CostBasisStrategy) -> None:
        self.strategy = strategy
        self._recompute()
        self._notify()

    # ── Subscription ──────────────────────────────────────────────────────────

    def start(self) -> None:
        self._started = True
        self._sync_subscription()

    def stop(self) -> None:
        self._started = False
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None

    def refresh(self):
        """Manual refresh; returns the scheduled task (None when idle)."""
        if self._subscription is None:
            return None
        return self._subscription.refresh_soon()

    def _sync_subscription(self) -> None:
        if not self._started:
            return
        symbols = self.symbols
        if not symbols:
            if self._subscription is not None:
                self._subscription.cancel()
                self._subscription = None
            return
        if self._subscription is None:
            self._subscription = self.feed.subscribe(
                symbols, self.interval,
                on_quotes=self._on_quotes, on_error=self._on_error)
        else:
            self._subscription.update(symbols=symbols)

    def _on_quotes(self, quotes: List[Quote], source: str) -> None:
        self.quotes = quotes
        self.quote_source = source
        if source == "live":
            self.price_error = None
            self.price_error_attempts = 0
        self._recompute()
        self._notify()

    def _on_error(self, error: PriceFeedError) -> None:
        self.price_error = str(error)
        self.price_error_attempts = error.attempts
        self._notify()

    def dismiss_price_error(self) -> None:
        self.price_error = None
        self.price_error_attempts = 0
        self._notify()

    # ── Derived state ─────────────────────────────────────────────────────────

    def _recompute(self) -> None:
        if not self.transactions:
            self.metrics = PortfolioMetrics.empty()
            self.alert = None
            return

        self.metrics = compute_metrics(self.transactions, self.quotes, self.strategy)
        # Before any quote arrives every position is worth 0, which would
        # read as a -100% decline
        if self.quotes:
            alert = evaluate_alert(self.metrics.total_pnl_percent)
            if alert != self.alert and alert is not None:
                logger.info("Portfolio alert: %s", alert.message)
            self.alert = alert

    # ── Listeners ─────────────────────────────────────────────────────────────

    def add_listener(self, callback: Callable[["PortfolioTracker"], None]) -> None:
        self._listeners.append(callback)

    def remove_listener(self, callback: Callable[["PortfolioTracker"], None]) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def _notify(self) -> None:
        for callback in list(self._listeners):
            try:
                callback(self)
            except Exception:
                logger.exception("Tracker listener failed")
