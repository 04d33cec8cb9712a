"""
cryptofolio/monitor.py  —  Daily portfolio increase monitor

Meant to run on a schedule (cron, or the CLI's "run monitor" entry). For
every user with transactions it values the portfolio against cached quotes,
records a snapshot, compares it with the lowest snapshot of the trailing
24 hours and logs increases above the alert threshold. At most one increase
is logged per user per day.
"""

import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from cryptofolio import config
from cryptofolio.models import Quote
from cryptofolio.valuation import compute_metrics

logger = logging.getLogger(__name__)


@dataclass
class DailyIncrease:
    user_id:             str
    previous_value:      float    # lowest value in the window
    new_value:           float
    increase_percentage: float
    logged:              bool     # False when today's entry already existed


@dataclass
class MonitorReport:
    timestamp:     str
    users_checked: int = 0
    details:       List[DailyIncrease] = field(default_factory=list)

    @property
    def increases_detected(self) -> int:
        return len(self.details)


class PortfolioMonitor:
    def __init__(self, store, threshold: float = config.PERFORMANCE_ALERT_THRESHOLD,
                 window: timedelta = timedelta(hours=24)):
        self.store     = store
        self.threshold = threshold
        self.window    = window

    def portfolio_value(self, user_id: str, quotes: List[Quote]) -> float:
        return compute_metrics(self.store.get_history(user_id), quotes).total_value

    def check_user(self, user_id: str, quotes: Optional[List[Quote]] = None,
                   now: Optional[datetime] = None) -> Optional[DailyIncrease]:
        now = now or datetime.now(timezone.utc)
        if quotes is None:
            quotes = self.store.get_all_cached_quotes()

        value = self.portfolio_value(user_id, quotes)
        if value <= 0:
            return None

        low = self.store.lowest_snapshot_since(user_id, now - self.window)
        self.store.add_snapshot(user_id, value, now)
        if low is None or low <= 0:
            logger.debug("No snapshots in window for %s, skipping", user_id)
            return None

        increase = (value - low) / low * 100
        logger.debug("User %s: current $%.2f, 24h low $%.2f, change %.2f%%",
                     user_id, value, low, increase)
        if increase < self.threshold:
            return None

        logged = self.store.log_daily_update(user_id, low, value, increase,
                                             now.date().isoformat())
        if logged:
            logger.info("Logged %.2f%% increase for %s", increase, user_id)
        else:
            logger.info("Already logged increase for %s today", user_id)
        return DailyIncrease(user_id, low, value, increase, logged)

    def run(self, now: Optional[datetime] = None) -> MonitorReport:
        now = now or datetime.now(timezone.utc)
        quotes = self.store.get_all_cached_quotes()
        users  = self.store.users_with_transactions()
        report = MonitorReport(timestamp=now.isoformat(), users_checked=len(users))

        logger.info("Checking %d users with active portfolios", len(users))
        for user_id in users:
            try:
                found = self.check_user(user_id, quotes, now)
            except sqlite3.Error as e:
                logger.error("Error processing user %s: %s", user_id, e)
                continue
            if found is not None:
                report.details.append(found)

        logger.info("Portfolio monitoring completed: %d increases detected",
                    report.increases_detected)
        return report
