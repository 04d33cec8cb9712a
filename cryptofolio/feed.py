"""
cryptofolio/feed.py  —  Price feed: cached-then-live quotes with retry/backoff

Each Subscription owns its own state machine:

    IDLE → FETCHING → SUCCESS
                    ↘ FAILED → RETRYING → FETCHING …
                             ↘ ERROR   (retry budget used up)

A refresh runs in two stages:
  1. cache : publish cached quotes right away. Never fails the refresh.
  2. live  : one batch call to the adapter. Only this stage retries, and
             only its failure is surfaced.

Refreshes within one subscription never overlap; one skipped while another
is running is re-queued. An unexpected error is logged and the timer keeps
going. cancel() stops the timer and any pending retry; once it returns no
listener fires again.
"""

import asyncio
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, Iterable, List, Optional, Set, Tuple

from cryptofolio import config
from cryptofolio.errors import PriceFeedError, PriceSourceError
from cryptofolio.models import Quote

logger = logging.getLogger(__name__)

QuotesListener = Callable[[List[Quote], str], None]
ErrorListener  = Callable[[PriceFeedError], None]
Sleeper        = Callable[[float], Awaitable[None]]


class FeedState(str, Enum):
    IDLE     = "idle"
    FETCHING = "fetching"
    SUCCESS  = "success"
    FAILED   = "failed"
    RETRYING = "retrying"
    ERROR    = "error"


def backoff_delay(retry_count: int, base: float = config.RETRY_DELAY_BASE) -> float:
    """Seconds to wait before retry number `retry_count` (1-based)."""
    return base * (2 ** retry_count)


def _normalise(symbols: Iterable[str]) -> Tuple[str, ...]:
    return tuple(sorted({s for s in symbols if s}))


class Subscription:
    """A recurring refresh of one symbol set."""

    def __init__(self, adapter, cache, symbols: Iterable[str], interval: float, *,
                 max_retries: int = config.MAX_RETRIES,
                 retry_base: float = config.RETRY_DELAY_BASE,
                 sleep: Sleeper = asyncio.sleep,
                 on_quotes: Optional[QuotesListener] = None,
                 on_error: Optional[ErrorListener] = None,
                 enabled: bool = True):
        self.adapter     = adapter
        self.cache       = cache
        self.symbols     = _normalise(symbols)
        self.interval    = interval
        self.max_retries = max_retries
        self.retry_base  = retry_base
        self.enabled     = enabled

        self.state       = FeedState.IDLE
        self.retry_count = 0
        self.quotes:      List[Quote] = []
        self.last_update: Optional[datetime] = None
        self.error:       Optional[PriceFeedError] = None

        self._sleep     = sleep
        self._on_quotes = on_quotes
        self._on_error  = on_error
        self._timer:    Optional[asyncio.Task] = None
        self._pending:  Set[asyncio.Task] = set()
        self._busy      = False
        self._rerun     = False
        self._cancelled = False

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def busy(self) -> bool:
        return self._busy

    def start(self) -> "Subscription":
        """Refresh now, then every `interval` seconds. Needs a running loop."""
        if self._cancelled:
            raise RuntimeError("Cannot restart a cancelled subscription")
        self._stop_timer()
        if self.symbols and self.enabled:
            self._timer = asyncio.get_running_loop().create_task(self._run())
        return self

    def update(self, symbols: Optional[Iterable[str]] = None,
               interval: Optional[float] = None) -> None:
        """Change the symbol set and/or interval; the timer is rebuilt."""
        changed = False
        if symbols is not None and _normalise(symbols) != self.symbols:
            self.symbols = _normalise(symbols)
            changed = True
        if interval is not None and interval != self.interval:
            self.interval = interval
            changed = True
        if changed and not self._cancelled:
            logger.debug("Subscription changed to %s every %.0fs",
                         ", ".join(self.symbols) or "-", self.interval)
            self.start()

    def cancel(self) -> None:
        """Stop for good. Pending retries are dropped and listeners go quiet."""
        self._cancelled = True
        self._rerun = False
        self._stop_timer()
        for task in list(self._pending):
            task.cancel()
        self._pending.clear()
        self.state = FeedState.IDLE

    def _stop_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def _run(self) -> None:
        while not self._cancelled:
            try:
                await self.refresh()
            except Exception:
                # Keep the timer alive; the next cycle starts clean
                logger.exception("Price refresh for %s failed", ", ".join(self.symbols))
                self.state = FeedState.IDLE
                self.retry_count = 0
            await asyncio.sleep(self.interval)

    def refresh_soon(self) -> Optional[asyncio.Task]:
        """Schedule a manual refresh that cancel() can still stop."""
        if self._cancelled:
            return None
        task = asyncio.get_running_loop().create_task(self.refresh())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    # ── Refresh ───────────────────────────────────────────────────────────────

    async def refresh(self) -> List[Quote]:
        """One full cycle: cached quotes first, then live with retries."""
        if not self.symbols or not self.enabled or self._cancelled:
            return self.quotes
        if self._busy:
            # Symbols may have changed since the running refresh started
            logger.debug("Refresh already running for %s, queued another",
                         ", ".join(self.symbols))
            self._rerun = True
            return self.quotes

        self._busy = True
        try:
            await self._load_cached()
            await self._fetch_live()
        finally:
            self._busy = False
            if self._rerun:
                self._rerun = False
                self.refresh_soon()
        return self.quotes

    async def _load_cached(self) -> None:
        if self.cache is None:
            return
        try:
            cached = await asyncio.to_thread(self.cache.get_cached_quotes, self.symbols)
        except Exception as e:
            logger.warning("Price cache unavailable, continuing without it: %s", e)
            return
        if cached:
            self._publish(cached, "cache")

    async def _fetch_live(self) -> None:
        while not self._cancelled:
            self.state = FeedState.FETCHING
            try:
                quotes = await self.adapter.fetch(self.symbols)
            except PriceSourceError as e:
                self.state = FeedState.FAILED
                self.retry_count += 1

                if self.retry_count <= self.max_retries:
                    delay = backoff_delay(self.retry_count, self.retry_base)
                    logger.warning("Price fetch failed (%s); retry %d/%d in %.1fs",
                                   e, self.retry_count, self.max_retries, delay)
                    self.state = FeedState.RETRYING
                    await self._sleep(delay)
                    continue

                self._fail(e)
                return

            if self._cancelled:
                return
            self.retry_count = 0
            self.error = None
            self.state = FeedState.SUCCESS
            self._publish(quotes, "live")
            return

    def _fail(self, cause: Exception) -> None:
        attempts = self.retry_count
        # Start clean on the next manual refresh
        self.retry_count = 0
        self.state = FeedState.ERROR
        self.error = PriceFeedError(attempts, self.symbols, str(cause), self.quotes)
        logger.error("%s", self.error)
        if self._on_error is not None and not self._cancelled:
            try:
                self._on_error(self.error)
            except Exception:
                logger.exception("Price error listener failed")

    def _publish(self, quotes: List[Quote], source: str) -> None:
        if self._cancelled:
            return
        self.quotes = list(quotes)
        self.last_update = datetime.now(timezone.utc)
        logger.debug("Published %d %s quotes", len(self.quotes), source)
        if self._on_quotes is not None:
            try:
                self._on_quotes(self.quotes, source)
            except Exception:
                logger.exception("Quote listener failed")


class PriceFeedService:
    """Creates subscriptions that share one adapter, cache and retry policy."""

    def __init__(self, adapter, cache=None, *,
                 max_retries: int = config.MAX_RETRIES,
                 retry_base: float = config.RETRY_DELAY_BASE,
                 interval: float = config.PRICE_UPDATE_INTERVAL,
                 sleep: Sleeper = asyncio.sleep):
        self.adapter     = adapter
        self.cache       = cache
        self.max_retries = max_retries
        self.retry_base  = retry_base
        self.interval    = interval
        self._sleep      = sleep
        self._subscriptions: List[Subscription] = []

    def _new(self, symbols: Iterable[str], interval: Optional[float],
             on_quotes: Optional[QuotesListener],
             on_error: Optional[ErrorListener]) -> Subscription:
        return Subscription(
            self.adapter, self.cache, symbols,
            self.interval if interval is None else interval,
            max_retries=self.max_retries, retry_base=self.retry_base,
            sleep=self._sleep, on_quotes=on_quotes, on_error=on_error,
        )

    async def fetch_prices(self, symbols: Iterable[str]) -> List[Quote]:
        """
        One refresh outside any subscription. Returns the freshest quotes
        available; raises PriceFeedError once retries run out (the error
        carries the cached quotes).
        """
        sub = self._new(symbols, None, None, None)
        quotes = await sub.refresh()
        if sub.error is not None:
            raise sub.error
        return quotes

    def subscribe(self, symbols: Iterable[str], interval: Optional[float] = None,
                  on_quotes: Optional[QuotesListener] = None,
                  on_error: Optional[ErrorListener] = None) -> Subscription:
        sub = self._new(symbols, interval, on_quotes, on_error)
        self._subscriptions = [s for s in self._subscriptions if not s.cancelled]
        self._subscriptions.append(sub)
        return sub.start()

    @property
    def subscriptions(self) -> List[Subscription]:
        return [s for s in self._subscriptions if not s.cancelled]

    def close(self) -> None:
        for sub in self._subscriptions:
            sub.cancel()
        self._subscriptions.clear()
