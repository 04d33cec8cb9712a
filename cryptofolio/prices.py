"""
cryptofolio/prices.py  —  Market-data sources and the quote adapter

A source turns a batch of symbols into Quotes with a single request:
  - YFinanceSource       : one yf.download() for all SYMBOL-USD pairs
  - CoinMarketCapSource  : one /quotes/latest call with symbol=A,B,C

Every failure a source can hit (HTTP status, transport, API error payload,
empty result, yfinance exceptions) is raised as PriceSourceError so the feed
can retry it. QuoteAdapter wraps a source and writes fresh quotes back to
the price cache before returning them.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

import httpx
import pandas as pd
import yfinance as yf

from cryptofolio import config
from cryptofolio.errors import PriceSourceError
from cryptofolio.models import Quote

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _num(value: Any) -> float:
    try:
        return float(value) if value is not None else 0.0
    except (TypeError, ValueError):
        return 0.0


# ── yfinance ──────────────────────────────────────────────────────────────────

def _field_from_download(raw: pd.DataFrame, tickers: list, field: str) -> pd.DataFrame:
    """
    Extract a clean (date × ticker) DataFrame for one OHLCV field from
    yf.download() output.

    yfinance's output format has changed across versions:
      - Old (< 0.2.40)  : flat columns, field is a column or a Series
      - New (>= 0.2.40) : MultiIndex columns, (field, ticker) or (ticker, field)
                          depending on how many tickers were requested
    """
    cols = raw.columns

    if isinstance(cols, pd.MultiIndex):
        level0_vals = set(cols.get_level_values(0))
        level1_vals = set(cols.get_level_values(1))

        if field in level0_vals:
            data = raw[field]
        elif field in level1_vals:
            data = raw.xs(field, axis=1, level=1)
        else:
            raise KeyError(
                f"Could not find '{field}' in MultiIndex columns. "
                f"Level 0: {sorted(level0_vals)[:5]}, Level 1: {sorted(level1_vals)[:5]}"
            )

        if isinstance(data, pd.Series):
            data = data.to_frame(name=tickers[0].upper())

    else:
        # Flat column format (single ticker or old yfinance)
        matches = [c for c in cols if str(c).lower() == field.lower()]
        if not matches:
            raise KeyError(f"Could not find '{field}' in columns {list(cols)[:8]}")
        data = raw[[matches[0]]].copy()
        data.columns = [tickers[0].upper()]

    data.columns = [str(c).upper() for c in data.columns]
    return data


class YFinanceSource:
    name = "yfinance"

    def __init__(self, currency: str = config.QUOTE_CURRENCY, period: str = "5d"):
        self.currency = currency
        self.period   = period

    def pair(self, symbol: str) -> str:
        return f"{symbol}-{self.currency}".upper()

    def _download(self, symbols: Sequence[str]) -> List[Quote]:
        pairs = [self.pair(s) for s in symbols]
        try:
            raw = yf.download(pairs, period=self.period, interval="1d",
                              progress=False, auto_adjust=True)
        except Exception as e:
            raise PriceSourceError(f"yfinance download failed: {e}", symbols) from e

        if raw is None or raw.empty:
            raise PriceSourceError("yfinance returned no data", symbols)

        try:
            close = _field_from_download(raw, pairs, "Close")
        except KeyError as e:
            raise PriceSourceError(str(e), symbols) from e
        try:
            volume: Optional[pd.DataFrame] = _field_from_download(raw, pairs, "Volume")
        except KeyError:
            volume = None

        fetched_at = _now()
        quotes = []
        for symbol, pair in zip(symbols, pairs):
            if pair not in close.columns:
                continue
            series = close[pair].dropna()
            if series.empty:
                continue

            price = float(series.iloc[-1])
            prev  = float(series.iloc[-2]) if len(series) > 1 else 0.0
            change = (price / prev - 1) * 100 if prev else 0.0

            vol = 0.0
            if volume is not None and pair in volume.columns:
                v = volume[pair].dropna()
                vol = float(v.iloc[-1]) if not v.empty else 0.0

            # Market cap is not part of a batch download
            quotes.append(Quote(symbol=symbol, price_usd=price,
                                change_24h_percent=change, market_cap_usd=0.0,
                                volume_24h_usd=vol, last_updated=fetched_at))
        return quotes

    async def fetch_quotes(self, symbols: Sequence[str]) -> List[Quote]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._download, list(symbols))


# ── CoinMarketCap ─────────────────────────────────────────────────────────────

class CoinMarketCapSource:
    """Latest quotes from the CoinMarketCap pro API."""

    name = "coinmarketcap"

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        url: str = config.COINMARKETCAP_URL,
        currency: str = config.QUOTE_CURRENCY,
        timeout: float = config.HTTP_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else config.COINMARKETCAP_API_KEY
        if not self.api_key:
            raise ValueError("CoinMarketCap API key not configured (COINMARKETCAP_API_KEY)")
        self.url      = url
        self.currency = currency
        self.timeout  = timeout
        self._client  = client

    async def _get(self, params: Dict[str, str]) -> httpx.Response:
        headers = {"X-CMC_PRO_API_KEY": self.api_key, "Accept": "application/json"}
        if self._client is not None:
            return await self._client.get(self.url, params=params,
                                          headers=headers, timeout=self.timeout)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.get(self.url, params=params, headers=headers)

    def _parse(self, payload: Dict[str, Any], symbols: Sequence[str]) -> List[Quote]:
        status = payload.get("status") or {}
        if status.get("error_code"):
            raise PriceSourceError(
                f"CoinMarketCap error {status.get('error_code')}: "
                f"{status.get('error_message')}", symbols)

        data = payload.get("data") or {}
        quotes = []
        for symbol in symbols:
            entry = data.get(symbol)
            # v2 responses map each symbol to a list of matching coins
            if isinstance(entry, list):
                entry = entry[0] if entry else None
            if not entry:
                continue
            quote = (entry.get("quote") or {}).get(self.currency)
            if not quote or quote.get("price") is None:
                continue
            quotes.append(Quote(
                symbol=symbol,
                price_usd=_num(quote.get("price")),
                change_24h_percent=_num(quote.get("percent_change_24h")),
                market_cap_usd=_num(quote.get("market_cap")),
                volume_24h_usd=_num(quote.get("volume_24h")),
                last_updated=entry.get("last_updated") or quote.get("last_updated") or _now(),
            ))
        return quotes

    async def fetch_quotes(self, symbols: Sequence[str]) -> List[Quote]:
        symbols = list(symbols)
        params  = {"symbol": ",".join(symbols), "convert": self.currency}
        try:
            resp = await self._get(params)
        except httpx.HTTPError as e:
            raise PriceSourceError(f"CoinMarketCap request failed: {e}", symbols) from e

        if resp.status_code >= 400:
            raise PriceSourceError(
                f"CoinMarketCap API error: {resp.status_code}", symbols)
        try:
            payload = resp.json()
        except ValueError as e:
            raise PriceSourceError("CoinMarketCap returned invalid JSON", symbols) from e
        try:
            return self._parse(payload, symbols)
        except (AttributeError, TypeError, KeyError, IndexError) as e:
            raise PriceSourceError(
                f"CoinMarketCap returned an unexpected payload: {e!r}", symbols) from e


def build_source(name: Optional[str] = None):
    name = (name or config.PRICE_SOURCE).lower()
    if name == CoinMarketCapSource.name:
        return CoinMarketCapSource()
    if name == YFinanceSource.name:
        return YFinanceSource()
    raise ValueError(f"Unknown price source '{name}'")


# ── Adapter ───────────────────────────────────────────────────────────────────

class QuoteAdapter:
    """Fetches a batch from the source and writes it through to the cache."""

    def __init__(self, source, cache=None):
        self.source = source
        self.cache  = cache

    async def fetch(self, symbols: Sequence[str]) -> List[Quote]:
        symbols = list(symbols)
        quotes = await self.source.fetch_quotes(symbols)
        if not quotes:
            raise PriceSourceError(
                f"{self.source.name} returned no quotes for {', '.join(symbols)}", symbols)

        missing = set(symbols) - {q.symbol for q in quotes}
        if missing:
            logger.info("No %s quote for %s", self.source.name, ", ".join(sorted(missing)))

        if self.cache is not None:
            try:
                await asyncio.to_thread(self.cache.upsert_quotes, quotes)
                logger.debug("Cached prices for %d symbols", len(quotes))
            except Exception as e:
                logger.warning("Could not cache price data: %s", e)
        return quotes
