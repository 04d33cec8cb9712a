"""
cryptofolio/config.py  —  Tunable constants

Every value can be overridden from the environment. Durations are seconds.
"""

import os
from typing import Dict

# ── Storage ───────────────────────────────────────────────────────────────────
DB_FILE = os.getenv("CRYPTOFOLIO_DB", "cryptofolio.db")
USER_ID = os.getenv("CRYPTOFOLIO_USER", "default")   # owner of CLI-entered transactions

# ── Price update intervals ────────────────────────────────────────────────────
PRICE_UPDATE_INTERVAL = float(os.getenv("PRICE_UPDATE_INTERVAL", "300"))   # 5 min
FAST_UPDATE_INTERVAL  = float(os.getenv("FAST_UPDATE_INTERVAL", "60"))     # active trading
SLOW_UPDATE_INTERVAL  = float(os.getenv("SLOW_UPDATE_INTERVAL", "600"))    # background

# ── Retry policy ──────────────────────────────────────────────────────────────
MAX_RETRIES      = int(os.getenv("MAX_RETRIES", "3"))
RETRY_DELAY_BASE = float(os.getenv("RETRY_DELAY_BASE", "2.0"))   # delay = base × 2^n

# ── Performance alerts (percent) ──────────────────────────────────────────────
PERFORMANCE_ALERT_THRESHOLD = float(os.getenv("PERFORMANCE_ALERT_THRESHOLD", "20"))
HIGH_PERFORMANCE_THRESHOLD  = float(os.getenv("HIGH_PERFORMANCE_THRESHOLD", "50"))

# ── Market data ───────────────────────────────────────────────────────────────
COINMARKETCAP_API_KEY = os.getenv("COINMARKETCAP_API_KEY", "").strip()
COINMARKETCAP_URL     = os.getenv(
    "COINMARKETCAP_URL",
    "https://pro-api.coinmarketcap.com/v1/cryptocurrency/quotes/latest",
)
PRICE_SOURCE = os.getenv(
    "PRICE_SOURCE", "coinmarketcap" if COINMARKETCAP_API_KEY else "yfinance"
).lower()
HTTP_TIMEOUT = float(os.getenv("HTTP_TIMEOUT", "10"))
QUOTE_CURRENCY = "USD"

# ── Logging ───────────────────────────────────────────────────────────────────
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# ── Supported assets ──────────────────────────────────────────────────────────
SUPPORTED_CRYPTOS: Dict[str, str] = {
    "BTC":   "Bitcoin",
    "ETH":   "Ethereum",
    "USDT":  "Tether",
    "BNB":   "Binance Coin",
    "ADA":   "Cardano",
    "SOL":   "Solana",
    "XRP":   "XRP",
    "DOT":   "Polkadot",
    "MATIC": "Polygon",
    "AVAX":  "Avalanche",
}


def crypto_name(symbol: str) -> str:
    return SUPPORTED_CRYPTOS.get(symbol, symbol)
