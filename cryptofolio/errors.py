"""
cryptofolio/errors.py  —  Exception types

Only price fetching raises. Valuation degrades to zeros and validation
returns lists of error strings.
"""

from typing import Iterable, List, Optional, Tuple


class CryptofolioError(Exception):
    """Base class for every error raised by this package."""


class PriceSourceError(CryptofolioError):
    """A market-data call failed. Always treated as transient and retried."""

    def __init__(self, message: str, symbols: Iterable[str] = ()):
        super().__init__(message)
        self.symbols: Tuple[str, ...] = tuple(symbols)


class PriceFeedError(CryptofolioError):
    """
    The retry budget for a refresh was used up. `quotes` holds whatever was
    last published (cache or an earlier fetch) so callers can keep showing it.
    """

    def __init__(self, attempts: int, symbols: Iterable[str] = (),
                 cause: str = "", quotes: Optional[List] = None):
        self.attempts = attempts
        self.symbols: Tuple[str, ...] = tuple(symbols)
        self.cause = cause
        self.quotes = list(quotes or [])
        message = f"Failed to fetch prices after {self.retries} retries"
        if cause:
            message += f": {cause}"
        super().__init__(message)

    @property
    def retries(self) -> int:
        return max(self.attempts - 1, 0)
