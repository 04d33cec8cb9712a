"""
cryptofolio/log.py  —  Logging setup

Console output goes through rich so log lines match the rest of the
terminal UI. Modules just call logging.getLogger(__name__).
"""

import logging
from typing import Optional

from rich.logging import RichHandler

from cryptofolio import config

ROOT_LOGGER = "cryptofolio"


def setup_logging(level: Optional[str] = None) -> logging.Logger:
    """Attach a RichHandler to the package logger (idempotent)."""
    log = logging.getLogger(ROOT_LOGGER)
    log.setLevel(level or config.LOG_LEVEL)

    # Prevent duplicate handlers on repeated setup
    if any(isinstance(h, RichHandler) for h in log.handlers):
        return log

    handler = RichHandler(rich_tracebacks=True, show_path=False,
                          log_time_format="%Y-%m-%d %H:%M:%S")
    handler.setFormatter(logging.Formatter("%(name)s — %(message)s"))
    log.addHandler(handler)
    log.propagate = False

    # yfinance and httpx are chatty at INFO
    logging.getLogger("yfinance").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    return log
