import asyncio
import inspect
from datetime import datetime, timedelta, timezone

import pytest

from cryptofolio.db import Database
from cryptofolio.models import Quote, Transaction

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers used in the suite."""

    config.addinivalue_line("markers", "asyncio: mark test as running in an asyncio event loop")


@pytest.hookimpl(tryfirst=True)
def pytest_pyfunc_call(pyfuncitem: pytest.Function):
    """Execute async test functions without requiring pytest-asyncio."""

    test_function = pyfuncitem.obj
    if inspect.iscoroutinefunction(test_function):
        params = inspect.signature(test_function).parameters
        funcargs = {name: value for name, value in pyfuncitem.funcargs.items()
                    if name in params}
        loop = asyncio.new_event_loop()
        try:
            asyncio.set_event_loop(loop)
            loop.run_until_complete(test_function(**funcargs))
        finally:
            asyncio.set_event_loop(None)
            loop.close()
        return True
    return None


def txn(type, symbol="BTC", amount=1.0, unit_price=10_000.0, fees=0.0,
        value=None, minutes=0, id=None):
    """Transaction with value defaulting to amount × unit_price."""
    return Transaction(
        id=id or f"{symbol}-{type}-{minutes}",
        symbol=symbol,
        type=type,
        amount=amount,
        unit_price=unit_price,
        fees=fees,
        value=amount * unit_price if value is None else value,
        timestamp=T0 + timedelta(minutes=minutes),
    )


def quote(symbol="BTC", price=15_000.0, change=0.0, updated="2024-01-01T00:00:00+00:00"):
    return Quote(symbol=symbol, price_usd=price, change_24h_percent=change,
                 market_cap_usd=0.0, volume_24h_usd=0.0, last_updated=updated)


@pytest.fixture
def db(tmp_path):
    database = Database(str(tmp_path / "test.db"))
    yield database
    database.close()
