"""
cryptofolio/models.py  —  Pure dataclasses, no dependencies on other cryptofolio modules.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Tuple

INFLOW_TYPES  = ("buy", "deposit")
OUTFLOW_TYPES = ("sell", "withdrawal")
TRANSACTION_TYPES = INFLOW_TYPES + OUTFLOW_TYPES


@dataclass(frozen=True)
class Transaction:
    id:         str
    symbol:     str        # case-sensitive, matched exactly against quotes
    type:       str        # buy | deposit | sell | withdrawal
    amount:     float
    unit_price: float      # USD per unit at the time of the transaction
    fees:       float = 0.0
    value:      float = 0.0   # USD notional as recorded, fee-adjusted
    timestamp:  datetime = field(
        default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_inflow(self) -> bool:
        return self.type in INFLOW_TYPES

    @property
    def is_outflow(self) -> bool:
        return self.type in OUTFLOW_TYPES

    @classmethod
    def record(cls, symbol: str, type: str, amount: float, unit_price: float,
               fees: float = 0.0, timestamp: Optional[datetime] = None) -> "Transaction":
        """
        Build a new transaction the way the entry form stores it: fees raise
        the value of inflows and reduce the proceeds of outflows.
        """
        gross = amount * unit_price
        value = gross + fees if type in INFLOW_TYPES else gross - fees
        return cls(
            id=uuid.uuid4().hex,
            symbol=symbol,
            type=type,
            amount=amount,
            unit_price=unit_price,
            fees=fees,
            value=value,
            timestamp=timestamp or datetime.now(timezone.utc),
        )


@dataclass(frozen=True)
class Quote:
    symbol:             str
    price_usd:          float
    change_24h_percent: float = 0.0
    market_cap_usd:     float = 0.0
    volume_24h_usd:     float = 0.0
    last_updated:       str   = ""   # ISO-8601


@dataclass
class Position:
    symbol:                 str
    total_amount:           float
    total_cost:             float
    average_price:          float
    current_price:          float
    current_value:          float
    unrealized_pnl:         float
    unrealized_pnl_percent: float
    realized_pnl:           float
    total_fees:             float
    change_24h_percent:     float = 0.0

    def allocation_percent(self, total_value: float) -> float:
        return self.current_value / total_value * 100 if total_value else 0.0


@dataclass
class PortfolioMetrics:
    total_value:          float = 0.0
    total_cost:           float = 0.0
    total_unrealized_pnl: float = 0.0
    total_realized_pnl:   float = 0.0
    total_pnl:            float = 0.0
    total_pnl_percent:    float = 0.0
    total_fees:           float = 0.0
    positions:            List[Position] = field(default_factory=list)

    @classmethod
    def empty(cls) -> "PortfolioMetrics":
        return cls()

    @property
    def is_empty(self) -> bool:
        return not self.positions

    def allocation(self) -> List[Tuple[str, float]]:
        """(symbol, percent of total value) in position order."""
        return [(p.symbol, p.allocation_percent(self.total_value))
                for p in self.positions]


@dataclass
class FifoLot:
    """An open buy lot: units acquired at one price."""
    transaction_id: str
    timestamp:      datetime
    amount:         float
    unit_price:     float

    @property
    def cost(self) -> float:
        return self.amount * self.unit_price


@dataclass
class FifoResult:
    realized_pnl:   float
    remaining_lots: List[FifoLot] = field(default_factory=list)

    @property
    def remaining_amount(self) -> float:
        return sum(lot.amount for lot in self.remaining_lots)
