"""
cryptofolio/validation.py  —  Input validation rules

All validators return a list of error strings (empty = valid). The
valuation engine accepts anything and clamps over-withdrawals to zero, so
entry points call these first to keep bad rows out of the history.
"""

import re
from typing import Iterable, List

from cryptofolio.models import INFLOW_TYPES, TRANSACTION_TYPES, Transaction

_BAD_SYMBOL_CHARS = re.compile(r'[^A-Za-z0-9.\-]')
_MAX_SYMBOL_LEN   = 12

# Sanity bounds: not hard limits, just "almost certainly a typo" guards
_MAX_PRICE        = 10_000_000.0      # $10M per unit
_MAX_AMOUNT       = 1_000_000_000_000 # memecoin supplies are large
_EPS              = 1e-9


def validate_symbol(symbol: str) -> List[str]:
    errors = []
    s = symbol.strip()
    if not s:
        errors.append("Symbol cannot be empty.")
        return errors
    if len(s) > _MAX_SYMBOL_LEN:
        errors.append(f"Symbol '{s}' is too long (max {_MAX_SYMBOL_LEN} characters).")
    if _BAD_SYMBOL_CHARS.search(s):
        errors.append(f"Symbol '{s}' contains invalid characters. "
                      f"Only letters, numbers, dots and hyphens are allowed.")
    return errors


def held_amount(transactions: Iterable[Transaction], symbol: str) -> float:
    """Net units of `symbol`, floored at zero after every outflow."""
    total = 0.0
    for t in transactions:
        if t.symbol != symbol:
            continue
        total = total + t.amount if t.is_inflow else max(0.0, total - t.amount)
    return total


def validate_transaction(
        type: str,
        amount: float,
        unit_price: float,
        fees: float = 0.0,
        held: float = 0.0,       # current net holding of the symbol
) -> List[str]:
    errors = []

    if type not in TRANSACTION_TYPES:
        errors.append(f"Type must be one of {', '.join(TRANSACTION_TYPES)}, got '{type}'.")
        return errors

    if amount <= 0:
        errors.append("Amount must be greater than zero.")
    elif amount > _MAX_AMOUNT:
        errors.append(f"Amount {amount:,.0f} seems extremely large. Please double-check.")

    if unit_price <= 0:
        errors.append("Price must be greater than zero.")
    elif unit_price > _MAX_PRICE:
        errors.append(f"Price ${unit_price:,.2f} seems unusually high. Please double-check.")

    if fees < 0:
        errors.append("Fees cannot be negative.")
    elif amount > 0 and unit_price > 0 and fees > amount * unit_price:
        errors.append(f"Fees ${fees:,.2f} exceed the transaction value "
                      f"${amount * unit_price:,.2f}.")

    if type not in INFLOW_TYPES:
        if held <= _EPS:
            errors.append(f"You have no units to {type}.")
        elif amount > held + _EPS:
            errors.append(
                f"Cannot {type} {amount:,.8g} units; you only hold {held:,.8g}.")

    return errors


def validate_transaction_list(transactions: Iterable[Transaction]) -> List[str]:
    """
    Check a full history in chronological order: each outflow must be
    covered by what was held at that point.
    """
    errors = []
    running = {}

    for i, t in enumerate(sorted(transactions, key=lambda x: x.timestamp), 1):
        if t.type not in TRANSACTION_TYPES:
            errors.append(f"Row {i} ({t.symbol}): unknown type '{t.type}'.")
            continue
        if t.amount < 0:
            errors.append(f"Row {i} ({t.symbol}): amount cannot be negative.")
        if t.fees < 0:
            errors.append(f"Row {i} ({t.symbol}): fees cannot be negative.")

        held = running.get(t.symbol, 0.0)
        if t.is_inflow:
            running[t.symbol] = held + t.amount
        else:
            if t.amount > held + _EPS:
                errors.append(
                    f"Row {i} ({t.symbol}): {t.type} of {t.amount:,.8g} exceeds the "
                    f"{held:,.8g} held at that point.")
            running[t.symbol] = max(0.0, held - t.amount)

    return errors
