from collections import Counter
from collections.abc import Iterable
from typing import Any

CURRENCY_SYMBOLS = {
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
    "INR": "₹",
    "JPY": "¥",
    "CNY": "¥",
    "CAD": "CA$",
    "AUD": "A$",
    "CHF": "CHF ",
}

# Currencies quoted without minor units
_ZERO_DECIMAL = {"JPY"}


def currency_symbol(currency: str) -> str:
    code = (currency or "").upper()
    return CURRENCY_SYMBOLS.get(code, f"{code} " if code else "$")


def format_currency(amount: float, currency: str = "USD") -> str:
    symbol = currency_symbol(currency)
    digits = 0 if (currency or "").upper() in _ZERO_DECIMAL else 2
    sign = "-" if amount < 0 else ""
    return f"{sign}{symbol}{abs(amount):,.{digits}f}"


def detect_dominant_currency(transactions: Iterable[Any], default: str = "USD") -> str:
    counts = Counter(tx.currency for tx in transactions if tx.currency)
    if not counts:
        return default
    return counts.most_common(1)[0][0]


def within_tolerance(stated: float, actual: float, absolute: float = 0.01, relative: float = 0.01) -> bool:
    diff = abs(stated - actual)
    if diff <= absolute:
        return True
    if actual == 0:
        return False
    return diff / abs(actual) <= relative
