from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import ValidationError

from vault_assistant.domain.dates import format_long_date
from vault_assistant.domain.money import format_currency
from vault_assistant.logger import get_logger
from vault_assistant.models import Direction, Transaction

logger = get_logger(__name__)

UNCATEGORIZED = "Uncategorized"


def resolve_direction(transaction: Transaction) -> Direction:
    """
    Return ``credit`` or ``debit`` for a transaction.

    The explicit tag wins. Rows written before the tag existed fall back to
    the legacy sign rule where a negative amount is money coming in.
    """
    if transaction.direction is not None:
        return transaction.direction
    return "credit" if transaction.amount < 0 else "debit"


def is_income(transaction: Transaction) -> bool:
    return resolve_direction(transaction) == "credit"


def is_expense(transaction: Transaction) -> bool:
    return resolve_direction(transaction) == "debit"


def category_name(transaction: Transaction, names: Mapping[str, str]) -> str:
    if transaction.category_id and transaction.category_id in names:
        return names[transaction.category_id]
    return UNCATEGORIZED


def build_search_text(transaction: Transaction, category: str | None = None) -> str:
    """Sentence used as embedding input for a transaction."""
    amount = format_currency(abs(transaction.amount), transaction.currency)
    vendor = transaction.vendor or "unknown vendor"
    when = format_long_date(transaction.date)
    label = category or UNCATEGORIZED
    if is_income(transaction):
        text = f"Income credit of {amount} from {vendor} on {when} categorized as {label}."
    else:
        text = f"Expense payment of {amount} at {vendor} on {when} for {label}."
    if transaction.note:
        text = f"{text} {transaction.note.strip()}"
    return text


def parse_transaction_rows(rows: Iterable[Any]) -> list[Transaction]:
    transactions: list[Transaction] = []
    for index, row in enumerate(rows):
        if isinstance(row, Transaction):
            transactions.append(row)
            continue
        try:
            transactions.append(Transaction.model_validate(row))
        except ValidationError as exc:
            row_id = row.get("id") if isinstance(row, dict) else None
            logger.warning(
                "[STORE] Skipping invalid transaction row %s (id=%s): %s",
                index,
                row_id,
                exc.errors()[0].get("msg") if exc.errors() else exc,
            )
    return transactions
