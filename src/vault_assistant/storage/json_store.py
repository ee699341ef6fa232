import json
import os
from collections.abc import Iterable, Mapping
from datetime import date
from typing import Any

from vault_assistant.domain.transactions import parse_transaction_rows
from vault_assistant.logger import get_logger
from vault_assistant.models import Category, Transaction
from vault_assistant.storage.base import TransactionStore

logger = get_logger(__name__)

TRANSACTIONS_FILE = "transactions.json"
CATEGORIES_FILE = "categories.json"
KV_FILE = "kv.json"


class JsonTransactionStore(TransactionStore):
    """
    Transaction store kept in memory and mirrored to JSON files in ``data_dir``.

    Pass ``data_dir=None`` for a purely in-memory store.
    """

    def __init__(self, data_dir: str | None = None) -> None:
        self.data_dir = data_dir
        self._transactions: dict[str, Transaction] = {}
        self._categories: dict[str, Category] = {}
        self._kv: dict[str, Any] = {}
        self.load()

    def _path(self, filename: str) -> str | None:
        if not self.data_dir:
            return None
        return os.path.join(self.data_dir, filename)

    def _read_json(self, filename: str, default: Any) -> Any:
        path = self._path(filename)
        if not path or not os.path.exists(path):
            return default
        try:
            with open(path, encoding="utf-8") as handle:
                return json.load(handle)
        except (OSError, json.JSONDecodeError) as exc:
            logger.error("[STORE] Failed to read %s: %s", path, exc)
            return default

    def _write_json(self, filename: str, payload: Any) -> None:
        path = self._path(filename)
        if not path:
            return
        tmp_path = f"{path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, indent=2, default=str)
        os.replace(tmp_path, path)

    def load(self) -> None:
        rows = self._read_json(TRANSACTIONS_FILE, [])
        self._transactions = {tx.id: tx for tx in parse_transaction_rows(rows)}
        categories = self._read_json(CATEGORIES_FILE, [])
        self._categories = {}
        for row in categories:
            try:
                category = Category.model_validate(row)
            except ValueError as exc:
                logger.warning("[STORE] Skipping invalid category row %s: %s", row, exc)
                continue
            self._categories[category.id or category.name] = category
        self._kv = self._read_json(KV_FILE, {})
        if self._transactions:
            logger.info(
                "[STORE] Loaded %s transactions and %s categories.",
                len(self._transactions),
                len(self._categories),
            )

    def _save_transactions(self) -> None:
        self._write_json(
            TRANSACTIONS_FILE,
            [tx.model_dump(mode="json") for tx in self._transactions.values()],
        )

    def _save_categories(self) -> None:
        self._write_json(
            CATEGORIES_FILE,
            [category.model_dump(mode="json") for category in self._categories.values()],
        )

    def add_transactions(self, rows: Iterable[Any]) -> int:
        transactions = parse_transaction_rows(rows)
        for tx in transactions:
            self._transactions[tx.id] = tx
        self._save_transactions()
        return len(transactions)

    def add_categories(self, categories: Iterable[Category]) -> None:
        for category in categories:
            self._categories[category.id or category.name] = category
        self._save_categories()

    def list_transactions(self) -> list[Transaction]:
        return list(self._transactions.values())

    def get_transaction(self, transaction_id: str) -> Transaction | None:
        return self._transactions.get(transaction_id)

    def get_by_date_range(self, start: date, end: date) -> list[Transaction]:
        return [tx for tx in self._transactions.values() if start <= tx.date <= end]

    def get_by_vendor(self, vendor: str) -> list[Transaction]:
        needle = vendor.strip().casefold()
        if not needle:
            return []
        return [tx for tx in self._transactions.values() if tx.vendor.strip().casefold() == needle]

    def get_by_category(self, category_id: str) -> list[Transaction]:
        return [tx for tx in self._transactions.values() if tx.category_id == category_id]

    def list_categories(self) -> list[Category]:
        return list(self._categories.values())

    def update_embedding(self, transaction_id: str, embedding: list[float]) -> bool:
        return self.update_embeddings({transaction_id: embedding}) == 1

    def update_embeddings(self, embeddings: Mapping[str, list[float]]) -> int:
        changed = 0
        for transaction_id, embedding in embeddings.items():
            current = self._transactions.get(transaction_id)
            if current is None:
                logger.warning("[STORE] Cannot update embedding, unknown transaction %s", transaction_id)
                continue
            if current.embedding == embedding:
                continue
            self._transactions[transaction_id] = current.model_copy(update={"embedding": list(embedding)})
            changed += 1
        if changed:
            self._save_transactions()
        return changed

    def kv_get(self, key: str) -> Any | None:
        return self._kv.get(key)

    def kv_put(self, key: str, value: Any) -> None:
        self._kv[key] = value
        self._write_json(KV_FILE, self._kv)

    def kv_delete(self, key: str) -> None:
        if self._kv.pop(key, None) is not None:
            self._write_json(KV_FILE, self._kv)
