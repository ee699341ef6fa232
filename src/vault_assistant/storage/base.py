from abc import ABC, abstractmethod
from collections.abc import Mapping
from datetime import date
from typing import Any

from vault_assistant.models import Category, Transaction


class TransactionStore(ABC):
    """Read-mostly view over the local transaction database."""

    @abstractmethod
    def list_transactions(self) -> list[Transaction]:
        pass

    @abstractmethod
    def get_transaction(self, transaction_id: str) -> Transaction | None:
        pass

    def get_transactions(self, transaction_ids: list[str]) -> list[Transaction]:
        found = (self.get_transaction(tx_id) for tx_id in transaction_ids)
        return [tx for tx in found if tx is not None]

    @abstractmethod
    def get_by_date_range(self, start: date, end: date) -> list[Transaction]:
        pass

    @abstractmethod
    def get_by_vendor(self, vendor: str) -> list[Transaction]:
        """Exact, case-insensitive vendor match."""
        pass

    @abstractmethod
    def get_by_category(self, category_id: str) -> list[Transaction]:
        pass

    @abstractmethod
    def list_categories(self) -> list[Category]:
        pass

    @abstractmethod
    def update_embedding(self, transaction_id: str, embedding: list[float]) -> bool:
        """Keyed upsert of the embedding field. Returns False when nothing changed."""
        pass

    @abstractmethod
    def update_embeddings(self, embeddings: Mapping[str, list[float]]) -> int:
        """Batched form of ``update_embedding`` persisted in one write. Returns the number changed."""
        pass

    @abstractmethod
    def kv_get(self, key: str) -> Any | None:
        pass

    @abstractmethod
    def kv_put(self, key: str, value: Any) -> None:
        pass

    @abstractmethod
    def kv_delete(self, key: str) -> None:
        pass
