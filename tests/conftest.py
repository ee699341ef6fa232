import zlib
from collections.abc import Callable
from datetime import date
from typing import Any

import numpy as np
import pytest

from vault_assistant.embeddings.engine import EMBEDDING_DIMENSIONS, LocalEmbeddingEngine
from vault_assistant.models import Category, Transaction
from vault_assistant.storage.json_store import JsonTransactionStore

TODAY = date(2025, 3, 15)


class HashingModel:
    """Deterministic stand-in for a sentence-transformers model: hashed bag of words."""

    def __init__(self, dimensions: int = EMBEDDING_DIMENSIONS) -> None:
        self.dimensions = dimensions
        self.calls = 0

    def _vector(self, text: str) -> np.ndarray:
        vector = np.zeros(self.dimensions, dtype=np.float32)
        words = text.lower().split() or ["<empty>"]
        for word in words:
            vector[zlib.crc32(word.strip("?.!,").encode("utf-8")) % self.dimensions] += 1.0
        return vector / np.linalg.norm(vector)

    def encode(self, texts: list[str], **_: Any) -> np.ndarray:
        self.calls += 1
        return np.vstack([self._vector(text) for text in texts])


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def hashing_model() -> HashingModel:
    return HashingModel()


@pytest.fixture
def engine(hashing_model: HashingModel) -> LocalEmbeddingEngine:
    return LocalEmbeddingEngine(model_factory=lambda name, device: hashing_model)


@pytest.fixture
def make_tx() -> Callable[..., Transaction]:
    def factory(tx_id: str, day: date, amount: float, **kwargs: Any) -> Transaction:
        kwargs.setdefault("vendor", f"Vendor {tx_id}")
        kwargs.setdefault("direction", "debit")
        return Transaction(id=tx_id, date=day, amount=amount, **kwargs)

    return factory


@pytest.fixture
def categories() -> list[Category]:
    return [
        Category(id="c-housing", name="Housing"),
        Category(id="c-groceries", name="Groceries"),
        Category(id="c-travel", name="Travel"),
        Category(id="c-salary", name="Salary"),
        Category(id="c-dining", name="Dining"),
    ]


@pytest.fixture
def ledger(make_tx: Callable[..., Transaction]) -> list[Transaction]:
    """January 2025 expenses sum to 12,340. February and income rows sit alongside."""
    return [
        make_tx("jan-rent", date(2025, 1, 1), 8000.0, vendor="Landlord LLC", category_id="c-housing"),
        make_tx("jan-food", date(2025, 1, 9), 2340.0, vendor="Whole Foods", category_id="c-groceries"),
        make_tx("jan-flight", date(2025, 1, 20), 2000.0, vendor="Delta", category_id="c-travel"),
        make_tx("jan-pay", date(2025, 1, 31), 5000.0, vendor="Acme Corp", category_id="c-salary", direction="credit"),
        make_tx("feb-rent", date(2025, 2, 1), 8000.0, vendor="Landlord LLC", category_id="c-housing"),
        make_tx("feb-food", date(2025, 2, 11), 410.5, vendor="Whole Foods", category_id="c-groceries"),
        make_tx("feb-cafe", date(2025, 2, 14), 64.25, vendor="Blue Bottle", category_id="c-dining"),
        make_tx("feb-pay", date(2025, 2, 28), 5000.0, vendor="Acme Corp", category_id="c-salary", direction="credit"),
        make_tx("mar-food", date(2025, 3, 3), 150.0, vendor="Whole Foods", category_id="c-groceries"),
    ]


@pytest.fixture
def store(ledger: list[Transaction], categories: list[Category]) -> JsonTransactionStore:
    memory_store = JsonTransactionStore(None)
    memory_store.add_transactions(ledger)
    memory_store.add_categories(categories)
    return memory_store


@pytest.fixture
def category_names(categories: list[Category]) -> dict[str, str]:
    return {category.id: category.name for category in categories if category.id}
