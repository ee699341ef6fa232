from collections.abc import Iterable, Sequence
from dataclasses import dataclass

import numpy as np
from sklearn.metrics.pairwise import cosine_similarity

from vault_assistant.embeddings.engine import is_real_embedding
from vault_assistant.logger import get_logger
from vault_assistant.models import Transaction

logger = get_logger(__name__)


@dataclass(frozen=True)
class VectorMatch:
    transaction_id: str
    score: float


class VectorIndex:
    """In-memory cosine index over transaction embeddings, keyed by transaction id."""

    def __init__(self, dimensions: int | None = None) -> None:
        self.dimensions = dimensions
        self._vectors: dict[str, np.ndarray] = {}
        self._ids: list[str] = []
        self._matrix: np.ndarray | None = None

    def __len__(self) -> int:
        return len(self._vectors)

    def __contains__(self, transaction_id: object) -> bool:
        return transaction_id in self._vectors

    def _invalidate(self) -> None:
        self._matrix = None

    def upsert(self, transaction_id: str, vector: Sequence[float] | None) -> bool:
        # Placeholder vectors mark "not embedded yet" and must never be searchable
        if not is_real_embedding(vector, self.dimensions):
            self.remove(transaction_id)
            return False
        array = np.asarray(vector, dtype=np.float32)
        existing = self._vectors.get(transaction_id)
        if existing is not None and np.array_equal(existing, array):
            return False
        self._vectors[transaction_id] = array
        self._invalidate()
        return True

    def remove(self, transaction_id: str) -> None:
        if self._vectors.pop(transaction_id, None) is not None:
            self._invalidate()

    def clear(self) -> None:
        self._vectors.clear()
        self._invalidate()

    def rebuild(self, transactions: Iterable[Transaction]) -> int:
        self.clear()
        skipped = 0
        for tx in transactions:
            if not self.upsert(tx.id, tx.embedding):
                skipped += 1
        logger.info("[INDEX] Indexed %s transactions, %s awaiting embeddings.", len(self), skipped)
        return len(self)

    def _ensure_matrix(self) -> np.ndarray:
        if self._matrix is None:
            self._ids = list(self._vectors.keys())
            self._matrix = np.vstack([self._vectors[tx_id] for tx_id in self._ids])
        return self._matrix

    def search(self, vector: Sequence[float], top_k: int) -> list[VectorMatch]:
        if not self._vectors or top_k <= 0 or not is_real_embedding(vector):
            return []
        matrix = self._ensure_matrix()
        query = np.asarray(vector, dtype=np.float32).reshape(1, -1)
        if query.shape[1] != matrix.shape[1]:
            logger.warning(
                "[INDEX] Query has %s dimensions, index has %s.",
                query.shape[1],
                matrix.shape[1],
            )
            return []
        scores = cosine_similarity(query, matrix)[0]
        order = np.argsort(-scores, kind="stable")[:top_k]
        return [VectorMatch(transaction_id=self._ids[i], score=float(scores[i])) for i in order]
