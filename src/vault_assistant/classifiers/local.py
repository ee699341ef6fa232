import time
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

import numpy as np

from vault_assistant.classifiers.base import Classifier
from vault_assistant.embeddings.engine import EMBEDDING_DIMENSIONS, is_real_embedding
from vault_assistant.logger import get_logger
from vault_assistant.models import CategorizationResult, Category, ClassifierPrediction, Transaction
from vault_assistant.storage.base import TransactionStore

logger = get_logger(__name__)

LEARNING_RATE = 0.01
FULL_RETRAIN_EPOCHS = 10
INCREMENTAL_EPOCHS = 3
MIN_SAMPLES = 20
L2_LAMBDA = 0.001
TOP_K = 3
WEIGHTS_STORAGE_KEY = "local-classifier-weights"
SOURCE = "local-classifier"


@dataclass
class TrainingSample:
    embedding: np.ndarray
    category_id: str


@dataclass
class ClassifierWeights:
    weights: np.ndarray
    biases: np.ndarray
    class_labels: list[str]
    training_samples: int
    last_trained: float


def softmax(logits: np.ndarray) -> np.ndarray:
    shifted = np.exp(logits - np.max(logits))
    return shifted / shifted.sum()


class LocalClassifier(Classifier):
    """
    Single linear layer with softmax over transaction embeddings.

    Trained by per-sample SGD with cross-entropy loss and L2 regularization.
    Placeholder embeddings are never used for training or prediction.
    """

    def __init__(
        self,
        store: TransactionStore,
        dimensions: int = EMBEDDING_DIMENSIONS,
        seed: int | None = None,
    ) -> None:
        self.store = store
        self.dimensions = dimensions
        self.rng = np.random.default_rng(seed)
        self.state: ClassifierWeights | None = None
        self._loaded = False

    def load(self) -> bool:
        if self._loaded and self.state is not None:
            return True
        self._loaded = True
        raw = self.store.kv_get(WEIGHTS_STORAGE_KEY)
        if not raw:
            return False
        try:
            labels = list(raw["class_labels"])
            weights = np.asarray(raw["weights"], dtype=np.float32).reshape(len(labels), self.dimensions)
            biases = np.asarray(raw["biases"], dtype=np.float32).reshape(len(labels))
            self.state = ClassifierWeights(
                weights=weights,
                biases=biases,
                class_labels=labels,
                training_samples=int(raw.get("training_samples", 0)),
                last_trained=float(raw.get("last_trained", 0.0)),
            )
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("[CLASSIFIER] Stored weights unreadable, ignoring them: %s", exc)
            self.state = None
            return False
        logger.info(
            "[CLASSIFIER] Loaded weights (%s classes, %s samples)",
            len(self.state.class_labels),
            self.state.training_samples,
        )
        return True

    def save(self) -> None:
        if self.state is None:
            return
        self.store.kv_put(
            WEIGHTS_STORAGE_KEY,
            {
                "weights": self.state.weights.reshape(-1).tolist(),
                "biases": self.state.biases.tolist(),
                "class_labels": self.state.class_labels,
                "training_samples": self.state.training_samples,
                "last_trained": self.state.last_trained,
            },
        )

    def _samples_from(self, transactions: Iterable[Transaction]) -> list[TrainingSample]:
        return [
            TrainingSample(np.asarray(tx.embedding, dtype=np.float32), tx.category_id)
            for tx in transactions
            if tx.category_id and is_real_embedding(tx.embedding, self.dimensions)
        ]

    def _sgd_epoch(
        self,
        state: ClassifierWeights,
        samples: list[TrainingSample],
        class_index: dict[str, int],
        learning_rate: float,
    ) -> float:
        order = self.rng.permutation(len(samples))
        total_loss = 0.0
        for position in order:
            sample = samples[position]
            target = class_index[sample.category_id]
            probs = softmax(state.weights @ sample.embedding + state.biases)
            total_loss += -float(np.log(max(probs[target], 1e-7)))
            grad = probs.copy()
            grad[target] -= 1.0
            state.weights -= learning_rate * (np.outer(grad, sample.embedding) + L2_LAMBDA * state.weights)
            state.biases -= learning_rate * grad
        return total_loss / len(samples)

    def train(self, transactions: Iterable[Transaction] | None = None) -> dict[str, Any] | None:
        source = self.store.list_transactions() if transactions is None else transactions
        samples = self._samples_from(source)
        if len(samples) < MIN_SAMPLES:
            logger.info("[CLASSIFIER] Not enough samples to train (%s/%s)", len(samples), MIN_SAMPLES)
            return None

        class_labels = sorted({sample.category_id for sample in samples})
        if len(class_labels) < 2:
            logger.info("[CLASSIFIER] Need at least 2 classes to train")
            return None
        class_index = {label: idx for idx, label in enumerate(class_labels)}

        # Xavier initialization
        scale = np.sqrt(2.0 / (self.dimensions + len(class_labels)))
        state = ClassifierWeights(
            weights=((self.rng.random((len(class_labels), self.dimensions)) - 0.5) * 2 * scale).astype(np.float32),
            biases=np.zeros(len(class_labels), dtype=np.float32),
            class_labels=class_labels,
            training_samples=len(samples),
            last_trained=time.time(),
        )
        final_loss = 0.0
        for _ in range(FULL_RETRAIN_EPOCHS):
            final_loss = self._sgd_epoch(state, samples, class_index, LEARNING_RATE)

        self.state = state
        self._loaded = True
        self.save()
        logger.info(
            "[CLASSIFIER] Trained: %s classes, %s samples, loss=%.4f",
            len(class_labels),
            len(samples),
            final_loss,
        )
        return {
            "num_classes": len(class_labels),
            "num_samples": len(samples),
            "final_loss": final_loss,
            "epochs": FULL_RETRAIN_EPOCHS,
        }

    def incremental_update(self, samples: list[TrainingSample]) -> bool:
        self.load()
        if self.state is None:
            return self.train() is not None
        if not samples:
            return True

        class_index = {label: idx for idx, label in enumerate(self.state.class_labels)}
        if any(sample.category_id not in class_index for sample in samples):
            # A new class changes the weight matrix shape
            logger.info("[CLASSIFIER] New category seen, running a full retrain.")
            return self.train() is not None

        for _ in range(INCREMENTAL_EPOCHS):
            self._sgd_epoch(self.state, samples, class_index, LEARNING_RATE * 0.5)
        self.state.training_samples += len(samples)
        self.state.last_trained = time.time()
        self.save()
        return True

    def predict(self, embedding: list[float] | np.ndarray | None) -> CategorizationResult | None:
        self.load()
        if self.state is None or embedding is None:
            return None
        vector = np.asarray(embedding, dtype=np.float32)
        if not is_real_embedding(vector.tolist(), self.dimensions):
            return None

        probs = softmax(self.state.weights @ vector + self.state.biases)
        ranked = np.argsort(-probs, kind="stable")[:TOP_K]
        top_k = [
            ClassifierPrediction(
                category_id=self.state.class_labels[idx],
                probability=round(float(probs[idx]), 3),
            )
            for idx in ranked
        ]
        best = top_k[0]
        return CategorizationResult(
            category=self._category(best.category_id),
            confidence=best.probability,
            source=SOURCE,
            top_k=top_k,
        )

    def _category(self, category_id: str) -> Category:
        for category in self.store.list_categories():
            if category.id == category_id or (category.id is None and category.name == category_id):
                return Category(id=category_id, name=category.name)
        return Category(id=category_id, name=category_id)

    def classify(
        self, transaction: Transaction, valid_categories: list[str] | None = None
    ) -> CategorizationResult | None:
        result = self.predict(transaction.embedding)
        if result is None:
            return None
        if valid_categories is not None and result.category.name not in valid_categories:
            return None
        return result

    def learn(self, transaction: Transaction, category: Category) -> None:
        if not is_real_embedding(transaction.embedding, self.dimensions):
            logger.debug("[CLASSIFIER] Skipping %s, no real embedding yet.", transaction.id)
            return
        sample = TrainingSample(
            np.asarray(transaction.embedding, dtype=np.float32),
            category.id or category.name,
        )
        self.incremental_update([sample])

    def is_ready(self) -> bool:
        self.load()
        return self.state is not None

    def reset(self) -> None:
        self.state = None
        self._loaded = True
        self.store.kv_delete(WEIGHTS_STORAGE_KEY)
        logger.info("[CLASSIFIER] Weights cleared.")

    def get_stats(self) -> dict[str, Any]:
        self.load()
        if self.state is None:
            return {"is_trained": False, "num_classes": 0, "training_samples": 0, "last_trained": None}
        return {
            "is_trained": True,
            "num_classes": len(self.state.class_labels),
            "training_samples": self.state.training_samples,
            "last_trained": self.state.last_trained,
        }
