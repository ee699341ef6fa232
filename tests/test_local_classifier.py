from datetime import date

import numpy as np
import pytest

from vault_assistant.classifiers.local import WEIGHTS_STORAGE_KEY, LocalClassifier, TrainingSample
from vault_assistant.models import Category, Transaction
from vault_assistant.storage.json_store import JsonTransactionStore

DIMENSIONS = 8
SCALE = 3.0


def clustered(axis: int, rng: np.random.Generator) -> list[float]:
    vector = rng.normal(0.0, 0.05, DIMENSIONS)
    vector[axis] += SCALE
    return vector.tolist()


def labelled(count: int, category_id: str, axis: int, rng: np.random.Generator, prefix: str) -> list[Transaction]:
    return [
        Transaction(
            id=f"{prefix}{i}",
            date=date(2025, 1, 1),
            amount=10.0,
            vendor=prefix,
            category_id=category_id,
            embedding=clustered(axis, rng),
        )
        for i in range(count)
    ]


@pytest.fixture
def trained_store(tmp_path) -> JsonTransactionStore:
    rng = np.random.default_rng(7)
    store = JsonTransactionStore(str(tmp_path))
    store.add_categories([Category(id="food", name="Groceries"), Category(id="fuel", name="Transport")])
    store.add_transactions(labelled(15, "food", 0, rng, "f") + labelled(15, "fuel", 1, rng, "g"))
    return store


def anchor(axis: int) -> list[float]:
    vector = [0.0] * DIMENSIONS
    vector[axis] = SCALE
    return vector


def test_train_and_predict(trained_store: JsonTransactionStore) -> None:
    classifier = LocalClassifier(trained_store, dimensions=DIMENSIONS, seed=1)
    stats = classifier.train()

    assert stats["num_classes"] == 2
    assert stats["num_samples"] == 30
    assert stats["epochs"] == 10

    result = classifier.predict(anchor(1))
    assert result.category.name == "Transport"
    assert result.source == "local-classifier"
    assert len(result.top_k) == 2
    assert result.top_k[0].probability > result.top_k[1].probability
    assert classifier.predict(anchor(0)).category.id == "food"


def test_placeholder_embeddings_are_rejected(trained_store: JsonTransactionStore) -> None:
    classifier = LocalClassifier(trained_store, dimensions=DIMENSIONS, seed=1)
    classifier.train()
    assert classifier.predict([0.0] * DIMENSIONS) is None
    assert classifier.predict(None) is None


def test_too_few_samples(tmp_path) -> None:
    rng = np.random.default_rng(3)
    store = JsonTransactionStore(str(tmp_path))
    store.add_transactions(labelled(5, "food", 0, rng, "f") + labelled(5, "fuel", 1, rng, "g"))
    classifier = LocalClassifier(store, dimensions=DIMENSIONS)

    assert classifier.train() is None
    assert not classifier.is_ready()


def test_single_class_is_not_trained(tmp_path) -> None:
    store = JsonTransactionStore(str(tmp_path))
    store.add_transactions(labelled(25, "food", 0, np.random.default_rng(3), "f"))
    assert LocalClassifier(store, dimensions=DIMENSIONS).train() is None


def test_weights_persist(trained_store: JsonTransactionStore, tmp_path) -> None:
    LocalClassifier(trained_store, dimensions=DIMENSIONS, seed=1).train()

    reloaded = LocalClassifier(JsonTransactionStore(str(tmp_path)), dimensions=DIMENSIONS)
    assert reloaded.is_ready()
    assert reloaded.get_stats()["num_classes"] == 2
    assert reloaded.predict(anchor(1)).category.id == "fuel"


def test_incremental_update_keeps_shape(trained_store: JsonTransactionStore) -> None:
    classifier = LocalClassifier(trained_store, dimensions=DIMENSIONS, seed=1)
    classifier.train()
    before = classifier.get_stats()["training_samples"]

    sample = TrainingSample(np.asarray(anchor(0), dtype=np.float32), "food")
    assert classifier.incremental_update([sample])

    assert classifier.get_stats()["training_samples"] == before + 1
    assert classifier.state.weights.shape == (2, DIMENSIONS)


def test_new_category_forces_full_retrain(trained_store: JsonTransactionStore) -> None:
    classifier = LocalClassifier(trained_store, dimensions=DIMENSIONS, seed=1)
    classifier.train()

    rng = np.random.default_rng(11)
    newcomers = labelled(3, "fun", 2, rng, "m")
    trained_store.add_transactions(newcomers)
    classifier.learn(newcomers[0], Category(id="fun", name="Entertainment"))

    assert classifier.state.class_labels == ["food", "fuel", "fun"]
    assert classifier.state.weights.shape == (3, DIMENSIONS)


def test_classify_respects_valid_categories(trained_store: JsonTransactionStore) -> None:
    classifier = LocalClassifier(trained_store, dimensions=DIMENSIONS, seed=1)
    classifier.train()
    tx = trained_store.get_transaction("g0")

    assert classifier.classify(tx).category.name == "Transport"
    assert classifier.classify(tx, valid_categories=["Groceries"]) is None


def test_reset_clears_storage(trained_store: JsonTransactionStore) -> None:
    classifier = LocalClassifier(trained_store, dimensions=DIMENSIONS, seed=1)
    classifier.train()
    classifier.reset()

    assert trained_store.kv_get(WEIGHTS_STORAGE_KEY) is None
    assert classifier.get_stats() == {"is_trained": False, "num_classes": 0, "training_samples": 0, "last_trained": None}
