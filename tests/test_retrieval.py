from collections.abc import Callable
from datetime import date

import pytest

from vault_assistant.domain.dates import month_range
from vault_assistant.embeddings.engine import LocalEmbeddingEngine, placeholder_embedding
from vault_assistant.models import ExtractedEntities, Transaction
from vault_assistant.retrieval.filters import EntityFilter
from vault_assistant.retrieval.hybrid import HybridRetriever, blend_scores, combine_structured
from vault_assistant.storage.json_store import JsonTransactionStore
from vault_assistant.storage.vector_index import VectorIndex


def test_combine_structured_is_order_independent() -> None:
    assert combine_structured([0.6, 0.7]) == combine_structured([0.7, 0.6])
    assert combine_structured([0.6, 0.7]) == pytest.approx(0.7 + 0.3 * 0.6)
    assert combine_structured([]) == 0.0
    assert combine_structured([0.9, 0.9, 0.9]) == 1.0


def test_blend_scores_is_capped() -> None:
    assert blend_scores(0.6, 0.5) == pytest.approx(0.6 * 0.4 + 0.5 * 0.6 + 0.1)
    assert blend_scores(1.0, 1.0) == 1.0


def test_entity_filter(category_names: dict[str, str], make_tx: Callable[..., Transaction]) -> None:
    entity_filter = EntityFilter(category_names)
    groceries = make_tx("g", date(2025, 1, 5), 42.0, vendor="Whole Foods", category_id="c-groceries")
    uncategorized = make_tx("u", date(2025, 1, 6), 12.0, vendor="Corner Supermarket")
    income = make_tx("i", date(2025, 1, 7), 100.0, direction="credit")

    wants = ExtractedEntities(categories=("groceries",), direction="expense", date_range=month_range(2025, 1))
    assert entity_filter.matches(groceries, wants)
    # Uncategorized rows fall back to vendor keywords
    assert entity_filter.matches(uncategorized, wants)
    assert not entity_filter.matches(income, wants)
    assert not entity_filter.matches(groceries, ExtractedEntities(date_range=month_range(2025, 2)))

    assert entity_filter.matches_vendor(groceries, ExtractedEntities(vendors=("whole foods",)))
    assert not entity_filter.matches_vendor(groceries, ExtractedEntities(vendors=("Delta",)))


def test_legacy_sign_decides_direction(category_names: dict[str, str], make_tx: Callable[..., Transaction]) -> None:
    entity_filter = EntityFilter(category_names)
    refund = make_tx("r", date(2025, 1, 5), -30.0, direction=None)
    assert entity_filter.matches_direction(refund, ExtractedEntities(direction="income"))
    assert not entity_filter.matches_direction(refund, ExtractedEntities(direction="expense"))


@pytest.mark.anyio
async def test_structured_path_sorted_by_score(store: JsonTransactionStore, category_names: dict[str, str]) -> None:
    retriever = HybridRetriever(store, VectorIndex(), None, category_names)
    entities = ExtractedEntities(
        date_range=month_range(2025, 1),
        vendors=("Whole Foods",),
        direction="expense",
    )
    results = await retriever.retrieve("Whole Foods in January", entities)

    ids = [result.transaction_id for result in results]
    assert ids[0] == "jan-food"
    assert set(ids) == {"jan-food", "jan-rent", "jan-flight"}
    scores = [result.score for result in results]
    assert scores == sorted(scores, reverse=True)


@pytest.mark.anyio
async def test_keywords_only_when_nothing_structured(
    store: JsonTransactionStore, category_names: dict[str, str]
) -> None:
    retriever = HybridRetriever(store, VectorIndex(), None, category_names)
    results = await retriever.retrieve("bottle", ExtractedEntities(keywords=("bottle",)))
    assert [result.transaction_id for result in results] == ["feb-cafe"]


@pytest.mark.anyio
async def test_placeholder_embeddings_are_not_searchable(
    engine: LocalEmbeddingEngine,
    make_tx: Callable[..., Transaction],
    category_names: dict[str, str],
) -> None:
    store = JsonTransactionStore(None)
    text = "coffee at Blue Bottle"
    real = await engine.embed_text(text)
    store.add_transactions(
        [
            make_tx("real", date(2025, 1, 5), 5.0, embedding=real),
            make_tx("pending", date(2025, 1, 6), 5.0, embedding=placeholder_embedding()),
        ]
    )
    index = VectorIndex(engine.dimensions)
    assert index.rebuild(store.list_transactions()) == 1
    assert "pending" not in index

    retriever = HybridRetriever(store, index, engine, category_names)
    results = await retriever.retrieve(text, ExtractedEntities())
    assert [result.transaction_id for result in results] == ["real"]
    assert results[0].sources == {"semantic"}


@pytest.mark.anyio
async def test_both_paths_blend(
    engine: LocalEmbeddingEngine,
    make_tx: Callable[..., Transaction],
    category_names: dict[str, str],
) -> None:
    store = JsonTransactionStore(None)
    text = "coffee at Blue Bottle"
    store.add_transactions([make_tx("cafe", date(2025, 1, 5), 5.0, embedding=await engine.embed_text(text))])
    index = VectorIndex(engine.dimensions)
    index.rebuild(store.list_transactions())

    retriever = HybridRetriever(store, index, engine, category_names)
    results = await retriever.retrieve(text, ExtractedEntities(date_range=month_range(2025, 1)))

    assert results[0].sources == {"structured", "semantic"}
    assert results[0].score == pytest.approx(blend_scores(0.6, 1.0))
