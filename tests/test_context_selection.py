from collections.abc import Callable
from datetime import date

import pytest

from vault_assistant.analysis.context import select_context, select_diverse, select_temporal
from vault_assistant.models import ExtractedEntities, Intent, QueryClassification, Transaction
from vault_assistant.query.classifier import QueryClassifier
from vault_assistant.retrieval.hybrid import HybridRetriever, RetrievalResult
from vault_assistant.storage.json_store import JsonTransactionStore
from vault_assistant.storage.vector_index import VectorIndex

TODAY = date(2025, 3, 15)


def results_for(transactions: list[Transaction]) -> list[RetrievalResult]:
    return [RetrievalResult(transaction=tx, score=0.6, sources={"structured"}) for tx in transactions]


@pytest.mark.anyio
async def test_biggest_purchase_selects_by_amount(
    store: JsonTransactionStore, category_names: dict[str, str]
) -> None:
    classification = await QueryClassifier(engine=None).classify("biggest purchase this year", today=TODAY)
    assert classification.entities.superlative == "largest"

    retriever = HybridRetriever(store, VectorIndex(), None, category_names)
    results = await retriever.retrieve("biggest purchase this year", classification.entities)
    selected = select_context(results, classification, budget=4)

    amounts = [abs(result.transaction.amount) for result in selected]
    assert len(selected) <= 4
    assert amounts == sorted(amounts, reverse=True)
    assert selected[0].transaction.amount == 8000.0
    assert all(result.transaction.direction == "debit" for result in selected)


def test_smallest_selects_ascending(make_tx: Callable[..., Transaction]) -> None:
    results = results_for([make_tx(str(i), date(2025, 1, i), float(amount)) for i, amount in enumerate([30, 5, 80, 12], 1)])
    classification = QueryClassification(
        intent=Intent.SEARCH,
        confidence=0.8,
        entities=ExtractedEntities(superlative="smallest"),
    )
    selected = select_context(results, classification, budget=2)
    assert [result.transaction.amount for result in selected] == [5.0, 12.0]


def test_diverse_round_robins_categories(make_tx: Callable[..., Transaction]) -> None:
    transactions = [
        make_tx("h1", date(2025, 1, 1), 900.0, category_id="housing"),
        make_tx("h2", date(2025, 1, 2), 800.0, category_id="housing"),
        make_tx("h3", date(2025, 1, 3), 700.0, category_id="housing"),
        make_tx("h4", date(2025, 1, 4), 600.0, category_id="housing"),
        make_tx("g1", date(2025, 1, 5), 90.0, category_id="groceries"),
        make_tx("g2", date(2025, 1, 6), 40.0, category_id="groceries"),
    ]
    selected = select_diverse(results_for(transactions), budget=4)
    assert [result.transaction_id for result in selected] == ["h1", "g1", "h2", "g2"]


def test_temporal_spans_the_period(make_tx: Callable[..., Transaction]) -> None:
    transactions = [make_tx(f"d{day:02d}", date(2025, 1, day), 10.0) for day in range(1, 11)]
    selected = select_temporal(results_for(list(reversed(transactions))), budget=3)
    assert [result.transaction_id for result in selected] == ["d01", "d05", "d10"]


def test_default_keeps_score_order(make_tx: Callable[..., Transaction]) -> None:
    results = results_for([make_tx(str(i), date(2025, 1, i), 10.0) for i in range(1, 6)])
    classification = QueryClassification(intent=Intent.SEARCH, confidence=0.8)
    assert select_context(results, classification, budget=2) == results[:2]
    assert select_context(results, classification, budget=0) == []
