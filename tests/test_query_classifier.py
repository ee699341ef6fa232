from datetime import date
from unittest.mock import AsyncMock, MagicMock

import pytest

from vault_assistant.embeddings.engine import LocalEmbeddingEngine
from vault_assistant.models import Intent
from vault_assistant.query.classifier import QueryClassifier, RegexIntentClassifier

TODAY = date(2025, 3, 15)


@pytest.mark.parametrize(
    ("query", "intent"),
    [
        ("How much did I spend in January?", Intent.SPENDING),
        ("What was my salary last month?", Intent.INCOME),
        ("Find the receipt from Target", Intent.SEARCH),
        ("Am I over budget?", Intent.BUDGET),
        ("What are my spending trends?", Intent.TREND),
        ("Compare this month to last month", Intent.COMPARISON),
        ("hello there", Intent.GENERAL),
    ],
)
def test_regex_intents(query: str, intent: Intent) -> None:
    assert RegexIntentClassifier().classify(query)[0] == intent


@pytest.mark.anyio
async def test_classify_without_engine_uses_patterns() -> None:
    classifier = QueryClassifier(engine=None)
    result = await classifier.classify("How much did I spend in January?", today=TODAY)

    assert result.intent == Intent.SPENDING
    assert result.is_question
    assert result.needs_aggregate_lookup
    assert result.needs_local_search
    assert result.entities.direction == "expense"


@pytest.mark.anyio
async def test_semantic_path_with_engine(engine: LocalEmbeddingEngine) -> None:
    classifier = QueryClassifier(engine=engine, threshold=0.3)
    await classifier.prepare()

    # Identical to a canonical income example. The pattern verdict (search, 0.8)
    # is not confident enough to override it.
    result = await classifier.classify("Show my deposits and refunds", today=TODAY)
    assert result.intent == Intent.INCOME


@pytest.mark.anyio
async def test_confident_regex_overrides_semantic_disagreement() -> None:
    classifier = QueryClassifier(engine=None)
    classifier.semantic = MagicMock()
    classifier.semantic.classify = AsyncMock(return_value=(Intent.TREND, 0.9))

    # Two spending patterns match, confidence 0.9
    result = await classifier.classify("How much did I spend on groceries, spent at Costco?", today=TODAY)
    assert result.intent == Intent.SPENDING


@pytest.mark.anyio
async def test_below_threshold_semantic_verdict_stays_general() -> None:
    classifier = QueryClassifier(engine=None)
    classifier.semantic = MagicMock()
    classifier.semantic.classify = AsyncMock(return_value=(Intent.GENERAL, 0.2))

    # A single income pattern matches at 0.8, which is not enough to override
    result = await classifier.classify("show me my salary", today=TODAY)
    assert result.intent == Intent.GENERAL
    assert result.confidence == 0.2


@pytest.mark.anyio
async def test_semantic_failure_falls_back_to_patterns() -> None:
    classifier = QueryClassifier(engine=None)
    classifier.semantic = MagicMock()
    classifier.semantic.classify = AsyncMock(side_effect=RuntimeError("model crashed"))

    result = await classifier.classify("Am I over budget?", today=TODAY)
    assert result.intent == Intent.BUDGET


@pytest.mark.anyio
async def test_classify_never_raises() -> None:
    classifier = QueryClassifier(engine=None)
    classifier.extractor = MagicMock()
    classifier.extractor.extract.side_effect = ValueError("boom")

    result = await classifier.classify("What is this?", today=TODAY)
    assert result.intent == Intent.GENERAL
    assert result.confidence == 0.1
    assert result.is_question
