from datetime import date

import numpy as np
from sklearn.metrics.pairwise import cosine_similarity

from vault_assistant.embeddings.engine import LocalEmbeddingEngine
from vault_assistant.logger import get_logger
from vault_assistant.models import ExtractedEntities, Intent, QueryClassification
from vault_assistant.query.entities import EntityExtractor
from vault_assistant.query.lexicon import INTENT_EXAMPLES, INTENT_PATTERNS, QUESTION_PATTERN

logger = get_logger(__name__)

DEFAULT_SIMILARITY_THRESHOLD = 0.45
REGEX_OVERRIDE_CONFIDENCE = 0.8
TOP_K_EXAMPLES = 3

AGGREGATE_INTENTS = frozenset({
    Intent.SPENDING,
    Intent.INCOME,
    Intent.BUDGET,
    Intent.TREND,
    Intent.COMPARISON,
})
LOCAL_SEARCH_INTENTS = frozenset({
    Intent.SEARCH,
    Intent.SPENDING,
    Intent.INCOME,
    Intent.GENERAL,
})


class RegexIntentClassifier:
    """Deterministic pattern classifier. Always available."""

    def classify(self, query: str) -> tuple[Intent, float]:
        normalized = query.lower().strip()
        for intent, patterns in INTENT_PATTERNS.items():
            matches = sum(1 for pattern in patterns if pattern.search(normalized))
            if matches:
                return intent, round(min(0.7 + min(matches * 0.1, 0.3), 1.0), 3)
        return Intent.GENERAL, 0.3


class SemanticIntentClassifier:
    """Nearest-example intent scoring over sentence embeddings."""

    def __init__(
        self,
        engine: LocalEmbeddingEngine,
        examples: dict[Intent, list[str]] | None = None,
        threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
    ) -> None:
        self.engine = engine
        self.examples = examples or INTENT_EXAMPLES
        self.threshold = threshold
        self._example_vectors: dict[Intent, np.ndarray] = {}

    @property
    def prepared(self) -> bool:
        return bool(self._example_vectors)

    async def prepare(self) -> None:
        if self.prepared:
            return
        vectors: dict[Intent, np.ndarray] = {}
        for intent, sentences in self.examples.items():
            embedded = await self.engine.embed_batch(sentences)
            vectors[intent] = np.asarray(embedded, dtype=np.float32)
        self._example_vectors = vectors
        logger.info("[CLASSIFY] Prepared intent examples for %s intents.", len(vectors))

    async def classify(self, query: str) -> tuple[Intent, float]:
        await self.prepare()
        query_vector = np.asarray(await self.engine.embed_text(query), dtype=np.float32).reshape(1, -1)

        best_intent = Intent.GENERAL
        best_score = 0.0
        for intent, matrix in self._example_vectors.items():
            similarities = np.sort(cosine_similarity(query_vector, matrix)[0])[::-1]
            score = float(np.mean(similarities[:TOP_K_EXAMPLES]))
            if score > best_score:
                best_intent, best_score = intent, score

        if best_score < self.threshold:
            return Intent.GENERAL, round(max(best_score, 0.0), 3)
        return best_intent, round(min(best_score, 1.0), 3)


class QueryClassifier:
    """
    Classify a query's intent and extract its entities.

    Embedding similarity is the primary signal. The regex verdict wins when it
    is confident and disagrees, and it is the whole answer when the embedding
    engine is unavailable. Never raises.
    """

    def __init__(
        self,
        engine: LocalEmbeddingEngine | None = None,
        extractor: EntityExtractor | None = None,
        threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
    ) -> None:
        self.regex = RegexIntentClassifier()
        self.semantic = SemanticIntentClassifier(engine, threshold=threshold) if engine else None
        self.extractor = extractor or EntityExtractor()

    async def prepare(self) -> None:
        if self.semantic is None:
            return
        try:
            await self.semantic.prepare()
        except Exception as exc:
            logger.warning("[CLASSIFY] Semantic intent examples unavailable: %s", exc)

    async def _resolve_intent(self, query: str) -> tuple[Intent, float]:
        regex_intent, regex_confidence = self.regex.classify(query)
        if self.semantic is None:
            return regex_intent, regex_confidence

        try:
            semantic_intent, semantic_score = await self.semantic.classify(query)
        except Exception as exc:
            logger.warning("[CLASSIFY] Semantic path failed, using patterns only: %s", exc)
            return regex_intent, regex_confidence

        if regex_intent != semantic_intent and regex_confidence > REGEX_OVERRIDE_CONFIDENCE:
            return regex_intent, regex_confidence
        return semantic_intent, semantic_score

    async def classify(self, query: str, today: date | None = None) -> QueryClassification:
        try:
            intent, confidence = await self._resolve_intent(query)
            entities = self.extractor.extract(query, intent, today=today)
            return build_classification(query, intent, confidence, entities)
        except Exception as exc:
            logger.error("[CLASSIFY] Classification failed for '%s': %s", query, exc)
            return QueryClassification(
                intent=Intent.GENERAL,
                confidence=0.1,
                is_question=bool(QUESTION_PATTERN.search(query or "")),
                needs_local_search=True,
            )


def build_classification(
    query: str,
    intent: Intent,
    confidence: float,
    entities: ExtractedEntities,
) -> QueryClassification:
    return QueryClassification(
        intent=intent,
        confidence=max(0.0, min(confidence, 1.0)),
        entities=entities,
        is_question=bool(QUESTION_PATTERN.search(query.strip())),
        needs_aggregate_lookup=intent in AGGREGATE_INTENTS,
        needs_local_search=intent in LOCAL_SEARCH_INTENTS,
    )
