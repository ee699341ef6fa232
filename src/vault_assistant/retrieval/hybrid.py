import asyncio
from collections.abc import Mapping
from dataclasses import dataclass, field

from vault_assistant.embeddings.engine import LocalEmbeddingEngine
from vault_assistant.logger import get_logger
from vault_assistant.models import ExtractedEntities, Transaction
from vault_assistant.retrieval.filters import EntityFilter, category_matches
from vault_assistant.storage.base import TransactionStore
from vault_assistant.storage.vector_index import VectorIndex

logger = get_logger(__name__)

DATE_MATCH_SCORE = 0.6
VENDOR_MATCH_SCORE = 0.7
CATEGORY_MATCH_SCORE = 0.6
KEYWORD_MATCH_SCORE = 0.5
EXTRA_MATCH_WEIGHT = 0.3
MIN_SEMANTIC_SIMILARITY = 0.3
STRUCTURED_BLEND_WEIGHT = 0.4
SEMANTIC_BLEND_WEIGHT = 0.6
CORROBORATION_BONUS = 0.1
DEFAULT_CONTEXT_BUDGET = 20


@dataclass
class RetrievalResult:
    transaction: Transaction
    score: float
    sources: set[str] = field(default_factory=set)

    @property
    def transaction_id(self) -> str:
        return self.transaction.id


def combine_structured(scores: list[float]) -> float:
    """
    Combine the scores of several structured filters hit by one record.

    The strongest hit counts in full and every other hit adds 30% of its score.
    Taking the max first keeps the result independent of lookup order.
    """
    if not scores:
        return 0.0
    best = max(scores)
    return min(1.0, best + EXTRA_MATCH_WEIGHT * (sum(scores) - best))


def blend_scores(structured: float, semantic: float) -> float:
    return min(1.0, structured * STRUCTURED_BLEND_WEIGHT + semantic * SEMANTIC_BLEND_WEIGHT + CORROBORATION_BONUS)


class HybridRetriever:
    """
    Two independent retrieval paths over the local store, merged by id.

    Every candidate passes the full entity filter. All survivors are returned
    sorted by score; trimming to the context budget happens downstream.
    """

    def __init__(
        self,
        store: TransactionStore,
        index: VectorIndex,
        engine: LocalEmbeddingEngine | None,
        category_names: Mapping[str, str],
        category_aliases: dict[str, list[str]] | None = None,
        context_budget: int = DEFAULT_CONTEXT_BUDGET,
    ) -> None:
        self.store = store
        self.index = index
        self.engine = engine
        self.category_names = category_names
        self.filter = EntityFilter(category_names, category_aliases)
        self.context_budget = context_budget

    def _category_ids(self, entities: ExtractedEntities) -> list[str]:
        ids: list[str] = []
        for category_id, name in self.category_names.items():
            for alias in entities.categories:
                keywords = self.filter.category_aliases.get(alias, [])
                if category_matches(name, alias, keywords) and category_id not in ids:
                    ids.append(category_id)
        return ids

    @staticmethod
    def _mentions_keyword(tx: Transaction, keywords: list[str]) -> bool:
        haystack = f"{tx.vendor} {tx.note or ''}".lower()
        return any(keyword in haystack for keyword in keywords)

    def structured_candidates(self, entities: ExtractedEntities) -> dict[str, tuple[Transaction, float]]:
        hits: dict[str, list[float]] = {}
        records: dict[str, Transaction] = {}

        def record(transactions: list[Transaction], score: float) -> None:
            for tx in transactions:
                records[tx.id] = tx
                hits.setdefault(tx.id, []).append(score)

        if entities.date_range is not None:
            record(self.store.get_by_date_range(entities.date_range.start, entities.date_range.end), DATE_MATCH_SCORE)
        for vendor in entities.vendors:
            record(self.store.get_by_vendor(vendor), VENDOR_MATCH_SCORE)
        for category_id in self._category_ids(entities):
            record(self.store.get_by_category(category_id), CATEGORY_MATCH_SCORE)

        if not hits and entities.keywords:
            # Free keywords only matter when no structured constraint was found
            keywords = [keyword.lower() for keyword in entities.keywords]
            record(
                [tx for tx in self.store.list_transactions() if self._mentions_keyword(tx, keywords)],
                KEYWORD_MATCH_SCORE,
            )

        return {tx_id: (records[tx_id], combine_structured(scores)) for tx_id, scores in hits.items()}

    async def semantic_candidates(self, query: str) -> dict[str, tuple[Transaction, float]]:
        if self.engine is None or len(self.index) == 0:
            return {}
        try:
            vector = await self.engine.embed_text(query)
        except Exception as exc:
            logger.warning("[RETRIEVE] Semantic path unavailable: %s", exc)
            return {}

        matches = self.index.search(vector, top_k=self.context_budget * 2)
        candidates: dict[str, tuple[Transaction, float]] = {}
        for match in matches:
            if match.score < MIN_SEMANTIC_SIMILARITY:
                continue
            tx = self.store.get_transaction(match.transaction_id)
            if tx is not None:
                candidates[tx.id] = (tx, match.score)
        return candidates

    async def retrieve(self, query: str, entities: ExtractedEntities) -> list[RetrievalResult]:
        structured, semantic = await asyncio.gather(
            asyncio.to_thread(self.structured_candidates, entities),
            self.semantic_candidates(query),
        )

        merged: dict[str, RetrievalResult] = {}
        for tx_id, (tx, score) in structured.items():
            merged[tx_id] = RetrievalResult(transaction=tx, score=score, sources={"structured"})
        for tx_id, (tx, score) in semantic.items():
            existing = merged.get(tx_id)
            if existing is None:
                merged[tx_id] = RetrievalResult(transaction=tx, score=score, sources={"semantic"})
            else:
                existing.score = blend_scores(existing.score, score)
                existing.sources.add("semantic")

        results = [result for result in merged.values() if self.filter.matches(result.transaction, entities)]
        results.sort(key=lambda r: (-r.score, -r.transaction.date.toordinal(), r.transaction.id))
        logger.info(
            "[RETRIEVE] structured=%s semantic=%s kept=%s",
            len(structured),
            len(semantic),
            len(results),
        )
        return results
