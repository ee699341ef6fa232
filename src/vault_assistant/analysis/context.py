from collections import defaultdict

from vault_assistant.domain.transactions import UNCATEGORIZED
from vault_assistant.models import Intent, QueryClassification
from vault_assistant.retrieval.hybrid import RetrievalResult

DEFAULT_CONTEXT_BUDGET = 20
PER_CATEGORY_PICKS = 3

AGGREGATE_INTENTS = frozenset({Intent.SPENDING, Intent.INCOME, Intent.BUDGET})
TEMPORAL_INTENTS = frozenset({Intent.TREND, Intent.COMPARISON})


def select_by_amount(results: list[RetrievalResult], largest: bool, budget: int) -> list[RetrievalResult]:
    ordered = sorted(
        results,
        key=lambda r: (abs(r.transaction.amount), r.score),
        reverse=largest,
    )
    return ordered[:budget]


def select_diverse(results: list[RetrievalResult], budget: int) -> list[RetrievalResult]:
    """Round-robin the top amounts of each category, then fill by score."""
    groups: dict[str, list[RetrievalResult]] = defaultdict(list)
    for result in results:
        groups[result.transaction.category_id or UNCATEGORIZED].append(result)
    for members in groups.values():
        members.sort(key=lambda r: abs(r.transaction.amount), reverse=True)

    # Categories with the heaviest single item go first
    order = sorted(groups, key=lambda key: abs(groups[key][0].transaction.amount), reverse=True)
    selected: list[RetrievalResult] = []
    chosen: set[str] = set()
    for rank in range(PER_CATEGORY_PICKS):
        for key in order:
            if len(selected) >= budget:
                return selected
            members = groups[key]
            if rank < len(members):
                selected.append(members[rank])
                chosen.add(members[rank].transaction_id)

    for result in results:
        if len(selected) >= budget:
            break
        if result.transaction_id not in chosen:
            selected.append(result)
            chosen.add(result.transaction_id)
    return selected


def select_temporal(results: list[RetrievalResult], budget: int) -> list[RetrievalResult]:
    """Evenly sample across the date axis so the model sees the whole span."""
    ordered = sorted(results, key=lambda r: (r.transaction.date, r.transaction_id))
    if len(ordered) <= budget:
        return ordered
    if budget == 1:
        return [ordered[-1]]
    step = (len(ordered) - 1) / (budget - 1)
    indices = sorted({round(i * step) for i in range(budget)})
    return [ordered[i] for i in indices]


def select_context(
    results: list[RetrievalResult],
    classification: QueryClassification,
    budget: int = DEFAULT_CONTEXT_BUDGET,
) -> list[RetrievalResult]:
    if budget <= 0 or not results:
        return []
    superlative = classification.entities.superlative
    if superlative is not None:
        return select_by_amount(results, largest=superlative == "largest", budget=budget)
    if classification.intent in AGGREGATE_INTENTS:
        return select_diverse(results, budget)
    if classification.intent in TEMPORAL_INTENTS:
        return select_temporal(results, budget)
    return results[:budget]
