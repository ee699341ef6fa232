import asyncio
from collections import defaultdict
from collections.abc import Mapping, Sequence

from vault_assistant.domain.transactions import UNCATEGORIZED, category_name, is_income
from vault_assistant.integration.remote import RemoteStoreClient
from vault_assistant.logger import get_logger
from vault_assistant.models import DateRange, QueryClassification, Transaction, VerifiedFinancialData
from vault_assistant.retrieval.filters import EntityFilter
from vault_assistant.retrieval.hybrid import RetrievalResult
from vault_assistant.storage.base import TransactionStore

logger = get_logger(__name__)

TOP_VENDORS = 15


def compute_aggregates(
    transactions: Sequence[Transaction],
    category_names: Mapping[str, str],
) -> VerifiedFinancialData:
    total_expenses = 0.0
    total_income = 0.0
    expense_count = 0
    income_count = 0
    by_category: dict[str, float] = defaultdict(float)
    count_by_category: dict[str, int] = defaultdict(int)
    by_vendor: dict[str, float] = defaultdict(float)

    for tx in transactions:
        amount = abs(tx.amount)
        if is_income(tx):
            total_income += amount
            income_count += 1
        else:
            total_expenses += amount
            expense_count += 1
        label = category_name(tx, category_names)
        by_category[label] += amount
        count_by_category[label] += 1
        by_vendor[tx.vendor or UNCATEGORIZED] += amount

    top_vendors = sorted(by_vendor.items(), key=lambda item: abs(item[1]), reverse=True)[:TOP_VENDORS]
    period = None
    if transactions:
        dates = [tx.date for tx in transactions]
        period = DateRange(start=min(dates), end=max(dates))

    return VerifiedFinancialData(
        total=round(total_income - total_expenses, 2),
        total_expenses=round(total_expenses, 2),
        total_income=round(total_income, 2),
        count=len(transactions),
        expense_count=expense_count,
        income_count=income_count,
        by_category={name: round(value, 2) for name, value in by_category.items()},
        count_by_category=dict(count_by_category),
        by_vendor={name: round(value, 2) for name, value in top_vendors},
        period=period,
    )


class AggregateCalculator:
    """
    Ground-truth totals for a turn.

    With a date range the totals cover every matching row in the local store,
    not just the rows that fit in the prompt. Without one, the remote store
    cross-check is tried first and the retrieval candidates are the fallback.
    """

    def __init__(
        self,
        store: TransactionStore,
        category_names: Mapping[str, str],
        entity_filter: EntityFilter,
        remote: RemoteStoreClient | None = None,
    ) -> None:
        self.store = store
        self.category_names = category_names
        self.filter = entity_filter
        self.remote = remote

    def compute(self, transactions: Sequence[Transaction]) -> VerifiedFinancialData:
        return compute_aggregates(transactions, self.category_names)

    def _date_filtered(self, classification: QueryClassification) -> list[Transaction]:
        entities = classification.entities
        date_range = entities.date_range
        if date_range is None:
            return []
        rows = [
            tx
            for tx in self.store.get_by_date_range(date_range.start, date_range.end)
            if self.filter.matches_amount(tx, entities) and self.filter.matches_category(tx, entities)
        ]
        if entities.vendors:
            by_vendor = [tx for tx in rows if self.filter.matches_vendor(tx, entities)]
            # Capitalised words are not always vendors; only narrow when one really matched
            if by_vendor:
                rows = by_vendor
        return rows

    async def verified_data(
        self,
        classification: QueryClassification,
        candidates: Sequence[RetrievalResult],
    ) -> VerifiedFinancialData | None:
        if not classification.needs_aggregate_lookup:
            return None
        try:
            if classification.entities.date_range is not None:
                rows = await asyncio.to_thread(self._date_filtered, classification)
            else:
                rows = await self._without_date_range(candidates)
        except Exception as exc:
            logger.error("[AGGREGATE] Failed to compute verified totals: %s", exc)
            return None

        if not rows:
            return None
        data = self.compute(rows)
        logger.info(
            "[AGGREGATE] %s rows: expenses=%.2f income=%.2f",
            data.count,
            data.total_expenses,
            data.total_income,
        )
        return data

    async def _without_date_range(self, candidates: Sequence[RetrievalResult]) -> list[Transaction]:
        local = [result.transaction for result in candidates]
        if self.remote is not None and self.remote.is_configured() and local:
            remote_rows = await self.remote.fetch_aggregate_rows([tx.id for tx in local], None)
            if remote_rows:
                return remote_rows
        return local
