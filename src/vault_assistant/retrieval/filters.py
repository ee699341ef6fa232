from collections.abc import Mapping

from rapidfuzz import fuzz

from vault_assistant.domain.transactions import resolve_direction
from vault_assistant.models import ExtractedEntities, Transaction
from vault_assistant.query.lexicon import DEFAULT_CATEGORY_ALIASES

VENDOR_FUZZY_THRESHOLD = 85.0


def category_matches(category_name: str, alias: str, keywords: list[str]) -> bool:
    name = category_name.lower()
    return any(term in name for term in [alias, *keywords])


def vendor_matches_keywords(vendor: str, keywords: list[str]) -> bool:
    """Fallback for uncategorized rows: does the vendor name look like one of the keywords?"""
    lowered = vendor.lower()
    if not lowered:
        return False
    for keyword in keywords:
        if keyword in lowered:
            return True
        if fuzz.partial_ratio(keyword, lowered) >= VENDOR_FUZZY_THRESHOLD:
            return True
    return False


def vendor_matches(vendor: str, wanted: str) -> bool:
    lowered = vendor.lower()
    target = wanted.lower()
    return target == lowered or target in lowered or fuzz.token_sort_ratio(target, lowered) >= VENDOR_FUZZY_THRESHOLD


class EntityFilter:
    """Apply extracted entity constraints to individual transactions."""

    def __init__(
        self,
        category_names: Mapping[str, str],
        category_aliases: dict[str, list[str]] | None = None,
    ) -> None:
        self.category_names = category_names
        self.category_aliases = category_aliases or DEFAULT_CATEGORY_ALIASES

    def matches_date(self, tx: Transaction, entities: ExtractedEntities) -> bool:
        return entities.date_range is None or entities.date_range.contains(tx.date)

    def matches_amount(self, tx: Transaction, entities: ExtractedEntities) -> bool:
        return entities.amount_range is None or entities.amount_range.contains(abs(tx.amount))

    def matches_direction(self, tx: Transaction, entities: ExtractedEntities) -> bool:
        if entities.direction == "income":
            return resolve_direction(tx) == "credit"
        if entities.direction == "expense":
            return resolve_direction(tx) == "debit"
        return True

    def matches_category(self, tx: Transaction, entities: ExtractedEntities) -> bool:
        if not entities.categories:
            return True
        name = self.category_names.get(tx.category_id or "")
        for alias in entities.categories:
            keywords = self.category_aliases.get(alias, [])
            if name:
                if category_matches(name, alias, keywords):
                    return True
            elif vendor_matches_keywords(tx.vendor, [alias, *keywords]):
                return True
        return False

    def matches_vendor(self, tx: Transaction, entities: ExtractedEntities) -> bool:
        if not entities.vendors:
            return True
        return any(vendor_matches(tx.vendor, vendor) for vendor in entities.vendors)

    def matches(self, tx: Transaction, entities: ExtractedEntities) -> bool:
        return (
            self.matches_date(tx, entities)
            and self.matches_amount(tx, entities)
            and self.matches_category(tx, entities)
            and self.matches_direction(tx, entities)
        )
