import re
from dataclasses import dataclass, field

from vault_assistant.domain.money import format_currency, within_tolerance
from vault_assistant.logger import get_logger
from vault_assistant.models import VerifiedFinancialData

logger = get_logger(__name__)

KEYWORD_WINDOW = 48

_AMOUNT = r"\d{1,3}(?:,\d{2,3})+(?:\.\d+)?|\d+(?:\.\d+)?"
MONEY_PATTERN = re.compile(
    rf"(?:(?P<symbol>[$€£₹¥])\s?(?P<amount>{_AMOUNT})"
    rf"|\b(?P<code>USD|EUR|GBP|INR|JPY|CNY|CAD|AUD|CHF)\s?(?P<code_amount>{_AMOUNT})"
    rf"|(?P<suffix_amount>{_AMOUNT})\s?(?P<suffix_code>USD|EUR|GBP|INR|JPY|CNY|CAD|AUD|CHF)\b)"
)
TOTAL_KEYWORD_PATTERN = re.compile(
    r"\b(total|totals|totaled|totalled|spent|spend|spending|expenses?|income|received|earned|net)\b",
    re.IGNORECASE,
)
_INCOME_KEYWORDS = {"income", "received", "earned"}
_HEADLINE_KEYWORDS = {"total", "totals", "totaled", "totalled", "net"}


@dataclass(frozen=True)
class MonetaryMention:
    value: float
    keyword: str | None
    start: int
    end: int
    raw: str
    family: str = "expense"
    headline: bool = False


@dataclass
class VerificationResult:
    text: str
    was_corrected: bool = False
    correction: str = ""
    mismatches: list[MonetaryMention] = field(default_factory=list)


def extract_mentions(text: str) -> list[MonetaryMention]:
    mentions: list[MonetaryMention] = []
    for match in MONEY_PATTERN.finditer(text):
        raw_amount = match.group("amount") or match.group("code_amount") or match.group("suffix_amount")
        try:
            value = float(raw_amount.replace(",", ""))
        except (AttributeError, ValueError):
            continue
        window_start = max(0, match.start() - KEYWORD_WINDOW)
        window = text[window_start:match.start()]
        # Stay within the sentence that holds the amount
        window = re.split(r"[.!?\n]\s", window)[-1]
        keywords = [keyword.lower() for keyword in TOTAL_KEYWORD_PATTERN.findall(window)]
        mentions.append(
            MonetaryMention(
                value=value,
                keyword=keywords[-1] if keywords else None,
                family=_family_of(keywords),
                headline=any(keyword in _HEADLINE_KEYWORDS for keyword in keywords),
                start=match.start(),
                end=match.end(),
                raw=match.group(0),
            )
        )
    return mentions


def _family_of(keywords: list[str]) -> str:
    if any(keyword in _INCOME_KEYWORDS for keyword in keywords):
        return "income"
    if "net" in keywords:
        return "net"
    return "expense"


def _headline_values(data: VerifiedFinancialData) -> list[float]:
    return [data.total_expenses, data.total_income, abs(data.total)]


def _known_values(data: VerifiedFinancialData) -> list[float]:
    values = _headline_values(data)
    values.extend(data.by_category.values())
    values.extend(data.by_vendor.values())
    return values


def _reference_for(family: str, data: VerifiedFinancialData) -> tuple[str, float]:
    if family == "income":
        return "total income", data.total_income
    if family == "net":
        return "net flow", data.total
    return "total expenses", data.total_expenses


class ResponseVerifier:
    """Check stated totals in a generated answer against verified aggregates."""

    def check(self, text: str, data: VerifiedFinancialData | None) -> list[MonetaryMention]:
        if data is None or not text:
            return []
        headline = _headline_values(data)
        known = _known_values(data)
        mismatches = []
        for mention in extract_mentions(text):
            if mention.keyword is None:
                continue
            # A stated total must match a total, not a coincidental breakdown line
            candidates = headline if mention.headline else known
            if any(within_tolerance(mention.value, value) for value in candidates):
                continue
            mismatches.append(mention)
        return mismatches

    def correction_for(
        self,
        mismatches: list[MonetaryMention],
        data: VerifiedFinancialData,
        currency: str,
    ) -> str:
        label, value = _reference_for(mismatches[0].family, data)
        count = data.income_count if label == "total income" else data.expense_count
        if label == "net flow":
            count = data.count
        period = ""
        if data.period is not None:
            period = f" between {data.period.start.isoformat()} and {data.period.end.isoformat()}"
        return (
            "\n\n---\n"
            f"**Correction:** The verified {label}{period} is {format_currency(value, currency)} "
            f"across {count} transaction{'s' if count != 1 else ''}. "
            "Please rely on this figure rather than any conflicting amount above."
        )

    def verify(
        self,
        text: str,
        data: VerifiedFinancialData | None,
        currency: str = "USD",
    ) -> VerificationResult:
        mismatches = self.check(text, data)
        if not mismatches or data is None:
            return VerificationResult(text=text)

        correction = self.correction_for(mismatches, data, currency)
        logger.warning(
            "[VERIFY] %s stated total(s) did not match verified data: %s",
            len(mismatches),
            ", ".join(mention.raw for mention in mismatches),
        )
        return VerificationResult(
            text=text + correction,
            was_corrected=True,
            correction=correction,
            mismatches=mismatches,
        )
