"""Static vocabularies used by query understanding."""

import json
import os
import re

from vault_assistant.logger import get_logger
from vault_assistant.models import Intent

logger = get_logger(__name__)

# Order matters: the first intent with a matching pattern is the regex verdict.
INTENT_PATTERNS: dict[Intent, list[re.Pattern[str]]] = {
    Intent.BUDGET: [
        re.compile(r"(?:what|how) (?:is|are) (?:my )?budget"),
        re.compile(r"budget (?:status|remaining|left|available)"),
        re.compile(r"(?:am i|are we) (?:over|under|within) budget"),
        re.compile(r"(?:how much|what) (?:is )?(?:left|remaining) (?:in|of) (?:my )?budget"),
        re.compile(r"spending (?:vs|versus|compared to) budget"),
        re.compile(r"budget (?:for|on)"),
    ],
    Intent.COMPARISON: [
        re.compile(r"\bcompare\b"),
        re.compile(r"(?:this|last) (?:month|week|year) (?:vs|versus|compared to|to)\b"),
        re.compile(r"(?:how does|what is) (?:this|last) (?:month|week|year) compare"),
        re.compile(r"(?:difference|change) (?:between|from)"),
        re.compile(r"month over month|week over week|year over year"),
        re.compile(r"compared to (?:last|previous)"),
        re.compile(r"\b(?:vs\.?|versus)\b"),
    ],
    Intent.TREND: [
        re.compile(r"(?:show|what are) (?:my )?(?:spending )?trends?"),
        re.compile(r"(?:how|what) (?:has|have) (?:my )?spending (?:changed|trended)"),
        re.compile(r"spending (?:pattern|habits?|behavior)"),
        re.compile(r"\b(?:increasing|decreasing|going up|going down)\b"),
        re.compile(r"\bover ?time\b"),
        re.compile(r"\btrend(?:s|ing)?\b"),
    ],
    Intent.INCOME: [
        re.compile(r"\b(?:income|salary|salaries|paycheck|wages?|earnings)\b"),
        re.compile(r"how much (?:did i|have i|do i) (?:earn|make|receive|get paid)"),
        re.compile(r"\b(?:earned|received|got paid)\b"),
        re.compile(r"\b(?:deposits?|refunds?) (?:from|in|this|last)\b"),
        re.compile(r"money (?:coming in|received)"),
    ],
    Intent.SPENDING: [
        re.compile(r"how much (?:did i|have i|do i) (?:spend|spent|pay|paid)"),
        re.compile(r"(?:what|how much) (?:was|is|are) (?:my )?(?:total|spending|expenses?)"),
        re.compile(r"(?:total|sum|amount) (?:of )?(?:spending|expenses?|money)"),
        re.compile(r"(?:spent|spend|paid|pay) (?:on|for|at)"),
        re.compile(r"(?:what|show) (?:did i|have i) (?:spend|spent|pay|paid)"),
        re.compile(r"spending (?:on|for|at|in)"),
        re.compile(r"expenses? (?:for|on|at|in)"),
        re.compile(r"\b(?:biggest|largest|smallest|most expensive|cheapest) (?:purchases?|expenses?|payments?)\b"),
    ],
    Intent.SEARCH: [
        re.compile(
            r"(?:find|show|get|search|look for|locate) (?:me )?(?:the )?"
            r"(?:receipt|document|transaction|bill|invoice)"
        ),
        re.compile(r"(?:where|which) (?:is|are) (?:my|the)"),
        re.compile(r"^(?:can you )?(?:find|show|get|list) (?:me )?(?:all )?(?:my )?"),
        re.compile(r"search for"),
        re.compile(r"find (?:receipts?|transactions?|documents?|bills?|invoices?)"),
    ],
}

# Canonical example sentences per intent for the semantic classifier.
INTENT_EXAMPLES: dict[Intent, list[str]] = {
    Intent.SPENDING: [
        "How much did I spend last month?",
        "What was my total spending in January?",
        "How much have I spent on groceries?",
        "What are my expenses this week?",
        "How much money did I pay for dining out?",
        "Total amount spent at Starbucks this year",
    ],
    Intent.INCOME: [
        "How much did I earn last month?",
        "What was my total income this year?",
        "When did I receive my salary?",
        "How much money came in from my paycheck?",
        "Show my deposits and refunds",
        "What are my earnings in March?",
    ],
    Intent.SEARCH: [
        "Find my receipt from Amazon",
        "Show me transactions from Walmart",
        "Search for the invoice from my dentist",
        "Look up the payment to my landlord",
        "Where is the bill for my phone?",
        "List all transactions at Target",
    ],
    Intent.BUDGET: [
        "Am I over budget this month?",
        "How much is left in my budget?",
        "What is my budget status?",
        "How am I doing against my grocery budget?",
        "Is my dining budget exceeded?",
        "Remaining budget for entertainment",
    ],
    Intent.TREND: [
        "What are my spending trends?",
        "How has my spending changed over time?",
        "Is my grocery spending going up?",
        "Show my spending pattern over the last six months",
        "Are my expenses increasing?",
        "How do my monthly bills evolve?",
    ],
    Intent.COMPARISON: [
        "Compare this month to last month",
        "How does my spending this year compare to last year?",
        "Difference between January and February expenses",
        "Groceries versus dining spending",
        "Did I spend more this week than last week?",
        "Month over month change in my expenses",
    ],
}

TIME_PERIOD_PATTERNS: dict[str, list[re.Pattern[str]]] = {
    "today": [re.compile(r"\btoday\b"), re.compile(r"\bthis day\b")],
    "yesterday": [re.compile(r"\byesterday\b")],
    "this_week": [re.compile(r"\bthis week\b"), re.compile(r"\bcurrent week\b")],
    "last_week": [re.compile(r"\blast week\b"), re.compile(r"\bprevious week\b"), re.compile(r"\bpast week\b")],
    "this_month": [re.compile(r"\bthis month\b"), re.compile(r"\bcurrent month\b")],
    "last_month": [re.compile(r"\blast month\b"), re.compile(r"\bprevious month\b"), re.compile(r"\bpast month\b")],
    "this_quarter": [re.compile(r"\bthis quarter\b"), re.compile(r"\bcurrent quarter\b")],
    "last_quarter": [re.compile(r"\blast quarter\b"), re.compile(r"\bprevious quarter\b")],
    "this_year": [re.compile(r"\bthis year\b"), re.compile(r"\bcurrent year\b")],
    "last_year": [re.compile(r"\blast year\b"), re.compile(r"\bprevious year\b")],
}

DEFAULT_CATEGORY_ALIASES: dict[str, list[str]] = {
    "groceries": ["groceries", "grocery", "supermarket", "food shopping", "provisions"],
    "dining": [
        "dining",
        "restaurant",
        "restaurants",
        "meal",
        "lunch",
        "dinner",
        "breakfast",
        "eating out",
        "takeout",
        "food delivery",
        "coffee",
    ],
    "transport": [
        "transport",
        "transportation",
        "uber",
        "lyft",
        "taxi",
        "cab",
        "fuel",
        "petrol",
        "parking",
        "commute",
    ],
    "entertainment": [
        "entertainment",
        "movie",
        "movies",
        "cinema",
        "concert",
        "streaming",
        "netflix",
        "spotify",
        "gaming",
    ],
    "shopping": ["shopping", "clothes", "clothing", "amazon", "online shopping", "retail"],
    "healthcare": [
        "healthcare",
        "health",
        "medical",
        "doctor",
        "hospital",
        "pharmacy",
        "medicine",
        "dentist",
        "dental",
    ],
    "utilities": ["utilities", "utility", "electricity", "water bill", "gas bill", "internet", "phone bill"],
    "travel": ["travel", "trip", "vacation", "holiday", "flight", "flights", "hotel", "airbnb"],
    "income": ["income", "salary", "paycheck", "payment received", "deposit"],
}

INCOME_TERMS = frozenset({
    "income",
    "earn",
    "earned",
    "earning",
    "earnings",
    "salary",
    "paycheck",
    "wage",
    "wages",
    "deposit",
    "deposits",
    "received",
    "receive",
    "refund",
    "refunds",
    "credited",
    "credit",
    "credits",
})

EXPENSE_TERMS = frozenset({
    "spend",
    "spent",
    "spending",
    "expense",
    "expenses",
    "paid",
    "pay",
    "purchase",
    "purchases",
    "bought",
    "buy",
    "cost",
    "costs",
    "debit",
    "debits",
    "charged",
    "bill",
    "bills",
})

# Replacement used when a follow-up flips the money direction of the previous question.
DIRECTION_SWAPS = {
    "spend": "earn",
    "spent": "earned",
    "spending": "income",
    "expenses": "income",
    "expense": "income",
    "paid": "received",
    "earn": "spend",
    "earned": "spent",
    "earnings": "spending",
    "income": "spending",
    "received": "paid",
}

SUPERLATIVE_LARGEST = ("most expensive", "largest", "biggest", "highest", "priciest", "maximum", "max")
SUPERLATIVE_SMALLEST = ("least expensive", "smallest", "lowest", "cheapest", "minimum", "min")

WEEKDAYS = frozenset({
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
})

MONTH_WORDS = frozenset({
    "january",
    "february",
    "march",
    "april",
    "may",
    "june",
    "july",
    "august",
    "september",
    "october",
    "november",
    "december",
    "jan",
    "feb",
    "mar",
    "apr",
    "jun",
    "jul",
    "aug",
    "sep",
    "sept",
    "oct",
    "nov",
    "dec",
})

STOPWORDS = frozenset({
    "a",
    "about",
    "all",
    "also",
    "am",
    "an",
    "and",
    "any",
    "are",
    "at",
    "be",
    "between",
    "but",
    "by",
    "can",
    "could",
    "did",
    "do",
    "does",
    "during",
    "for",
    "from",
    "get",
    "give",
    "had",
    "has",
    "have",
    "how",
    "i",
    "in",
    "is",
    "it",
    "last",
    "list",
    "me",
    "month",
    "much",
    "my",
    "next",
    "of",
    "on",
    "or",
    "over",
    "past",
    "please",
    "previous",
    "show",
    "since",
    "tell",
    "than",
    "that",
    "the",
    "them",
    "there",
    "these",
    "this",
    "those",
    "to",
    "today",
    "under",
    "was",
    "week",
    "were",
    "what",
    "when",
    "where",
    "which",
    "who",
    "why",
    "will",
    "with",
    "would",
    "year",
    "yesterday",
    "you",
    "your",
})

# Capitalised words that start questions or commands rather than name a vendor.
NON_VENDOR_WORDS = STOPWORDS | frozenset({
    "average",
    "budget",
    "break",
    "compare",
    "display",
    "down",
    "find",
    "how's",
    "latest",
    "least",
    "less",
    "locate",
    "look",
    "many",
    "more",
    "most",
    "need",
    "ok",
    "okay",
    "recent",
    "search",
    "status",
    "sum",
    "summarize",
    "summary",
    "sure",
    "thanks",
    "total",
    "transaction",
    "transactions",
    "trend",
    "trends",
    "want",
    "what's",
    "where's",
    "yeah",
    "yes",
}) | frozenset(SUPERLATIVE_LARGEST) | frozenset(SUPERLATIVE_SMALLEST)

QUESTION_PATTERN = re.compile(
    r"^(?:what|how|when|where|why|who|which|is|are|can|could|do|does|did|show|find|tell)\b|\?\s*$",
    re.IGNORECASE,
)


def load_category_aliases(path: str | None) -> dict[str, list[str]]:
    """Return the alias table, replaced by the JSON file at ``path`` when it is readable."""
    if not path:
        return DEFAULT_CATEGORY_ALIASES
    if not os.path.exists(path):
        logger.warning("[CONFIG] Category alias file %s not found, using defaults.", path)
        return DEFAULT_CATEGORY_ALIASES
    try:
        with open(path, encoding="utf-8") as handle:
            raw = json.load(handle)
    except (OSError, json.JSONDecodeError) as exc:
        logger.error("[CONFIG] Failed to read category aliases from %s: %s", path, exc)
        return DEFAULT_CATEGORY_ALIASES
    if not isinstance(raw, dict):
        logger.error("[CONFIG] Category alias file %s must hold an object.", path)
        return DEFAULT_CATEGORY_ALIASES
    aliases: dict[str, list[str]] = {}
    for name, keywords in raw.items():
        if isinstance(keywords, list):
            aliases[str(name).lower()] = [str(keyword).lower() for keyword in keywords]
    return aliases or DEFAULT_CATEGORY_ALIASES
