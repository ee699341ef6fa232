import re
from datetime import date

from vault_assistant.domain.dates import (
    infer_year,
    month_number,
    month_range,
    period_range,
    relative_range,
    year_range,
)
from vault_assistant.models import AmountRange, DateRange, DirectionFilter, ExtractedEntities, Intent
from vault_assistant.query.lexicon import (
    DEFAULT_CATEGORY_ALIASES,
    EXPENSE_TERMS,
    INCOME_TERMS,
    MONTH_WORDS,
    NON_VENDOR_WORDS,
    STOPWORDS,
    SUPERLATIVE_LARGEST,
    SUPERLATIVE_SMALLEST,
    TIME_PERIOD_PATTERNS,
    WEEKDAYS,
)

_MONTH_ALTERNATION = (
    r"january|february|march|april|june|july|august|september|october|november|december"
    r"|jan|feb|mar|apr|jun|jul|aug|sept|sep|oct|nov|dec"
)
# "may" is also a modal verb, so it only counts next to a preposition or a year.
_MONTH_TOKEN = rf"(?:{_MONTH_ALTERNATION})\.?|(?<=in )may|(?<=of )may|(?<=during )may|(?<=for )may|may(?= \d{{4}})"

BETWEEN_MONTHS_PATTERN = re.compile(
    rf"\b(?:between|from)\s+({_MONTH_TOKEN})(?:\s+(\d{{4}}))?\s+(?:and|to|through|until|-)\s+"
    rf"({_MONTH_TOKEN}|may)(?:\s+(\d{{4}}))?\b",
    re.IGNORECASE,
)
MONTH_PATTERN = re.compile(rf"\b({_MONTH_TOKEN})(?:\s+(\d{{4}}))?\b", re.IGNORECASE)
RELATIVE_PATTERN = re.compile(
    r"\b(?:last|past|previous)\s+(\d+|two|three|four|five|six|seven|eight|nine|ten|twelve)\s+"
    r"(days?|weeks?|months?|years?)\b",
    re.IGNORECASE,
)
YEAR_PATTERN = re.compile(r"\b(?:in|during|for|of)\s+((?:19|20)\d{2})\b", re.IGNORECASE)

_NUMBER = r"(\d[\d,]*(?:\.\d+)?)"
_CURRENCY = r"(?:[$€£₹¥]\s?)?"
AMOUNT_BETWEEN_PATTERN = re.compile(
    rf"\bbetween\s+{_CURRENCY}{_NUMBER}\s+(?:and|to|-)\s+{_CURRENCY}{_NUMBER}", re.IGNORECASE
)
AMOUNT_OVER_PATTERN = re.compile(
    rf"\b(?:over|more than|greater than|at least|above|exceeding)\s+{_CURRENCY}{_NUMBER}", re.IGNORECASE
)
AMOUNT_UNDER_PATTERN = re.compile(
    rf"\b(?:under|less than|at most|below|cheaper than)\s+{_CURRENCY}{_NUMBER}", re.IGNORECASE
)
AMOUNT_AROUND_PATTERN = re.compile(
    rf"\b(?:around|about|approximately|roughly|~)\s*{_CURRENCY}{_NUMBER}", re.IGNORECASE
)

QUOTED_PATTERN = re.compile(r"\"([^\"]{2,60})\"|(?:^|\s)'([^']{2,60})'(?=\s|$|[?.!,])")
PROPER_NOUN_PATTERN = re.compile(r"\b([A-Z][\w&'.-]*(?:\s+[A-Z][\w&'.-]*)*)")
PREPOSITION_PATTERN = re.compile(r"\b(?:at|from)\s+([A-Za-z][\w&'.-]*(?:\s+[A-Za-z][\w&'.-]*){0,2})")
LOCATION_PATTERN = re.compile(
    r"\b(?:in|trip to|travel to|vacation in|visited)\s+([A-Z][a-z]+(?:\s+[A-Z][a-z]+)?)"
)
WORD_PATTERN = re.compile(r"[a-z0-9][a-z0-9'&-]*")

COMPARISON_PATTERNS = (
    ("month_over_month", re.compile(r"month over month|this month (?:vs|versus|compared to|to) last month|monthly", re.I)),
    ("week_over_week", re.compile(r"week over week|this week (?:vs|versus|compared to|to) last week|weekly", re.I)),
    ("year_over_year", re.compile(r"year over year|this year (?:vs|versus|compared to|to) last year|yearly|annual", re.I)),
    ("category_breakdown", re.compile(r"by category|categories|breakdown|split", re.I)),
    ("vendor_breakdown", re.compile(r"by (?:vendor|merchant|store)|vendors|merchants", re.I)),
)

_WORD_NUMBERS = {
    "two": 2,
    "three": 3,
    "four": 4,
    "five": 5,
    "six": 6,
    "seven": 7,
    "eight": 8,
    "nine": 9,
    "ten": 10,
    "twelve": 12,
}

_INCOME_INTENTS = {Intent.INCOME}
_EXPENSE_INTENTS = {Intent.SPENDING, Intent.BUDGET}


def _parse_number(raw: str) -> float:
    return float(raw.replace(",", ""))


def _parse_count(raw: str) -> int:
    if raw.isdigit():
        return int(raw)
    return _WORD_NUMBERS[raw.lower()]


def _contains_phrase(text: str, phrase: str) -> bool:
    return re.search(rf"\b{re.escape(phrase)}\b", text) is not None


class EntityExtractor:
    """Pull structured constraints (dates, amounts, vendors, categories, direction) out of a query."""

    def __init__(self, category_aliases: dict[str, list[str]] | None = None) -> None:
        self.category_aliases = category_aliases or DEFAULT_CATEGORY_ALIASES
        self._alias_words = {
            word
            for name, keywords in self.category_aliases.items()
            for word in [name, *keywords]
        }

    def extract(self, query: str, intent: Intent, today: date | None = None) -> ExtractedEntities:
        today = today or date.today()
        lowered = query.lower()
        time_period = self.extract_time_period(lowered)
        direction = self.extract_direction(lowered, intent)
        categories = self.extract_categories(lowered)
        if direction == "income" and categories == ["income"]:
            # Already expressed by the direction filter
            categories = []
        return ExtractedEntities(
            date_range=self.extract_date_range(query, time_period, today),
            categories=tuple(categories),
            amount_range=self.extract_amount_range(query),
            vendors=tuple(self.extract_vendors(query)),
            locations=tuple(self.extract_locations(query)),
            time_period=time_period,
            comparison_type=self.extract_comparison_type(query),
            keywords=tuple(self.extract_keywords(lowered)),
            direction=direction,
            superlative=self.extract_superlative(lowered),
        )

    @staticmethod
    def extract_time_period(lowered: str) -> str | None:
        for period, patterns in TIME_PERIOD_PATTERNS.items():
            if any(pattern.search(lowered) for pattern in patterns):
                return period
        return None

    def extract_date_range(self, query: str, time_period: str | None, today: date) -> DateRange | None:
        between = BETWEEN_MONTHS_PATTERN.search(query)
        if between:
            start_month = month_number(between.group(1))
            end_month = month_number(between.group(3))
            if start_month and end_month:
                end_year = int(between.group(4)) if between.group(4) else infer_year(end_month, today)
                if between.group(2):
                    start_year = int(between.group(2))
                elif start_month > end_month:
                    start_year = end_year - 1
                else:
                    start_year = end_year
                return DateRange(
                    start=month_range(start_year, start_month).start,
                    end=month_range(end_year, end_month).end,
                )

        month_match = MONTH_PATTERN.search(query)
        if month_match:
            month = month_number(month_match.group(1))
            if month:
                year = int(month_match.group(2)) if month_match.group(2) else infer_year(month, today)
                return month_range(year, month)

        relative = RELATIVE_PATTERN.search(query)
        if relative:
            return relative_range(_parse_count(relative.group(1)), relative.group(2), today)

        if time_period:
            return period_range(time_period, today)

        year_match = YEAR_PATTERN.search(query)
        if year_match:
            return year_range(int(year_match.group(1)))
        return None

    def extract_categories(self, lowered: str) -> list[str]:
        found: list[str] = []
        for name, keywords in self.category_aliases.items():
            if any(_contains_phrase(lowered, keyword) for keyword in [name, *keywords]):
                found.append(name)
        return found

    @staticmethod
    def extract_amount_range(query: str) -> AmountRange | None:
        between = AMOUNT_BETWEEN_PATTERN.search(query)
        if between:
            low, high = sorted((_parse_number(between.group(1)), _parse_number(between.group(2))))
            return AmountRange(min=low, max=high)

        over = AMOUNT_OVER_PATTERN.search(query)
        under = AMOUNT_UNDER_PATTERN.search(query)
        if over or under:
            return AmountRange(
                min=_parse_number(over.group(1)) if over else None,
                max=_parse_number(under.group(1)) if under else None,
            )

        around = AMOUNT_AROUND_PATTERN.search(query)
        if around:
            value = _parse_number(around.group(1))
            has_symbol = any(symbol in around.group(0) for symbol in "$€£₹¥")
            if not has_symbol and value.is_integer() and 1900 <= value <= 2100:
                # "how about 2024" names a year, not an amount
                return None
            return AmountRange(min=round(value * 0.8, 2), max=round(value * 1.2, 2))
        return None

    def _is_excluded_word(self, word: str) -> bool:
        lowered = word.lower().strip(".'")
        return (
            lowered in NON_VENDOR_WORDS
            or lowered in MONTH_WORDS
            or lowered in WEEKDAYS
            or lowered in self._alias_words
            or lowered in INCOME_TERMS
            or lowered in EXPENSE_TERMS
            or lowered.isdigit()
        )

    def _trim_candidate(self, candidate: str) -> str:
        kept: list[str] = []
        for word in candidate.split():
            if self._is_excluded_word(word):
                if kept:
                    break
                continue
            kept.append(word.strip(".,'"))
        return " ".join(kept)

    def extract_vendors(self, query: str) -> list[str]:
        vendors: list[str] = []
        seen: set[str] = set()

        def add(candidate: str) -> None:
            cleaned = candidate.strip(" .,?!'\"")
            key = cleaned.casefold()
            if cleaned and key not in seen:
                seen.add(key)
                vendors.append(cleaned)

        for match in QUOTED_PATTERN.finditer(query):
            add(match.group(1) or match.group(2) or "")

        for match in PROPER_NOUN_PATTERN.finditer(query):
            add(self._trim_candidate(match.group(1)))

        for match in PREPOSITION_PATTERN.finditer(query):
            add(self._trim_candidate(match.group(1)))

        return vendors

    def extract_locations(self, query: str) -> list[str]:
        locations: list[str] = []
        for match in LOCATION_PATTERN.finditer(query):
            candidate = match.group(1)
            first = candidate.split()[0].lower()
            if first in MONTH_WORDS or first in WEEKDAYS or first in STOPWORDS:
                continue
            if candidate not in locations:
                locations.append(candidate)
        return locations

    @staticmethod
    def extract_comparison_type(query: str) -> str | None:
        for name, pattern in COMPARISON_PATTERNS:
            if pattern.search(query):
                return name
        return None

    @staticmethod
    def extract_keywords(lowered: str) -> list[str]:
        keywords: list[str] = []
        for word in WORD_PATTERN.findall(lowered):
            if len(word) > 2 and word not in STOPWORDS and word not in keywords:
                keywords.append(word)
        return keywords

    @staticmethod
    def extract_direction(lowered: str, intent: Intent) -> DirectionFilter:
        if intent in _INCOME_INTENTS:
            return "income"
        if intent in _EXPENSE_INTENTS:
            return "expense"
        words = set(WORD_PATTERN.findall(lowered))
        has_income = bool(words & INCOME_TERMS)
        has_expense = bool(words & EXPENSE_TERMS)
        if has_income and not has_expense:
            return "income"
        if has_expense and not has_income:
            return "expense"
        return "all"

    @staticmethod
    def extract_superlative(lowered: str) -> str | None:
        if any(_contains_phrase(lowered, term) for term in SUPERLATIVE_LARGEST):
            return "largest"
        if any(_contains_phrase(lowered, term) for term in SUPERLATIVE_SMALLEST):
            return "smallest"
        return None
