import re
from collections.abc import Sequence

from vault_assistant.logger import get_logger
from vault_assistant.models import ChatMessage
from vault_assistant.query.entities import MONTH_PATTERN
from vault_assistant.query.lexicon import (
    DEFAULT_CATEGORY_ALIASES,
    DIRECTION_SWAPS,
    EXPENSE_TERMS,
    INCOME_TERMS,
)

logger = get_logger(__name__)

_MONTHS = (
    r"january|february|march|april|may|june|july|august|september|october|november|december"
    r"|jan|feb|mar|apr|jun|jul|aug|sept|sep|oct|nov|dec"
)
_PERIOD = (
    r"today|yesterday"
    r"|(?:this|last|previous|past|current)\s+(?:week|month|quarter|year)"
    r"|(?:last|past|previous)\s+(?:\d+|two|three|four|five|six|twelve)\s+(?:days?|weeks?|months?|years?)"
)

AFFIRMATIVE_PATTERN = re.compile(
    r"^(?:yes|yeah|yep|yup|sure|ok(?:ay)?|please|go ahead|do it|do that|sounds good|definitely"
    r"|absolutely|tell me more|show me|more)(?:[\s,]+(?:please|thanks|thank you|go ahead|do it))*[\s!.]*$",
    re.IGNORECASE,
)
ANAPHORA_PATTERN = re.compile(r"\b(?:that|it|them|those|these|this one)\b", re.IGNORECASE)
BARE_TIME_PATTERN = re.compile(
    rf"^(?:(?:and|what about|how about)\s+)?(?:(?:in|for|during)\s+)?(?:{_MONTHS}|{_PERIOD})(?:\s+\d{{4}})?\s*[?.!]*$",
    re.IGNORECASE,
)
# Inside a bare time follow-up "may" can only be the month
BARE_MONTH_PATTERN = re.compile(rf"\b(?:{_MONTHS})\b(?:\s+\d{{4}})?", re.IGNORECASE)
LEADING_CONJUNCTION_PATTERN = re.compile(r"^(?:and|also|what about|how about|but|or|then)\b", re.IGNORECASE)

PERIOD_PATTERN = re.compile(rf"\b(?:{_PERIOD})\b", re.IGNORECASE)
PREVIOUS_TIME_PATTERN = re.compile(
    rf"(?:\b(?:in|during|for)\s+)?\b(?:(?:{_MONTHS})(?:\s+\d{{4}})?|{_PERIOD})\b",
    re.IGNORECASE,
)
BULLET_QUESTION_PATTERN = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s+(.+\?)\s*$", re.MULTILINE)
WORD_PATTERN = re.compile(r"[a-z']+")

SHORT_QUERY_WORDS = 6
ANAPHORA_MAX_WORDS = 8


def _last_message(history: Sequence[ChatMessage], role: str) -> ChatMessage | None:
    for message in reversed(history):
        if message.role == role:
            return message
    return None


def _split_terminal(text: str) -> tuple[str, str]:
    stripped = text.rstrip()
    base = stripped.rstrip("?.! ")
    return base, stripped[len(base):].strip()


class QueryReformulator:
    """Rewrite vague follow-ups ("what about February?") into self-contained questions."""

    def __init__(self, category_aliases: dict[str, list[str]] | None = None) -> None:
        self.category_aliases = category_aliases or DEFAULT_CATEGORY_ALIASES

    def is_vague(self, query: str) -> bool:
        text = query.strip()
        if not text:
            return False
        if AFFIRMATIVE_PATTERN.match(text) or BARE_TIME_PATTERN.match(text):
            return True
        if LEADING_CONJUNCTION_PATTERN.match(text):
            return True
        return len(text.split()) <= ANAPHORA_MAX_WORDS and bool(ANAPHORA_PATTERN.search(text))

    def reformulate(self, query: str, history: Sequence[ChatMessage]) -> tuple[str, bool]:
        if not history or not self.is_vague(query):
            return query, False

        previous_user = _last_message(history, "user")
        previous = (previous_user.resolved_query or previous_user.content) if previous_user else None

        if AFFIRMATIVE_PATTERN.match(query.strip()):
            rewritten = self._from_affirmative(history, previous)
            if rewritten:
                return self._done(query, rewritten, "affirmative")
            return query, False

        if not previous:
            return query, False

        rewritten = previous
        applied: list[str] = []
        substituted = self._substitute_time(query, rewritten)
        if substituted != rewritten:
            rewritten = substituted
            applied.append("time")
        swapped = self._swap_direction(query, rewritten)
        if swapped != rewritten:
            rewritten = swapped
            applied.append("direction")
        with_category = self._apply_category(query, rewritten)
        if with_category != rewritten:
            rewritten = with_category
            applied.append("category")

        if applied:
            return self._done(query, rewritten, "+".join(applied))

        base, _ = _split_terminal(query)
        return self._done(query, f"{base} (in the context of: {previous})", "context")

    @staticmethod
    def _done(original: str, rewritten: str, strategy: str) -> tuple[str, bool]:
        logger.debug("[REFORMULATE] '%s' -> '%s' (%s)", original, rewritten, strategy)
        return rewritten, True

    @staticmethod
    def _from_affirmative(history: Sequence[ChatMessage], previous: str | None) -> str | None:
        assistant = _last_message(history, "assistant")
        if assistant is not None:
            if assistant.suggested_followups:
                return assistant.suggested_followups[0]
            # Older transcripts only carry suggestions inside the prose
            scraped = BULLET_QUESTION_PATTERN.findall(assistant.content)
            if scraped:
                return scraped[0].strip()
        if previous:
            base, _ = _split_terminal(previous)
            return f"{base}, provide more detail"
        return None

    @staticmethod
    def _substitute_time(query: str, previous: str) -> str:
        month = MONTH_PATTERN.search(query)
        if month is None and BARE_TIME_PATTERN.match(query.strip()):
            month = BARE_MONTH_PATTERN.search(query)
        period = PERIOD_PATTERN.search(query)
        if not month and not period:
            return previous

        target = PREVIOUS_TIME_PATTERN.search(previous)
        if month:
            new_month = month.group(0).strip()
            new_month = new_month[0].upper() + new_month[1:]
            if target is None:
                base, terminal = _split_terminal(previous)
                return f"{base} in {new_month}{terminal}"
            matched = target.group(0)
            has_preposition = matched.split()[0].lower() in {"in", "during", "for"}
            is_month = MONTH_PATTERN.search(matched) is not None
            if is_month and has_preposition:
                replacement = f"{matched.split()[0]} {new_month}"
            elif is_month:
                replacement = new_month
            else:
                replacement = f"in {new_month}"
            return previous[:target.start()] + replacement + previous[target.end():]

        new_period = period.group(0)
        if target is None:
            base, terminal = _split_terminal(previous)
            return f"{base} {new_period}{terminal}"
        return previous[:target.start()] + new_period + previous[target.end():]

    @staticmethod
    def _swap_direction(query: str, previous: str) -> str:
        current_words = set(WORD_PATTERN.findall(query.lower()))
        wants_income = bool(current_words & INCOME_TERMS) and not current_words & EXPENSE_TERMS
        wants_expense = bool(current_words & EXPENSE_TERMS) and not current_words & INCOME_TERMS
        if not wants_income and not wants_expense:
            return previous
        source_terms = EXPENSE_TERMS if wants_income else INCOME_TERMS

        def replace(match: re.Match[str]) -> str:
            word = match.group(0)
            lowered = word.lower()
            if lowered not in source_terms or lowered not in DIRECTION_SWAPS:
                return word
            swapped = DIRECTION_SWAPS[lowered]
            return swapped.capitalize() if word[0].isupper() else swapped

        return re.sub(r"[A-Za-z']+", replace, previous)

    def _find_category_phrase(self, text: str) -> str | None:
        lowered = text.lower()
        for name, keywords in self.category_aliases.items():
            if name == "income":
                # Handled as a direction swap
                continue
            for keyword in [name, *keywords]:
                if re.search(rf"\b{re.escape(keyword)}\b", lowered):
                    return keyword
        return None

    def _apply_category(self, query: str, previous: str) -> str:
        if len(query.split()) > SHORT_QUERY_WORDS:
            return previous
        new_category = self._find_category_phrase(query)
        if not new_category:
            return previous
        old_category = self._find_category_phrase(previous)
        if old_category == new_category:
            return previous
        if old_category:
            return re.sub(rf"\b{re.escape(old_category)}\b", new_category, previous, count=1, flags=re.IGNORECASE)
        base, terminal = _split_terminal(previous)
        return f"{base} on {new_category}{terminal}"
