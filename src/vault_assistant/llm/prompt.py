import json
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Literal

from pydantic import BaseModel

from vault_assistant.domain.money import detect_dominant_currency, format_currency
from vault_assistant.domain.transactions import resolve_direction
from vault_assistant.errors import PrivacyViolationError
from vault_assistant.models import ChatMessage, Direction, Intent, Transaction, UserPreferences, VerifiedFinancialData

MAX_HISTORY_MESSAGES = 5
MAX_HISTORY_CHARS = 500
MAX_PROMPT_TRANSACTIONS = 20
MAX_NOTE_CHARS = 200
MAX_FOLLOWUPS = 3
MAX_FOLLOWUP_CHARS = 100
LONG_TEXT_THRESHOLD = 2000

FORBIDDEN_FIELDS = frozenset({
    "raw_text",
    "rawtext",
    "embedding",
    "file_path",
    "filepath",
    "file_size",
    "filesize",
    "mime_type",
    "mimetype",
    "ocr_output",
    "ocroutput",
    "confidence",
    "query_embedding",
    "queryembedding",
    "document_id",
    "documentid",
})
EMBEDDING_PATTERN = re.compile(r"\[\s*-?0\.\d+\s*,\s*-?0\.\d+\s*,")
FOLLOWUP_HEADING_PATTERN = re.compile(r"^\s*(?:#+\s*|\*\*)?suggested follow-?ups?:?(?:\*\*)?:?\s*$", re.IGNORECASE | re.MULTILINE)
QUESTION_LINE_PATTERN = re.compile(r"^\s*(?:[-*•]|\d+[.)])?\s*([A-Z][^\n]*\?)\s*$", re.MULTILINE)

SYSTEM_PROMPT = """You are Vault, a helpful personal finance assistant. You help users understand their spending and income, find transactions, and manage their finances.

IMPORTANT GUIDELINES:
1. Be precise with monetary amounts and always use the currency given in the CONTEXT section.
2. When referencing transactions, mention the date, vendor and amount.
3. Keep responses concise but informative.
4. If you cannot find relevant data, say so clearly and suggest what the user could search for instead.
5. For spending summaries, provide totals and breakdowns when available.

TRANSACTION DATA CONVENTIONS:
- Transactions are labeled DEBIT (expense, money going out) or CREDIT (income, money coming in).
- DEBIT covers purchases, bills and payments. CREDIT covers salary, refunds, deposits and transfers in.
- When a VERIFIED FINANCIAL DATA section is provided, ALWAYS use those pre-computed totals. The transaction list may be a sample.

PRIVACY NOTE:
You only have access to structured financial data (dates, amounts, vendors, categories).
You do NOT have access to receipt images or document text."""

INTENT_INSTRUCTIONS = {
    Intent.SPENDING: """The user is asking about their spending (DEBIT transactions). Provide:
- The total spent from VERIFIED FINANCIAL DATA if available (do NOT recalculate)
- Relevant DEBIT transactions with dates, vendors and amounts
- A category breakdown if applicable""",
    Intent.INCOME: """The user is asking about their income (CREDIT transactions). Provide:
- The total income from VERIFIED FINANCIAL DATA if available (do NOT recalculate)
- Relevant CREDIT transactions with dates, vendors and amounts
- If no income was found, say so and suggest checking that statements were imported""",
    Intent.SEARCH: """The user is searching for specific transactions. Provide:
- Matching transactions with their details, organized clearly
- Alternative search terms if nothing matched""",
    Intent.BUDGET: """The user is asking about their budget. Provide:
- Current spending for the period from VERIFIED FINANCIAL DATA
- The categories that drive most of the spending
- Recommendations if spending looks high""",
    Intent.TREND: """The user wants to understand trends. Provide:
- Pattern observations across the covered period
- Notable changes or anomalies""",
    Intent.COMPARISON: """The user wants to compare periods or categories. Provide:
- A clear comparison with absolute and percentage differences
- The categories with the largest changes""",
    Intent.GENERAL: """Provide helpful financial insights based on the available data.""",
}

RESPONSE_FORMAT = (
    "Provide a clear, helpful response and reference specific transactions when relevant.\n"
    "Finish with a line reading 'Suggested follow-ups:' followed by 1-3 bulleted questions "
    "the user might ask next."
)


class SafeTransaction(BaseModel):
    """The only transaction shape that may cross into a prompt."""

    id: str
    date: date
    amount: float
    direction: Direction
    vendor: str
    category: str | None = None
    currency: str = "USD"
    note: str | None = None

    @classmethod
    def from_transaction(cls, transaction: Transaction, category: str | None = None) -> "SafeTransaction":
        note = transaction.note
        if note and len(note) > MAX_NOTE_CHARS:
            note = note[:MAX_NOTE_CHARS]
        return cls(
            id=transaction.id,
            date=transaction.date,
            amount=abs(transaction.amount),
            direction=resolve_direction(transaction),
            vendor=transaction.vendor or "Unknown",
            category=category,
            currency=transaction.currency,
            note=note or None,
        )


@dataclass
class PromptMessage:
    role: Literal["user", "assistant"]
    content: str


@dataclass
class StructuredPrompt:
    system_instruction: str
    messages: list[PromptMessage] = field(default_factory=list)

    def to_openai_messages(self) -> list[dict[str, str]]:
        messages = [{"role": "system", "content": self.system_instruction}]
        messages.extend({"role": message.role, "content": message.content} for message in self.messages)
        return messages


@dataclass
class PromptContext:
    query: str
    intent: Intent
    transactions: list[SafeTransaction]
    verified_data: VerifiedFinancialData | None
    history: Sequence[ChatMessage]
    preferences: UserPreferences
    current_date: date


def _to_plain(payload: Any) -> Any:
    if isinstance(payload, BaseModel):
        return payload.model_dump(mode="json")
    if isinstance(payload, Mapping):
        return {key: _to_plain(value) for key, value in payload.items()}
    if isinstance(payload, (list, tuple, set, frozenset)):
        return [_to_plain(item) for item in payload]
    if hasattr(payload, "__dataclass_fields__"):
        return {name: _to_plain(getattr(payload, name)) for name in payload.__dataclass_fields__}
    return payload


def _walk(value: Any, path: str) -> None:
    if isinstance(value, dict):
        for key, item in value.items():
            if str(key).lower() in FORBIDDEN_FIELDS:
                raise PrivacyViolationError(
                    f"Privacy violation: payload contains forbidden field '{key}' at {path or 'root'}",
                    str(key),
                )
            _walk(item, f"{path}.{key}" if path else str(key))
    elif isinstance(value, list):
        for index, item in enumerate(value):
            _walk(item, f"{path}[{index}]")
    elif isinstance(value, str) and len(value) >= LONG_TEXT_THRESHOLD:
        raise PrivacyViolationError(
            f"Privacy violation: {path or 'payload'} holds {len(value)} characters of text",
            path or "text",
        )


def verify_safe_payload(payload: Any) -> None:
    """
    Raise ``PrivacyViolationError`` if a payload could leak raw document content.

    Checks forbidden keys at any depth, serialized float arrays that look like
    embeddings, and any single string long enough to be document text.
    """
    plain = _to_plain(payload)
    _walk(plain, "")
    serialized = json.dumps(plain, default=str)
    if EMBEDDING_PATTERN.search(serialized):
        raise PrivacyViolationError(
            "Privacy violation: payload appears to contain embedding vector data",
            "embedding",
        )


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return f"{text[:limit]}..."


def format_transaction_line(tx: SafeTransaction, fallback_currency: str) -> str:
    label = "CREDIT" if tx.direction == "credit" else "DEBIT"
    amount = format_currency(tx.amount, tx.currency or fallback_currency)
    category = f" [{tx.category}]" if tx.category else ""
    note = f" - {tx.note}" if tx.note else ""
    return f"{tx.date.isoformat()} | {label} | {tx.vendor} | {amount}{category}{note}"


def format_verified_data(data: VerifiedFinancialData, currency: str) -> list[str]:
    lines = [
        "## VERIFIED FINANCIAL DATA",
        "IMPORTANT: Use these pre-computed totals. Do NOT recalculate from the transaction list.",
        f"Total Expenses (DEBIT): {format_currency(data.total_expenses, currency)} ({data.expense_count} transactions)",
        f"Total Income (CREDIT): {format_currency(data.total_income, currency)} ({data.income_count} transactions)",
        f"Net Flow: {format_currency(data.total, currency)}",
        f"Total Transactions: {data.count}",
    ]
    if data.by_category:
        lines.append("")
        lines.append("Category Breakdown:")
        for name, amount in data.by_category.items():
            count = data.count_by_category.get(name, 0)
            lines.append(f"- {name}: {format_currency(amount, currency)} ({count} transactions)")
    if data.by_vendor:
        lines.append("")
        lines.append("Top Vendors:")
        for name, amount in data.by_vendor.items():
            lines.append(f"- {name}: {format_currency(amount, currency)}")
    if data.period is not None:
        lines.append("")
        lines.append(f"Period: {data.period.start.isoformat()} to {data.period.end.isoformat()}")
    return lines


class PromptBuilder:
    def __init__(
        self,
        max_history_messages: int = MAX_HISTORY_MESSAGES,
        max_transactions: int = MAX_PROMPT_TRANSACTIONS,
    ) -> None:
        self.max_history_messages = max_history_messages
        self.max_transactions = max_transactions

    def system_instruction(self, context: PromptContext, currency: str) -> str:
        parts = [
            SYSTEM_PROMPT,
            "",
            "## CURRENT TASK",
            INTENT_INSTRUCTIONS.get(context.intent, INTENT_INSTRUCTIONS[Intent.GENERAL]),
            "",
            "## CONTEXT",
            f"Current Date: {context.current_date.isoformat()}",
            f"User Currency: {currency}",
            f"User Timezone: {context.preferences.timezone}",
            "",
            "## RESPONSE FORMAT",
            RESPONSE_FORMAT,
        ]
        return "\n".join(parts)

    def _history_messages(self, history: Sequence[ChatMessage]) -> list[PromptMessage]:
        if self.max_history_messages <= 0:
            return []
        recent = list(history)[-self.max_history_messages:]
        return [
            PromptMessage(role=message.role, content=_truncate(message.content, MAX_HISTORY_CHARS))
            for message in recent
        ]

    def user_message(self, context: PromptContext, currency: str) -> str:
        parts: list[str] = []
        if context.verified_data is not None:
            parts.extend(format_verified_data(context.verified_data, currency))
            parts.append("")

        shown = context.transactions[: self.max_transactions]
        if shown:
            parts.append("## RELEVANT TRANSACTIONS")
            parts.append(f"Found {len(context.transactions)} transaction(s):")
            parts.append("```")
            parts.extend(format_transaction_line(tx, currency) for tx in shown)
            parts.append("```")
            remaining = len(context.transactions) - len(shown)
            if remaining > 0:
                parts.append(
                    f"... and {remaining} more transactions (see VERIFIED FINANCIAL DATA for accurate totals)"
                )
        else:
            parts.append("## TRANSACTION DATA")
            parts.append("No matching transactions found for this query.")

        parts.append("")
        parts.append("## MY QUESTION")
        parts.append(context.query)
        return "\n".join(parts)

    def build(self, context: PromptContext) -> StructuredPrompt:
        verify_safe_payload(
            {
                "query": context.query,
                "transactions": context.transactions,
                "verified_data": context.verified_data,
                "history": [_truncate(message.content, MAX_HISTORY_CHARS) for message in context.history],
            }
        )
        currency = detect_dominant_currency(context.transactions, context.preferences.currency)

        messages = self._history_messages(context.history)
        messages.append(PromptMessage(role="user", content=self.user_message(context, currency)))
        return StructuredPrompt(
            system_instruction=self.system_instruction(context, currency),
            messages=messages,
        )


def extract_followups(text: str) -> tuple[str, list[str]]:
    """
    Split a generated answer into its body and up to three follow-up questions.

    When the model wrote a "Suggested follow-ups:" section the body stops there.
    Otherwise the questions are picked from the whole text and the body is kept.
    """
    heading = FOLLOWUP_HEADING_PATTERN.search(text)
    if heading:
        body = text[: heading.start()].rstrip()
        section = text[heading.end():]
    else:
        body = text
        section = text

    followups: list[str] = []
    for match in QUESTION_LINE_PATTERN.finditer(section):
        question = match.group(1).strip().strip("*").strip()
        if len(question) < MAX_FOLLOWUP_CHARS and question not in followups:
            followups.append(question)
        if len(followups) >= MAX_FOLLOWUPS:
            break
    return body, followups
