from vault_assistant.domain.money import format_currency
from vault_assistant.models import VerifiedFinancialData

SUGGESTED_QUERIES = (
    "How much did I spend this month?",
    "What's my budget status?",
    "Show my largest expenses",
    "Compare this month to last month",
    "Find my recent transactions",
    "What are my spending trends?",
)

DEFAULT_FOLLOWUPS = [
    "What did I spend this month?",
    "What's my budget status?",
    "Show my largest expenses",
]

_KEYWORD_FOLLOWUPS = (
    (
        ("spend", "spent"),
        [
            "Show me spending by category",
            "What were my largest expenses?",
            "Compare this month to last month",
        ],
    ),
    (
        ("income", "earn", "salary", "received"),
        [
            "What was my income last month?",
            "Compare my income to my spending",
            "Show my largest deposits",
        ],
    ),
    (
        ("budget",),
        [
            "How much is left in my budget?",
            "Which categories are over budget?",
            "Show me my spending this month",
        ],
    ),
    (
        ("find", "search", "show"),
        [
            "Show me all transactions this month",
            "Find my largest purchases",
            "Search for recent expenses",
        ],
    ),
)


def fallback_followups(query: str) -> list[str]:
    lowered = query.lower()
    for keywords, followups in _KEYWORD_FOLLOWUPS:
        if any(keyword in lowered for keyword in keywords):
            return list(followups)
    return list(DEFAULT_FOLLOWUPS)


def verified_summary(data: VerifiedFinancialData, currency: str) -> str:
    parts = [
        f"total expenses of {format_currency(data.total_expenses, currency)} across {data.expense_count} transaction(s)",
        f"total income of {format_currency(data.total_income, currency)} across {data.income_count} transaction(s)",
    ]
    summary = "From your local data I can confirm " + " and ".join(parts)
    if data.period is not None:
        summary += f" between {data.period.start.isoformat()} and {data.period.end.isoformat()}"
    return summary + "."


def fallback_text(
    query: str,
    has_data: bool,
    verified: VerifiedFinancialData | None = None,
    currency: str = "USD",
) -> str:
    if not has_data and verified is None:
        return (
            f'I couldn\'t find any transactions matching your query "{query}". '
            "Please try a different search term, or make sure you have imported some documents."
        )
    text = (
        "I'm having trouble connecting to the AI service right now. "
        "However, I found some relevant transactions in your data. "
        "Please check the citations below for details."
    )
    if verified is not None:
        text = f"{text}\n\n{verified_summary(verified, currency)}"
    return text


def error_text(message: str | None = None) -> str:
    detail = message or "An unexpected error occurred"
    return f"I'm sorry, I encountered an issue processing your request: {detail}. Please try again."
