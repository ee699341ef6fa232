import pytest

from vault_assistant.models import ChatMessage
from vault_assistant.query.reformulator import QueryReformulator


def user(content: str, resolved: str | None = None) -> ChatMessage:
    return ChatMessage(role="user", content=content, resolved_query=resolved)


def assistant(content: str, followups: list[str] | None = None) -> ChatMessage:
    return ChatMessage(role="assistant", content=content, suggested_followups=followups or [])


@pytest.mark.parametrize(
    "query",
    ["What about February?", "yes", "and last month", "How much did I spend?", ""],
)
def test_empty_history_is_untouched(query: str) -> None:
    assert QueryReformulator().reformulate(query, []) == (query, False)


def test_month_substitution() -> None:
    history = [user("How much did I spend in January?"), assistant("You spent $12,340.00.")]
    rewritten, changed = QueryReformulator().reformulate("What about February?", history)
    assert changed
    assert rewritten == "How much did I spend in February?"


def test_bare_may_is_a_month() -> None:
    history = [user("How much did I spend in January?"), assistant("You spent $12,340.00.")]
    rewritten, changed = QueryReformulator().reformulate("What about May?", history)
    assert changed
    assert rewritten == "How much did I spend in May?"


def test_modal_may_is_not_a_month() -> None:
    history = [user("How much did I spend in January?"), assistant("...")]
    rewritten, _ = QueryReformulator().reformulate("and may I see that?", history)
    assert "January" in rewritten


def test_resolved_query_is_the_base() -> None:
    history = [
        user("How much did I spend in January?"),
        assistant("..."),
        user("What about February?", resolved="How much did I spend in February?"),
        assistant("..."),
    ]
    rewritten, _ = QueryReformulator().reformulate("and March?", history)
    assert rewritten == "How much did I spend in March?"


def test_period_substitution() -> None:
    history = [user("How much did I spend last month?"), assistant("...")]
    rewritten, changed = QueryReformulator().reformulate("what about this week?", history)
    assert changed
    assert rewritten == "How much did I spend this week?"


def test_direction_swap() -> None:
    history = [user("How much did I spend in January?"), assistant("...")]
    rewritten, _ = QueryReformulator().reformulate("And what about income?", history)
    assert rewritten == "How much did I earn in January?"


def test_category_swap() -> None:
    history = [user("How much did I spend on groceries last month?"), assistant("...")]
    rewritten, _ = QueryReformulator().reformulate("what about dining?", history)
    assert rewritten == "How much did I spend on dining last month?"


def test_affirmative_uses_structured_followups() -> None:
    history = [
        user("How much did I spend in January?"),
        assistant("You spent $12,340.00.", followups=["Show me spending by category?"]),
    ]
    rewritten, changed = QueryReformulator().reformulate("yes please", history)
    assert changed
    assert rewritten == "Show me spending by category?"


def test_affirmative_scrapes_legacy_prose() -> None:
    history = [
        user("How much did I spend in January?"),
        assistant("You spent $12,340.00.\n\nSuggested follow-ups:\n- Which vendor cost the most?\n- Anything else?"),
    ]
    rewritten, _ = QueryReformulator().reformulate("sure", history)
    assert rewritten == "Which vendor cost the most?"


def test_affirmative_without_suggestions_asks_for_detail() -> None:
    history = [user("How much did I spend in January?"), assistant("You spent $12,340.00.")]
    rewritten, _ = QueryReformulator().reformulate("ok", history)
    assert rewritten == "How much did I spend in January, provide more detail"


def test_anaphora_gets_context() -> None:
    history = [user("Show my Amazon orders"), assistant("...")]
    rewritten, changed = QueryReformulator().reformulate("why was that so expensive?", history)
    assert changed
    assert rewritten == "why was that so expensive (in the context of: Show my Amazon orders)"


def test_specific_question_is_not_rewritten() -> None:
    history = [user("How much did I spend in January?"), assistant("...")]
    query = "How much did I spend at Whole Foods in February?"
    assert QueryReformulator().reformulate(query, history) == (query, False)
