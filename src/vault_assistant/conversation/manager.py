from collections import deque
from dataclasses import dataclass, field

from vault_assistant.logger import get_logger
from vault_assistant.models import ChatMessage, ExtractedEntities, QueryClassification

logger = get_logger(__name__)

MAX_HISTORY_MESSAGES = 50


@dataclass
class SessionState:
    history: deque[ChatMessage]
    last_classification: QueryClassification | None = None
    last_entities: ExtractedEntities | None = None
    turns: int = field(default=0)


def _is_empty(value: object) -> bool:
    return value is None or value == () or value == [] or value == ""


def merge_entities(current: ExtractedEntities, previous: ExtractedEntities | None) -> ExtractedEntities:
    """
    Field-by-field merge for follow-up turns: the current value wins when it is
    non-empty, otherwise the previous turn's value is inherited. A direction of
    "all" counts as empty.
    """
    if previous is None:
        return current

    merged: dict[str, object] = {}
    for name in ExtractedEntities.model_fields:
        value = getattr(current, name)
        empty = _is_empty(value) or (name == "direction" and value == "all")
        merged[name] = getattr(previous, name) if empty else value
    return ExtractedEntities(**merged)


class ConversationManager:
    """Per-session chat history and follow-up context, owned by one service instance."""

    def __init__(self, max_history: int = MAX_HISTORY_MESSAGES) -> None:
        self.max_history = max_history
        self._sessions: dict[str, SessionState] = {}

    def _session(self, session_id: str) -> SessionState:
        state = self._sessions.get(session_id)
        if state is None:
            state = SessionState(history=deque(maxlen=self.max_history))
            self._sessions[session_id] = state
        return state

    def get_history(self, session_id: str) -> list[ChatMessage]:
        state = self._sessions.get(session_id)
        return list(state.history) if state else []

    def add_message(self, session_id: str, message: ChatMessage) -> None:
        state = self._session(session_id)
        state.history.append(message)
        if message.role == "user":
            state.turns += 1

    def remember(self, session_id: str, classification: QueryClassification) -> None:
        state = self._session(session_id)
        state.last_classification = classification
        state.last_entities = classification.entities

    def last_classification(self, session_id: str) -> QueryClassification | None:
        state = self._sessions.get(session_id)
        return state.last_classification if state else None

    def last_entities(self, session_id: str) -> ExtractedEntities | None:
        state = self._sessions.get(session_id)
        return state.last_entities if state else None

    def clear(self, session_id: str) -> bool:
        removed = self._sessions.pop(session_id, None)
        if removed is not None:
            logger.info("[CHAT] Cleared session %s (%s messages).", session_id, len(removed.history))
        return removed is not None
