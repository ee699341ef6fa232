from pydantic import BaseModel, Field

from vault_assistant.models import UserPreferences


class ChatRequest(BaseModel):
    query: str = Field(min_length=1)
    session_id: str = Field(min_length=1)
    preferences: UserPreferences | None = None


class ClearHistoryResponse(BaseModel):
    session_id: str
    cleared: bool


class SuggestionsResponse(BaseModel):
    suggestions: list[str]
