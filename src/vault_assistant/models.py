from datetime import date, datetime, timezone
from enum import Enum
from typing import Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

Direction = Literal["credit", "debit"]
DirectionFilter = Literal["income", "expense", "all"]
Superlative = Literal["largest", "smallest"]

_DIRECTION_ALIASES = {
    "credit": "credit",
    "income": "credit",
    "in": "credit",
    "deposit": "credit",
    "debit": "debit",
    "expense": "debit",
    "out": "debit",
    "withdrawal": "debit",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Transaction(BaseModel):
    id: str
    date: date
    amount: float
    direction: Direction | None = None
    vendor: str = ""
    category_id: str | None = None
    currency: str = "USD"
    note: str | None = None
    embedding: list[float] | None = None
    document_id: str | None = None
    raw_text: str | None = None

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, value: object) -> object:
        if isinstance(value, int):
            return str(value)
        return value

    @field_validator("date", mode="before")
    @classmethod
    def coerce_date(cls, value: object) -> object:
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, str) and "T" in value:
            return value.split("T", 1)[0]
        return value

    @field_validator("direction", mode="before")
    @classmethod
    def normalize_direction(cls, value: object) -> object:
        if value is None or value == "":
            return None
        if isinstance(value, str):
            normalized = _DIRECTION_ALIASES.get(value.strip().lower())
            if normalized is None:
                raise ValueError(f"unknown direction '{value}'")
            return normalized
        return value

    @field_validator("currency", mode="before")
    @classmethod
    def normalize_currency(cls, value: object) -> object:
        if isinstance(value, str) and value.strip():
            return value.strip().upper()
        return "USD"


class Category(BaseModel):
    name: str
    id: str | None = None


class DateRange(BaseModel):
    model_config = ConfigDict(frozen=True)

    start: date
    end: date

    def contains(self, value: date) -> bool:
        return self.start <= value <= self.end


class AmountRange(BaseModel):
    model_config = ConfigDict(frozen=True)

    min: float | None = None
    max: float | None = None

    def contains(self, value: float) -> bool:
        if self.min is not None and value < self.min:
            return False
        if self.max is not None and value > self.max:
            return False
        return True


class Intent(str, Enum):
    SPENDING = "spending_query"
    INCOME = "income_query"
    SEARCH = "search_query"
    BUDGET = "budget_query"
    TREND = "trend_query"
    COMPARISON = "comparison_query"
    GENERAL = "general_query"


class ExtractedEntities(BaseModel):
    model_config = ConfigDict(frozen=True)

    date_range: DateRange | None = None
    categories: tuple[str, ...] = ()
    amount_range: AmountRange | None = None
    vendors: tuple[str, ...] = ()
    locations: tuple[str, ...] = ()
    time_period: str | None = None
    comparison_type: str | None = None
    keywords: tuple[str, ...] = ()
    direction: DirectionFilter = "all"
    superlative: Superlative | None = None


class QueryClassification(BaseModel):
    model_config = ConfigDict(frozen=True)

    intent: Intent
    confidence: float = Field(ge=0.0, le=1.0)
    entities: ExtractedEntities = Field(default_factory=ExtractedEntities)
    is_question: bool = False
    needs_aggregate_lookup: bool = False
    needs_local_search: bool = False


class Citation(BaseModel):
    transaction_id: str
    relevance_score: float
    snippet: str
    label: str
    date: date
    amount: float
    vendor: str


class VerifiedFinancialData(BaseModel):
    total: float = 0.0
    total_expenses: float = 0.0
    total_income: float = 0.0
    count: int = 0
    expense_count: int = 0
    income_count: int = 0
    by_category: dict[str, float] = Field(default_factory=dict)
    count_by_category: dict[str, int] = Field(default_factory=dict)
    by_vendor: dict[str, float] = Field(default_factory=dict)
    period: DateRange | None = None


class ChatMessage(BaseModel):
    id: str = Field(default_factory=lambda: uuid4().hex)
    role: Literal["user", "assistant"]
    content: str
    timestamp: datetime = Field(default_factory=_utcnow)
    citations: list[Citation] = Field(default_factory=list)
    intent: Intent | None = None
    resolved_query: str | None = None
    suggested_followups: list[str] = Field(default_factory=list)


class UserPreferences(BaseModel):
    currency: str = "USD"
    timezone: str = "UTC"


class ChatContext(BaseModel):
    session_id: str
    history: list[ChatMessage] = Field(default_factory=list)
    preferences: UserPreferences = Field(default_factory=UserPreferences)


class ChatResponse(BaseModel):
    text: str
    citations: list[Citation] = Field(default_factory=list)
    suggested_followups: list[str] = Field(default_factory=list)
    verified_data: VerifiedFinancialData | None = None
    response_time_ms: float = 0.0
    offline_generated: bool = False
    intent: Intent | None = None
    was_corrected: bool = False
    reformulated_query: str | None = None


class ClassifierPrediction(BaseModel):
    category_id: str
    probability: float


class CategorizationResult(BaseModel):
    category: Category
    confidence: float
    source: str
    top_k: list[ClassifierPrediction] = Field(default_factory=list)
