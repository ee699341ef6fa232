import asyncio
import inspect
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from datetime import date
from time import perf_counter

from vault_assistant.analysis.aggregates import AggregateCalculator
from vault_assistant.analysis.context import select_context
from vault_assistant.analysis.verification import ResponseVerifier
from vault_assistant.conversation.manager import ConversationManager, merge_entities
from vault_assistant.core import settings
from vault_assistant.domain.money import format_currency
from vault_assistant.domain.transactions import category_name
from vault_assistant.embeddings.engine import LocalEmbeddingEngine
from vault_assistant.errors import ConfigurationError, LLMError, PrivacyViolationError
from vault_assistant.integration.remote import RemoteStoreClient
from vault_assistant.llm.client import GenerationConfig, LLMClient, LLMResponse
from vault_assistant.llm.fallback import SUGGESTED_QUERIES, error_text, fallback_followups, fallback_text
from vault_assistant.llm.prompt import PromptBuilder, PromptContext, SafeTransaction, StructuredPrompt, extract_followups
from vault_assistant.logger import get_logger
from vault_assistant.models import ChatContext, ChatMessage, ChatResponse, Citation, QueryClassification
from vault_assistant.query.classifier import QueryClassifier
from vault_assistant.query.entities import EntityExtractor
from vault_assistant.query.lexicon import load_category_aliases
from vault_assistant.query.reformulator import QueryReformulator
from vault_assistant.retrieval.hybrid import HybridRetriever, RetrievalResult
from vault_assistant.storage.base import TransactionStore
from vault_assistant.storage.vector_index import VectorIndex

logger = get_logger(__name__)

MAX_CITATIONS = 5

ChunkHandler = Callable[[str, bool], Awaitable[None] | None]


class OutputSink(ABC):
    """Where generated text goes: buffered for one-shot replies, pushed out for streams."""

    @abstractmethod
    async def generate(
        self,
        llm: LLMClient,
        prompt: StructuredPrompt,
        config: GenerationConfig,
    ) -> LLMResponse:
        pass

    @abstractmethod
    async def finish(self, suffix: str, text: str) -> None:
        """Called exactly once per turn with any trailing text and the final answer."""
        pass


class BufferedSink(OutputSink):
    def __init__(self) -> None:
        self.text: str | None = None

    async def generate(self, llm: LLMClient, prompt: StructuredPrompt, config: GenerationConfig) -> LLMResponse:
        return await llm.generate(prompt, config)

    async def resolve(self, whole: str) -> None:
        self.text = whole

    async def finish(self, suffix: str, text: str) -> None:
        await self.resolve(text)


class StreamingSink(OutputSink):
    def __init__(
        self,
        on_chunk: ChunkHandler,
        cancel_event: asyncio.Event | None = None,
        timeout: float | None = None,
    ) -> None:
        self.on_chunk = on_chunk
        self.cancel_event = cancel_event
        self.timeout = timeout
        self.finished = False

    async def emit(self, chunk: str, final: bool = False) -> None:
        if self.finished:
            return
        if final:
            self.finished = True
        result = self.on_chunk(chunk, final)
        if inspect.isawaitable(result):
            await result

    async def generate(self, llm: LLMClient, prompt: StructuredPrompt, config: GenerationConfig) -> LLMResponse:
        async def forward(text: str) -> None:
            await self.emit(text)

        return await llm.generate_stream(
            prompt,
            config,
            on_chunk=forward,
            cancel_event=self.cancel_event,
            timeout=self.timeout,
        )

    async def finish(self, suffix: str, text: str) -> None:
        await self.emit(suffix, final=True)


class ChatService:
    """
    Answers free-text questions about local transactions.

    One pipeline serves both the buffered and the streaming entry points; the
    ``OutputSink`` decides how generated text reaches the caller. Neither entry
    point raises: failures come back as a well-formed apologetic response.
    """

    def __init__(
        self,
        store: TransactionStore,
        index: VectorIndex,
        engine: LocalEmbeddingEngine | None = None,
        llm: LLMClient | None = None,
        remote: RemoteStoreClient | None = None,
        *,
        category_aliases: dict[str, list[str]] | None = None,
        context_budget: int | None = None,
        classifier: QueryClassifier | None = None,
        conversation: ConversationManager | None = None,
        today: Callable[[], date] | None = None,
    ) -> None:
        self.store = store
        self.index = index
        self.engine = engine
        self.llm = llm
        self.remote = remote
        self.category_aliases = category_aliases or load_category_aliases(settings.CATEGORY_ALIASES_FILE)
        self.context_budget = context_budget or settings.CONTEXT_BUDGET
        self.today = today or date.today

        # Shared with the retriever and the aggregate calculator, refreshed in place
        self.category_names: dict[str, str] = {}

        self.reformulator = QueryReformulator(self.category_aliases)
        self.classifier = classifier or QueryClassifier(
            engine=engine,
            extractor=EntityExtractor(self.category_aliases),
            threshold=settings.INTENT_SIMILARITY_THRESHOLD,
        )
        self.retriever = HybridRetriever(
            store,
            index,
            engine,
            self.category_names,
            self.category_aliases,
            context_budget=self.context_budget,
        )
        self.aggregates = AggregateCalculator(store, self.category_names, self.retriever.filter, remote)
        self.verifier = ResponseVerifier()
        self.prompt_builder = PromptBuilder()
        self.conversation = conversation or ConversationManager()
        self._initialized = False
        self._init_lock = asyncio.Lock()

    def refresh_categories(self) -> int:
        names = {category.id or category.name: category.name for category in self.store.list_categories()}
        self.category_names.clear()
        self.category_names.update(names)
        return len(names)

    async def initialize(self) -> None:
        async with self._init_lock:
            if self._initialized:
                return
            count = await asyncio.to_thread(self.refresh_categories)
            indexed = await asyncio.to_thread(self.index.rebuild, self.store.list_transactions())
            await self.classifier.prepare()
            self._initialized = True
            logger.info("[CHAT] Ready: %s categories, %s indexed transactions.", count, indexed)

    async def _ensure_initialized(self) -> None:
        if self._initialized:
            return
        try:
            await self.initialize()
        except Exception as exc:
            logger.error("[CHAT] Initialization failed, continuing with partial state: %s", exc)

    async def process_query(self, query: str, context: ChatContext) -> ChatResponse:
        sink = BufferedSink()
        return await self._run_turn(query, context, sink)

    async def process_query_stream(
        self,
        query: str,
        context: ChatContext,
        on_chunk: ChunkHandler,
        cancel_event: asyncio.Event | None = None,
        timeout: float | None = None,
    ) -> ChatResponse:
        sink = StreamingSink(on_chunk, cancel_event=cancel_event, timeout=timeout)
        return await self._run_turn(query, context, sink)

    def get_conversation_history(self, session_id: str) -> list[ChatMessage]:
        return self.conversation.get_history(session_id)

    def clear_history(self, session_id: str) -> bool:
        return self.conversation.clear(session_id)

    def get_suggested_queries(self) -> list[str]:
        return list(SUGGESTED_QUERIES)

    async def _classify(self, query: str, context: ChatContext) -> tuple[str, bool, QueryClassification]:
        session_id = context.session_id
        history = self.conversation.get_history(session_id) or list(context.history)
        resolved, reformulated = self.reformulator.reformulate(query, history)
        classification = await self.classifier.classify(resolved, today=self.today())
        if reformulated:
            merged = merge_entities(classification.entities, self.conversation.last_entities(session_id))
            classification = classification.model_copy(update={"entities": merged})
            logger.info("[CHAT] Reformulated '%s' -> '%s'", query, resolved)
        return resolved, reformulated, classification

    async def _retrieve(self, query: str, classification: QueryClassification) -> list[RetrievalResult]:
        try:
            return await self.retriever.retrieve(query, classification.entities)
        except Exception as exc:
            logger.error("[CHAT] Retrieval failed, answering without local context: %s", exc)
            return []

    def _build_citations(self, results: list[RetrievalResult]) -> list[Citation]:
        citations = []
        for result in results[:MAX_CITATIONS]:
            tx = result.transaction
            label = category_name(tx, self.category_names)
            citations.append(
                Citation(
                    transaction_id=tx.id,
                    relevance_score=round(result.score, 4),
                    snippet=f"{tx.vendor or 'Unknown'} - {format_currency(abs(tx.amount), tx.currency)}",
                    label=f"{label} transaction",
                    date=tx.date,
                    amount=tx.amount,
                    vendor=tx.vendor,
                )
            )
        return citations

    def _safe_transactions(self, results: list[RetrievalResult]) -> list[SafeTransaction]:
        safe = []
        for result in results:
            tx = result.transaction
            name = self.category_names.get(tx.category_id or "")
            safe.append(SafeTransaction.from_transaction(tx, name))
        return safe

    async def _run_turn(self, query: str, context: ChatContext, sink: OutputSink) -> ChatResponse:
        started = perf_counter()
        session_id = context.session_id
        try:
            await self._ensure_initialized()
            resolved, reformulated, classification = await self._classify(query, context)
            results = await self._retrieve(resolved, classification)
            selected = select_context(results, classification, self.context_budget)
            verified = await self.aggregates.verified_data(classification, results)
            citations = self._build_citations(results)
            currency = context.preferences.currency

            prompt = self.prompt_builder.build(
                PromptContext(
                    query=resolved,
                    intent=classification.intent,
                    transactions=self._safe_transactions(selected),
                    verified_data=verified,
                    history=self.conversation.get_history(session_id) or list(context.history),
                    preferences=context.preferences,
                    current_date=self.today(),
                )
            )

            offline = True
            followups: list[str] = []
            was_corrected = False
            if self.llm is not None and self.llm.is_ready():
                try:
                    generated = await sink.generate(
                        self.llm,
                        prompt,
                        GenerationConfig.for_intent(classification.intent),
                    )
                    body, followups = extract_followups(generated.text)
                    verification = self.verifier.verify(body, verified, currency)
                    text = verification.text
                    was_corrected = verification.was_corrected
                    await sink.finish(verification.correction, text)
                    offline = False
                except (PrivacyViolationError, ConfigurationError):
                    raise
                except LLMError as exc:
                    logger.warning("[CHAT] Model service unavailable, using fallback: %s", exc)

            if offline:
                text = fallback_text(resolved, bool(results), verified, currency)
                followups = fallback_followups(resolved)
                await sink.finish(text, text)

            response = ChatResponse(
                text=text,
                citations=citations,
                suggested_followups=followups[:3],
                verified_data=verified,
                response_time_ms=round((perf_counter() - started) * 1000, 2),
                offline_generated=offline,
                intent=classification.intent,
                was_corrected=was_corrected,
                reformulated_query=resolved if reformulated else None,
            )
            self._record_turn(session_id, query, resolved, classification, response)
            logger.info(
                "[CHAT] %s answered in %.0fms (intent=%s, results=%s, offline=%s)",
                session_id,
                response.response_time_ms,
                classification.intent.value,
                len(results),
                offline,
            )
            return response
        except Exception as exc:
            if isinstance(exc, PrivacyViolationError):
                logger.error("[CHAT] Aborted turn, unsafe prompt payload (%s): %s", exc.field, exc)
            else:
                logger.error("[CHAT] Failed to process query '%s': %s", query, exc)
            text = error_text(str(exc) or None)
            try:
                await sink.finish(text, text)
            except Exception as sink_exc:
                logger.error("[CHAT] Failed to deliver error response: %s", sink_exc)
            return ChatResponse(
                text=text,
                suggested_followups=fallback_followups(query),
                response_time_ms=round((perf_counter() - started) * 1000, 2),
                offline_generated=True,
            )

    def _record_turn(
        self,
        session_id: str,
        query: str,
        resolved: str,
        classification: QueryClassification,
        response: ChatResponse,
    ) -> None:
        self.conversation.add_message(
            session_id,
            ChatMessage(
                role="user",
                content=query,
                intent=classification.intent,
                resolved_query=resolved,
            ),
        )
        self.conversation.add_message(
            session_id,
            ChatMessage(
                role="assistant",
                content=response.text,
                citations=response.citations,
                intent=classification.intent,
                suggested_followups=response.suggested_followups,
            ),
        )
        self.conversation.remember(session_id, classification)
