import asyncio
import os
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from time import perf_counter
from typing import Any

import openai
from openai import AsyncOpenAI

from vault_assistant.core.settings import DEFAULT_OPENAI_MODEL, get_env_float, get_env_int
from vault_assistant.errors import (
    InvalidRequestError,
    LLMConfigurationError,
    LLMError,
    RateLimitError,
    SafetyRejection,
    TransientServiceError,
)
from vault_assistant.llm.prompt import StructuredPrompt
from vault_assistant.logger import get_logger
from vault_assistant.models import Intent

logger = get_logger(__name__)

DEFAULT_MAX_TOKENS = 2048
DEFAULT_TOP_P = 0.9
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY_SECONDS = 1.0

PRECISE_TEMPERATURE = 0.15
INSIGHT_TEMPERATURE = 0.3
_PRECISE_INTENTS = {Intent.SPENDING, Intent.INCOME, Intent.BUDGET, Intent.COMPARISON, Intent.SEARCH}
_INSIGHT_INTENTS = {Intent.TREND}

ChunkCallback = Callable[[str], Awaitable[None]]


def temperature_for_intent(intent: Intent | None) -> float | None:
    if intent in _PRECISE_INTENTS:
        return PRECISE_TEMPERATURE
    if intent in _INSIGHT_INTENTS:
        return INSIGHT_TEMPERATURE
    return None


@dataclass
class GenerationConfig:
    temperature: float | None = None
    max_tokens: int | None = None
    top_p: float | None = None

    @classmethod
    def for_intent(cls, intent: Intent | None) -> "GenerationConfig":
        return cls(temperature=temperature_for_intent(intent))


@dataclass
class LLMResponse:
    text: str
    model: str
    finish_reason: str = "stop"
    generation_time_ms: float = 0.0
    usage: dict[str, int] | None = None


@dataclass
class _StreamState:
    parts: list[str] = field(default_factory=list)
    finish_reason: str = "stop"

    @property
    def emitted(self) -> bool:
        return bool(self.parts)

    @property
    def text(self) -> str:
        return "".join(self.parts)


def _retry_after_seconds(exc: openai.APIStatusError) -> float | None:
    headers = getattr(exc.response, "headers", None)
    if not headers:
        return None
    raw = headers.get("retry-after")
    if not raw:
        return None
    try:
        return max(0.0, float(raw))
    except ValueError:
        return None


def map_openai_error(exc: Exception) -> LLMError:
    """Translate SDK exceptions into the service error taxonomy."""
    if isinstance(exc, LLMError):
        return exc
    if isinstance(exc, openai.RateLimitError):
        return RateLimitError(str(exc), retry_after=_retry_after_seconds(exc))
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return LLMConfigurationError(f"Model service rejected the credentials: {exc}", status_code=exc.status_code)
    if isinstance(exc, openai.NotFoundError):
        return LLMConfigurationError(f"Model not available: {exc}", status_code=exc.status_code)
    if isinstance(exc, openai.BadRequestError):
        return InvalidRequestError(str(exc), status_code=exc.status_code)
    if isinstance(exc, openai.APIStatusError):
        if exc.status_code >= 500:
            return TransientServiceError(str(exc), status_code=exc.status_code)
        return LLMError(str(exc), status_code=exc.status_code, recoverable=False)
    if isinstance(exc, (openai.APIConnectionError, asyncio.TimeoutError)):
        return TransientServiceError(f"Model service unreachable: {str(exc) or type(exc).__name__}")
    return LLMError(f"Unexpected model service failure: {exc}", recoverable=False)


class LLMClient:
    """Chat-completions client with its own bounded retry and backoff."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
        client: AsyncOpenAI | None = None,
        max_tokens: int | None = None,
        top_p: float | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        retry_delay: float | None = None,
    ):
        self.api_key = api_key or os.getenv("OPENAI_API_KEY") or None
        self.model = model or os.getenv("OPENAI_MODEL") or DEFAULT_OPENAI_MODEL
        self.base_url = base_url or os.getenv("OPENAI_BASE_URL") or None
        self.max_tokens = max_tokens or get_env_int("LLM_MAX_TOKENS", DEFAULT_MAX_TOKENS, min_value=1)
        self.top_p = top_p if top_p is not None else get_env_float("LLM_TOP_P", DEFAULT_TOP_P)
        self.timeout = timeout or get_env_float("LLM_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS)
        self.max_retries = (
            max_retries if max_retries is not None else get_env_int("LLM_MAX_RETRIES", DEFAULT_MAX_RETRIES, min_value=0)
        )
        self.retry_delay = (
            retry_delay
            if retry_delay is not None
            else get_env_float("LLM_RETRY_DELAY_SECONDS", DEFAULT_RETRY_DELAY_SECONDS)
        )
        self._client = client

    def is_ready(self) -> bool:
        return bool(self.api_key) or self._client is not None

    def refresh(self, api_key: str | None = None, model: str | None = None, base_url: str | None = None) -> None:
        """Re-read credentials, dropping the cached SDK client."""
        self.api_key = api_key if api_key is not None else (os.getenv("OPENAI_API_KEY") or None)
        self.model = model or os.getenv("OPENAI_MODEL") or DEFAULT_OPENAI_MODEL
        self.base_url = base_url if base_url is not None else (os.getenv("OPENAI_BASE_URL") or None)
        self._client = None

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.close()

    def _get_client(self) -> AsyncOpenAI:
        if not self.is_ready():
            raise LLMConfigurationError("OPENAI_API_KEY is not configured")
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self.api_key,
                base_url=self.base_url,
                max_retries=0,
                timeout=self.timeout,
            )
        return self._client

    def _request_kwargs(self, prompt: StructuredPrompt, config: GenerationConfig | None) -> dict[str, Any]:
        config = config or GenerationConfig()
        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": prompt.to_openai_messages(),
            "max_tokens": config.max_tokens or self.max_tokens,
            "top_p": config.top_p if config.top_p is not None else self.top_p,
        }
        if config.temperature is not None:
            kwargs["temperature"] = config.temperature
        return kwargs

    async def _with_retries(
        self,
        operation: Callable[[], Awaitable[LLMResponse]],
        can_retry: Callable[[], bool] = lambda: True,
    ) -> LLMResponse:
        attempt = 0
        while True:
            try:
                return await operation()
            except LLMError as exc:
                if not exc.recoverable or attempt >= self.max_retries or not can_retry():
                    logger.error("[LLM] Generation failed (%s): %s", exc.code, exc)
                    raise
                delay = self.retry_delay * 2**attempt
                if isinstance(exc, RateLimitError) and exc.retry_after:
                    delay = exc.retry_after
                attempt += 1
                logger.warning(
                    "[LLM] %s, retrying in %.2fs (attempt %s/%s)",
                    exc.code,
                    delay,
                    attempt,
                    self.max_retries,
                )
                await asyncio.sleep(delay)

    async def _generate_once(self, prompt: StructuredPrompt, config: GenerationConfig | None) -> LLMResponse:
        client = self._get_client()
        started = perf_counter()
        try:
            completion = await asyncio.wait_for(
                client.chat.completions.create(**self._request_kwargs(prompt, config)),
                timeout=self.timeout,
            )
        except Exception as exc:
            raise map_openai_error(exc) from exc

        if not completion.choices:
            raise TransientServiceError("Empty response from model service")
        choice = completion.choices[0]
        if choice.finish_reason == "content_filter":
            raise SafetyRejection("Response blocked by the model service safety filter")
        text = choice.message.content or ""
        if not text:
            raise TransientServiceError("Empty response from model service")

        usage = None
        if completion.usage is not None:
            usage = {
                "prompt_tokens": completion.usage.prompt_tokens,
                "completion_tokens": completion.usage.completion_tokens,
                "total_tokens": completion.usage.total_tokens,
            }
        return LLMResponse(
            text=text,
            model=completion.model or self.model,
            finish_reason=choice.finish_reason or "stop",
            generation_time_ms=(perf_counter() - started) * 1000,
            usage=usage,
        )

    async def generate(self, prompt: StructuredPrompt, config: GenerationConfig | None = None) -> LLMResponse:
        return await self._with_retries(lambda: self._generate_once(prompt, config))

    async def _stream_once(
        self,
        prompt: StructuredPrompt,
        config: GenerationConfig | None,
        on_chunk: ChunkCallback,
        state: _StreamState,
        cancel_event: asyncio.Event | None,
    ) -> None:
        client = self._get_client()
        try:
            stream = await client.chat.completions.create(**self._request_kwargs(prompt, config), stream=True)
        except Exception as exc:
            raise map_openai_error(exc) from exc

        try:
            async for chunk in stream:
                if cancel_event is not None and cancel_event.is_set():
                    state.finish_reason = "cancelled"
                    break
                if not chunk.choices:
                    continue
                choice = chunk.choices[0]
                if choice.finish_reason == "content_filter":
                    raise SafetyRejection("Stream blocked by the model service safety filter")
                text = choice.delta.content if choice.delta else None
                if text:
                    state.parts.append(text)
                    await on_chunk(text)
                if choice.finish_reason:
                    state.finish_reason = choice.finish_reason
        except LLMError:
            raise
        except Exception as exc:
            raise map_openai_error(exc) from exc
        finally:
            await stream.close()

    async def generate_stream(
        self,
        prompt: StructuredPrompt,
        config: GenerationConfig | None = None,
        on_chunk: ChunkCallback | None = None,
        cancel_event: asyncio.Event | None = None,
        timeout: float | None = None,
    ) -> LLMResponse:
        """
        Stream a completion through ``on_chunk``.

        A failed attempt is retried only while nothing has been emitted yet.
        A timeout after partial output returns the partial text with finish
        reason ``timeout``.
        """
        async def ignore(_: str) -> None:
            return None

        callback = on_chunk or ignore
        limit = timeout or self.timeout
        state = _StreamState()
        started = perf_counter()

        async def attempt() -> LLMResponse:
            try:
                await asyncio.wait_for(
                    self._stream_once(prompt, config, callback, state, cancel_event),
                    timeout=limit,
                )
            except asyncio.TimeoutError as exc:
                if not state.emitted:
                    raise TransientServiceError(f"Streaming timed out after {limit:.1f}s") from exc
                logger.warning("[LLM] Stream timed out after %.1fs with partial output", limit)
                state.finish_reason = "timeout"
            return LLMResponse(
                text=state.text,
                model=self.model,
                finish_reason=state.finish_reason,
                generation_time_ms=(perf_counter() - started) * 1000,
            )

        return await self._with_retries(attempt, can_retry=lambda: not state.emitted)
