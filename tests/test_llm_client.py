import asyncio
from collections.abc import AsyncIterator
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest

from vault_assistant.errors import (
    InvalidRequestError,
    LLMConfigurationError,
    RateLimitError,
    SafetyRejection,
    TransientServiceError,
)
from vault_assistant.llm.client import GenerationConfig, LLMClient, map_openai_error, temperature_for_intent
from vault_assistant.llm.prompt import PromptMessage, StructuredPrompt
from vault_assistant.models import Intent

REQUEST = httpx.Request("POST", "https://api.example.com/v1/chat/completions")


def completion(text: str, finish_reason: str = "stop") -> MagicMock:
    result = MagicMock()
    result.choices = [SimpleNamespace(finish_reason=finish_reason, message=SimpleNamespace(content=text))]
    result.model = "gpt-4o-mini"
    result.usage = SimpleNamespace(prompt_tokens=10, completion_tokens=5, total_tokens=15)
    return result


def chunk(text: str | None, finish_reason: str | None = None) -> SimpleNamespace:
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=text), finish_reason=finish_reason)])


class FakeStream:
    def __init__(self, chunks: list[SimpleNamespace], delay: float = 0.0) -> None:
        self.chunks = chunks
        self.delay = delay
        self.closed = False

    async def __aiter__(self) -> AsyncIterator[SimpleNamespace]:
        for item in self.chunks:
            if self.delay:
                await asyncio.sleep(self.delay)
            yield item

    async def close(self) -> None:
        self.closed = True


def status_error(cls: type[openai.APIStatusError], status: int, headers: dict[str, str] | None = None):
    response = httpx.Response(status, request=REQUEST, headers=headers)
    return cls("failure", response=response, body=None)


@pytest.fixture
def prompt() -> StructuredPrompt:
    return StructuredPrompt("system", [PromptMessage(role="user", content="hello")])


@pytest.fixture
def openai_client() -> MagicMock:
    client = MagicMock()
    client.chat.completions.create = AsyncMock()
    return client


def make_client(openai_client: MagicMock, **kwargs: object) -> LLMClient:
    kwargs.setdefault("retry_delay", 0.0)
    kwargs.setdefault("max_retries", 2)
    return LLMClient(client=openai_client, model="gpt-4o-mini", **kwargs)


def test_temperature_by_intent() -> None:
    assert temperature_for_intent(Intent.SPENDING) == 0.15
    assert temperature_for_intent(Intent.TREND) == 0.3
    assert temperature_for_intent(Intent.GENERAL) is None


def test_error_mapping() -> None:
    rate_limited = map_openai_error(status_error(openai.RateLimitError, 429, {"retry-after": "7"}))
    assert isinstance(rate_limited, RateLimitError)
    assert rate_limited.retry_after == 7.0
    assert rate_limited.recoverable

    assert isinstance(map_openai_error(status_error(openai.AuthenticationError, 401)), LLMConfigurationError)
    assert isinstance(map_openai_error(status_error(openai.BadRequestError, 400)), InvalidRequestError)
    assert isinstance(map_openai_error(status_error(openai.InternalServerError, 503)), TransientServiceError)
    assert isinstance(map_openai_error(openai.APIConnectionError(request=REQUEST)), TransientServiceError)
    assert isinstance(map_openai_error(asyncio.TimeoutError()), TransientServiceError)


def test_not_ready_without_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    client = LLMClient()
    assert not client.is_ready()
    with pytest.raises(LLMConfigurationError):
        client._get_client()


def test_refresh_picks_up_new_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("OPENAI_MODEL", raising=False)
    client = LLMClient()
    assert not client.is_ready()

    monkeypatch.setenv("OPENAI_API_KEY", "sk-new")
    monkeypatch.setenv("OPENAI_MODEL", "gpt-4.1-mini")
    client.refresh()

    assert client.is_ready()
    assert client.model == "gpt-4.1-mini"


@pytest.mark.anyio
async def test_generate(openai_client: MagicMock, prompt: StructuredPrompt) -> None:
    openai_client.chat.completions.create.return_value = completion("Hi there")
    client = make_client(openai_client)

    response = await client.generate(prompt, GenerationConfig.for_intent(Intent.SPENDING))

    assert response.text == "Hi there"
    assert response.usage == {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15}
    kwargs = openai_client.chat.completions.create.call_args.kwargs
    assert kwargs["temperature"] == 0.15
    assert kwargs["top_p"] == 0.9
    assert kwargs["messages"][0] == {"role": "system", "content": "system"}


@pytest.mark.anyio
async def test_transient_errors_are_retried(openai_client: MagicMock, prompt: StructuredPrompt) -> None:
    openai_client.chat.completions.create.side_effect = [
        openai.APIConnectionError(request=REQUEST),
        completion("Recovered"),
    ]
    response = await make_client(openai_client).generate(prompt)

    assert response.text == "Recovered"
    assert openai_client.chat.completions.create.await_count == 2


@pytest.mark.anyio
async def test_retries_are_bounded(openai_client: MagicMock, prompt: StructuredPrompt) -> None:
    openai_client.chat.completions.create.side_effect = openai.APIConnectionError(request=REQUEST)
    with pytest.raises(TransientServiceError):
        await make_client(openai_client, max_retries=2).generate(prompt)
    assert openai_client.chat.completions.create.await_count == 3


@pytest.mark.anyio
async def test_configuration_errors_are_not_retried(openai_client: MagicMock, prompt: StructuredPrompt) -> None:
    openai_client.chat.completions.create.side_effect = status_error(openai.AuthenticationError, 401)
    with pytest.raises(LLMConfigurationError):
        await make_client(openai_client).generate(prompt)
    assert openai_client.chat.completions.create.await_count == 1


@pytest.mark.anyio
async def test_content_filter_is_a_safety_rejection(openai_client: MagicMock, prompt: StructuredPrompt) -> None:
    openai_client.chat.completions.create.return_value = completion("", finish_reason="content_filter")
    with pytest.raises(SafetyRejection):
        await make_client(openai_client).generate(prompt)
    assert openai_client.chat.completions.create.await_count == 1


@pytest.mark.anyio
async def test_stream_forwards_chunks(openai_client: MagicMock, prompt: StructuredPrompt) -> None:
    stream = FakeStream([chunk("Hel"), chunk("lo"), chunk(None, "stop")])
    openai_client.chat.completions.create.return_value = stream
    received: list[str] = []

    async def on_chunk(text: str) -> None:
        received.append(text)

    response = await make_client(openai_client).generate_stream(prompt, on_chunk=on_chunk)

    assert received == ["Hel", "lo"]
    assert response.text == "Hello"
    assert response.finish_reason == "stop"
    assert stream.closed
    assert openai_client.chat.completions.create.call_args.kwargs["stream"] is True


@pytest.mark.anyio
async def test_stream_honours_cancellation(openai_client: MagicMock, prompt: StructuredPrompt) -> None:
    openai_client.chat.completions.create.return_value = FakeStream([chunk("one "), chunk("two "), chunk("three")])
    cancel_event = asyncio.Event()

    async def on_chunk(text: str) -> None:
        cancel_event.set()

    response = await make_client(openai_client).generate_stream(prompt, on_chunk=on_chunk, cancel_event=cancel_event)

    assert response.text == "one "
    assert response.finish_reason == "cancelled"


@pytest.mark.anyio
async def test_stream_timeout_keeps_partial_output(openai_client: MagicMock, prompt: StructuredPrompt) -> None:
    openai_client.chat.completions.create.return_value = FakeStream([chunk("partial"), chunk(" more")], delay=0.2)
    received: list[str] = []

    async def on_chunk(text: str) -> None:
        received.append(text)

    response = await make_client(openai_client).generate_stream(prompt, on_chunk=on_chunk, timeout=0.3)

    assert response.finish_reason == "timeout"
    assert response.text == "partial"
    assert received == ["partial"]


@pytest.mark.anyio
async def test_stream_failure_after_output_is_not_retried(
    openai_client: MagicMock, prompt: StructuredPrompt
) -> None:
    class BrokenStream(FakeStream):
        async def __aiter__(self) -> AsyncIterator[SimpleNamespace]:
            yield chunk("partial")
            raise openai.APIConnectionError(request=REQUEST)

    openai_client.chat.completions.create.return_value = BrokenStream([])
    with pytest.raises(TransientServiceError):
        await make_client(openai_client).generate_stream(prompt)
    assert openai_client.chat.completions.create.await_count == 1
