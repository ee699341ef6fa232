from datetime import date

import httpx
import pytest

from vault_assistant.integration.remote import RemoteStoreClient
from vault_assistant.models import DateRange


def remote_with(handler) -> RemoteStoreClient:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RemoteStoreClient(base_url="https://remote.example/", api_key="secret", client=client)


def test_unconfigured(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("REMOTE_STORE_URL", raising=False)
    assert not RemoteStoreClient().is_configured()


def test_build_params() -> None:
    params = RemoteStoreClient.build_params(
        ["a", "b"],
        DateRange(start=date(2025, 1, 1), end=date(2025, 1, 31)),
    )
    assert ("id", "in.(a,b)") in params
    assert ("date", "gte.2025-01-01") in params
    assert ("date", "lte.2025-01-31") in params


@pytest.mark.anyio
async def test_fetch_rows() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json=[
                {"id": "a", "amount": 12.5, "direction": "debit", "date": "2025-01-03", "vendor": "Delta"},
                {"id": "b", "amount": "oops", "date": "2025-01-04"},
            ],
        )

    remote = remote_with(handler)
    rows = await remote.fetch_aggregate_rows(["a", "b"])

    assert [row.id for row in rows] == ["a"]
    request = seen[0]
    assert request.url.path == "/rest/v1/transactions"
    assert request.url.params["id"] == "in.(a,b)"
    assert request.headers["apikey"] == "secret"
    assert request.headers["authorization"] == "Bearer secret"
    await remote.aclose()


@pytest.mark.anyio
async def test_failures_return_none() -> None:
    remote = remote_with(lambda request: httpx.Response(500, json={"message": "boom"}))
    assert await remote.fetch_aggregate_rows(["a"]) is None

    remote = remote_with(lambda request: httpx.Response(200, json={"unexpected": True}))
    assert await remote.fetch_aggregate_rows(["a"]) is None


@pytest.mark.anyio
async def test_nothing_to_fetch() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    assert await remote_with(handler).fetch_aggregate_rows([]) is None


def test_refresh_reads_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("REMOTE_STORE_URL", raising=False)
    monkeypatch.delenv("REMOTE_STORE_KEY", raising=False)
    remote = RemoteStoreClient()
    assert not remote.is_configured()

    monkeypatch.setenv("REMOTE_STORE_URL", "https://remote.example/")
    monkeypatch.setenv("REMOTE_STORE_KEY", "fresh")
    remote.refresh()

    assert remote.base_url == "https://remote.example"
    assert remote.headers["Authorization"] == "Bearer fresh"
