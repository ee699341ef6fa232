import asyncio
import os

import httpx

from vault_assistant.domain.transactions import parse_transaction_rows
from vault_assistant.logger import get_logger
from vault_assistant.models import DateRange, Transaction

logger = get_logger(__name__)

AGGREGATE_COLUMNS = "id,amount,direction,category_id,date,vendor"
DEFAULT_TIMEOUT_SECONDS = 10.0


class RemoteStoreClient:
    """
    Optional PostgREST-style store used to cross-check aggregates.

    Every failure is logged and reported as ``None`` so callers can fall back
    to local data.
    """

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        self.base_url = (base_url or os.getenv("REMOTE_STORE_URL") or "").rstrip("/") or None
        self.api_key = api_key or os.getenv("REMOTE_STORE_KEY") or None
        self.timeout = timeout
        self.headers = self._build_headers()
        self._client = client
        self._client_lock = asyncio.Lock()

    def _build_headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["apikey"] = self.api_key
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def is_configured(self) -> bool:
        return bool(self.base_url)

    def refresh(self, base_url: str | None = None, api_key: str | None = None) -> None:
        url_value = base_url if base_url is not None else os.getenv("REMOTE_STORE_URL")
        key_value = api_key if api_key is not None else os.getenv("REMOTE_STORE_KEY")
        self.base_url = (url_value or "").rstrip("/") or None
        self.api_key = key_value or None
        self.headers = self._build_headers()

    async def aclose(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def _get_client(self) -> httpx.AsyncClient:
        client = self._client
        if client is not None and not client.is_closed:
            return client

        async with self._client_lock:
            client = self._client
            if client is None or client.is_closed:
                client = httpx.AsyncClient()
                self._client = client
            return client

    @staticmethod
    def build_params(ids: list[str], date_range: DateRange | None) -> list[tuple[str, str]]:
        params = [
            ("select", AGGREGATE_COLUMNS),
            ("id", f"in.({','.join(ids)})"),
        ]
        if date_range is not None:
            params.append(("date", f"gte.{date_range.start.isoformat()}"))
            params.append(("date", f"lte.{date_range.end.isoformat()}"))
        return params

    async def fetch_aggregate_rows(
        self,
        ids: list[str],
        date_range: DateRange | None = None,
    ) -> list[Transaction] | None:
        if not self.is_configured() or not ids:
            return None

        client = await self._get_client()
        try:
            response = await client.get(
                f"{self.base_url}/rest/v1/transactions",
                headers=self.headers,
                params=self.build_params(ids, date_range),
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except Exception as exc:
            logger.error("[REMOTE] Aggregate lookup failed: %s", exc)
            return None

        if not isinstance(data, list):
            logger.error("[REMOTE] Unexpected aggregate payload type: %s", type(data).__name__)
            return None

        rows = parse_transaction_rows(data)
        logger.info("[REMOTE] Fetched %s/%s aggregate rows", len(rows), len(ids))
        return rows
