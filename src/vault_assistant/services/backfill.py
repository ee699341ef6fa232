import asyncio
import json
from collections import deque
from collections.abc import AsyncGenerator
from time import perf_counter
from typing import Any

from vault_assistant.domain.timefmt import format_duration, format_rate
from vault_assistant.domain.transactions import build_search_text, category_name
from vault_assistant.embeddings.engine import LocalEmbeddingEngine, is_real_embedding
from vault_assistant.logger import get_logger
from vault_assistant.models import Transaction
from vault_assistant.storage.base import TransactionStore
from vault_assistant.storage.vector_index import VectorIndex

logger = get_logger(__name__)


class EmbeddingBackfill:
    """
    Embed every transaction that still carries a placeholder vector.

    Writes are keyed upserts, so a rerun over a finished dataset writes nothing
    and a retried partial run cannot corrupt state.
    """

    def __init__(
        self,
        store: TransactionStore,
        engine: LocalEmbeddingEngine,
        index: VectorIndex,
        batch_size: int = 20,
    ) -> None:
        self.store = store
        self.engine = engine
        self.index = index
        self.batch_size = max(1, batch_size)
        self.pause_event = asyncio.Event()
        self.active = False
        self.status: dict[str, Any] = {"stage": "idle", "active": False}

    def get_status(self) -> dict[str, Any]:
        status = dict(self.status)
        status["active"] = self.active
        return status

    def request_pause(self) -> bool:
        if self.active:
            self.pause_event.set()
            return True
        return False

    def pending_transactions(self) -> list[Transaction]:
        dimensions = self.engine.dimensions
        return [tx for tx in self.store.list_transactions() if not is_real_embedding(tx.embedding, dimensions)]

    def _category_names(self) -> dict[str, str]:
        return {category.id or category.name: category.name for category in self.store.list_categories()}

    async def _embed_chunk(self, chunk: list[Transaction], names: dict[str, str]) -> list[tuple[Transaction, list[float]]]:
        texts = [build_search_text(tx, category_name(tx, names)) for tx in chunk]
        try:
            vectors = await self.engine.embed_batch(texts)
            return list(zip(chunk, vectors))
        except Exception as exc:
            logger.warning(
                "[BACKFILL] Batch of %s failed (%s), falling back to one record at a time.",
                len(chunk),
                exc,
            )

        embedded: list[tuple[Transaction, list[float]]] = []
        for tx, text in zip(chunk, texts):
            try:
                embedded.append((tx, await self.engine.embed_text(text)))
            except Exception as exc:
                logger.error("[BACKFILL] Skipping transaction %s: %s", tx.id, exc)
        return embedded

    def _write(self, embedded: list[tuple[Transaction, list[float]]]) -> int:
        if not embedded:
            return 0
        written = self.store.update_embeddings({tx.id: vector for tx, vector in embedded})
        for tx, vector in embedded:
            self.index.upsert(tx.id, vector)
        return written

    async def _process_chunk(self, chunk: list[Transaction], names: dict[str, str]) -> tuple[int, int]:
        embedded = await self._embed_chunk(chunk, names)
        written = await asyncio.to_thread(self._write, embedded)
        return written, len(chunk) - len(embedded)

    async def run(self) -> dict[str, Any]:
        # Set before the first await so a concurrent request sees the run
        self.active = True
        try:
            return await self._run()
        finally:
            self.active = False

    async def _run(self) -> dict[str, Any]:
        pending = await asyncio.to_thread(self.pending_transactions)
        if not pending:
            logger.info("[BACKFILL] Nothing to backfill.")
            return {"status": "success", "embedded": 0, "failed": 0, "total": 0}

        names = await asyncio.to_thread(self._category_names)
        logger.info("[BACKFILL] Embedding %s transactions in chunks of %s...", len(pending), self.batch_size)
        started = perf_counter()
        embedded = 0
        failed = 0
        for offset in range(0, len(pending), self.batch_size):
            chunk_written, chunk_failed = await self._process_chunk(pending[offset:offset + self.batch_size], names)
            embedded += chunk_written
            failed += chunk_failed

        elapsed = perf_counter() - started
        logger.info(
            "[BACKFILL] Complete! Embedded: %s, Failed: %s, Took: %s",
            embedded,
            failed,
            format_duration(elapsed),
        )
        return {"status": "success", "embedded": embedded, "failed": failed, "total": len(pending)}

    async def stream(self) -> AsyncGenerator[str, None]:
        self.active = True
        self.pause_event.clear()
        self.status.clear()
        self.status.update({"stage": "start", "active": True, "embedded": 0, "failed": 0, "total": 0, "percent": 0})
        yield "data: {\"stage\": \"start\"}\n\n"

        embedded = 0
        failed = 0
        processed = 0
        chunk_durations: deque[float] = deque(maxlen=10)
        started = perf_counter()
        try:
            try:
                pending = await asyncio.to_thread(self.pending_transactions)
                names = await asyncio.to_thread(self._category_names)
            except Exception as exc:
                logger.error("[BACKFILL] Failed to load transactions: %s", exc)
                error_payload = {"stage": "error", "message": str(exc)}
                self.status.clear()
                self.status.update({**error_payload, "active": False})
                yield f"data: {json.dumps(error_payload)}\n\n"
                return

            total = len(pending)
            for offset in range(0, total, self.batch_size):
                if self.pause_event.is_set():
                    paused_payload = {
                        "stage": "paused",
                        "embedded": embedded,
                        "failed": failed,
                        "processed": processed,
                        "total": total,
                    }
                    self.status.clear()
                    self.status.update({**paused_payload, "active": False})
                    logger.info("[BACKFILL] Paused after %s/%s transactions.", processed, total)
                    yield f"data: {json.dumps(paused_payload)}\n\n"
                    return

                chunk = pending[offset:offset + self.batch_size]
                chunk_started = perf_counter()
                chunk_written, chunk_failed = await self._process_chunk(chunk, names)
                chunk_durations.append(perf_counter() - chunk_started)
                embedded += chunk_written
                failed += chunk_failed
                processed += len(chunk)

                avg_chunk_seconds = sum(chunk_durations) / len(chunk_durations)
                status_payload = {
                    "stage": "processing",
                    "embedded": embedded,
                    "failed": failed,
                    "processed": processed,
                    "total": total,
                    "percent": round(processed / total * 100, 1) if total else 0,
                    "avg_chunk_display": format_duration(avg_chunk_seconds),
                    "rate_display": format_rate(processed, perf_counter() - started),
                }
                self.status.clear()
                self.status.update({**status_payload, "active": True})
                yield f"data: {json.dumps(status_payload)}\n\n"

            complete_payload = {
                "stage": "complete",
                "embedded": embedded,
                "failed": failed,
                "total": total,
                "elapsed_display": format_duration(perf_counter() - started),
            }
            logger.info("[BACKFILL] Complete! Embedded: %s, Failed: %s", embedded, failed)
            self.status.clear()
            self.status.update({**complete_payload, "active": False})
            yield f"data: {json.dumps(complete_payload)}\n\n"
        finally:
            self.active = False
            self.pause_event.clear()
            self.status["active"] = False
