from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse

from vault_assistant.api.dependencies import get_backfill, get_engine
from vault_assistant.core import settings
from vault_assistant.embeddings.engine import LocalEmbeddingEngine
from vault_assistant.logger import get_logger
from vault_assistant.services.backfill import EmbeddingBackfill

logger = get_logger(__name__)

router = APIRouter(prefix="/api/embeddings")


@router.post("/backfill")
async def backfill(
    backfill_service: Annotated[EmbeddingBackfill, Depends(get_backfill)],
) -> dict:
    if backfill_service.active:
        raise HTTPException(status_code=409, detail="Backfill in progress")
    return await backfill_service.run()


@router.get("/backfill-stream")
async def backfill_stream(
    backfill_service: Annotated[EmbeddingBackfill, Depends(get_backfill)],
) -> StreamingResponse:
    if backfill_service.active:
        raise HTTPException(status_code=409, detail="Backfill in progress")
    return StreamingResponse(
        backfill_service.stream(),
        media_type="text/event-stream",
        headers=settings.SSE_HEADERS,
    )


@router.post("/backfill-pause")
async def pause_backfill(
    backfill_service: Annotated[EmbeddingBackfill, Depends(get_backfill)],
) -> dict[str, str]:
    if backfill_service.request_pause():
        logger.info("[BACKFILL] Pause requested by user.")
        return {"status": "pausing"}
    return {"status": "idle"}


@router.get("/status")
async def status(
    engine: Annotated[LocalEmbeddingEngine, Depends(get_engine)],
    backfill_service: Annotated[EmbeddingBackfill, Depends(get_backfill)],
) -> dict:
    pending = len(backfill_service.pending_transactions())
    return {
        "model": engine.model_name,
        "status": engine.status.value,
        "ready": engine.is_ready(),
        "error": engine.last_error,
        "pending": pending,
        "backfill": backfill_service.get_status(),
    }
