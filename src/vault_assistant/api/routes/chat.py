import asyncio
import json
from collections.abc import AsyncGenerator
from typing import Annotated, Any

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from vault_assistant.api.dependencies import get_chat_service
from vault_assistant.api.schemas import ChatRequest, ClearHistoryResponse, SuggestionsResponse
from vault_assistant.core import settings
from vault_assistant.logger import get_logger
from vault_assistant.models import ChatContext, ChatMessage, ChatResponse, UserPreferences
from vault_assistant.services.chat import ChatService

logger = get_logger(__name__)

router = APIRouter(prefix="/api/chat")

_DONE = object()


def _context_for(req: ChatRequest) -> ChatContext:
    preferences = req.preferences or UserPreferences(
        currency=settings.DEFAULT_CURRENCY,
        timezone=settings.DEFAULT_TIMEZONE,
    )
    return ChatContext(session_id=req.session_id, preferences=preferences)


@router.post("")
async def chat(
    req: ChatRequest,
    service: Annotated[ChatService, Depends(get_chat_service)],
) -> ChatResponse:
    return await service.process_query(req.query, _context_for(req))


async def _stream_turn(service: ChatService, req: ChatRequest) -> AsyncGenerator[str, None]:
    queue: asyncio.Queue[Any] = asyncio.Queue()
    cancel_event = asyncio.Event()

    async def on_chunk(text: str, final: bool) -> None:
        await queue.put({"type": "chunk", "text": text, "final": final})

    async def run() -> None:
        try:
            response = await service.process_query_stream(
                req.query,
                _context_for(req),
                on_chunk,
                cancel_event=cancel_event,
            )
            await queue.put({"type": "response", **response.model_dump(mode="json")})
        finally:
            await queue.put(_DONE)

    task = asyncio.create_task(run())
    try:
        while True:
            event = await queue.get()
            if event is _DONE:
                break
            yield f"data: {json.dumps(event)}\n\n"
    finally:
        if not task.done():
            logger.info("[CHAT] Stream closed by client, cancelling generation for %s", req.session_id)
            cancel_event.set()
            await task


@router.post("/stream")
async def chat_stream(
    req: ChatRequest,
    service: Annotated[ChatService, Depends(get_chat_service)],
) -> StreamingResponse:
    return StreamingResponse(
        _stream_turn(service, req),
        media_type="text/event-stream",
        headers=settings.SSE_HEADERS,
    )


@router.get("/history/{session_id}")
async def get_history(
    session_id: str,
    service: Annotated[ChatService, Depends(get_chat_service)],
) -> list[ChatMessage]:
    return service.get_conversation_history(session_id)


@router.delete("/history/{session_id}")
async def clear_history(
    session_id: str,
    service: Annotated[ChatService, Depends(get_chat_service)],
) -> ClearHistoryResponse:
    return ClearHistoryResponse(session_id=session_id, cleared=service.clear_history(session_id))


@router.get("/suggestions")
async def suggestions(
    service: Annotated[ChatService, Depends(get_chat_service)],
) -> SuggestionsResponse:
    return SuggestionsResponse(suggestions=service.get_suggested_queries())
