from fastapi import HTTPException, Request

from vault_assistant.classifiers.local import LocalClassifier
from vault_assistant.embeddings.engine import LocalEmbeddingEngine
from vault_assistant.services.backfill import EmbeddingBackfill
from vault_assistant.services.chat import ChatService
from vault_assistant.storage.base import TransactionStore


def get_chat_service(request: Request) -> ChatService:
    service = getattr(request.app.state, "chat_service", None)
    if not service:
        raise HTTPException(status_code=500, detail="Service not initialized")
    return service


def get_store(request: Request) -> TransactionStore:
    store = getattr(request.app.state, "store", None)
    if store is None:
        raise HTTPException(status_code=500, detail="Service not initialized")
    return store


def get_engine(request: Request) -> LocalEmbeddingEngine:
    engine = getattr(request.app.state, "engine", None)
    if not engine:
        raise HTTPException(status_code=500, detail="Embedding engine not configured")
    return engine


def get_backfill(request: Request) -> EmbeddingBackfill:
    backfill = getattr(request.app.state, "backfill", None)
    if not backfill:
        raise HTTPException(status_code=500, detail="Service not initialized")
    return backfill


def get_local_classifier(request: Request) -> LocalClassifier:
    classifier = getattr(request.app.state, "local_classifier", None)
    if not classifier:
        raise HTTPException(status_code=500, detail="Service not initialized")
    return classifier
