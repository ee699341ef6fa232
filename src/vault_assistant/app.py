import os
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from vault_assistant.api.routes import chat, classifier, embeddings
from vault_assistant.classifiers.local import LocalClassifier
from vault_assistant.core import settings
from vault_assistant.embeddings.engine import LocalEmbeddingEngine
from vault_assistant.integration.remote import RemoteStoreClient
from vault_assistant.llm.client import LLMClient
from vault_assistant.logger import get_logger, setup_logging
from vault_assistant.services.backfill import EmbeddingBackfill
from vault_assistant.services.chat import ChatService
from vault_assistant.storage.json_store import JsonTransactionStore
from vault_assistant.storage.vector_index import VectorIndex

logger = get_logger(__name__)


def create_app() -> FastAPI:
    setup_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info("Initializing services...")
        settings.log_environment()

        if not os.getenv("OPENAI_API_KEY"):
            logger.info("OPENAI_API_KEY not set. Answers will use the offline fallback.")

        store = JsonTransactionStore(settings.DATA_DIR)
        engine = LocalEmbeddingEngine(settings.EMBEDDING_MODEL, device=settings.EMBEDDING_DEVICE)
        index = VectorIndex(engine.dimensions)
        llm = LLMClient()
        remote = RemoteStoreClient()
        if not remote.is_configured():
            logger.info("REMOTE_STORE_URL not set. Aggregates will use local data only.")

        chat_service = ChatService(store, index, engine=engine, llm=llm, remote=remote)
        try:
            await chat_service.initialize()
        except Exception as exc:
            logger.error("Chat service initialization failed, retrying on first query: %s", exc)

        app.state.store = store
        app.state.engine = engine
        app.state.index = index
        app.state.llm = llm
        app.state.remote = remote
        app.state.chat_service = chat_service
        app.state.backfill = EmbeddingBackfill(store, engine, index, batch_size=settings.BACKFILL_BATCH_SIZE)
        app.state.local_classifier = LocalClassifier(store, dimensions=engine.dimensions)

        logger.info("Services initialized.")
        yield
        logger.info("Service shutting down.")
        await llm.aclose()
        await remote.aclose()
        engine.dispose()

    app = FastAPI(title="Vault Assistant", lifespan=lifespan)

    app.include_router(chat.router)
    app.include_router(embeddings.router)
    app.include_router(classifier.router)

    return app


app = create_app()
