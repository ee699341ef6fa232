import asyncio
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

import numpy as np

from vault_assistant.errors import EmbeddingError, InitializationError
from vault_assistant.logger import get_logger

logger = get_logger(__name__)

DEFAULT_MODEL_NAME = "sentence-transformers/all-MiniLM-L6-v2"
EMBEDDING_DIMENSIONS = 384
MAX_SEQUENCE_LENGTH = 256
DEFAULT_BATCH_SIZE = 8
CHARS_PER_TOKEN = 4


class EmbeddingStatus(str, Enum):
    INITIATING = "initiating"
    DOWNLOADING = "downloading"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


@dataclass(frozen=True)
class EmbeddingProgress:
    status: EmbeddingStatus
    progress: float
    message: str


ProgressCallback = Callable[[EmbeddingProgress], None]
ModelFactory = Callable[[str, str | None], Any]


def placeholder_embedding(dimensions: int = EMBEDDING_DIMENSIONS) -> list[float]:
    return [0.0] * dimensions


def is_real_embedding(vector: Sequence[float] | None, dimensions: int | None = None) -> bool:
    """True when ``vector`` is present, sized correctly and not the all-zero sentinel."""
    if vector is None or len(vector) == 0:
        return False
    if dimensions is not None and len(vector) != dimensions:
        return False
    return any(value != 0.0 for value in vector)


def truncate_text(text: str, max_tokens: int = MAX_SEQUENCE_LENGTH) -> str:
    max_chars = max_tokens * CHARS_PER_TOKEN
    if len(text) <= max_chars:
        return text
    return text[: max_chars - 3] + "..."


def _default_model_factory(model_name: str, device: str | None) -> Any:
    from sentence_transformers import SentenceTransformer

    return SentenceTransformer(model_name, device=device)


class LocalEmbeddingEngine:
    """
    On-device text encoder.

    The model loads lazily on first use. Blocking inference runs in a worker
    thread so the event loop stays responsive.
    """

    def __init__(
        self,
        model_name: str = DEFAULT_MODEL_NAME,
        dimensions: int = EMBEDDING_DIMENSIONS,
        max_sequence_length: int = MAX_SEQUENCE_LENGTH,
        batch_size: int = DEFAULT_BATCH_SIZE,
        device: str | None = None,
        model_factory: ModelFactory | None = None,
    ) -> None:
        self.model_name = model_name
        self.dimensions = dimensions
        self.max_sequence_length = max_sequence_length
        self.batch_size = max(1, batch_size)
        self.device = device
        self._model_factory = model_factory or _default_model_factory
        self._model: Any = None
        self._lock = asyncio.Lock()
        self.status = EmbeddingStatus.INITIATING
        self.last_error: str | None = None

    def is_ready(self) -> bool:
        return self._model is not None and self.status == EmbeddingStatus.READY

    def _report(
        self,
        callback: ProgressCallback | None,
        status: EmbeddingStatus,
        progress: float,
        message: str,
    ) -> None:
        self.status = status
        if callback is None:
            return
        try:
            callback(EmbeddingProgress(status=status, progress=progress, message=message))
        except Exception as exc:
            logger.warning("[EMBED] Progress callback failed: %s", exc)

    async def initialize(self, progress_callback: ProgressCallback | None = None) -> None:
        if self.is_ready():
            return
        async with self._lock:
            if self.is_ready():
                return
            self.last_error = None
            self._report(progress_callback, EmbeddingStatus.INITIATING, 0.0, "Preparing embedding model")
            try:
                self._report(
                    progress_callback,
                    EmbeddingStatus.DOWNLOADING,
                    0.1,
                    f"Fetching {self.model_name}",
                )
                model = await asyncio.to_thread(self._model_factory, self.model_name, self.device)
                self._report(progress_callback, EmbeddingStatus.LOADING, 0.8, "Warming up model")
                warmup = await asyncio.to_thread(self._encode_with, model, ["warmup"])
                if warmup.shape[-1] != self.dimensions:
                    raise EmbeddingError(
                        f"Model produced {warmup.shape[-1]} dimensions, expected {self.dimensions}"
                    )
            except Exception as exc:
                self._model = None
                self.last_error = str(exc)
                self._report(progress_callback, EmbeddingStatus.ERROR, 0.0, str(exc))
                logger.error("[EMBED] Failed to load %s: %s", self.model_name, exc)
                raise InitializationError(f"Embedding model unavailable: {exc}") from exc

            self._model = model
            self._report(progress_callback, EmbeddingStatus.READY, 1.0, "Embedding model ready")
            logger.info("[EMBED] Model %s ready (%s dims).", self.model_name, self.dimensions)

    @staticmethod
    def _encode_with(model: Any, texts: list[str]) -> np.ndarray:
        vectors = model.encode(
            texts,
            convert_to_numpy=True,
            normalize_embeddings=True,
            show_progress_bar=False,
        )
        return np.asarray(vectors, dtype=np.float32).reshape(len(texts), -1)

    def _validate(self, vectors: np.ndarray) -> list[list[float]]:
        if vectors.ndim != 2 or vectors.shape[1] != self.dimensions:
            raise EmbeddingError(
                f"Unexpected embedding shape {vectors.shape}, expected (*, {self.dimensions})"
            )
        result = vectors.tolist()
        for row in result:
            if not is_real_embedding(row, self.dimensions):
                raise EmbeddingError("Model returned an all-zero embedding")
        return result

    async def embed_text(self, text: str) -> list[float]:
        vectors = await self.embed_batch([text])
        return vectors[0]

    async def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        if not texts:
            return []
        await self.initialize()
        model = self._model
        prepared = [truncate_text(text or "", self.max_sequence_length) for text in texts]

        results: list[list[float]] = []
        for start in range(0, len(prepared), self.batch_size):
            chunk = prepared[start:start + self.batch_size]
            vectors = await asyncio.to_thread(self._encode_with, model, chunk)
            results.extend(self._validate(vectors))
        return results

    def dispose(self) -> None:
        self._model = None
        self.status = EmbeddingStatus.INITIATING
        logger.info("[EMBED] Model %s released.", self.model_name)
