import numpy as np
import pytest

from conftest import HashingModel
from vault_assistant.embeddings.engine import (
    EmbeddingProgress,
    EmbeddingStatus,
    LocalEmbeddingEngine,
    is_real_embedding,
    placeholder_embedding,
    truncate_text,
)
from vault_assistant.errors import EmbeddingError, InitializationError


def test_placeholder_is_not_real() -> None:
    assert not is_real_embedding(placeholder_embedding())
    assert not is_real_embedding(None)
    assert not is_real_embedding([])
    assert not is_real_embedding([0.5, 0.5], dimensions=384)
    assert is_real_embedding([0.0, 0.1])


def test_truncate_text() -> None:
    assert truncate_text("short") == "short"
    truncated = truncate_text("x" * 2000, max_tokens=10)
    assert len(truncated) == 40
    assert truncated.endswith("...")


@pytest.mark.anyio
async def test_lazy_initialization_reports_progress(hashing_model: HashingModel) -> None:
    events: list[EmbeddingProgress] = []
    engine = LocalEmbeddingEngine(model_factory=lambda name, device: hashing_model)
    assert not engine.is_ready()

    await engine.initialize(events.append)

    assert engine.is_ready()
    assert [event.status for event in events] == [
        EmbeddingStatus.INITIATING,
        EmbeddingStatus.DOWNLOADING,
        EmbeddingStatus.LOADING,
        EmbeddingStatus.READY,
    ]
    assert events[-1].progress == 1.0


@pytest.mark.anyio
async def test_embed_batch(engine: LocalEmbeddingEngine) -> None:
    vectors = await engine.embed_batch(["coffee at Blue Bottle"] * 10 + ["rent"])

    assert len(vectors) == 11
    assert all(len(vector) == 384 for vector in vectors)
    assert np.isclose(np.linalg.norm(vectors[0]), 1.0)
    assert vectors[0] == vectors[9]
    assert await engine.embed_batch([]) == []


@pytest.mark.anyio
async def test_failed_load_raises_initialization_error() -> None:
    def broken_factory(name: str, device: str | None) -> object:
        raise OSError("no network")

    engine = LocalEmbeddingEngine(model_factory=broken_factory)
    with pytest.raises(InitializationError):
        await engine.embed_text("hello")
    assert engine.status == EmbeddingStatus.ERROR
    assert engine.last_error == "no network"


@pytest.mark.anyio
async def test_wrong_dimensions_are_rejected() -> None:
    engine = LocalEmbeddingEngine(model_factory=lambda name, device: HashingModel(dimensions=16))
    with pytest.raises(InitializationError):
        await engine.initialize()


@pytest.mark.anyio
async def test_zero_vectors_are_rejected(engine: LocalEmbeddingEngine) -> None:
    await engine.initialize()
    with pytest.raises(EmbeddingError):
        engine._validate(np.zeros((1, 384), dtype=np.float32))


@pytest.mark.anyio
async def test_dispose_releases_model(engine: LocalEmbeddingEngine) -> None:
    await engine.embed_text("hello")
    engine.dispose()
    assert not engine.is_ready()
    await engine.embed_text("hello again")
    assert engine.is_ready()
