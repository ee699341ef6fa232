import asyncio
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException

from vault_assistant.api.dependencies import get_local_classifier, get_store
from vault_assistant.classifiers.local import LocalClassifier
from vault_assistant.logger import get_logger
from vault_assistant.models import CategorizationResult
from vault_assistant.storage.base import TransactionStore

logger = get_logger(__name__)

router = APIRouter(prefix="/api/classifier")


@router.post("/train")
async def train(
    classifier: Annotated[LocalClassifier, Depends(get_local_classifier)],
) -> dict:
    result = await asyncio.to_thread(classifier.train)
    if result is None:
        return {"status": "skipped", "message": "Not enough labelled, embedded transactions"}
    return {"status": "success", **result}


@router.post("/predict/{transaction_id}")
async def predict(
    transaction_id: str,
    classifier: Annotated[LocalClassifier, Depends(get_local_classifier)],
    store: Annotated[TransactionStore, Depends(get_store)],
) -> CategorizationResult | None:
    transaction = store.get_transaction(transaction_id)
    if transaction is None:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return await asyncio.to_thread(classifier.classify, transaction)


@router.get("/stats")
async def stats(
    classifier: Annotated[LocalClassifier, Depends(get_local_classifier)],
) -> dict:
    return classifier.get_stats()


@router.post("/reset")
async def reset(
    classifier: Annotated[LocalClassifier, Depends(get_local_classifier)],
) -> dict[str, str]:
    classifier.reset()
    return {"status": "success", "message": "Classifier weights cleared"}
