"""Email API endpoints: browse, sync, classify and backfill embeddings."""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from mailvec.api.deps import cancel_on_disconnect, get_orchestrator, get_repository, get_sync_orchestrator
from mailvec.services.errors import MailSourceError, NotFound, PersistenceError, ProviderError
from mailvec.services.repository import SqlRepository
from mailvec.services.sync import SyncOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/emails", tags=["emails"])


class CategoryRef(BaseModel):
    id: int
    name: str
    color: str
    icon: str

    model_config = {"from_attributes": True}


class ClassificationOut(BaseModel):
    category_id: int
    confidence: float
    is_manual: bool
    category: Optional[CategoryRef] = None

    model_config = {"from_attributes": True}


class EmailOut(BaseModel):
    id: int
    gmail_id: str
    subject: str
    from_address: str
    to_address: str
    body: Optional[str]
    snippet: Optional[str]
    received_at: datetime
    has_embedding: bool
    classification: Optional[ClassificationOut] = None


class SyncResponse(BaseModel):
    success: bool = True
    total: int
    synced: int
    new: int
    errors: int
    cancelled: bool = False


class ClassifyRequest(BaseModel):
    category_id: int
    is_manual: bool = True


class ComputeEmbeddingsResponse(BaseModel):
    success: bool = True
    processed: int


def _email_out(email_obj, classification=None) -> EmailOut:
    return EmailOut(
        id=email_obj.id,
        gmail_id=email_obj.gmail_id,
        subject=email_obj.subject,
        from_address=email_obj.from_address,
        to_address=email_obj.to_address,
        body=email_obj.body,
        snippet=email_obj.snippet,
        received_at=email_obj.received_at,
        has_embedding=bool(email_obj.embedding),
        classification=ClassificationOut.model_validate(classification) if classification else None,
    )


@router.get("/", response_model=list[EmailOut])
async def list_emails(
    category_id: Optional[int] = None,
    search: Optional[str] = None,
    repository: SqlRepository = Depends(get_repository),
):
    """List emails newest first, optionally filtered by category or text."""
    emails = await repository.list_emails(category_id=category_id, search=search)
    return [_email_out(e, e.classification) for e in emails]


@router.post("/sync", response_model=SyncResponse)
async def sync_emails(request: Request, orchestrator: SyncOrchestrator = Depends(get_sync_orchestrator)):
    """Pull the newest inbox messages from Gmail, embed and auto-classify them."""
    try:
        async with cancel_on_disconnect(request) as cancel:
            summary = await orchestrator.sync(cancel_event=cancel)
    except MailSourceError as e:
        logger.error(f"Error syncing emails: {e}")
        raise HTTPException(status_code=503, detail=f"Mail source unavailable: {e}")
    return SyncResponse(**summary.to_dict())


@router.post("/compute-embeddings", response_model=ComputeEmbeddingsResponse)
async def compute_embeddings(request: Request, orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    """Embed every stored email that is missing an embedding."""
    try:
        async with cancel_on_disconnect(request) as cancel:
            processed = await orchestrator.recompute_embeddings(cancel_event=cancel)
    except ProviderError as e:
        logger.error(f"Error computing embeddings: {e}")
        raise HTTPException(status_code=502, detail=str(e))
    return ComputeEmbeddingsResponse(processed=processed)


@router.get("/{email_id}", response_model=EmailOut)
async def get_email(email_id: int, repository: SqlRepository = Depends(get_repository)):
    """Get a single email by ID."""
    email_obj = await repository.get_email(email_id)
    if not email_obj:
        raise HTTPException(status_code=404, detail="Email not found")
    return _email_out(email_obj, email_obj.classification)


@router.post("/{email_id}/classify")
async def classify_email(
    email_id: int,
    body: ClassifyRequest,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """Assign an email to a category (manual override by default)."""
    try:
        await orchestrator.classify(email_id, body.category_id, is_manual=body.is_manual)
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PersistenceError as e:
        logger.error(f"Error classifying email {email_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))
    return {"success": True}
