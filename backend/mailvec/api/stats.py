"""Dashboard statistics endpoint."""

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from mailvec.api.deps import get_repository
from mailvec.services.repository import SqlRepository

router = APIRouter(prefix="/api", tags=["stats"])


class Stats(BaseModel):
    total_emails: int
    categorized_emails: int
    total_categories: int
    average_confidence: float


@router.get("/stats", response_model=Stats)
async def get_stats(repository: SqlRepository = Depends(get_repository)):
    """Totals shown on the dashboard."""
    return Stats(**await repository.get_stats())
