"""Category API endpoints: CRUD plus per-category statistics."""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import BaseModel, Field

from mailvec.api.deps import get_repository
from mailvec.services.errors import PersistenceError
from mailvec.services.repository import SqlRepository

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/categories", tags=["categories"])


class CategoryIn(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    description: Optional[str] = None
    color: str = Field(pattern=r"^#[0-9a-fA-F]{6}$")
    icon: str = Field(min_length=1, max_length=64)


class CategoryOut(BaseModel):
    id: int
    name: str
    description: Optional[str]
    color: str
    icon: str
    created_at: Optional[datetime]

    model_config = {"from_attributes": True}


class CategoryStats(BaseModel):
    id: int
    name: str
    description: Optional[str]
    color: str
    icon: str
    email_count: int
    percentage: float


@router.get("/", response_model=list[CategoryOut])
async def list_categories(repository: SqlRepository = Depends(get_repository)):
    """List categories ordered by name."""
    return [CategoryOut.model_validate(c) for c in await repository.list_categories()]


@router.get("/stats", response_model=list[CategoryStats])
async def category_stats(repository: SqlRepository = Depends(get_repository)):
    """Email count and share of all emails per category."""
    return [CategoryStats(**row) for row in await repository.get_category_stats()]


@router.post("/", response_model=CategoryOut, status_code=201)
async def create_category(body: CategoryIn, repository: SqlRepository = Depends(get_repository)):
    """Create a category. Names are unique."""
    try:
        category = await repository.create_category(**body.model_dump())
    except PersistenceError as e:
        logger.error(f"Error creating category: {e}")
        raise HTTPException(status_code=400, detail="Category could not be created (duplicate name?)")
    return CategoryOut.model_validate(category)


@router.patch("/{category_id}", response_model=CategoryOut)
async def update_category(
    category_id: int,
    body: CategoryIn,
    repository: SqlRepository = Depends(get_repository),
):
    """Replace a category's name, description, color and icon."""
    try:
        category = await repository.update_category(category_id, **body.model_dump())
    except PersistenceError as e:
        logger.error(f"Error updating category {category_id}: {e}")
        raise HTTPException(status_code=400, detail="Category could not be updated (duplicate name?)")
    if category is None:
        raise HTTPException(status_code=404, detail="Category not found")
    return CategoryOut.model_validate(category)


@router.delete("/{category_id}", status_code=204)
async def delete_category(category_id: int, repository: SqlRepository = Depends(get_repository)):
    """Delete a category together with the classifications that use it."""
    deleted = await repository.delete_category(category_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Category not found")
    return Response(status_code=204)
