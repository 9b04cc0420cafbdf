"""Persistence layer: the storage contract the classification core depends on."""

import functools
import logging
from abc import ABC, abstractmethod
from typing import Optional

from sqlalchemy import select, func, delete, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from mailvec.models import Email, Category, Classification
from mailvec.services.errors import PersistenceError

logger = logging.getLogger(__name__)


class Repository(ABC):
    """Storage operations consumed by the sync orchestrator.

    Returned objects expose the attributes of the ORM models (``id``,
    ``gmail_id``, ``embedding``, ``category_id``...). Every write is atomic
    on its own; failures surface as PersistenceError.
    """

    # Emails

    @abstractmethod
    async def find_email_by_external_id(self, gmail_id: str) -> Optional[Email]:
        ...

    @abstractmethod
    async def get_email(self, email_id: int) -> Optional[Email]:
        ...

    @abstractmethod
    async def create_email(self, classification: Optional[dict] = None, **fields) -> Email:
        """Store an email, and its classification when one is given, in one transaction.

        ``classification`` holds ``category_id``, ``confidence`` and
        ``is_manual``. Either both rows are written or neither is.
        """
        ...

    @abstractmethod
    async def update_email(self, email_id: int, **fields) -> Optional[Email]:
        ...

    @abstractmethod
    async def list_emails_with_embedding(self) -> list[Email]:
        ...

    @abstractmethod
    async def list_emails_missing_embedding(self) -> list[Email]:
        ...

    # Classifications

    @abstractmethod
    async def find_classification_by_email_id(self, email_id: int) -> Optional[Classification]:
        ...

    @abstractmethod
    async def create_classification(
        self, email_id: int, category_id: int, confidence: float, is_manual: bool
    ) -> Classification:
        ...

    @abstractmethod
    async def update_classification(self, email_id: int, **fields) -> Optional[Classification]:
        ...

    # Categories

    @abstractmethod
    async def list_categories(self) -> list[Category]:
        ...

    @abstractmethod
    async def get_category(self, category_id: int) -> Optional[Category]:
        ...

    @abstractmethod
    async def delete_category(self, category_id: int) -> bool:
        """Delete a category and every classification pointing at it."""
        ...


def _translate_errors(method):
    """Roll back and re-raise storage failures as PersistenceError."""

    @functools.wraps(method)
    async def wrapper(self, *args, **kwargs):
        try:
            return await method(self, *args, **kwargs)
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(f"{method.__name__} failed: {e}")
            raise PersistenceError(str(e)) from e

    return wrapper


class SqlRepository(Repository):
    """Repository backed by an async SQLAlchemy session."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # --- Emails ---

    @_translate_errors
    async def find_email_by_external_id(self, gmail_id: str) -> Optional[Email]:
        result = await self.session.execute(select(Email).where(Email.gmail_id == gmail_id))
        return result.scalar_one_or_none()

    @_translate_errors
    async def get_email(self, email_id: int) -> Optional[Email]:
        return await self.session.get(Email, email_id)

    @_translate_errors
    async def create_email(self, classification: Optional[dict] = None, **fields) -> Email:
        email_obj = Email(**fields)
        if classification is not None:
            email_obj.classification = Classification(**classification)
        self.session.add(email_obj)
        await self.session.commit()
        await self.session.refresh(email_obj)
        return email_obj

    @_translate_errors
    async def update_email(self, email_id: int, **fields) -> Optional[Email]:
        email_obj = await self.session.get(Email, email_id)
        if email_obj is None:
            return None
        for key, value in fields.items():
            setattr(email_obj, key, value)
        await self.session.commit()
        return email_obj

    @_translate_errors
    async def list_emails_with_embedding(self) -> list[Email]:
        result = await self.session.execute(
            select(Email).where(Email.embedding.is_not(None)).order_by(Email.id)
        )
        return [e for e in result.scalars().all() if e.embedding]

    @_translate_errors
    async def list_emails_missing_embedding(self) -> list[Email]:
        result = await self.session.execute(select(Email).order_by(Email.id))
        return [e for e in result.scalars().all() if not e.embedding]

    @_translate_errors
    async def list_emails(
        self, category_id: Optional[int] = None, search: Optional[str] = None
    ) -> list[Email]:
        """Emails newest first, with classification and category loaded."""
        query = select(Email).options(
            selectinload(Email.classification).selectinload(Classification.category)
        )
        if category_id is not None:
            query = query.join(Classification).where(Classification.category_id == category_id)
        if search:
            query = query.where(
                or_(
                    Email.subject.ilike(f"%{search}%"),
                    Email.from_address.ilike(f"%{search}%"),
                    Email.snippet.ilike(f"%{search}%"),
                )
            )
        query = query.order_by(Email.received_at.desc())
        result = await self.session.execute(query)
        return list(result.scalars().all())

    # --- Classifications ---

    @_translate_errors
    async def find_classification_by_email_id(self, email_id: int) -> Optional[Classification]:
        result = await self.session.execute(
            select(Classification).where(Classification.email_id == email_id)
        )
        return result.scalar_one_or_none()

    @_translate_errors
    async def create_classification(
        self, email_id: int, category_id: int, confidence: float, is_manual: bool
    ) -> Classification:
        classification = Classification(
            email_id=email_id,
            category_id=category_id,
            confidence=confidence,
            is_manual=is_manual,
        )
        self.session.add(classification)
        await self.session.commit()
        await self.session.refresh(classification)
        return classification

    @_translate_errors
    async def update_classification(self, email_id: int, **fields) -> Optional[Classification]:
        result = await self.session.execute(
            select(Classification).where(Classification.email_id == email_id)
        )
        classification = result.scalar_one_or_none()
        if classification is None:
            return None
        for key, value in fields.items():
            setattr(classification, key, value)
        await self.session.commit()
        return classification

    # --- Categories ---

    @_translate_errors
    async def list_categories(self) -> list[Category]:
        result = await self.session.execute(select(Category).order_by(Category.name))
        return list(result.scalars().all())

    @_translate_errors
    async def get_category(self, category_id: int) -> Optional[Category]:
        return await self.session.get(Category, category_id)

    @_translate_errors
    async def create_category(self, **fields) -> Category:
        category = Category(**fields)
        self.session.add(category)
        await self.session.commit()
        await self.session.refresh(category)
        return category

    @_translate_errors
    async def update_category(self, category_id: int, **fields) -> Optional[Category]:
        category = await self.session.get(Category, category_id)
        if category is None:
            return None
        for key, value in fields.items():
            setattr(category, key, value)
        await self.session.commit()
        return category

    @_translate_errors
    async def delete_category(self, category_id: int) -> bool:
        # Dependent classifications go first, in the same transaction
        await self.session.execute(
            delete(Classification).where(Classification.category_id == category_id)
        )
        result = await self.session.execute(delete(Category).where(Category.id == category_id))
        await self.session.commit()
        return result.rowcount > 0

    # --- Stats ---

    @_translate_errors
    async def get_stats(self) -> dict:
        total_emails = (await self.session.execute(select(func.count(Email.id)))).scalar() or 0
        categorized = (await self.session.execute(
            select(func.count(func.distinct(Classification.email_id)))
        )).scalar() or 0
        total_categories = (await self.session.execute(select(func.count(Category.id)))).scalar() or 0
        average_confidence = (await self.session.execute(
            select(func.avg(Classification.confidence))
        )).scalar()

        return {
            "total_emails": total_emails,
            "categorized_emails": categorized,
            "total_categories": total_categories,
            "average_confidence": float(average_confidence or 0.0),
        }

    @_translate_errors
    async def get_category_stats(self) -> list[dict]:
        total_emails = (await self.session.execute(select(func.count(Email.id)))).scalar() or 0

        query = (
            select(Category, func.count(Classification.id).label("email_count"))
            .outerjoin(Classification, Classification.category_id == Category.id)
            .group_by(Category.id)
            .order_by(Category.name)
        )
        result = await self.session.execute(query)

        stats = []
        for category, email_count in result.all():
            stats.append({
                "id": category.id,
                "name": category.name,
                "description": category.description,
                "color": category.color,
                "icon": category.icon,
                "email_count": email_count,
                "percentage": (email_count / total_emails * 100) if total_emails else 0.0,
            })
        return stats
