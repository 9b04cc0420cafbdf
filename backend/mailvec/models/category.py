"""Category model: user-defined labels emails are sorted into."""

from datetime import datetime
from typing import Optional

from sqlalchemy import String, Text, DateTime
from sqlalchemy.orm import Mapped, mapped_column, relationship

from mailvec.database import Base
from mailvec.models.email import _utcnow


class Category(Base):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)

    # Display
    color: Mapped[str] = mapped_column(String(16), nullable=False)  # hex, e.g. #3b82f6
    icon: Mapped[str] = mapped_column(String(64), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    # Relationships
    classifications: Mapped[list["Classification"]] = relationship(back_populates="category")

    def __repr__(self):
        return f"<Category {self.id}: {self.name}>"
