"""Classification model: links one email to one category."""

from datetime import datetime

from sqlalchemy import Float, Boolean, Integer, DateTime, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from mailvec.database import Base
from mailvec.models.email import _utcnow


class Classification(Base):
    __tablename__ = "classifications"

    id: Mapped[int] = mapped_column(primary_key=True)
    email_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("emails.id", ondelete="CASCADE"), unique=True, index=True
    )
    category_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("categories.id", ondelete="CASCADE"), index=True
    )

    confidence: Mapped[float] = mapped_column(Float, nullable=False)  # 1.0 when manual
    is_manual: Mapped[bool] = mapped_column(Boolean, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    # Relationships
    email: Mapped["Email"] = relationship(back_populates="classification")
    category: Mapped["Category"] = relationship(back_populates="classifications", lazy="selectin")

    def __repr__(self):
        return f"<Classification {self.id}: email={self.email_id} -> {self.category_id} ({self.confidence:.2f})>"
