"""Email model: messages synced from Gmail together with their embeddings."""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import String, Text, DateTime, JSON
from sqlalchemy.orm import Mapped, mapped_column, relationship

from mailvec.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Email(Base):
    __tablename__ = "emails"

    id: Mapped[int] = mapped_column(primary_key=True)
    gmail_id: Mapped[str] = mapped_column(String(256), unique=True, nullable=False, index=True)

    # Envelope
    subject: Mapped[str] = mapped_column(Text, nullable=False)
    from_address: Mapped[str] = mapped_column(Text, nullable=False)
    to_address: Mapped[str] = mapped_column(Text, nullable=False)

    # Content
    body: Mapped[Optional[str]] = mapped_column(Text)
    snippet: Mapped[Optional[str]] = mapped_column(Text)

    # Vector embedding (list of floats, provider-defined dimensionality)
    embedding: Mapped[Optional[list]] = mapped_column(JSON(none_as_null=True))

    # Metadata
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    # Relationships
    classification: Mapped[Optional["Classification"]] = relationship(
        back_populates="email", cascade="all, delete-orphan", uselist=False, lazy="selectin"
    )

    def __repr__(self):
        return f"<Email {self.id}: {self.subject[:50] if self.subject else '(no subject)'}>"
