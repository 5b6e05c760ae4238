"""Visitor and VisitorContact models: anonymous site visitors and captured leads."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.database.base import Base, TimestampMixin, UUIDPrimaryKeyMixin

if TYPE_CHECKING:
    from src.models.chat_session import ChatSession


class Visitor(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "visitors"

    # Random token generated by the browser and kept in local storage
    visitor_id: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    ip_address: Mapped[str | None] = mapped_column(String(100))
    user_agent: Mapped[str | None] = mapped_column(String(500))
    city: Mapped[str | None] = mapped_column(String(100))
    country: Mapped[str | None] = mapped_column(String(100))
    total_visits: Mapped[int] = mapped_column(Integer, nullable=False, server_default="1")
    last_visit_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    # Relationships
    contact: Mapped[VisitorContact | None] = relationship(
        "VisitorContact", back_populates="visitor", lazy="noload", uselist=False
    )
    chat_sessions: Mapped[list[ChatSession]] = relationship(
        "ChatSession", back_populates="visitor", lazy="noload"
    )


class VisitorContact(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "visitor_contacts"

    visitor_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("visitors.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    contact: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str | None] = mapped_column(Text)
    source: Mapped[str] = mapped_column(String(50), nullable=False, server_default="ai_assistant")

    visitor: Mapped[Visitor] = relationship("Visitor", back_populates="contact", lazy="noload")
