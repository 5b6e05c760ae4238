"""ChatSession model: one visitor conversation and its AI/admin control state."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Index, String, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.database.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from src.models.enums import ChatStatus

if TYPE_CHECKING:
    from src.models.admin_user import AdminUser
    from src.models.chat_message import ChatMessage
    from src.models.visitor import Visitor


class ChatSession(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "chat_sessions"

    visitor_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("visitors.id", ondelete="CASCADE"),
        nullable=False,
    )
    # Opaque token held by the browser; doubles as the visitor push channel
    session_token: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    status: Mapped[ChatStatus] = mapped_column(nullable=False, server_default="ACTIVE")
    current_page: Mapped[str | None] = mapped_column(String(500))
    locale: Mapped[str] = mapped_column(String(10), nullable=False, server_default="ru")

    # Mirrors status == ADMIN_ACTIVE
    is_admin_takeover: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default="false"
    )
    admin_takeover_by: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("admin_users.id", ondelete="SET NULL")
    )

    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    last_activity_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Relationships
    visitor: Mapped[Visitor] = relationship(
        "Visitor", back_populates="chat_sessions", lazy="noload"
    )
    admin: Mapped[AdminUser | None] = relationship("AdminUser", lazy="noload")
    messages: Mapped[list[ChatMessage]] = relationship(
        "ChatMessage",
        back_populates="session",
        lazy="noload",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"eager_defaults": True}

    __table_args__ = (
        Index("ix_chat_sessions_visitor_id", "visitor_id"),
        Index("ix_chat_sessions_status", "status"),
        Index("ix_chat_sessions_last_activity_at", "last_activity_at"),
        CheckConstraint(
            "is_admin_takeover = (status = 'ADMIN_ACTIVE')",
            name="ck_chat_sessions_takeover_matches_status",
        ),
    )
