"""Pydantic v2 schemas for the admin chat console and the visitor widget."""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from src.config import SUPPORTED_LOCALES, settings
from src.models.enums import ChatStatus, MessageRole
from src.modules.chat.constants import ALL_CHANNEL


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )


def _require_text(value: str) -> str:
    if not value.strip():
        raise ValueError("must not be blank")
    return value


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


class MessageResponse(_CamelModel):
    id: uuid.UUID
    session_id: uuid.UUID
    role: MessageRole
    content: str
    metadata_extra: dict | None = Field(None, serialization_alias="metadata")
    created_at: datetime


class AdminMessageCreate(_CamelModel):
    """Request body for POST /admin/chats/{sessionId}/messages."""

    content: str = Field(..., min_length=1, max_length=settings.chat_message_max_length)

    @field_validator("content")
    @classmethod
    def content_not_blank(cls, value: str) -> str:
        return _require_text(value)


class AdminMessageResponse(_CamelModel):
    message: MessageResponse


# ---------------------------------------------------------------------------
# Visitors
# ---------------------------------------------------------------------------


class VisitorContactResponse(_CamelModel):
    name: str
    contact: str
    message: str | None = None
    source: str
    created_at: datetime | None = None


class VisitorResponse(_CamelModel):
    id: uuid.UUID
    visitor_id: str
    city: str | None = None
    country: str | None = None
    ip_address: str | None = None
    total_visits: int | None = None
    last_visit_at: datetime | None = None
    contact: VisitorContactResponse | None = None


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


class ChatSessionResponse(_CamelModel):
    id: uuid.UUID
    session_token: str
    status: ChatStatus
    current_page: str | None = None
    locale: str
    is_admin_takeover: bool
    admin_takeover_by: uuid.UUID | None = None
    started_at: datetime | None = None
    last_activity_at: datetime | None = None
    ended_at: datetime | None = None


class ChatSessionSummary(ChatSessionResponse):
    visitor: VisitorResponse | None = None
    last_message: MessageResponse | None = None
    message_count: int = 0


class ChatSessionDetail(ChatSessionResponse):
    visitor: VisitorResponse | None = None
    messages: list[MessageResponse] = Field(default_factory=list)


class ChatSessionListResponse(_CamelModel):
    sessions: list[ChatSessionSummary]
    total: int


class TakeoverResponse(_CamelModel):
    success: bool = True
    session: ChatSessionResponse


class SuccessResponse(_CamelModel):
    success: bool = True


# ---------------------------------------------------------------------------
# Visitor widget
# ---------------------------------------------------------------------------


class VisitorMessageCreate(_CamelModel):
    """Request body for POST /chat/messages."""

    visitor_id: str = Field(..., min_length=1, max_length=100)
    session_token: str = Field(..., min_length=1, max_length=100)
    content: str = Field(..., min_length=1, max_length=settings.chat_message_max_length)
    current_page: str | None = Field(None, max_length=500)
    locale: str | None = None
    city: str | None = Field(None, max_length=100)
    country: str | None = Field(None, max_length=100)

    @field_validator("content")
    @classmethod
    def content_not_blank(cls, value: str) -> str:
        return _require_text(value)

    @field_validator("session_token")
    @classmethod
    def session_token_not_reserved(cls, value: str) -> str:
        if value == ALL_CHANNEL:
            raise ValueError(f"'{ALL_CHANNEL}' is a reserved session token")
        return value

    @field_validator("locale")
    @classmethod
    def locale_supported(cls, value: str | None) -> str | None:
        if value is not None and value not in SUPPORTED_LOCALES:
            raise ValueError(f"locale must be one of {', '.join(SUPPORTED_LOCALES)}")
        return value


class FunctionCall(_CamelModel):
    name: str
    arguments: dict = Field(default_factory=dict)


class VisitorMessageResponse(_CamelModel):
    session_token: str
    admin_takeover: bool
    message: MessageResponse
    reply: MessageResponse | None = None
    function_calls: list[FunctionCall] = Field(default_factory=list)


class VisitorHistoryResponse(_CamelModel):
    session_token: str
    status: ChatStatus
    is_admin_takeover: bool
    messages: list[MessageResponse]
