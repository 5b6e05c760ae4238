"""Chat event types pushed to admin dashboards and visitor widgets.

Every event kind is its own pydantic model with a literal ``type`` tag, and
``ChatEvent`` is the discriminated union over all of them.  Events serialize
to camelCase JSON with an epoch-millisecond ``timestamp``; the broadcaster
fills the timestamp in when the producer leaves it unset.
"""

from __future__ import annotations

import time
import uuid
from datetime import datetime
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


def now_ms() -> int:
    return int(time.time() * 1000)


class _EventModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class MessagePayload(_EventModel):
    id: str
    role: str
    content: str
    created_at: datetime = Field(alias="createdAt")


class VisitorPayload(_EventModel):
    id: str
    city: str | None = None
    country: str | None = None


class ContactPayload(_EventModel):
    name: str
    contact: str


class NewMessageData(_EventModel):
    message: MessagePayload


class SessionStartedData(_EventModel):
    visitor: VisitorPayload


class SessionEndedData(_EventModel):
    reason: Literal["ended", "abandoned"] = "ended"


class AdminJoinedData(_EventModel):
    admin_name: str = Field(alias="adminName")


class ContactCollectedData(_EventModel):
    contact: ContactPayload


class _BaseChatEvent(_EventModel):
    session_id: str = Field(alias="sessionId")
    timestamp: int | None = None

    def to_wire(self) -> dict:
        """Return the JSON-ready dict sent down push streams."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class NewMessageEvent(_BaseChatEvent):
    type: Literal["new_message"] = "new_message"
    data: NewMessageData


class SessionStartedEvent(_BaseChatEvent):
    type: Literal["session_started"] = "session_started"
    data: SessionStartedData


class SessionEndedEvent(_BaseChatEvent):
    type: Literal["session_ended"] = "session_ended"
    data: SessionEndedData = Field(default_factory=SessionEndedData)


class AdminJoinedEvent(_BaseChatEvent):
    type: Literal["admin_joined"] = "admin_joined"
    data: AdminJoinedData


class AdminLeftEvent(_BaseChatEvent):
    type: Literal["admin_left"] = "admin_left"


class ContactCollectedEvent(_BaseChatEvent):
    type: Literal["contact_collected"] = "contact_collected"
    data: ContactCollectedData


ChatEvent = Annotated[
    Union[
        NewMessageEvent,
        SessionStartedEvent,
        SessionEndedEvent,
        AdminJoinedEvent,
        AdminLeftEvent,
        ContactCollectedEvent,
    ],
    Field(discriminator="type"),
]


# ---------------------------------------------------------------------------
# Constructors used by the service layer
# ---------------------------------------------------------------------------


def new_message_event(session_id: uuid.UUID | str, message) -> NewMessageEvent:
    """Build a ``new_message`` event from a persisted ChatMessage."""
    return NewMessageEvent(
        session_id=str(session_id),
        data=NewMessageData(
            message=MessagePayload(
                id=str(message.id),
                role=getattr(message.role, "value", message.role),
                content=message.content,
                created_at=message.created_at,
            )
        ),
        timestamp=now_ms(),
    )


def session_started_event(session_id: uuid.UUID | str, visitor) -> SessionStartedEvent:
    return SessionStartedEvent(
        session_id=str(session_id),
        data=SessionStartedData(
            visitor=VisitorPayload(
                id=str(visitor.id), city=visitor.city, country=visitor.country
            )
        ),
        timestamp=now_ms(),
    )


def session_ended_event(
    session_id: uuid.UUID | str, reason: Literal["ended", "abandoned"] = "ended"
) -> SessionEndedEvent:
    return SessionEndedEvent(
        session_id=str(session_id),
        data=SessionEndedData(reason=reason),
        timestamp=now_ms(),
    )


def admin_joined_event(session_id: uuid.UUID | str, admin_name: str) -> AdminJoinedEvent:
    return AdminJoinedEvent(
        session_id=str(session_id),
        data=AdminJoinedData(admin_name=admin_name),
        timestamp=now_ms(),
    )


def admin_left_event(session_id: uuid.UUID | str) -> AdminLeftEvent:
    return AdminLeftEvent(session_id=str(session_id), timestamp=now_ms())


def contact_collected_event(
    session_id: uuid.UUID | str, name: str, contact: str
) -> ContactCollectedEvent:
    return ContactCollectedEvent(
        session_id=str(session_id),
        data=ContactCollectedData(contact=ContactPayload(name=name, contact=contact)),
        timestamp=now_ms(),
    )
