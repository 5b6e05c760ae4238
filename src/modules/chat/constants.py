"""Chat state machine transitions, channel names, and localized system messages."""

from __future__ import annotations

from src.models.enums import ChatStatus

# Valid transitions: from_status -> [allowed to_statuses]
VALID_CHAT_TRANSITIONS: dict[ChatStatus, list[ChatStatus]] = {
    ChatStatus.ACTIVE: [ChatStatus.ADMIN_ACTIVE, ChatStatus.ENDED, ChatStatus.ABANDONED],
    ChatStatus.ADMIN_ACTIVE: [ChatStatus.ACTIVE, ChatStatus.ENDED],
    # New visitor traffic reopens an abandoned conversation
    ChatStatus.ABANDONED: [ChatStatus.ACTIVE],
    ChatStatus.ENDED: [],
}

OPEN_STATUSES: tuple[ChatStatus, ...] = (ChatStatus.ACTIVE, ChatStatus.ADMIN_ACTIVE)

# Broadcaster channel that receives every event (admin live feed)
ALL_CHANNEL = "all"

# Event types the visitor widget renders
EVENT_NEW_MESSAGE = "new_message"
EVENT_ADMIN_JOINED = "admin_joined"
EVENT_ADMIN_LEFT = "admin_left"

# Stream control frames (never broadcast)
FRAME_CONNECTED = "connected"
FRAME_PING = "ping"

# Only these reach the visitor widget
VISITOR_EVENT_TYPES: frozenset[str] = frozenset(
    {EVENT_NEW_MESSAGE, EVENT_ADMIN_JOINED, EVENT_ADMIN_LEFT}
)

SSE_RESPONSE_HEADERS: dict[str, str] = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

# Audit actions
AUDIT_CHAT_TAKEOVER = "chat_takeover"
AUDIT_CHAT_RELEASE = "chat_release"
AUDIT_CHAT_END = "chat_end"
AUDIT_TARGET_CHAT_SESSION = "chat_session"

SYSTEM_MESSAGE_ADMIN_JOINED: dict[str, str] = {
    "ru": "Администратор присоединился к разговору",
    "ro": "Administratorul s-a alăturat conversației",
}
SYSTEM_MESSAGE_ADMIN_LEFT: dict[str, str] = {
    "ru": "Администратор передал чат AI-ассистенту",
    "ro": "Administratorul a transferat conversația asistentului AI",
}

CONTACT_SOURCE_AI = "ai_assistant"

# Navigation into a portfolio case study is worth a lead notification
PROJECT_PATH_PREFIX = "/projects/"
