"""Chat session state machine, message ingress and live event publishing.

Every state-affecting operation follows the same order: validate the
transition, mutate the session, append any system message, commit, and only
then publish the matching event.  A failed write therefore never produces an
event.  ``status`` and ``is_admin_takeover`` are written together through
``_apply_status`` so ``is_admin_takeover`` is true exactly when the status is
``ADMIN_ACTIVE``.

Takeover exclusivity is checked against the session row before each write;
no row lock is taken.  Two admins racing on the same session resolve
last-write-wins at the database, which is accepted because takeover is a
deliberate, low-frequency action.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from src.config import SUPPORTED_LOCALES, settings
from src.exceptions import (
    BadRequestException,
    InvalidTransitionException,
    NotFoundException,
    SessionClosedException,
    TakeoverRequiredException,
)
from src.models.chat_message import ChatMessage
from src.models.chat_session import ChatSession
from src.models.enums import ChatStatus, MessageRole
from src.models.visitor import Visitor, VisitorContact
from src.modules.admin.auth import AdminPrincipal
from src.modules.chat.broadcaster import EventBroadcaster
from src.modules.chat.constants import (
    CONTACT_SOURCE_AI,
    OPEN_STATUSES,
    PROJECT_PATH_PREFIX,
    SYSTEM_MESSAGE_ADMIN_JOINED,
    SYSTEM_MESSAGE_ADMIN_LEFT,
    VALID_CHAT_TRANSITIONS,
)
from src.modules.chat.events import (
    ChatEvent,
    admin_joined_event,
    admin_left_event,
    contact_collected_event,
    new_message_event,
    session_ended_event,
    session_started_event,
)
from src.modules.chat.notifications import (
    TelegramNotifier,
    contact_collected_text,
    contact_requested_text,
    new_visitor_text,
    project_viewed_text,
)
from src.modules.chat.tools import (
    TOOL_ASK_FOR_CONTACT,
    TOOL_COLLECT_CONTACT_INFO,
    TOOL_NAVIGATE_TO,
)

if TYPE_CHECKING:
    from src.modules.chat.assistant import AssistantService
    from src.modules.chat.schemas import FunctionCall

logger = logging.getLogger(__name__)


@dataclass
class VisitorMessageResult:
    session: ChatSession
    message: ChatMessage
    admin_takeover: bool
    session_created: bool


@dataclass
class AssistantResult:
    message: ChatMessage | None
    function_calls: list[FunctionCall]


@dataclass
class SessionOverview:
    session: ChatSession
    last_message: ChatMessage | None
    message_count: int


def _localized(messages: dict[str, str], locale: str | None) -> str:
    if locale in messages:
        return messages[locale]
    return messages.get(settings.chat_default_locale, messages["ru"])


class ChatService:
    def __init__(
        self,
        db: AsyncSession,
        broadcaster: EventBroadcaster | None = None,
        notifier: TelegramNotifier | None = None,
    ) -> None:
        self.db = db
        self.broadcaster = broadcaster
        self.notifier = notifier

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _validate_transition(self, current: ChatStatus, target: ChatStatus) -> None:
        """Validate that the transition is allowed by the state machine."""
        allowed = VALID_CHAT_TRANSITIONS.get(current, [])
        if target not in allowed:
            raise InvalidTransitionException(
                f"Cannot transition chat session from '{current.value}' to '{target.value}'. "
                f"Allowed transitions: {[s.value for s in allowed]}"
            )

    @staticmethod
    def _apply_status(
        session: ChatSession, status: ChatStatus, admin_id: uuid.UUID | None = None
    ) -> None:
        session.status = status
        session.is_admin_takeover = status == ChatStatus.ADMIN_ACTIVE
        session.admin_takeover_by = admin_id if session.is_admin_takeover else None

    async def _append_message(
        self,
        session: ChatSession,
        role: MessageRole,
        content: str,
        metadata: dict | None = None,
    ) -> ChatMessage:
        now = datetime.now(UTC)
        message = ChatMessage(
            id=uuid.uuid4(),
            session_id=session.id,
            role=role,
            content=content,
            metadata_extra=metadata,
            created_at=now,
        )
        self.db.add(message)
        session.last_activity_at = now
        await self.db.flush()
        return message

    def _publish(self, event: ChatEvent, session: ChatSession | None = None) -> None:
        """Fan an event out to the session id channel, the visitor token channel and ``all``."""
        if self.broadcaster is None:
            return
        additional = [session.session_token] if session is not None else []
        self.broadcaster.broadcast(event, additional)

    async def _notify(self, text: str) -> None:
        """Forward a lead notification; delivery failures are logged by the notifier."""
        if self.notifier is not None:
            await self.notifier.send(text)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_session(self, session_id: uuid.UUID) -> ChatSession:
        result = await self.db.execute(select(ChatSession).where(ChatSession.id == session_id))
        session = result.scalar_one_or_none()
        if session is None:
            raise NotFoundException(f"Chat session {session_id} not found")
        return session

    async def get_session_by_token(self, session_token: str) -> ChatSession | None:
        result = await self.db.execute(
            select(ChatSession).where(ChatSession.session_token == session_token)
        )
        return result.scalar_one_or_none()

    async def get_messages(
        self, session_id: uuid.UUID, limit: int | None = None
    ) -> list[ChatMessage]:
        """Return messages oldest first; with ``limit``, only the most recent ones."""
        query = select(ChatMessage).where(ChatMessage.session_id == session_id)
        if limit is None:
            query = query.order_by(ChatMessage.created_at.asc(), ChatMessage.seq.asc())
            result = await self.db.execute(query)
            return list(result.scalars().all())

        query = query.order_by(ChatMessage.created_at.desc(), ChatMessage.seq.desc()).limit(limit)
        result = await self.db.execute(query)
        return list(reversed(result.scalars().all()))

    async def get_session_with_history(
        self, session_id: uuid.UUID
    ) -> tuple[ChatSession, list[ChatMessage]]:
        """Load a session with its visitor, contact and full message history."""
        result = await self.db.execute(
            select(ChatSession)
            .options(selectinload(ChatSession.visitor).selectinload(Visitor.contact))
            .where(ChatSession.id == session_id)
        )
        session = result.scalar_one_or_none()
        if session is None:
            raise NotFoundException(f"Chat session {session_id} not found")
        messages = await self.get_messages(session.id)
        return session, messages

    async def get_visitor_history(
        self, session_token: str, limit: int | None = None
    ) -> tuple[ChatSession, list[ChatMessage]]:
        """History for the visitor widget, addressed by token rather than session id."""
        session = await self.get_session_by_token(session_token)
        if session is None:
            raise NotFoundException("Chat session not found")
        messages = await self.get_messages(session.id, limit or settings.chat_history_limit)
        return session, messages

    async def list_sessions(
        self,
        active_only: bool = False,
        status: ChatStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[SessionOverview], int]:
        """List sessions by most recent activity with their last message and message count.

        ``active_only`` returns every ACTIVE/ADMIN_ACTIVE session unpaginated;
        otherwise ``status``, ``limit`` and ``offset`` apply.
        """
        query = select(ChatSession).options(
            selectinload(ChatSession.visitor).selectinload(Visitor.contact)
        )
        count_query = select(func.count()).select_from(ChatSession)

        if active_only:
            query = query.where(ChatSession.status.in_(OPEN_STATUSES))
        elif status is not None:
            query = query.where(ChatSession.status == status)
            count_query = count_query.where(ChatSession.status == status)

        query = query.order_by(ChatSession.last_activity_at.desc())
        if not active_only:
            query = query.offset(offset).limit(limit)

        result = await self.db.execute(query)
        sessions = list(result.scalars().all())

        if active_only:
            total = len(sessions)
        else:
            total_result = await self.db.execute(count_query)
            total = total_result.scalar() or 0

        if not sessions:
            return [], total

        session_ids = [s.id for s in sessions]
        counts_result = await self.db.execute(
            select(ChatMessage.session_id, func.count(ChatMessage.id))
            .where(ChatMessage.session_id.in_(session_ids))
            .group_by(ChatMessage.session_id)
        )
        counts = {row[0]: row[1] for row in counts_result.all()}

        last_result = await self.db.execute(
            select(ChatMessage)
            .where(ChatMessage.session_id.in_(session_ids))
            .order_by(
                ChatMessage.session_id,
                ChatMessage.created_at.desc(),
                ChatMessage.seq.desc(),
            )
            .distinct(ChatMessage.session_id)
        )
        last_messages = {m.session_id: m for m in last_result.scalars().all()}

        overviews = [
            SessionOverview(
                session=s,
                last_message=last_messages.get(s.id),
                message_count=counts.get(s.id, 0),
            )
            for s in sessions
        ]
        return overviews, total

    # ------------------------------------------------------------------
    # Admin control transitions
    # ------------------------------------------------------------------

    async def takeover_session(self, session_id: uuid.UUID, admin: AdminPrincipal) -> ChatSession:
        """ACTIVE -> ADMIN_ACTIVE: the admin becomes the only responder."""
        session = await self.get_session(session_id)
        self._validate_transition(session.status, ChatStatus.ADMIN_ACTIVE)

        self._apply_status(session, ChatStatus.ADMIN_ACTIVE, admin.id)
        await self._append_message(
            session,
            MessageRole.SYSTEM,
            _localized(SYSTEM_MESSAGE_ADMIN_JOINED, session.locale),
            {"adminId": str(admin.id)},
        )
        await self.db.commit()

        logger.info("Admin %s took over chat session %s", admin.id, session.id)
        self._publish(admin_joined_event(session.id, admin.display_name), session)
        return session

    async def release_session(self, session_id: uuid.UUID, admin: AdminPrincipal) -> ChatSession:
        """ADMIN_ACTIVE -> ACTIVE: hand the conversation back to the AI assistant."""
        session = await self.get_session(session_id)
        self._validate_transition(session.status, ChatStatus.ACTIVE)
        if session.status != ChatStatus.ADMIN_ACTIVE:
            # ABANDONED -> ACTIVE is reserved for visitor traffic
            raise InvalidTransitionException(
                f"Chat session {session_id} is not under admin control"
            )

        previous_admin = session.admin_takeover_by
        self._apply_status(session, ChatStatus.ACTIVE)
        await self._append_message(
            session,
            MessageRole.SYSTEM,
            _localized(SYSTEM_MESSAGE_ADMIN_LEFT, session.locale),
            {"adminId": str(admin.id)},
        )
        await self.db.commit()

        if previous_admin is not None and previous_admin != admin.id:
            logger.info(
                "Admin %s released chat session %s held by admin %s",
                admin.id,
                session.id,
                previous_admin,
            )
        else:
            logger.info("Admin %s released chat session %s", admin.id, session.id)
        self._publish(admin_left_event(session.id), session)
        return session

    async def end_session(self, session_id: uuid.UUID, admin: AdminPrincipal) -> ChatSession:
        """(ACTIVE | ADMIN_ACTIVE) -> ENDED."""
        session = await self.get_session(session_id)
        self._validate_transition(session.status, ChatStatus.ENDED)

        self._apply_status(session, ChatStatus.ENDED)
        session.ended_at = datetime.now(UTC)
        await self.db.flush()
        await self.db.commit()

        logger.info("Admin %s ended chat session %s", admin.id, session.id)
        self._publish(session_ended_event(session.id, "ended"), session)
        return session

    async def mark_abandoned_sessions(self, inactive_minutes: int | None = None) -> int:
        """Sweep ACTIVE sessions idle past the threshold into ABANDONED.

        ADMIN_ACTIVE sessions are never swept: a human is present.
        """
        minutes = inactive_minutes if inactive_minutes is not None else settings.chat_inactivity_minutes
        cutoff = datetime.now(UTC) - timedelta(minutes=minutes)

        result = await self.db.execute(
            update(ChatSession)
            .where(
                ChatSession.status == ChatStatus.ACTIVE,
                ChatSession.last_activity_at < cutoff,
            )
            .values(status=ChatStatus.ABANDONED)
            .returning(ChatSession.id, ChatSession.session_token)
            .execution_options(synchronize_session=False)
        )
        swept = list(result.all())
        await self.db.commit()

        for session_id, session_token in swept:
            if self.broadcaster is not None:
                self.broadcaster.broadcast(
                    session_ended_event(session_id, "abandoned"), [session_token]
                )

        if swept:
            logger.info(
                "Marked %d chat session(s) abandoned after %d idle minutes", len(swept), minutes
            )
        return len(swept)

    # ------------------------------------------------------------------
    # Admin ingress
    # ------------------------------------------------------------------

    async def send_admin_message(
        self, session_id: uuid.UUID, content: str, admin: AdminPrincipal
    ) -> ChatMessage:
        """Persist an ADMIN message; only allowed while the session is taken over."""
        if not content or not content.strip():
            raise BadRequestException("Message content must not be empty")
        if len(content) > settings.chat_message_max_length:
            raise BadRequestException(
                f"Message content exceeds {settings.chat_message_max_length} characters"
            )

        session = await self.get_session(session_id)
        if not session.is_admin_takeover:
            raise TakeoverRequiredException("Admin must take over the session first")

        message = await self._append_message(
            session, MessageRole.ADMIN, content, {"adminId": str(admin.id)}
        )
        await self.db.commit()

        self._publish(new_message_event(session.id, message), session)
        return message

    # ------------------------------------------------------------------
    # Visitor ingress
    # ------------------------------------------------------------------

    async def get_or_create_visitor(
        self,
        visitor_id: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
        city: str | None = None,
        country: str | None = None,
    ) -> tuple[Visitor, bool]:
        """Return ``(visitor, created)`` for the browser-generated ``visitor_id``."""
        now = datetime.now(UTC)
        result = await self.db.execute(select(Visitor).where(Visitor.visitor_id == visitor_id))
        visitor = result.scalar_one_or_none()

        if visitor is not None:
            visitor.last_visit_at = now
            visitor.city = city or visitor.city
            visitor.country = country or visitor.country
            await self.db.flush()
            return visitor, False

        visitor = Visitor(
            id=uuid.uuid4(),
            visitor_id=visitor_id,
            ip_address=ip_address,
            user_agent=user_agent[:500] if user_agent else None,
            city=city,
            country=country,
            total_visits=1,
            last_visit_at=now,
        )
        self.db.add(visitor)
        await self.db.flush()
        logger.info("Registered new visitor %s", visitor.id)
        return visitor, True

    async def get_or_create_session(
        self,
        visitor: Visitor,
        session_token: str,
        current_page: str | None = None,
        locale: str | None = None,
    ) -> tuple[ChatSession, bool]:
        """Find the session for ``session_token`` or open a new one.

        Returns ``(session, created)``.  Traffic on an ABANDONED session
        reopens it; an ENDED session rejects further messages.
        """
        now = datetime.now(UTC)
        session = await self.get_session_by_token(session_token)

        if session is not None:
            if session.status == ChatStatus.ENDED:
                raise SessionClosedException("This chat session has ended")
            if session.status == ChatStatus.ABANDONED:
                self._validate_transition(session.status, ChatStatus.ACTIVE)
                self._apply_status(session, ChatStatus.ACTIVE)
                logger.info("Reopened abandoned chat session %s", session.id)
            session.current_page = current_page or session.current_page
            session.last_activity_at = now
            await self.db.flush()
            return session, False

        if locale not in SUPPORTED_LOCALES:
            locale = settings.chat_default_locale
        session = ChatSession(
            id=uuid.uuid4(),
            visitor_id=visitor.id,
            session_token=session_token,
            status=ChatStatus.ACTIVE,
            is_admin_takeover=False,
            current_page=current_page,
            locale=locale,
            started_at=now,
            last_activity_at=now,
        )
        self.db.add(session)
        await self.db.flush()
        logger.info("Started chat session %s for visitor %s", session.id, visitor.id)
        return session, True

    async def record_visitor_message(
        self,
        visitor_id: str,
        session_token: str,
        content: str,
        current_page: str | None = None,
        locale: str | None = None,
        city: str | None = None,
        country: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> VisitorMessageResult:
        """Store an inbound USER message and announce it to admins and the visitor's tabs."""
        visitor, visitor_created = await self.get_or_create_visitor(
            visitor_id, ip_address=ip_address, user_agent=user_agent, city=city, country=country
        )
        session, created = await self.get_or_create_session(
            visitor, session_token, current_page=current_page, locale=locale
        )
        if created and not visitor_created:
            visitor.total_visits = (visitor.total_visits or 0) + 1
        message = await self._append_message(session, MessageRole.USER, content)
        await self.db.commit()

        if created:
            self._publish(session_started_event(session.id, visitor))
        self._publish(new_message_event(session.id, message), session)
        if created:
            await self._notify(new_visitor_text(session, visitor))

        return VisitorMessageResult(
            session=session,
            message=message,
            admin_takeover=session.is_admin_takeover,
            session_created=created,
        )

    async def add_assistant_message(
        self,
        session: ChatSession,
        content: str,
        function_calls: list[FunctionCall] | None = None,
    ) -> ChatMessage | None:
        """Store an AI reply unless an admin has taken the session in the meantime."""
        await self.db.refresh(session, attribute_names=["status", "is_admin_takeover"])
        if session.is_admin_takeover or session.status not in OPEN_STATUSES:
            logger.info(
                "Discarding assistant reply for chat session %s (status %s)",
                session.id,
                session.status.value,
            )
            return None

        metadata = None
        if function_calls:
            metadata = {"functionCalls": [call.model_dump() for call in function_calls]}
        message = await self._append_message(session, MessageRole.ASSISTANT, content, metadata)
        await self.db.commit()

        self._publish(new_message_event(session.id, message), session)
        return message

    async def collect_contact(
        self,
        session: ChatSession,
        name: str,
        contact: str,
        message: str | None = None,
        source: str = CONTACT_SOURCE_AI,
        city: str | None = None,
    ) -> VisitorContact:
        """Upsert the visitor's contact details and notify admin dashboards and Telegram."""
        result = await self.db.execute(
            select(VisitorContact).where(VisitorContact.visitor_id == session.visitor_id)
        )
        record = result.scalar_one_or_none()
        if record is None:
            record = VisitorContact(
                id=uuid.uuid4(),
                visitor_id=session.visitor_id,
                name=name,
                contact=contact,
                message=message,
                source=source,
            )
            self.db.add(record)
        else:
            record.name = name
            record.contact = contact
            record.message = message or record.message
        await self.db.flush()
        await self.db.commit()

        logger.info("Collected contact for visitor %s in session %s", session.visitor_id, session.id)
        # Admin-only event: no token channel
        self._publish(contact_collected_event(session.id, name, contact))
        await self._notify(contact_collected_text(session, name, contact, message, city))
        return record

    async def respond_as_assistant(
        self, session: ChatSession, assistant: AssistantService, city: str | None = None
    ) -> AssistantResult:
        """Generate, store and publish the AI reply for the latest visitor message."""
        history = await self.get_messages(session.id, settings.chat_history_limit)
        reply = await assistant.reply(session, history)
        if reply is None:
            return AssistantResult(message=None, function_calls=[])

        for call in reply.function_calls:
            if call.name == TOOL_COLLECT_CONTACT_INFO:
                name = str(call.arguments.get("name", "")).strip()
                contact = str(call.arguments.get("contact", "")).strip()
                if name and contact:
                    await self.collect_contact(
                        session, name, contact, call.arguments.get("message"), city=city
                    )
            elif call.name == TOOL_ASK_FOR_CONTACT:
                await self._notify(contact_requested_text(session, city))
            elif call.name == TOOL_NAVIGATE_TO:
                path = str(call.arguments.get("path", ""))
                if path.startswith(PROJECT_PATH_PREFIX):
                    await self._notify(project_viewed_text(path[len(PROJECT_PATH_PREFIX):], city))

        stored = None
        if reply.content:
            stored = await self.add_assistant_message(
                session, reply.content, reply.function_calls
            )
        return AssistantResult(message=stored, function_calls=reply.function_calls)
