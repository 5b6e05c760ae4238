"""Tests for ChatService: takeover state machine, message ingress and event publishing."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.sql import operators

from src.config import settings
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
from src.modules.chat.assistant import AssistantReply
from src.modules.chat.broadcaster import EventBroadcaster
from src.modules.chat.constants import (
    ALL_CHANNEL,
    SYSTEM_MESSAGE_ADMIN_JOINED,
    SYSTEM_MESSAGE_ADMIN_LEFT,
)
from src.modules.chat.schemas import FunctionCall
from src.modules.chat.service import ChatService

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_scalar_result(value):
    """Create a mock result that returns a scalar value."""
    result = MagicMock()
    result.scalar_one_or_none.return_value = value
    result.scalar.return_value = value
    scalars_mock = MagicMock()
    scalars_mock.all.return_value = [value] if value else []
    result.scalars.return_value = scalars_mock
    return result


def _make_session(
    status: ChatStatus = ChatStatus.ACTIVE,
    token: str = "tok-123",
    locale: str = "ru",
    admin_id: uuid.UUID | None = None,
) -> ChatSession:
    now = datetime.now(UTC)
    return ChatSession(
        id=uuid.uuid4(),
        visitor_id=uuid.uuid4(),
        session_token=token,
        status=status,
        is_admin_takeover=status == ChatStatus.ADMIN_ACTIVE,
        admin_takeover_by=admin_id if status == ChatStatus.ADMIN_ACTIVE else None,
        locale=locale,
        started_at=now - timedelta(minutes=5),
        last_activity_at=now - timedelta(minutes=5),
    )


def _make_visitor() -> Visitor:
    return Visitor(
        id=uuid.uuid4(),
        visitor_id="visitor-abc",
        city="Chișinău",
        country="MD",
        total_visits=1,
        last_visit_at=datetime.now(UTC),
    )


def _added(mock_db, cls):
    return [call.args[0] for call in mock_db.add.call_args_list if isinstance(call.args[0], cls)]


def _listen(broadcaster: EventBroadcaster, channel: str) -> list:
    received: list = []
    broadcaster.subscribe(channel, received.append)
    return received


@pytest.fixture
def mock_db():
    session = AsyncMock()
    session.add = MagicMock()
    return session


@pytest.fixture
def broadcaster():
    return EventBroadcaster()


@pytest.fixture
def service(mock_db, broadcaster):
    return ChatService(mock_db, broadcaster)


@pytest.fixture
def admin():
    return AdminPrincipal(id=uuid.uuid4(), email="admin@metabyte.md", name="Maria")


# ---------------------------------------------------------------------------
# Takeover
# ---------------------------------------------------------------------------


class TestTakeover:
    @pytest.mark.asyncio
    async def test_unknown_locale_uses_default_message(self, service, mock_db, admin):
        chat = _make_session(locale="en")
        mock_db.execute.return_value = _make_scalar_result(chat)

        with patch.object(settings, "chat_default_locale", "ro"):
            await service.takeover_session(chat.id, admin)

        assert _added(mock_db, ChatMessage)[0].content == SYSTEM_MESSAGE_ADMIN_JOINED["ro"]

    @pytest.mark.asyncio
    async def test_takeover_active_session(self, service, mock_db, broadcaster, admin):
        chat = _make_session()
        mock_db.execute.return_value = _make_scalar_result(chat)
        by_token = _listen(broadcaster, "tok-123")
        by_all = _listen(broadcaster, ALL_CHANNEL)

        result = await service.takeover_session(chat.id, admin)

        assert result.status == ChatStatus.ADMIN_ACTIVE
        assert result.is_admin_takeover is True
        assert result.admin_takeover_by == admin.id
        system = _added(mock_db, ChatMessage)
        assert len(system) == 1
        assert system[0].role == MessageRole.SYSTEM
        assert system[0].content == SYSTEM_MESSAGE_ADMIN_JOINED["ru"]
        mock_db.commit.assert_awaited_once()
        assert [e.type for e in by_token] == ["admin_joined"]
        assert by_token[0].data.admin_name == "Maria"
        assert [e.type for e in by_all] == ["admin_joined"]

    @pytest.mark.asyncio
    async def test_takeover_falls_back_to_email(self, service, mock_db, broadcaster):
        chat = _make_session()
        mock_db.execute.return_value = _make_scalar_result(chat)
        received = _listen(broadcaster, str(chat.id))
        nameless = AdminPrincipal(id=uuid.uuid4(), email="ops@metabyte.md")

        await service.takeover_session(chat.id, nameless)

        assert received[0].data.admin_name == "ops@metabyte.md"

    @pytest.mark.asyncio
    async def test_takeover_already_taken_rejected(self, service, mock_db, broadcaster, admin):
        other_admin = uuid.uuid4()
        chat = _make_session(ChatStatus.ADMIN_ACTIVE, admin_id=other_admin)
        mock_db.execute.return_value = _make_scalar_result(chat)
        received = _listen(broadcaster, ALL_CHANNEL)

        with pytest.raises(InvalidTransitionException):
            await service.takeover_session(chat.id, admin)

        assert chat.admin_takeover_by == other_admin
        mock_db.commit.assert_not_awaited()
        assert received == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [ChatStatus.ENDED, ChatStatus.ABANDONED])
    async def test_takeover_closed_session_rejected(self, service, mock_db, admin, status):
        mock_db.execute.return_value = _make_scalar_result(_make_session(status))

        with pytest.raises(InvalidTransitionException):
            await service.takeover_session(uuid.uuid4(), admin)

    @pytest.mark.asyncio
    async def test_takeover_unknown_session(self, service, mock_db, admin):
        mock_db.execute.return_value = _make_scalar_result(None)

        with pytest.raises(NotFoundException, match="not found"):
            await service.takeover_session(uuid.uuid4(), admin)


class TestRelease:
    @pytest.mark.asyncio
    async def test_release_returns_control_to_ai(self, service, mock_db, broadcaster, admin):
        chat = _make_session(ChatStatus.ADMIN_ACTIVE, locale="ro", admin_id=admin.id)
        mock_db.execute.return_value = _make_scalar_result(chat)
        by_token = _listen(broadcaster, "tok-123")

        result = await service.release_session(chat.id, admin)

        assert result.status == ChatStatus.ACTIVE
        assert result.is_admin_takeover is False
        assert result.admin_takeover_by is None
        system = _added(mock_db, ChatMessage)
        assert system[0].content == SYSTEM_MESSAGE_ADMIN_LEFT["ro"]
        assert [e.type for e in by_token] == ["admin_left"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status", [ChatStatus.ACTIVE, ChatStatus.ABANDONED, ChatStatus.ENDED]
    )
    async def test_release_requires_takeover(self, service, mock_db, admin, status):
        mock_db.execute.return_value = _make_scalar_result(_make_session(status))

        with pytest.raises(InvalidTransitionException):
            await service.release_session(uuid.uuid4(), admin)

        mock_db.add.assert_not_called()


class TestEndSession:
    @pytest.mark.asyncio
    async def test_end_taken_over_session(self, service, mock_db, broadcaster, admin):
        chat = _make_session(ChatStatus.ADMIN_ACTIVE, admin_id=admin.id)
        mock_db.execute.return_value = _make_scalar_result(chat)
        by_all = _listen(broadcaster, ALL_CHANNEL)

        result = await service.end_session(chat.id, admin)

        assert result.status == ChatStatus.ENDED
        assert result.is_admin_takeover is False
        assert result.admin_takeover_by is None
        assert result.ended_at is not None
        assert by_all[0].type == "session_ended"
        assert by_all[0].data.reason == "ended"

    @pytest.mark.asyncio
    async def test_end_is_terminal(self, service, mock_db, admin):
        mock_db.execute.return_value = _make_scalar_result(_make_session(ChatStatus.ENDED))

        with pytest.raises(InvalidTransitionException):
            await service.end_session(uuid.uuid4(), admin)


class TestMarkAbandoned:
    @pytest.mark.asyncio
    async def test_sweeps_and_announces(self, service, mock_db, broadcaster):
        swept_id = uuid.uuid4()
        result = MagicMock()
        result.all.return_value = [(swept_id, "tok-old")]
        mock_db.execute.return_value = result
        by_token = _listen(broadcaster, "tok-old")

        count = await service.mark_abandoned_sessions(30)

        assert count == 1
        mock_db.commit.assert_awaited_once()
        assert by_token[0].type == "session_ended"
        assert by_token[0].data.reason == "abandoned"
        assert by_token[0].session_id == str(swept_id)

    @pytest.mark.asyncio
    async def test_only_stale_active_sessions_are_swept(self, mock_db):
        result = MagicMock()
        result.all.return_value = []
        mock_db.execute.return_value = result

        before = datetime.now(UTC)
        await ChatService(mock_db).mark_abandoned_sessions(30)
        after = datetime.now(UTC)

        statement = mock_db.execute.await_args.args[0]
        criteria = {
            clause.left.key: (clause.operator, clause.right.value)
            for clause in statement.whereclause.clauses
        }
        assert set(criteria) == {"status", "last_activity_at"}

        status_op, status_value = criteria["status"]
        assert status_op is operators.eq
        assert status_value == ChatStatus.ACTIVE

        activity_op, cutoff = criteria["last_activity_at"]
        assert activity_op is operators.lt
        assert before - timedelta(minutes=30) <= cutoff <= after - timedelta(minutes=30)

        compiled = statement.compile(dialect=postgresql.dialect())
        assert compiled.params["status"] == ChatStatus.ABANDONED

    @pytest.mark.asyncio
    async def test_nothing_to_sweep(self, mock_db):
        result = MagicMock()
        result.all.return_value = []
        mock_db.execute.return_value = result

        assert await ChatService(mock_db).mark_abandoned_sessions() == 0


# ---------------------------------------------------------------------------
# Admin messages
# ---------------------------------------------------------------------------


class TestSendAdminMessage:
    @pytest.mark.asyncio
    async def test_requires_takeover(self, service, mock_db, broadcaster, admin):
        mock_db.execute.return_value = _make_scalar_result(_make_session(ChatStatus.ACTIVE))
        received = _listen(broadcaster, ALL_CHANNEL)

        with pytest.raises(TakeoverRequiredException):
            await service.send_admin_message(uuid.uuid4(), "Hello", admin)

        mock_db.add.assert_not_called()
        assert received == []

    @pytest.mark.asyncio
    async def test_persists_and_broadcasts(self, service, mock_db, broadcaster, admin):
        chat = _make_session(ChatStatus.ADMIN_ACTIVE, admin_id=admin.id)
        mock_db.execute.return_value = _make_scalar_result(chat)
        by_token = _listen(broadcaster, "tok-123")
        by_session = _listen(broadcaster, str(chat.id))

        message = await service.send_admin_message(chat.id, "Bună!", admin)

        assert message.role == MessageRole.ADMIN
        assert message.content == "Bună!"
        assert message.metadata_extra == {"adminId": str(admin.id)}
        assert message.session_id == chat.id
        assert chat.last_activity_at == message.created_at
        assert by_token[0].type == "new_message"
        assert by_token[0].data.message.id == str(message.id)
        assert len(by_session) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("content", ["", "   "])
    async def test_blank_content_rejected(self, service, mock_db, admin, content):
        with pytest.raises(BadRequestException):
            await service.send_admin_message(uuid.uuid4(), content, admin)

        mock_db.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_commit_publishes_nothing(self, service, mock_db, broadcaster, admin):
        chat = _make_session(ChatStatus.ADMIN_ACTIVE, admin_id=admin.id)
        mock_db.execute.return_value = _make_scalar_result(chat)
        mock_db.commit.side_effect = RuntimeError("connection lost")
        received = _listen(broadcaster, ALL_CHANNEL)

        with pytest.raises(RuntimeError):
            await service.send_admin_message(chat.id, "Hello", admin)

        assert received == []


# ---------------------------------------------------------------------------
# Visitor ingress
# ---------------------------------------------------------------------------


class TestRecordVisitorMessage:
    @pytest.mark.asyncio
    async def test_first_message_creates_visitor_and_session(
        self, service, mock_db, broadcaster
    ):
        mock_db.execute.side_effect = [_make_scalar_result(None), _make_scalar_result(None)]
        by_all = _listen(broadcaster, ALL_CHANNEL)
        by_token = _listen(broadcaster, "tok-new")

        result = await service.record_visitor_message(
            visitor_id="visitor-abc",
            session_token="tok-new",
            content="Salut",
            current_page="/projects",
            locale="ro",
            ip_address="203.0.113.7",
        )

        assert result.session_created is True
        assert result.admin_takeover is False
        assert result.session.status == ChatStatus.ACTIVE
        assert result.session.locale == "ro"
        assert result.message.role == MessageRole.USER
        assert len(_added(mock_db, Visitor)) == 1
        assert len(_added(mock_db, ChatSession)) == 1
        assert [e.type for e in by_all] == ["session_started", "new_message"]
        assert [e.type for e in by_token] == ["new_message"]

    @pytest.mark.asyncio
    async def test_unsupported_locale_falls_back(self, service, mock_db):
        mock_db.execute.side_effect = [_make_scalar_result(None), _make_scalar_result(None)]

        result = await service.record_visitor_message(
            visitor_id="visitor-abc", session_token="tok-new", content="Hi", locale="de"
        )

        assert result.session.locale == "ru"

    @pytest.mark.asyncio
    async def test_message_during_takeover_reports_admin(self, service, mock_db, broadcaster):
        visitor = _make_visitor()
        chat = _make_session(ChatStatus.ADMIN_ACTIVE, admin_id=uuid.uuid4())
        mock_db.execute.side_effect = [_make_scalar_result(visitor), _make_scalar_result(chat)]
        by_all = _listen(broadcaster, ALL_CHANNEL)

        result = await service.record_visitor_message(
            visitor_id=visitor.visitor_id, session_token="tok-123", content="Are you there?"
        )

        assert result.admin_takeover is True
        assert result.session_created is False
        assert chat.status == ChatStatus.ADMIN_ACTIVE
        assert [e.type for e in by_all] == ["new_message"]

    @pytest.mark.asyncio
    async def test_abandoned_session_reopens(self, service, mock_db):
        visitor = _make_visitor()
        chat = _make_session(ChatStatus.ABANDONED)
        mock_db.execute.side_effect = [_make_scalar_result(visitor), _make_scalar_result(chat)]

        result = await service.record_visitor_message(
            visitor_id=visitor.visitor_id, session_token="tok-123", content="I'm back"
        )

        assert result.session.status == ChatStatus.ACTIVE
        assert result.session.is_admin_takeover is False

    @pytest.mark.asyncio
    async def test_ended_session_rejects_messages(self, service, mock_db, broadcaster):
        visitor = _make_visitor()
        chat = _make_session(ChatStatus.ENDED)
        mock_db.execute.side_effect = [_make_scalar_result(visitor), _make_scalar_result(chat)]
        received = _listen(broadcaster, ALL_CHANNEL)

        with pytest.raises(SessionClosedException):
            await service.record_visitor_message(
                visitor_id=visitor.visitor_id, session_token="tok-123", content="Hello?"
            )

        assert _added(mock_db, ChatMessage) == []
        assert received == []

    @pytest.mark.asyncio
    async def test_returning_visitor_new_session_counts_visit(self, service, mock_db):
        visitor = _make_visitor()
        mock_db.execute.side_effect = [_make_scalar_result(visitor), _make_scalar_result(None)]

        await service.record_visitor_message(
            visitor_id=visitor.visitor_id, session_token="tok-second", content="Hi again"
        )

        assert visitor.total_visits == 2


class TestAssistantMessages:
    @pytest.mark.asyncio
    async def test_reply_dropped_after_takeover(self, service, mock_db, broadcaster):
        chat = _make_session(ChatStatus.ADMIN_ACTIVE, admin_id=uuid.uuid4())
        received = _listen(broadcaster, ALL_CHANNEL)

        message = await service.add_assistant_message(chat, "AI answer")

        assert message is None
        mock_db.refresh.assert_awaited_once()
        mock_db.add.assert_not_called()
        assert received == []

    @pytest.mark.asyncio
    async def test_reply_stored_with_function_calls(self, service, mock_db, broadcaster):
        chat = _make_session()
        by_token = _listen(broadcaster, "tok-123")
        calls = [FunctionCall(name="navigateTo", arguments={"path": "/projects"})]

        message = await service.add_assistant_message(chat, "Look here", calls)

        assert message.role == MessageRole.ASSISTANT
        assert message.metadata_extra == {
            "functionCalls": [{"name": "navigateTo", "arguments": {"path": "/projects"}}]
        }
        assert by_token[0].type == "new_message"

    @pytest.mark.asyncio
    async def test_collect_contact_is_admin_only_event(self, service, mock_db, broadcaster):
        chat = _make_session()
        mock_db.execute.return_value = _make_scalar_result(None)
        by_all = _listen(broadcaster, ALL_CHANNEL)
        by_token = _listen(broadcaster, "tok-123")

        record = await service.collect_contact(chat, "Ion", "@ion_md", "Need a shop")

        assert isinstance(record, VisitorContact)
        assert record.visitor_id == chat.visitor_id
        assert [e.type for e in by_all] == ["contact_collected"]
        assert by_token == []

    @pytest.mark.asyncio
    async def test_collect_contact_updates_existing(self, service, mock_db):
        chat = _make_session()
        existing = VisitorContact(
            id=uuid.uuid4(), visitor_id=chat.visitor_id, name="Old", contact="+373", message="x"
        )
        mock_db.execute.return_value = _make_scalar_result(existing)

        record = await service.collect_contact(chat, "Ion", "@ion_md")

        assert record is existing
        assert record.name == "Ion"
        assert record.message == "x"
        mock_db.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_respond_as_assistant_runs_contact_tool(self, service):
        chat = _make_session()
        assistant = MagicMock()
        calls = [FunctionCall(name="collectContactInfo", arguments={"name": "Ion", "contact": "@ion"})]
        assistant.reply = AsyncMock(return_value=AssistantReply(content="Thanks!", function_calls=calls))
        stored = MagicMock()

        with (
            patch.object(service, "get_messages", AsyncMock(return_value=[])),
            patch.object(service, "collect_contact", AsyncMock()) as collect,
            patch.object(service, "add_assistant_message", AsyncMock(return_value=stored)) as add,
        ):
            result = await service.respond_as_assistant(chat, assistant)

        collect.assert_awaited_once_with(chat, "Ion", "@ion", None, city=None)
        add.assert_awaited_once_with(chat, "Thanks!", calls)
        assert result.message is stored
        assert result.function_calls == calls

    @pytest.mark.asyncio
    async def test_respond_as_assistant_without_reply(self, service):
        chat = _make_session()
        assistant = MagicMock()
        assistant.reply = AsyncMock(return_value=None)

        with patch.object(service, "get_messages", AsyncMock(return_value=[])):
            result = await service.respond_as_assistant(chat, assistant)

        assert result.message is None
        assert result.function_calls == []


class TestLeadNotifications:
    @pytest.fixture
    def notifier(self):
        return AsyncMock()

    @pytest.fixture
    def notifying_service(self, mock_db, broadcaster, notifier):
        return ChatService(mock_db, broadcaster, notifier)

    @pytest.mark.asyncio
    async def test_new_session_notifies_after_commit(self, notifying_service, mock_db, notifier):
        mock_db.execute.side_effect = [_make_scalar_result(None), _make_scalar_result(None)]
        order: list[str] = []
        mock_db.commit.side_effect = lambda: order.append("commit")
        notifier.send.side_effect = lambda text: order.append("notify")

        await notifying_service.record_visitor_message(
            visitor_id="visitor-abc", session_token="tok-new", content="Salut", current_page="/"
        )

        notifier.send.assert_awaited_once()
        assert "Новый посетитель" in notifier.send.await_args.args[0]
        assert order == ["commit", "notify"]

    @pytest.mark.asyncio
    async def test_existing_session_does_not_notify(self, notifying_service, mock_db, notifier):
        visitor = _make_visitor()
        chat = _make_session()
        mock_db.execute.side_effect = [_make_scalar_result(visitor), _make_scalar_result(chat)]

        await notifying_service.record_visitor_message(
            visitor_id=visitor.visitor_id, session_token="tok-123", content="One more thing"
        )

        notifier.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_collect_contact_notifies(self, notifying_service, mock_db, notifier):
        chat = _make_session()
        mock_db.execute.return_value = _make_scalar_result(None)

        await notifying_service.collect_contact(chat, "Ion", "@ion_md", "Need a shop", city="Bălți")

        mock_db.commit.assert_awaited_once()
        text = notifier.send.await_args.args[0]
        assert "@ion_md" in text
        assert "Bălți" in text

    @pytest.mark.asyncio
    async def test_failed_delivery_keeps_contact(self, notifying_service, mock_db, notifier):
        chat = _make_session()
        mock_db.execute.return_value = _make_scalar_result(None)
        notifier.send.return_value = False

        record = await notifying_service.collect_contact(chat, "Ion", "@ion_md")

        assert record.contact == "@ion_md"
        mock_db.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_assistant_tools_notify(self, notifying_service, notifier):
        chat = _make_session()
        assistant = MagicMock()
        calls = [
            FunctionCall(name="askForContact", arguments={}),
            FunctionCall(name="navigateTo", arguments={"path": "/projects/online-store"}),
            FunctionCall(name="navigateTo", arguments={"path": "/contacts"}),
        ]
        assistant.reply = AsyncMock(return_value=AssistantReply(content="", function_calls=calls))

        with patch.object(notifying_service, "get_messages", AsyncMock(return_value=[])):
            await notifying_service.respond_as_assistant(chat, assistant, city="Cahul")

        texts = [call.args[0] for call in notifier.send.await_args_list]
        assert len(texts) == 2
        assert "запросил контакты" in texts[0]
        assert "online-store" in texts[1]
        assert all("Cahul" in text for text in texts)


class TestReads:
    @pytest.mark.asyncio
    async def test_get_messages_limit_returns_oldest_first(self, service, mock_db):
        newer = MagicMock(content="second")
        older = MagicMock(content="first")
        result = MagicMock()
        result.scalars.return_value.all.return_value = [newer, older]
        mock_db.execute.return_value = result

        messages = await service.get_messages(uuid.uuid4(), limit=2)

        assert [m.content for m in messages] == ["first", "second"]

    @pytest.mark.asyncio
    async def test_visitor_history_unknown_token(self, service, mock_db):
        mock_db.execute.return_value = _make_scalar_result(None)

        with pytest.raises(NotFoundException):
            await service.get_visitor_history("tok-missing")
