"""Pytest fixtures for cross-module chat tests."""

import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.models.chat_session import ChatSession
from src.modules.admin.auth import AdminPrincipal
from src.modules.chat.broadcaster import EventBroadcaster


class InMemoryStore:
    """Stands in for an AsyncSession: keeps added rows and answers single-entity selects."""

    def __init__(self) -> None:
        self.rows: list = []

    def add(self, obj) -> None:
        self.rows.append(obj)

    def of_type(self, cls) -> list:
        return [row for row in self.rows if isinstance(row, cls)]

    async def execute(self, statement, *args, **kwargs):
        entity = statement.column_descriptions[0]["entity"]
        matches = self.of_type(entity) if entity is not None else []
        result = MagicMock()
        result.scalar_one_or_none.return_value = matches[0] if matches else None
        result.scalars.return_value.all.return_value = matches
        return result

    @property
    def session(self) -> ChatSession:
        return self.of_type(ChatSession)[0]


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def db(store):
    session = AsyncMock()
    session.add = MagicMock(side_effect=store.add)
    session.execute = AsyncMock(side_effect=store.execute)
    return session


@pytest.fixture
def broadcaster():
    broadcaster = EventBroadcaster()
    yield broadcaster
    broadcaster.close()


@pytest.fixture
def admin():
    return AdminPrincipal(id=uuid.uuid4(), email="admin@metabyte.md", name="Maria")
