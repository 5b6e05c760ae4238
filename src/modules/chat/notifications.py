"""Telegram lead notifications for the sales chat.

Messages go to one configured chat through the Bot API ``sendMessage`` call.
Delivery is best-effort: a missing token or chat id turns the notifier off,
and transport or API errors are logged and never reach the visitor request.
"""

from __future__ import annotations

import html
import logging
from datetime import UTC, datetime

import httpx

from src.config import settings
from src.models.chat_session import ChatSession
from src.models.visitor import Visitor

logger = logging.getLogger(__name__)

UNKNOWN = "Не определён"
ANONYMOUS = "Аноним"


def _field(value: str | None, fallback: str = UNKNOWN) -> str:
    return html.escape(value) if value else fallback


def _stamp() -> str:
    return datetime.now(UTC).strftime("%d.%m.%Y %H:%M UTC")


def new_visitor_text(session: ChatSession, visitor: Visitor) -> str:
    visits = visitor.total_visits or 1
    title = "🆕 Новый посетитель на сайте!" if visits <= 1 else f"🔁 Посетитель вернулся (визит №{visits})"
    return (
        f"<b>{title}</b>\n\n"
        f"📍 Страница: {_field(session.current_page)}\n"
        f"🌆 Город: {_field(visitor.city)}\n"
        f"⏰ {_stamp()}"
    )


def contact_collected_text(
    session: ChatSession,
    name: str,
    contact: str,
    message: str | None = None,
    city: str | None = None,
) -> str:
    lines = [
        "<b>🎯 AI собрал контакты!</b>\n",
        f"👤 Имя: {_field(name)}",
        f"📱 Контакт: {_field(contact)}",
    ]
    if message:
        lines.append(f"💬 Сообщение: {_field(message)}")
    lines += [
        f"🌆 Город: {_field(city)}",
        f"📍 Страница: {_field(session.current_page)}\n",
        f"⏰ {_stamp()}",
    ]
    return "\n".join(lines)


def contact_requested_text(session: ChatSession, city: str | None = None) -> str:
    return (
        "<b>📋 AI запросил контакты у клиента</b>\n\n"
        f"👤 Клиент: {ANONYMOUS}\n"
        f"🌆 Город: {_field(city)}\n"
        f"📍 Страница: {_field(session.current_page)}\n\n"
        f"⏰ {_stamp()}"
    )


def project_viewed_text(project_slug: str, city: str | None = None) -> str:
    return (
        "<b>👀 Клиент смотрит проект</b>\n\n"
        f"📂 Проект: {_field(project_slug)}\n"
        f"🌆 Город: {_field(city)}\n\n"
        f"⏰ {_stamp()}"
    )


class TelegramNotifier:
    """Posts HTML-formatted messages to the configured Telegram chat."""

    def __init__(
        self,
        bot_token: str | None = None,
        chat_id: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.bot_token = settings.telegram_bot_token if bot_token is None else bot_token
        self.chat_id = settings.telegram_chat_id if chat_id is None else chat_id
        self._client = client

    @property
    def enabled(self) -> bool:
        return bool(self.bot_token and self.chat_id)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=settings.telegram_api_url, timeout=settings.telegram_timeout_seconds
            )
        return self._client

    async def send(self, text: str) -> bool:
        """Send one message; returns whether Telegram accepted it."""
        if not self.enabled:
            logger.debug("Telegram not configured, skipping notification")
            return False

        client = await self._get_client()
        try:
            response = await client.post(
                f"/bot{self.bot_token}/sendMessage",
                json={"chat_id": self.chat_id, "text": text, "parse_mode": "HTML"},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "Telegram rejected notification: HTTP %d", exc.response.status_code
            )
            return False
        except httpx.HTTPError as exc:
            logger.warning("Failed to send Telegram notification: %s", type(exc).__name__)
            return False
        return True

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None
