"""FastAPI dependencies for the chat module."""

from fastapi import Request

from src.modules.chat.broadcaster import EventBroadcaster
from src.modules.chat.notifications import TelegramNotifier


def get_broadcaster(request: Request) -> EventBroadcaster:
    """Return the process-wide broadcaster created in the application lifespan."""
    return request.app.state.broadcaster


def get_notifier(request: Request) -> TelegramNotifier | None:
    """Return the lead notifier, or ``None`` when the app runs without one."""
    return getattr(request.app.state, "notifier", None)
