"""Celery tasks for chat session housekeeping."""

from __future__ import annotations

import asyncio
import logging

from celery_app import celery
from src.config import settings
from src.database.engine import async_session

logger = logging.getLogger(__name__)


async def _mark_abandoned_sessions_async(inactive_minutes: int | None = None) -> dict:
    """Move idle ACTIVE sessions to ABANDONED.

    Workers run outside the web process and have no broadcaster, so the sweep
    only updates rows; dashboards pick the change up on their next list fetch.
    """
    from src.modules.chat.service import ChatService

    minutes = inactive_minutes if inactive_minutes is not None else settings.chat_inactivity_minutes
    async with async_session() as session:
        svc = ChatService(session)
        abandoned = await svc.mark_abandoned_sessions(minutes)

    return {"abandoned": abandoned, "inactive_minutes": minutes}


@celery.task(name="src.modules.chat.tasks.mark_abandoned_sessions")
def mark_abandoned_sessions(inactive_minutes: int | None = None):
    """Sweep idle chat sessions into ABANDONED."""
    stats = asyncio.run(_mark_abandoned_sessions_async(inactive_minutes))
    logger.info("mark_abandoned_sessions complete: %s", stats)
    return stats
