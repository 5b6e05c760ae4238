"""Server-sent event streams backed by the in-process broadcaster.

Each open stream owns a bounded ``asyncio.Queue``.  The broadcaster listener
only enqueues, so a slow client never blocks the producer; when the queue is
full the event is dropped for that stream with a warning.  The
generator's ``finally`` block unsubscribes, which runs on normal exit, on
client disconnect (Starlette cancels the stream task) and on server shutdown.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Collection

from starlette.requests import Request

from src.config import settings
from src.modules.chat.broadcaster import EventBroadcaster
from src.modules.chat.constants import FRAME_CONNECTED, FRAME_PING
from src.modules.chat.events import ChatEvent, now_ms

logger = logging.getLogger(__name__)


def format_sse(payload: dict) -> str:
    """Encode one ``data:`` frame."""
    return f"data: {json.dumps(payload, ensure_ascii=False, separators=(',', ':'))}\n\n"


def control_frame(frame_type: str) -> str:
    return format_sse({"type": frame_type, "timestamp": now_ms()})


async def event_stream(
    request: Request,
    broadcaster: EventBroadcaster,
    channel: str,
    allowed_types: Collection[str] | None = None,
    keepalive_seconds: float | None = None,
    queue_size: int | None = None,
) -> AsyncIterator[str]:
    """Yield SSE frames for ``channel`` until the client goes away.

    The first frame is ``connected``; a ``ping`` follows every
    ``keepalive_seconds`` regardless of event traffic.  ``allowed_types``
    filters events before they are queued.
    """
    interval = keepalive_seconds if keepalive_seconds is not None else settings.sse_keepalive_seconds
    queue: asyncio.Queue[ChatEvent] = asyncio.Queue(
        maxsize=queue_size if queue_size is not None else settings.sse_queue_max_size
    )

    def listener(event: ChatEvent) -> None:
        if allowed_types is not None and event.type not in allowed_types:
            return
        try:
            queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning("SSE queue full on channel %s, dropping %s event", channel, event.type)

    unsubscribe = broadcaster.subscribe(channel, listener)
    logger.debug("SSE stream opened on channel %s", channel)

    loop = asyncio.get_running_loop()
    try:
        yield control_frame(FRAME_CONNECTED)
        next_ping = loop.time() + interval

        while True:
            remaining = next_ping - loop.time()
            if remaining <= 0:
                if await request.is_disconnected():
                    break
                yield control_frame(FRAME_PING)
                next_ping += interval
                continue

            try:
                event = await asyncio.wait_for(queue.get(), timeout=remaining)
            except TimeoutError:
                continue
            yield format_sse(event.to_wire())
    finally:
        unsubscribe()
        logger.debug("SSE stream closed on channel %s", channel)
