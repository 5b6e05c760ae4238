"""In-process publish/subscribe registry for live chat events.

One ``EventBroadcaster`` is built per process in the application lifespan
and handed to routes through ``get_broadcaster``.  Delivery is synchronous,
best-effort and single-process: there is no replay, no persistence and no
fan-out across server instances.  Running more than one instance requires
swapping this class for a broker-backed implementation with the same
``subscribe``/``broadcast`` surface.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable

from src.modules.chat.constants import ALL_CHANNEL
from src.modules.chat.events import ChatEvent, now_ms

logger = logging.getLogger(__name__)

Listener = Callable[[ChatEvent], None]
Unsubscribe = Callable[[], None]


class EventBroadcaster:
    """Maps channel names to listener callbacks.

    Channels are created on first subscribe and removed when their last
    listener unsubscribes.  Listeners are held in insertion-ordered dicts so
    delivery follows registration order.
    """

    def __init__(self) -> None:
        self._channels: dict[str, dict[int, Listener]] = {}
        self._next_token = 0
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Subscription
    # ------------------------------------------------------------------

    def subscribe(self, channel: str, listener: Listener) -> Unsubscribe:
        """Register ``listener`` on ``channel`` and return its unsubscribe handle.

        The handle removes exactly this registration and is safe to call more
        than once.
        """
        with self._lock:
            token = self._next_token
            self._next_token += 1
            self._channels.setdefault(channel, {})[token] = listener

        def unsubscribe() -> None:
            with self._lock:
                listeners = self._channels.get(channel)
                if listeners is None:
                    return
                listeners.pop(token, None)
                if not listeners:
                    del self._channels[channel]

        return unsubscribe

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    def broadcast(self, event: ChatEvent, additional_channels: Iterable[str] = ()) -> int:
        """Deliver ``event`` to its session channel, ``additional_channels`` and ``all``.

        Each channel is visited once even when names coincide.  A listener
        that raises is logged and skipped; the remaining listeners still
        receive the event.  Returns the number of successful deliveries.
        """
        if event.timestamp is None:
            event = event.model_copy(update={"timestamp": now_ms()})

        targets: list[str] = []
        for channel in (event.session_id, *additional_channels, ALL_CHANNEL):
            if channel and channel not in targets:
                targets.append(channel)

        with self._lock:
            snapshot = [
                (channel, list(self._channels[channel].values()))
                for channel in targets
                if channel in self._channels
            ]

        delivered = 0
        for channel, listeners in snapshot:
            for listener in listeners:
                try:
                    listener(event)
                    delivered += 1
                except Exception:
                    logger.exception(
                        "Listener on channel %s failed for %s event", channel, event.type
                    )
        return delivered

    # ------------------------------------------------------------------
    # Introspection / lifecycle
    # ------------------------------------------------------------------

    def listener_count(self, channel: str | None = None) -> int:
        """Number of listeners on ``channel``, or across all channels when omitted."""
        with self._lock:
            if channel is not None:
                return len(self._channels.get(channel, {}))
            return sum(len(listeners) for listeners in self._channels.values())

    def has_channel(self, channel: str) -> bool:
        with self._lock:
            return channel in self._channels

    def channels(self) -> list[str]:
        with self._lock:
            return list(self._channels)

    def close(self) -> None:
        """Drop every listener; called once at application shutdown."""
        with self._lock:
            dropped = sum(len(listeners) for listeners in self._channels.values())
            self._channels.clear()
        if dropped:
            logger.info("Broadcaster closed, dropped %d listener(s)", dropped)
