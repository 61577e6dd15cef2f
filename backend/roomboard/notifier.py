"""
Change notifier: fans store commits out to every connected viewer.

Each subscriber owns a bounded queue. Publishing is synchronous
(``put_nowait``) so the order events are published in is the order every
subscriber receives them. A subscriber that falls too far behind is dropped
rather than allowed to stall the store; its stream ends and the viewer
reconnects and pulls a fresh snapshot.
"""

import asyncio
import json
import logging
from typing import Any, AsyncIterator, List, Optional, Tuple

from .models import Room

logger = logging.getLogger(__name__)

EVENT_CONNECTED = "connected"
EVENT_ROOM_UPDATE = "roomUpdate"
EVENT_RESET = "reset"

KEEPALIVE_COMMENT = ": keepalive\n\n"


def format_sse(event: str, data: Any) -> str:
    return f"event: {event}\ndata: {json.dumps(data, ensure_ascii=False)}\n\n"


class Subscription:
    def __init__(self, max_pending: int):
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=max_pending)
        self.closed = False

    async def next_event(self, timeout: Optional[float] = None) -> Optional[Tuple[str, Any]]:
        """Wait for the next (event, data) pair; None on timeout."""
        try:
            return await asyncio.wait_for(self.queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None


class ChangeNotifier:
    def __init__(self, max_pending: int = 500):
        self.max_pending = max_pending
        self._subscribers: List[Subscription] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> Subscription:
        subscription = Subscription(self.max_pending)
        # No backlog: a new subscriber only learns it is connected and must pull a snapshot itself
        subscription.queue.put_nowait((EVENT_CONNECTED, {"status": "ok"}))
        self._subscribers.append(subscription)
        logger.info(f"Viewer subscribed ({self.subscriber_count} connected)")
        return subscription

    def unsubscribe(self, subscription: Subscription):
        subscription.closed = True
        if subscription in self._subscribers:
            self._subscribers.remove(subscription)
            logger.info(f"Viewer unsubscribed ({self.subscriber_count} connected)")

    def publish(self, event: str, data: Any):
        for subscription in list(self._subscribers):
            try:
                subscription.queue.put_nowait((event, data))
            except asyncio.QueueFull:
                logger.warning("Dropping viewer that stopped reading events")
                self.unsubscribe(subscription)

    def publish_room(self, room: Room):
        self.publish(EVENT_ROOM_UPDATE, room.model_dump(mode="json"))

    def publish_reset(self, rooms: List[Room]):
        self.publish(EVENT_RESET, [room.model_dump(mode="json") for room in rooms])

    def close(self):
        for subscription in list(self._subscribers):
            self.unsubscribe(subscription)


async def event_stream(notifier: ChangeNotifier, request, keepalive_seconds: float = 15.0) -> AsyncIterator[str]:
    """Server-sent-event body for one viewer; deregisters on disconnect."""
    subscription = notifier.subscribe()
    try:
        while not subscription.closed:
            if await request.is_disconnected():
                break
            item = await subscription.next_event(timeout=keepalive_seconds)
            if item is None:
                yield KEEPALIVE_COMMENT
                continue
            event, data = item
            yield format_sse(event, data)
    finally:
        notifier.unsubscribe(subscription)
