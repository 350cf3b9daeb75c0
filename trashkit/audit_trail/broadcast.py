"""
Live broadcast of activity and trash events.

Subscribers join rooms (``logs`` for every log entry, ``tenant:<id>`` for one
business). Delivery is best-effort: a subscriber that falls behind loses
events rather than slowing the publisher.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Optional, Set

logger = logging.getLogger(__name__)

LOGS_ROOM = "logs"


def tenant_room(tenant_id: str) -> str:
    return f"tenant:{tenant_id}"


@dataclass(frozen=True)
class Message:
    """One broadcast event."""

    room: str
    event: str
    payload: Dict[str, Any] = field(default_factory=dict)


class Broadcaster(ABC):
    """Publishes events to rooms."""

    @abstractmethod
    async def publish(self, room: str, event: str, payload: Dict[str, Any]) -> None:
        pass


class Subscription:
    """Queue of messages for one subscriber in one room."""

    def __init__(self, hub: "EventHub", room: str, maxsize: int):
        self.hub = hub
        self.room = room
        self.queue: "asyncio.Queue[Message]" = asyncio.Queue(maxsize=maxsize)

    async def get(self, timeout: Optional[float] = None) -> Message:
        if timeout is None:
            return await self.queue.get()
        return await asyncio.wait_for(self.queue.get(), timeout)

    def close(self) -> None:
        self.hub.unsubscribe(self)

    def __aiter__(self) -> AsyncIterator[Message]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[Message]:
        while True:
            yield await self.queue.get()

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


class EventHub(Broadcaster):
    """In-process broadcaster backed by one bounded queue per subscriber."""

    def __init__(self, subscriber_queue_size: int = 100):
        self.subscriber_queue_size = subscriber_queue_size
        self._rooms: Dict[str, Set[Subscription]] = {}

    def subscribe(self, room: str) -> Subscription:
        subscription = Subscription(self, room, self.subscriber_queue_size)
        self._rooms.setdefault(room, set()).add(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        members = self._rooms.get(subscription.room)
        if members is not None:
            members.discard(subscription)
            if not members:
                del self._rooms[subscription.room]

    def subscriber_count(self, room: str) -> int:
        return len(self._rooms.get(room, ()))

    async def publish(self, room: str, event: str, payload: Dict[str, Any]) -> None:
        message = Message(room=room, event=event, payload=payload)
        for subscription in list(self._rooms.get(room, ())):
            try:
                subscription.queue.put_nowait(message)
            except asyncio.QueueFull:
                logger.warning("Dropping %s event for a slow subscriber in %s", event, room)
