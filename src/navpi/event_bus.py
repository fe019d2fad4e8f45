from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Any, AsyncIterator, DefaultDict, Dict, Optional

logger = logging.getLogger(__name__)

Event = Dict[str, Any]


class EventBus:
    """In-process pub/sub. Each subscriber gets its own FIFO queue per topic,
    so events on one topic reach every subscriber in publish order.

    The most recent event per topic is retained; a subscriber opened with
    ``replay_last`` starts with it (e.g. the current GPS fix for a new
    dashboard stream).
    """

    def __init__(self) -> None:
        self._subscribers: DefaultDict[str, list[asyncio.Queue[Event]]] = defaultdict(list)
        self._last: Dict[str, Event] = {}
        self._lock = asyncio.Lock()

    async def publish(self, topic: str, event: Event) -> None:
        async with self._lock:
            self._last[topic] = event
            queues = list(self._subscribers.get(topic, []))
        for queue in queues:
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning("Subscriber queue full on %s; dropping event", topic)

    def last_event(self, topic: str) -> Optional[Event]:
        return self._last.get(topic)

    async def open_queue(self, topic: str, max_queue_size: int = 100, replay_last: bool = False) -> asyncio.Queue[Event]:
        queue: asyncio.Queue[Event] = asyncio.Queue(maxsize=max_queue_size)
        async with self._lock:
            if replay_last and topic in self._last:
                queue.put_nowait(self._last[topic])
            self._subscribers[topic].append(queue)
        return queue

    async def close_queue(self, topic: str, queue: asyncio.Queue[Event]) -> None:
        async with self._lock:
            if queue in self._subscribers.get(topic, []):
                self._subscribers[topic].remove(queue)

    async def subscribe(self, topic: str, max_queue_size: int = 100, replay_last: bool = False) -> AsyncIterator[Event]:
        queue = await self.open_queue(topic, max_queue_size, replay_last)
        try:
            while True:
                yield await queue.get()
        finally:
            await self.close_queue(topic, queue)

    def subscriber_count(self, topic: str) -> int:
        return len(self._subscribers.get(topic, []))
