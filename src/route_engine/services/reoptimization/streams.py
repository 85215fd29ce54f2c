"""Fan-out output streams backed by per-subscriber asyncio queues."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import AsyncIterator, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Broadcast(Generic[T]):
    """Publishes every item to all current subscribers and keeps a short history."""

    def __init__(self, name: str, *, subscriber_queue_size: int = 100, history_size: int = 50) -> None:
        self.name = name
        self.subscriber_queue_size = subscriber_queue_size
        self.history: deque[T] = deque(maxlen=history_size)
        self._subscribers: list[asyncio.Queue[T]] = []

    def subscribe(self) -> asyncio.Queue[T]:
        queue: asyncio.Queue[T] = asyncio.Queue(maxsize=self.subscriber_queue_size)
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[T]) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, item: T) -> None:
        self.history.append(item)
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(item)
            except asyncio.QueueFull:
                logger.warning("Subscriber queue on stream '%s' is full; dropping item", self.name)

    async def listen(self) -> AsyncIterator[T]:
        queue = self.subscribe()
        try:
            while True:
                yield await queue.get()
        finally:
            self.unsubscribe(queue)
