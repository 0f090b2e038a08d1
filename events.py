"""
Bounded, lossy channel carrying task outcomes from workers to one consumer.
"""

import asyncio
import logging
from typing import AsyncIterator

from models import OutcomeEvent

logger = logging.getLogger(__name__)


class OutcomeEventBus:
    """
    Fixed-capacity event queue with a non-blocking send.

    Producers never wait: when the buffer is full the event is dropped and a
    warning is logged. Delivery is best-effort and at-most-once.
    """

    def __init__(self, capacity: int):
        if capacity <= 0:
            raise ValueError("Event bus capacity must be positive")
        self.capacity = capacity
        self.dropped = 0
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=capacity)

    def try_send(self, event: OutcomeEvent) -> bool:
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(
                "Event bus is full (capacity=%s), dropping %s for group %s",
                self.capacity,
                type(event).__name__,
                event.group_id,
            )
            return False
        return True

    async def get(self) -> OutcomeEvent:
        return await self._queue.get()

    def get_nowait(self) -> OutcomeEvent:
        return self._queue.get_nowait()

    def size(self) -> int:
        return self._queue.qsize()

    async def __aiter__(self) -> AsyncIterator[OutcomeEvent]:
        while True:
            yield await self._queue.get()
