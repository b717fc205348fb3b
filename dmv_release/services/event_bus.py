"""
In-process progress event channel for one batch run

The orchestrator publishes onto the bus and a single subscriber (the
stream encoder or the synchronous collector) drains it. Publishing never
blocks: a subscriber that goes away must not stall the batch, so once the
subscriber detaches further events are dropped instead of queued.
"""

import asyncio
import logging
from typing import AsyncIterator, Optional

from ..models.progress_event import ProgressEvent

_CLOSED = object()


class ProgressEventBus:
    """Single-subscriber event queue decoupling the orchestrator from transport"""

    def __init__(self):
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        self._detached = False
        self.published = 0
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def detached(self) -> bool:
        return self._detached

    def publish(self, event: ProgressEvent):
        if self._closed:
            raise RuntimeError("Cannot publish on a closed event bus")
        self.published += 1
        if self._detached:
            self.dropped += 1
            return
        self._queue.put_nowait(event)

    def close(self):
        """Signal the end of the batch to the subscriber"""
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(_CLOSED)

    def detach(self):
        """Subscriber is gone; stop buffering events nobody will read"""
        if not self._detached:
            self._detached = True
            self.logger.info("Subscriber detached; batch continues without streaming")
            while not self._queue.empty():
                item = self._queue.get_nowait()
                if item is _CLOSED:
                    self._queue.put_nowait(_CLOSED)
                    break
                self.dropped += 1

    async def next_event(self) -> Optional[ProgressEvent]:
        """Wait for the next event; None once the bus is closed and drained"""
        item = await self._queue.get()
        if item is _CLOSED:
            self._queue.put_nowait(_CLOSED)
            return None
        return item

    async def subscribe(self) -> AsyncIterator[ProgressEvent]:
        while True:
            event = await self.next_event()
            if event is None:
                return
            yield event
