"""
Event stream wire format

Each progress event is one server-sent-events message::

    data: {"type": "progress", "vehicleId": "...", ...}\\n\\n

The decoder is the client half: it accepts arbitrary text chunks as they
arrive off the network and only returns events whose message is complete.
"""

import json
import logging
from typing import AsyncIterator

from ..models.progress_event import ProgressEvent

logger = logging.getLogger(__name__)

EVENT_STREAM_MEDIA_TYPE = "text/event-stream"
STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    # Disable proxy buffering so every event is flushed immediately
    "X-Accel-Buffering": "no",
}


def encode_event(event: ProgressEvent) -> str:
    """Format one progress event as an SSE frame"""
    return f"data: {json.dumps(event.to_dict(), default=str)}\n\n"


async def encode_stream(events: AsyncIterator[ProgressEvent]) -> AsyncIterator[str]:
    async for event in events:
        yield encode_event(event)


class SSEDecoder:
    """Incremental decoder for ``data:`` framed progress events"""

    def __init__(self):
        self._buffer = ""

    @property
    def pending(self) -> str:
        return self._buffer

    def feed(self, chunk: str) -> list[ProgressEvent]:
        self._buffer += chunk.replace("\r\n", "\n").replace("\r", "\n")
        events = []
        while "\n\n" in self._buffer:
            block, self._buffer = self._buffer.split("\n\n", 1)
            event = self._parse_block(block)
            if event is not None:
                events.append(event)
        return events

    def close(self):
        """End of stream; a trailing partial message is discarded"""
        if self._buffer.strip():
            logger.warning(f"Discarding incomplete event at end of stream ({len(self._buffer)} chars)")
        self._buffer = ""

    @staticmethod
    def _parse_block(block: str):
        data_lines = []
        for line in block.split("\n"):
            if not line or line.startswith(":"):
                continue
            name, _, value = line.partition(":")
            if name == "data":
                data_lines.append(value[1:] if value.startswith(" ") else value)

        if not data_lines:
            return None

        try:
            return ProgressEvent.from_dict(json.loads("\n".join(data_lines)))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Skipping malformed event: {e}")
            return None
