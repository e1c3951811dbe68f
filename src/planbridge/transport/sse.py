"""Server-Sent-Events framing for outbound turn notifications."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from typing import Any

logger = logging.getLogger(__name__)

#: Headers sent with every event stream response.
SSE_HEADERS = {
    "Content-Type": "text/event-stream",
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

SSE_MEDIA_TYPE = "text/event-stream"


def encode_payload(payload: dict[str, Any]) -> str:
    """Compact JSON, preserving key order and non-ASCII text."""
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=str)


def format_frame(payload: dict[str, Any]) -> str:
    """One complete SSE unit: ``data: <json>\\n\\n``."""
    return f"data: {encode_payload(payload)}\n\n"


class SSEEncoder:
    """Ordered, unbounded frame queue between a turn and its HTTP response.

    ``send`` never blocks and never raises; once the encoder is closed
    (stream finished or client gone) further sends are dropped.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[str | None] = asyncio.Queue()
        self._closed = False
        self.sent = 0
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, payload: dict[str, Any]) -> bool:
        """Enqueue one frame. Returns False when it was dropped."""
        if self._closed:
            self.dropped += 1
            logger.debug("dropping %s frame after close", payload.get("type"))
            return False
        self._queue.put_nowait(format_frame(payload))
        self.sent += 1
        return True

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(None)

    async def frames(self) -> AsyncIterator[str]:
        """Yield frames in order until the encoder is closed."""
        while True:
            frame = await self._queue.get()
            if frame is None:
                return
            yield frame
