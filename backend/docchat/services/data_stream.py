"""Data stream — ordered side channel multiplexed with the model token stream.

One producer side (the turn and the tools it runs) writes ``{type, content}``
frames; one consumer (the HTTP response generator) drains them in the exact
order they were written. Model tokens travel through the same queue so that
structured events and text keep their relative order on the wire.
"""

import asyncio
import json
import logging
from typing import Any, AsyncIterator

from docchat.core.config import settings

logger = logging.getLogger(__name__)

_END = object()


class DataStream:
    def __init__(self, max_size: int | None = None):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_size or settings.data_stream_max_size)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def write_data(self, type: str, content: Any = "") -> None:
        """Emit one frame. Dropped silently once the stream is closed."""
        await self.write({"type": type, "content": content})

    async def write(self, frame: dict) -> None:
        if self._closed:
            logger.debug("Dropping %s frame on closed stream", frame.get("type"))
            return
        await self._queue.put(frame)

    async def end(self) -> None:
        """Mark the producer side finished; the consumer stops after the last frame."""
        if not self._closed:
            await self._queue.put(_END)

    def close(self) -> None:
        """Consumer side is gone. Later writes are dropped and pending frames discarded."""
        self._closed = True
        while not self._queue.empty():
            self._queue.get_nowait()

    async def next_frame(self, timeout: float | None = None) -> dict | None:
        """Wait for the next frame; ``None`` once the producer has ended."""
        if timeout is None:
            item = await self._queue.get()
        else:
            item = await asyncio.wait_for(self._queue.get(), timeout=timeout)
        if item is _END:
            return None
        return item

    async def frames(self) -> AsyncIterator[dict]:
        while True:
            frame = await self.next_frame()
            if frame is None:
                return
            yield frame


def encode_frame(frame: dict) -> str:
    """Serialize a frame as a server-sent event."""
    return f"data: {json.dumps(frame, default=str)}\n\n"
