"""Bounded queue sink for SSE subscribers.

The multiplexer writes synchronously; the SSE response reads asynchronously.
A ``QueueSink`` sits between them with a fixed capacity so a stalled HTTP
client costs at most ``maxsize`` buffered events before it is evicted.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator

from autocrew.agent_runtime.models.events import StreamEvent


class SinkClosedError(RuntimeError):
    """Raised when sending to a closed sink."""


class SinkOverflowError(RuntimeError):
    """Raised when the consumer has fallen ``maxsize`` events behind."""


class QueueSink:
    """Async-iterable sink.  Iteration ends once the sink is closed and drained."""

    def __init__(self, maxsize: int = 256) -> None:
        if maxsize < 1:
            msg = "maxsize must be positive"
            raise ValueError(msg)
        self._maxsize = maxsize
        # Unbounded underneath so close() can always enqueue its sentinel;
        # the bound is enforced in send().
        self._queue: asyncio.Queue[StreamEvent | None] = asyncio.Queue()
        self._closed = False

    def send(self, event: StreamEvent) -> None:
        if self._closed:
            raise SinkClosedError
        if self._queue.qsize() >= self._maxsize:
            raise SinkOverflowError
        self._queue.put_nowait(event)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(None)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        """Events buffered and not yet consumed."""
        return self._queue.qsize()

    async def get(self) -> StreamEvent | None:
        """Next event, or ``None`` once the stream has ended."""
        event = await self._queue.get()
        if event is None:
            # Keep the sentinel so later readers also see end-of-stream.
            self._queue.put_nowait(None)
        return event

    def __aiter__(self) -> AsyncIterator[StreamEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[StreamEvent]:
        while True:
            event = await self.get()
            if event is None:
                return
            yield event
