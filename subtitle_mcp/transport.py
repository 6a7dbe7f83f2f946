"""
MCP transports.

StreamableTransport answers each POSTed JSON-RPC message in the HTTP response.
EventStreamTransport keeps a Server-Sent Events stream open: the first event
tells the client where to POST messages, and every response is pushed back
over the stream.
"""

import asyncio
import json
from collections.abc import AsyncIterator
from typing import Any

from subtitle_mcp.errors import SessionError
from subtitle_mcp.tools import ToolDispatcher

# Sent on idle streams so proxies do not drop the connection
KEEPALIVE_INTERVAL = 25.0

_CLOSE = object()


def format_sse(event: str, data: str) -> str:
    """
    Encode one Server-Sent Event.

    Examples:
        >>> format_sse("endpoint", "/message?sessionId=abc")
        'event: endpoint\\ndata: /message?sessionId=abc\\n\\n'
    """
    lines = "".join(f"data: {line}\n" for line in data.splitlines() or [""])
    return f"event: {event}\n{lines}\n"


class StreamableTransport:
    """Request/response transport: one JSON-RPC exchange per POST."""

    kind = "streamable"

    def __init__(self, dispatcher: ToolDispatcher):
        self.dispatcher = dispatcher
        self.closed = False

    async def handle(self, message: Any) -> Any:
        """Dispatch a message and return the JSON-RPC response (None for notifications)."""
        if self.closed:
            raise SessionError("Session is closed", "session_closed")
        return await self.dispatcher.handle_message(message)

    def close(self) -> None:
        self.closed = True


class EventStreamTransport:
    """
    Server-push transport backed by an asyncio.Queue.

    ``open()`` queues the endpoint event, ``handle()`` queues responses, and
    ``close()`` queues a sentinel that ends ``events()``.
    """

    kind = "event-stream"

    def __init__(self, dispatcher: ToolDispatcher, keepalive_interval: float = KEEPALIVE_INTERVAL):
        self.dispatcher = dispatcher
        self.closed = False
        self.keepalive_interval = keepalive_interval
        self._queue: asyncio.Queue = asyncio.Queue()

    def open(self, endpoint_url: str) -> None:
        """Queue the endpoint event; it is always the first event of the stream."""
        self._queue.put_nowait(format_sse("endpoint", endpoint_url))

    def send(self, payload: Any) -> None:
        if self.closed:
            raise SessionError("Session is closed", "session_closed")
        self._queue.put_nowait(format_sse("message", json.dumps(payload, ensure_ascii=False)))

    async def handle(self, message: Any) -> None:
        """Dispatch a POSTed message and push its response onto the stream."""
        if self.closed:
            raise SessionError("Session is closed", "session_closed")
        response = await self.dispatcher.handle_message(message)
        if response is not None and not self.closed:
            self.send(response)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._queue.put_nowait(_CLOSE)

    async def events(self) -> AsyncIterator[str]:
        """Yield encoded events until the transport is closed."""
        while True:
            try:
                item = await asyncio.wait_for(self._queue.get(), timeout=self.keepalive_interval)
            except asyncio.TimeoutError:
                yield ": keepalive\n\n"
                continue
            if item is _CLOSE:
                return
            yield item
