"""Tests for the streamable and event-stream transports."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from subtitle_mcp.errors import SessionError
from subtitle_mcp.transport import EventStreamTransport, StreamableTransport, format_sse

PING = {"jsonrpc": "2.0", "id": 1, "method": "ping"}


@pytest.fixture
def dispatcher():
    dispatcher = MagicMock()
    dispatcher.handle_message = AsyncMock(return_value={"jsonrpc": "2.0", "id": 1, "result": {}})
    return dispatcher


class TestFormatSse:
    def test_single_line(self):
        assert format_sse("endpoint", "/message?sessionId=abc") == "event: endpoint\ndata: /message?sessionId=abc\n\n"

    def test_multi_line(self):
        assert format_sse("message", "a\nb") == "event: message\ndata: a\ndata: b\n\n"


class TestStreamableTransport:
    @pytest.mark.asyncio
    async def test_handle_returns_response(self, dispatcher):
        transport = StreamableTransport(dispatcher)
        assert await transport.handle(PING) == {"jsonrpc": "2.0", "id": 1, "result": {}}

    @pytest.mark.asyncio
    async def test_closed_rejects(self, dispatcher):
        transport = StreamableTransport(dispatcher)
        transport.close()
        with pytest.raises(SessionError):
            await transport.handle(PING)


class TestEventStreamTransport:
    """Tests for EventStreamTransport."""

    @pytest.mark.asyncio
    async def test_endpoint_event_first_then_responses(self, dispatcher):
        transport = EventStreamTransport(dispatcher)
        transport.open("/message?sessionId=abc")
        await transport.handle(PING)
        transport.close()

        events = [event async for event in transport.events()]

        assert events[0] == "event: endpoint\ndata: /message?sessionId=abc\n\n"
        assert events[1].startswith("event: message\ndata: ")
        payload = json.loads(events[1].split("data: ", 1)[1])
        assert payload["id"] == 1
        assert len(events) == 2

    @pytest.mark.asyncio
    async def test_notification_sends_nothing(self, dispatcher):
        dispatcher.handle_message.return_value = None
        transport = EventStreamTransport(dispatcher)
        await transport.handle({"jsonrpc": "2.0", "method": "notifications/initialized"})
        transport.close()

        assert [event async for event in transport.events()] == []

    @pytest.mark.asyncio
    async def test_keepalive_on_idle(self, dispatcher):
        transport = EventStreamTransport(dispatcher, keepalive_interval=0.01)
        stream = transport.events()

        assert await stream.__anext__() == ": keepalive\n\n"
        transport.close()
        with pytest.raises(StopAsyncIteration):
            while True:
                await stream.__anext__()

    @pytest.mark.asyncio
    async def test_closed_rejects(self, dispatcher):
        transport = EventStreamTransport(dispatcher)
        transport.close()
        transport.close()
        with pytest.raises(SessionError):
            await transport.handle(PING)
        with pytest.raises(SessionError):
            transport.send({})
