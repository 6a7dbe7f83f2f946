"""Tests for the MCP tool dispatcher (JSON-RPC routing and tool results)."""

import pytest
from mcp.types import INVALID_PARAMS, INVALID_REQUEST, LATEST_PROTOCOL_VERSION, METHOD_NOT_FOUND

from subtitle_mcp.tools import TOOLS, ToolDispatcher

from .conftest import VTT_CONTENT

URL = "https://www.youtube.com/watch?v=dQw4w9WgXcQ"


def request(method, params=None, request_id=1):
    message = {"jsonrpc": "2.0", "id": request_id, "method": method}
    if params is not None:
        message["params"] = params
    return message


def tool_call(name, **arguments):
    return request("tools/call", {"name": name, "arguments": arguments})


@pytest.fixture
def dispatcher(resolver, test_settings):
    return ToolDispatcher(resolver, test_settings)


class TestProtocol:
    """initialize, ping, tools/list and error routing."""

    @pytest.mark.asyncio
    async def test_initialize(self, dispatcher):
        response = await dispatcher.handle_message(
            request("initialize", {"protocolVersion": "2025-03-26", "clientInfo": {"name": "test", "version": "1"}})
        )

        result = response["result"]
        assert result["protocolVersion"] == "2025-03-26"
        assert result["serverInfo"]["name"] == "subtitle-mcp"
        assert "tools" in result["capabilities"]
        assert dispatcher.initialized
        assert dispatcher.client_info == {"name": "test", "version": "1"}

    @pytest.mark.asyncio
    async def test_initialize_unknown_version_negotiates_latest(self, dispatcher):
        response = await dispatcher.handle_message(request("initialize", {"protocolVersion": "1999-01-01"}))
        assert response["result"]["protocolVersion"] == LATEST_PROTOCOL_VERSION

    @pytest.mark.asyncio
    async def test_ping(self, dispatcher):
        assert await dispatcher.handle_message(request("ping", request_id="abc")) == {
            "jsonrpc": "2.0",
            "id": "abc",
            "result": {},
        }

    @pytest.mark.asyncio
    async def test_tools_list(self, dispatcher):
        response = await dispatcher.handle_message(request("tools/list"))

        tools = response["result"]["tools"]
        assert [tool["name"] for tool in tools] == [
            "get_transcript",
            "get_raw_subtitles",
            "get_available_subtitles",
            "get_video_info",
            "get_video_chapters",
        ]
        assert all(tool["annotations"]["readOnlyHint"] for tool in tools)
        assert "url" in tools[0]["inputSchema"]["properties"]

    @pytest.mark.asyncio
    async def test_notification_has_no_response(self, dispatcher):
        assert await dispatcher.handle_message({"jsonrpc": "2.0", "method": "notifications/initialized"}) is None

    @pytest.mark.asyncio
    async def test_unknown_method(self, dispatcher):
        response = await dispatcher.handle_message(request("resources/list"))
        assert response["error"]["code"] == METHOD_NOT_FOUND

    @pytest.mark.asyncio
    async def test_unknown_tool(self, dispatcher):
        response = await dispatcher.handle_message(tool_call("delete_everything"))
        assert response["error"]["code"] == INVALID_PARAMS

    @pytest.mark.asyncio
    async def test_invalid_request(self, dispatcher):
        response = await dispatcher.handle_message({"id": 1, "method": "ping"})
        assert response["error"]["code"] == INVALID_REQUEST
        assert response["id"] is None

    @pytest.mark.asyncio
    async def test_batch(self, dispatcher):
        responses = await dispatcher.handle_message(
            [request("ping", request_id=1), {"jsonrpc": "2.0", "method": "notifications/initialized"}, request("ping", request_id=2)]
        )
        assert [r["id"] for r in responses] == [1, 2]

    @pytest.mark.asyncio
    async def test_empty_batch(self, dispatcher):
        response = await dispatcher.handle_message([])
        assert response["error"]["code"] == INVALID_REQUEST


class TestTranscriptTools:
    """get_transcript and get_raw_subtitles."""

    @pytest.mark.asyncio
    async def test_get_transcript_auto_discovery(self, dispatcher, fake_extractor):
        fake_extractor.download_subtitles.return_value = VTT_CONTENT

        response = await dispatcher.handle_message(tool_call("get_transcript", url="dQw4w9WgXcQ"))

        result = response["result"]
        assert not result.get("isError")
        assert result["content"][0]["text"] == "Hello world This is a test subtitle"
        structured = result["structuredContent"]
        assert structured["videoId"] == "dQw4w9WgXcQ"
        assert structured["type"] == "official"
        assert structured["lang"] == "de"
        assert structured["is_truncated"] is False
        assert "next_cursor" not in structured
        assert "source" not in structured

    @pytest.mark.asyncio
    async def test_get_transcript_url_only_is_first_default_page(self, dispatcher, fake_extractor, test_settings):
        long_text = "a" * (test_settings.response_limit_default + 500)
        fake_extractor.download_subtitles.return_value = f"WEBVTT\n\n00:00:00.000 --> 00:00:01.000\n{long_text}\n"

        response = await dispatcher.handle_message(tool_call("get_transcript", url=URL))

        structured = response["result"]["structuredContent"]
        assert structured["start_offset"] == 0
        assert structured["end_offset"] == test_settings.response_limit_default
        assert structured["next_cursor"] == str(test_settings.response_limit_default)
        assert structured["is_truncated"] is True
        # Auto-discovery reads the catalog and starts with the first official language
        fake_extractor.fetch_info.assert_awaited_once()
        assert fake_extractor.download_subtitles.await_args_list[0].args[1:] == ("official", "de")

    @pytest.mark.asyncio
    async def test_get_transcript_paginates(self, dispatcher, fake_extractor):
        fake_extractor.download_subtitles.return_value = VTT_CONTENT
        text = "Hello world This is a test subtitle"

        first = await dispatcher.handle_message(
            tool_call("get_transcript", url=URL, type="official", lang="en", response_limit=10)
        )
        page = first["result"]["structuredContent"]
        assert first["result"]["content"][0]["text"] == text[:10]
        assert page["next_cursor"] == "10"
        assert page["total_length"] == len(text)

        second = await dispatcher.handle_message(
            tool_call("get_transcript", url=URL, type="official", lang="en", response_limit=10, next_cursor="10")
        )
        assert second["result"]["content"][0]["text"] == text[10:20]
        assert second["result"]["structuredContent"]["start_offset"] == 10

    @pytest.mark.asyncio
    async def test_invalid_cursor_is_tool_error(self, dispatcher, fake_extractor):
        fake_extractor.download_subtitles.return_value = VTT_CONTENT

        response = await dispatcher.handle_message(
            tool_call("get_transcript", url=URL, type="official", lang="en", next_cursor="abc")
        )

        assert response["result"]["isError"] is True
        assert response["result"]["content"][0]["text"] == "Invalid next_cursor value."

    @pytest.mark.asyncio
    async def test_not_found_is_tool_error(self, dispatcher):
        response = await dispatcher.handle_message(tool_call("get_transcript", url=URL, type="official", lang="en"))

        assert response["result"]["isError"] is True
        assert response["result"]["content"][0]["text"] == "Subtitles not found (official, en)."

    @pytest.mark.asyncio
    async def test_invalid_url_is_tool_error(self, dispatcher, fake_extractor):
        response = await dispatcher.handle_message(tool_call("get_transcript", url="https://evil.com/x"))

        assert response["result"]["isError"] is True
        fake_extractor.download_subtitles.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_url_is_tool_error(self, dispatcher):
        response = await dispatcher.handle_message(tool_call("get_transcript"))

        assert response["result"]["isError"] is True
        assert response["result"]["content"][0]["text"].startswith("Invalid arguments")

    @pytest.mark.asyncio
    async def test_get_raw_subtitles(self, dispatcher, fake_extractor):
        fake_extractor.download_subtitles.return_value = VTT_CONTENT

        response = await dispatcher.handle_message(
            tool_call("get_raw_subtitles", url=URL, type="auto", lang="en")
        )

        structured = response["result"]["structuredContent"]
        assert structured["format"] == "vtt"
        assert structured["content"] == VTT_CONTENT
        assert response["result"]["content"][0]["text"] == VTT_CONTENT

    @pytest.mark.asyncio
    async def test_whisper_source_reported(self, dispatcher, fake_whisper):
        fake_whisper.enabled = True
        fake_whisper.transcribe.return_value = "1\n00:00:00,000 --> 00:00:01,000\nTranscribed\n"

        response = await dispatcher.handle_message(tool_call("get_transcript", url=URL))

        structured = response["result"]["structuredContent"]
        assert structured["source"] == "whisper"
        assert response["result"]["content"][0]["text"] == "Transcribed"


class TestMetadataTools:
    @pytest.mark.asyncio
    async def test_get_available_subtitles(self, dispatcher):
        response = await dispatcher.handle_message(tool_call("get_available_subtitles", url=URL))

        result = response["result"]
        assert result["structuredContent"] == {
            "videoId": "dQw4w9WgXcQ",
            "official": ["de", "en"],
            "auto": ["en-orig", "fr"],
        }
        assert result["content"][0]["text"] == "Official: de, en\nAuto: en-orig, fr"

    @pytest.mark.asyncio
    async def test_get_video_info(self, dispatcher):
        response = await dispatcher.handle_message(tool_call("get_video_info", url=URL))

        structured = response["result"]["structuredContent"]
        assert structured["videoId"] == "dQw4w9WgXcQ"
        assert structured["title"] == "Never Gonna Give You Up"
        assert "video_id" not in structured

    @pytest.mark.asyncio
    async def test_get_video_chapters(self, dispatcher):
        response = await dispatcher.handle_message(tool_call("get_video_chapters", url=URL))

        result = response["result"]
        assert len(result["structuredContent"]["chapters"]) == 2
        assert result["content"][0]["text"] == "0-60: Intro\n60-213: Chorus"


def test_tool_schemas_are_objects():
    for tool in TOOLS:
        assert tool.inputSchema["type"] == "object"
