"""Tests for the speech-to-text fallback client."""

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from subtitle_mcp.errors import UpstreamError
from subtitle_mcp.whisper import WhisperClient

from .conftest import SRT_CONTENT

URL = "https://www.youtube.com/watch?v=dQw4w9WgXcQ"


@pytest.fixture
def audio_extractor():
    """Extractor double whose download_audio writes a small file into out_dir."""

    async def download_audio(url, out_dir):
        path = Path(out_dir) / "audio.m4a"
        path.write_bytes(b"\x00\x01fake-audio")
        return path

    extractor = MagicMock()
    extractor.download_audio = AsyncMock(side_effect=download_audio)
    return extractor


def make_client(settings, extractor, handler):
    return WhisperClient(settings, extractor, transport=httpx.MockTransport(handler))


class TestWhisperClient:
    """Tests for WhisperClient.transcribe."""

    @pytest.mark.asyncio
    async def test_disabled_does_nothing(self, test_settings, audio_extractor):
        client = make_client(test_settings, audio_extractor, lambda request: httpx.Response(500))

        assert not client.enabled
        assert await client.transcribe(URL, "en") is None
        audio_extractor.download_audio.assert_not_awaited()
        await client.close()

    @pytest.mark.asyncio
    async def test_successful_transcription(self, whisper_settings, audio_extractor):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = request.content
            return httpx.Response(200, text=SRT_CONTENT)

        settings = whisper_settings.model_copy(
            update={"whisper_base_url": "http://whisper.local:9000/", "whisper_api_key": "sk-test"}
        )
        client = make_client(settings, audio_extractor, handler)

        assert await client.transcribe(URL, "de") == SRT_CONTENT
        assert seen["url"] == "http://whisper.local:9000/v1/audio/transcriptions"
        assert seen["auth"] == "Bearer sk-test"
        assert b'name="response_format"' in seen["body"]
        assert b"srt" in seen["body"]
        assert b'name="language"' in seen["body"]
        assert b"fake-audio" in seen["body"]
        await client.close()

    @pytest.mark.asyncio
    async def test_language_omitted_for_autodetect(self, whisper_settings, audio_extractor):
        bodies = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(request.content)
            return httpx.Response(200, text=SRT_CONTENT)

        client = make_client(whisper_settings, audio_extractor, handler)

        assert await client.transcribe(URL) == SRT_CONTENT
        assert b'name="language"' not in bodies[0]
        await client.close()

    @pytest.mark.asyncio
    async def test_audio_is_removed_afterwards(self, whisper_settings, audio_extractor):
        client = make_client(whisper_settings, audio_extractor, lambda request: httpx.Response(200, text=SRT_CONTENT))

        await client.transcribe(URL, "en")

        out_dir = audio_extractor.download_audio.await_args[0][1]
        assert not Path(out_dir).exists()
        await client.close()

    @pytest.mark.asyncio
    async def test_http_error_returns_none(self, whisper_settings, audio_extractor):
        client = make_client(whisper_settings, audio_extractor, lambda request: httpx.Response(500, text="boom"))
        assert await client.transcribe(URL, "en") is None
        await client.close()

    @pytest.mark.asyncio
    async def test_connection_error_returns_none(self, whisper_settings, audio_extractor):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = make_client(whisper_settings, audio_extractor, handler)
        assert await client.transcribe(URL, "en") is None
        await client.close()

    @pytest.mark.asyncio
    async def test_audio_download_failure_returns_none(self, whisper_settings):
        extractor = MagicMock()
        extractor.download_audio = AsyncMock(side_effect=UpstreamError("audio download failed"))
        client = make_client(whisper_settings, extractor, lambda request: httpx.Response(200, text=SRT_CONTENT))

        assert await client.transcribe(URL, "en") is None
        await client.close()

    @pytest.mark.asyncio
    async def test_empty_transcript_returns_none(self, whisper_settings, audio_extractor):
        client = make_client(whisper_settings, audio_extractor, lambda request: httpx.Response(200, text="  \n"))
        assert await client.transcribe(URL, "en") is None
        await client.close()
