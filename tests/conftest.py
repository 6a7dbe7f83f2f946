"""Shared pytest fixtures for subtitle-mcp tests."""

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import yt_dlp
from fastapi.testclient import TestClient

from subtitle_mcp.cache import MemoryCache
from subtitle_mcp.config import Settings
from subtitle_mcp.main import app
from subtitle_mcp.resolver import TranscriptResolver
from subtitle_mcp.sessions import SessionRegistry

VTT_CONTENT = """WEBVTT
Kind: captions
Language: en

00:00:00.000 --> 00:00:03.500
Hello world

00:00:03.500 --> 00:00:07.000
This is a test subtitle
"""

SRT_CONTENT = """1
00:00:00,000 --> 00:00:02,000
Hello from Whisper

2
00:00:02,000 --> 00:00:04,000
Second line
"""

VIDEO_INFO = {
    "id": "dQw4w9WgXcQ",
    "title": "Never Gonna Give You Up",
    "uploader": "Rick Astley",
    "channel_id": "UCuAXFkgsw1L7xaCfnd5JJOw",
    "duration": 213,
    "upload_date": "20091025",
    "view_count": 1500000000,
    "tags": ["rick astley", "music"],
    "subtitles": {"en": [{"ext": "vtt"}], "de": [{"ext": "vtt"}]},
    "automatic_captions": {"fr": [{"ext": "vtt"}], "en-orig": [{"ext": "vtt"}]},
    "chapters": [
        {"start_time": 0.0, "end_time": 60.0, "title": "Intro"},
        {"start_time": 60.0, "end_time": 213.0, "title": "Chorus"},
    ],
}


@pytest.fixture
def test_settings():
    """Settings with the speech-to-text fallback off and small page limits."""
    return Settings(
        whisper_mode="off",
        rate_limit_enabled=False,
        cache_enabled=True,
        response_limit_min=1,
        failure_log_size=5,
    )


@pytest.fixture
def whisper_settings(test_settings):
    return test_settings.model_copy(update={"whisper_mode": "api"})


@pytest.fixture
def fake_extractor():
    """Extractor double: every track is missing unless a test says otherwise."""
    extractor = MagicMock()
    extractor.fetch_info = AsyncMock(return_value=VIDEO_INFO)
    extractor.download_subtitles = AsyncMock(return_value=None)
    extractor.download_audio = AsyncMock()
    return extractor


@pytest.fixture
def fake_whisper():
    whisper = MagicMock()
    whisper.enabled = False
    whisper.transcribe = AsyncMock(return_value=None)
    return whisper


@pytest.fixture
def resolver(test_settings, fake_extractor, fake_whisper):
    return TranscriptResolver(test_settings, fake_extractor, MemoryCache(), fake_whisper, clock=lambda: 1000.0)


@pytest.fixture
def client(test_settings, resolver):
    """FastAPI TestClient wired to a resolver built on test doubles."""
    from subtitle_mcp.main import limiter

    limiter.enabled = False
    registry = SessionRegistry()
    try:
        with (
            patch("subtitle_mcp.main.resolver", resolver),
            patch("subtitle_mcp.main.sessions", registry),
            patch("subtitle_mcp.main.settings", test_settings),
        ):
            yield TestClient(app)
    finally:
        limiter.enabled = True


@pytest.fixture
def mock_ydl_writes(tmp_path):
    """
    Patch yt_dlp.YoutubeDL so a download writes ``files`` into the outtmpl directory.

    Usage: ``files = mock_ydl_writes({"subtitles.en.vtt": VTT_CONTENT})``
    """
    patcher = patch("subtitle_mcp.service.yt_dlp.YoutubeDL")
    mock_ydl = patcher.start()

    def configure(files: dict[str, str], info: dict | None = None):
        def build(options):
            instance = MagicMock()
            out_dir = Path(options.get("outtmpl", str(tmp_path / "x"))).parent

            def extract_info(url, download=False):
                if download:
                    for name, content in files.items():
                        (out_dir / name).write_text(content, encoding="utf-8")
                return info or {"id": "dQw4w9WgXcQ"}

            instance.extract_info = MagicMock(side_effect=extract_info)
            instance.sanitize_info = MagicMock(side_effect=lambda value: value)
            instance.__enter__ = MagicMock(return_value=instance)
            instance.__exit__ = MagicMock(return_value=False)
            return instance

        mock_ydl.side_effect = build
        return mock_ydl

    yield configure
    patcher.stop()


@pytest.fixture
def mock_429_error():
    """Mock HTTP 429 DownloadError for rate limiting tests."""
    return yt_dlp.utils.DownloadError("HTTP Error 429: Too Many Requests")


@pytest.fixture
def mock_download_error():
    """Mock generic DownloadError."""
    return yt_dlp.utils.DownloadError("Unable to download video: Download failed")
