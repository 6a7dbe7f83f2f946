"""
Speech-to-text fallback client.

Used by the resolver when a video has no usable subtitle track. The audio
stream is downloaded with yt-dlp into a temporary directory and uploaded to an
OpenAI-compatible transcription endpoint (``/v1/audio/transcriptions``), which
returns SRT text. The temporary audio file is removed afterwards.
"""

import asyncio
import logging
import tempfile
from pathlib import Path

import httpx

from subtitle_mcp.config import Settings
from subtitle_mcp.errors import UpstreamError
from subtitle_mcp.service import SubtitleExtractor

logger = logging.getLogger(__name__)

TRANSCRIPTIONS_PATH = "/v1/audio/transcriptions"


class WhisperClient:
    """
    Async HTTP client for a Whisper transcription API.

    Example:
        client = WhisperClient(settings, extractor)
        srt = await client.transcribe("https://www.youtube.com/watch?v=...", "en")
        await client.close()
    """

    def __init__(
        self,
        config: Settings,
        extractor: SubtitleExtractor,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize Whisper client.

        Args:
            config: Application settings (base URL, key, model, timeout)
            extractor: Used to download the audio stream
            transport: Optional httpx transport (tests pass httpx.MockTransport)
        """
        self.config = config
        self.extractor = extractor
        self.endpoint = config.whisper_base_url.rstrip("/") + TRANSCRIPTIONS_PATH
        self.http_client = httpx.AsyncClient(timeout=config.whisper_timeout, transport=transport)

    @property
    def enabled(self) -> bool:
        return self.config.whisper_enabled

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.http_client.aclose()

    async def _post_audio(self, audio_path: Path, language: str) -> str:
        audio = await asyncio.to_thread(audio_path.read_bytes)
        data = {"model": self.config.whisper_model, "response_format": "srt"}
        if language:
            data["language"] = language
        headers = {}
        if self.config.whisper_api_key:
            headers["Authorization"] = f"Bearer {self.config.whisper_api_key}"

        file_size_mb = len(audio) / 1024 / 1024
        logger.info(f"Transcribing: {audio_path.name} ({file_size_mb:.1f} MB), language: {language or 'auto'}")

        response = await self.http_client.post(
            self.endpoint,
            files={"file": (audio_path.name, audio, "application/octet-stream")},
            data=data,
            headers=headers,
        )
        response.raise_for_status()
        return response.text

    async def transcribe(self, url: str, language: str = "") -> str | None:
        """
        Transcribe the audio of a video.

        Args:
            url: Canonical video URL
            language: Language hint; empty string lets the service auto-detect

        Returns:
            SRT text, or None when the fallback is disabled or fails for any reason
        """
        if not self.enabled:
            logger.debug("Whisper fallback skipped (mode=off)")
            return None

        try:
            with tempfile.TemporaryDirectory(prefix="whisper_", dir=self.config.ytdlp_temp_dir) as temp_dir:
                audio_path = await self.extractor.download_audio(url, temp_dir)
                content = await self._post_audio(audio_path, language)
        except UpstreamError as e:
            logger.warning(f"Whisper fallback could not download audio: {e.message}")
            return None
        except httpx.HTTPStatusError as e:
            logger.warning(f"Whisper API returned {e.response.status_code}: {e.response.text[:200]}")
            return None
        except (httpx.HTTPError, OSError) as e:
            logger.warning(f"Whisper API request failed: {e!r}")
            return None

        if not content.strip():
            logger.warning("Whisper fallback returned no transcript")
            return None
        logger.info(f"Whisper fallback succeeded ({len(content)} chars)")
        return content
