"""
Subtitle extraction service using yt-dlp.

This module is the boundary to the external extraction process. It fetches
info documents (track catalog, metadata, chapters), downloads one subtitle
track for a given type and language, and downloads audio for the
speech-to-text fallback. yt-dlp is synchronous, so every call runs in a worker
thread and is bounded by ``ytdlp_request_timeout``.

Anti-Blocking Strategies:
    1. Browser Impersonation: optional TLS fingerprint spoofing
    2. Throttling: optional sleep between subtitle requests
    3. Client Source Spoofing: non-web YouTube client to avoid PO Token requirement
    4. Retry Logic: exponential backoff with jitter for transient errors
"""

import asyncio
import logging
import os
import random
import shutil
import tempfile
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, TypeVar

import yt_dlp
from yt_dlp.networking.impersonate import ImpersonateTarget

from subtitle_mcp.config import Settings
from subtitle_mcp.errors import UpstreamError
from subtitle_mcp.models import SubtitleType

logger = logging.getLogger(__name__)

T = TypeVar("T")

SUBTITLE_EXTENSIONS = (".srt", ".vtt")
AUDIO_EXTENSIONS = (".m4a", ".webm", ".mp3", ".opus", ".ogg")


class SubtitleExtractor:
    """
    Wraps yt-dlp for info, subtitle and audio extraction.

    Each public coroutine performs one logical upstream call with retry logic
    for transient errors. Failures surface as UpstreamError so callers can
    treat them as a soft miss.
    """

    # Retry configuration for transient errors
    MAX_RETRIES = 3
    RETRY_BACKOFF_BASE = 1  # Base delay in seconds
    RETRY_BACKOFF_MAX = 4   # Maximum delay in seconds
    RETRY_JITTER = 0.5      # Jitter factor to avoid thundering herd

    def __init__(self, config: Settings | None = None):
        """
        Initialize the extractor with configuration.

        Args:
            config: Settings instance. Uses global defaults if None.
        """
        self.config = config or Settings()

    # ------------------------------------------------------------------
    # yt-dlp options
    # ------------------------------------------------------------------

    def _base_options(self, cookies_file: str | None) -> dict[str, Any]:
        """
        Options shared by every yt-dlp call.

        Note:
            The YouTube 'web' client now requires a PO Token; 'default,-web'
            skips it. The setting only affects the YouTube extractor.
        """
        options: dict[str, Any] = {
            "skip_download": True,
            "quiet": True,
            "no_warnings": True,
            "noprogress": True,
            "logger": logger,
            "socket_timeout": self.config.ytdlp_request_timeout,
            "extractor_args": {"youtube": {"player_client": ["default,-web"]}},
        }
        if self.config.ytdlp_impersonate_target:
            options["impersonate"] = ImpersonateTarget.from_str(self.config.ytdlp_impersonate_target)
        if self.config.ytdlp_proxy:
            options["proxy"] = self.config.ytdlp_proxy
        if cookies_file:
            options["cookiefile"] = cookies_file
        return options

    def _subtitle_options(self, subtitle_type: SubtitleType, lang: str, out_dir: str, cookies_file: str | None) -> dict:
        """
        Build yt-dlp options for downloading one subtitle track.

        Args:
            subtitle_type: 'official' (publisher) or 'auto' (machine generated)
            lang: Language code for subtitles (e.g., 'en', 'en-orig')
            out_dir: Temporary output directory for subtitle files
        """
        options = self._base_options(cookies_file)
        options.update({
            "writesubtitles": subtitle_type == "official",
            "writeautomaticsub": subtitle_type == "auto",
            "subtitleslangs": [lang],
            "subtitlesformat": "srt/vtt",
            "outtmpl": f"{out_dir}/subtitles.%(ext)s",
            # Continue even if some streams fail; the file check decides success
            "ignoreerrors": True,
        })
        if self.config.ytdlp_sleep_seconds:
            options["sleep_interval_subtitles"] = self.config.ytdlp_sleep_seconds
        return options

    def _audio_options(self, out_dir: str, cookies_file: str | None) -> dict:
        options = self._base_options(cookies_file)
        options.update({
            "skip_download": False,
            "format": self.config.ytdlp_audio_format,
            "outtmpl": f"{out_dir}/audio.%(ext)s",
            # Re-encode to m4a (needs ffmpeg); quality is the VBR scale, 0 best to 9 worst
            "postprocessors": [{
                "key": "FFmpegExtractAudio",
                "preferredcodec": "m4a",
                "preferredquality": str(self.config.ytdlp_audio_quality),
            }],
        })
        return options

    @contextmanager
    def _cookies_file(self) -> Iterator[str | None]:
        """
        Yield a writable path for the configured cookies file.

        yt-dlp writes cookies back on exit; a read-only file (e.g. a Docker
        volume) is copied to a temp location that is removed afterwards.
        """
        original = self.config.ytdlp_cookies_file
        if not original:
            yield None
            return
        if not os.path.exists(original):
            logger.warning(f"yt-dlp cookies file not accessible: {original}")
            yield None
            return
        if os.access(original, os.R_OK | os.W_OK):
            yield original
            return

        fd, temp_path = tempfile.mkstemp(prefix="cookies_", suffix=".txt", dir=self.config.ytdlp_temp_dir)
        os.close(fd)
        shutil.copyfile(original, temp_path)
        try:
            yield temp_path
        finally:
            Path(temp_path).unlink(missing_ok=True)

    # ------------------------------------------------------------------
    # Retry handling
    # ------------------------------------------------------------------

    def _is_transient_error(self, error: Exception) -> bool:
        """
        Determine if an error is transient and should trigger a retry.

        Transient errors include HTTP 429/5xx responses and network timeouts
        or connection errors reported by yt-dlp itself. An expired wait in
        _run is not one of them: the worker thread may still be running.
        """
        error_message = str(error).lower()

        transient_status_codes = ["429", "503", "502", "504"]
        transient_patterns = [
            "too many requests",
            "rate limit",
            "timeout",
            "timed out",
            "connection refused",
            "connection reset",
            "connection error",
            "network error",
            "temporary",
            "service unavailable",
            "bad gateway",
            "gateway timeout",
        ]

        if any(code in error_message for code in transient_status_codes):
            return True

        return any(pattern in error_message for pattern in transient_patterns)

    def _calculate_retry_delay(self, attempt: int) -> float:
        """
        Calculate delay with exponential backoff and jitter.

        Args:
            attempt: Current retry attempt (0-indexed)

        Returns:
            Delay in seconds before next retry
        """
        # Exponential backoff: 1s, 2s, 4s
        base_delay = min(self.RETRY_BACKOFF_BASE * (2 ** attempt), self.RETRY_BACKOFF_MAX)
        jitter = random.uniform(0, self.RETRY_JITTER)
        return base_delay + jitter

    async def _run(
        self,
        description: str,
        func: Callable[..., T],
        *args: Any,
        timeout: float | None = None,
    ) -> T:
        """
        Run a blocking yt-dlp call in a worker thread with timeout and retries.

        A timed out call is never retried. The thread cannot be cancelled, so
        a retry would run a second yt-dlp call next to the first.

        Args:
            timeout: Seconds to wait for one attempt. Defaults to ytdlp_request_timeout.

        Raises:
            UpstreamError: When all attempts fail or a non-transient error occurs
        """
        timeout = timeout or self.config.ytdlp_request_timeout
        last_error: Exception | None = None

        for attempt in range(self.MAX_RETRIES):
            try:
                return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=timeout)
            except TimeoutError as e:
                last_error = e
                logger.warning(f"{description} timed out after {timeout}s")
                break
            except Exception as e:
                last_error = e
                if attempt < self.MAX_RETRIES - 1 and self._is_transient_error(e):
                    delay = self._calculate_retry_delay(attempt)
                    logger.warning(
                        f"Transient error on attempt {attempt + 1} ({description}): {e!r}. "
                        f"Retrying in {delay:.2f}s..."
                    )
                    await asyncio.sleep(delay)
                else:
                    break

        logger.error(f"{description} failed after {attempt + 1} attempt(s): {last_error!r}")
        if isinstance(last_error, TimeoutError):
            raise UpstreamError(f"{description} timed out", "upstream_timeout") from last_error
        raise UpstreamError(f"{description} failed: {last_error}", "upstream_error") from last_error

    # ------------------------------------------------------------------
    # Blocking implementations (run in worker threads)
    # ------------------------------------------------------------------

    def _extract_info_sync(self, url: str) -> dict[str, Any]:
        with self._cookies_file() as cookies_file:
            with yt_dlp.YoutubeDL(self._base_options(cookies_file)) as ydl:
                info = ydl.extract_info(url, download=False)
                if not info:
                    raise ValueError(f"No video data returned for {url}")
                return ydl.sanitize_info(info)

    def _download_subtitles_sync(self, url: str, subtitle_type: SubtitleType, lang: str) -> str | None:
        """
        Download one subtitle track and return its content.

        Returns:
            The subtitle text, or None when yt-dlp wrote no non-empty file
        """
        with tempfile.TemporaryDirectory(dir=self.config.ytdlp_temp_dir) as temp_dir, self._cookies_file() as cookies_file:
            options = self._subtitle_options(subtitle_type, lang, temp_dir, cookies_file)
            download_error: Exception | None = None
            try:
                with yt_dlp.YoutubeDL(options) as ydl:
                    ydl.extract_info(url, download=True)
            except yt_dlp.utils.DownloadError as e:
                # yt-dlp may fail late (e.g. on a second format) after writing the file
                download_error = e
                logger.debug(f"yt-dlp reported an error, checking for subtitle file anyway: {e}")

            content = read_subtitle_file(Path(temp_dir))
            if content is not None:
                logger.info(f"Downloaded {subtitle_type} subtitles in language '{lang}' ({len(content)} chars)")
                return content
            if download_error is not None:
                raise download_error
            return None

    def _download_audio_sync(self, url: str, out_dir: str) -> Path:
        with self._cookies_file() as cookies_file:
            with yt_dlp.YoutubeDL(self._audio_options(out_dir, cookies_file)) as ydl:
                ydl.extract_info(url, download=True)

        for candidate in sorted(Path(out_dir).iterdir()):
            if candidate.suffix in AUDIO_EXTENSIONS and candidate.stat().st_size > 0:
                return candidate
        raise FileNotFoundError(f"Audio file not found after yt-dlp in {out_dir}")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def fetch_info(self, url: str) -> dict[str, Any]:
        """Fetch the yt-dlp info document (no download)."""
        logger.info(f"Fetching video info for {url}")
        return await self._run("info extraction", self._extract_info_sync, url)

    async def download_subtitles(self, url: str, subtitle_type: SubtitleType, lang: str) -> str | None:
        """
        Download subtitles of the given type and language.

        Returns:
            Subtitle content (SRT or VTT), or None when the track does not exist

        Raises:
            UpstreamError: If yt-dlp failed or timed out
        """
        logger.info(f"Downloading {subtitle_type} subtitles in language '{lang}' for {url}")
        return await self._run(
            f"{subtitle_type} subtitle download ({lang})",
            self._download_subtitles_sync,
            url,
            subtitle_type,
            lang,
        )

    async def download_audio(self, url: str, out_dir: str) -> Path:
        """Download the best audio stream into out_dir and return its path."""
        logger.info(f"Downloading audio for {url}")
        return await self._run(
            "audio download",
            self._download_audio_sync,
            url,
            out_dir,
            timeout=self.config.ytdlp_audio_timeout,
        )


def read_subtitle_file(directory: Path) -> str | None:
    """Return the content of the first non-empty .srt/.vtt file in directory."""
    for candidate in sorted(directory.iterdir()):
        if candidate.suffix not in SUBTITLE_EXTENSIONS:
            continue
        content = candidate.read_text(encoding="utf-8", errors="replace")
        if content.strip():
            return content
    return None


def is_ytdlp_available() -> bool:
    """Startup check: the yt-dlp package imports and reports a version."""
    try:
        return bool(yt_dlp.version.__version__)
    except AttributeError:
        return False


def get_extractor(config: Settings | None = None) -> SubtitleExtractor:
    """
    Get a configured SubtitleExtractor instance.

    This function is used as a FastAPI dependency for dependency injection.
    """
    return SubtitleExtractor(config)
