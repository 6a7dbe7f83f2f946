"""
Transcript resolution cascade.

Given a validated video reference, the resolver finds one usable subtitle
track:

    explicit mode   (type and/or lang given)
        one extraction attempt, then at most one speech-to-text fallback
    auto-discovery  (neither given)
        official languages (sorted) -> auto languages (YouTube: "-orig" first)
        -> at most one speech-to-text fallback with an auto-detected language

Attempts run sequentially and the first non-empty result wins. Results and
catalogs are memoized in the result cache; exhausted resolutions that reached
the fallback are kept in a bounded failure log.
"""

import time
from collections import deque
from collections.abc import Callable

import structlog

from subtitle_mcp.cache import CacheProtocol, catalog_key, chapters_key, info_key, subtitles_key
from subtitle_mcp.config import Settings
from subtitle_mcp.errors import NotFoundError, UpstreamError, ValidationError
from subtitle_mcp.models import (
    FailureRecord,
    SubtitleType,
    TrackCatalog,
    TranscriptResult,
    VideoChapters,
    VideoMetadata,
)
from subtitle_mcp.service import SubtitleExtractor
from subtitle_mcp.utils import VideoReference, sanitize_for_log, sanitize_lang
from subtitle_mcp.whisper import WhisperClient

logger = structlog.get_logger(__name__)

ORIGINAL_LANGUAGE_SUFFIX = "-orig"


def order_auto_languages(languages: list[str], is_youtube: bool) -> list[str]:
    """
    Order auto-generated languages for the cascade.

    YouTube marks the spoken-language track with an "-orig" suffix; those go
    first, the rest keep catalog order. Other platforms keep catalog order.
    """
    if not is_youtube:
        return list(languages)
    original = [lang for lang in languages if lang.endswith(ORIGINAL_LANGUAGE_SUFFIX)]
    rest = [lang for lang in languages if not lang.endswith(ORIGINAL_LANGUAGE_SUFFIX)]
    return original + rest


class TranscriptResolver:
    """Resolves transcripts, catalogs and video metadata through the result cache."""

    def __init__(
        self,
        config: Settings,
        extractor: SubtitleExtractor,
        cache: CacheProtocol,
        whisper: WhisperClient,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.extractor = extractor
        self.cache = cache
        self.whisper = whisper
        self._clock = clock
        self._failures: deque[FailureRecord] = deque(maxlen=config.failure_log_size)

    # ------------------------------------------------------------------
    # Failure log
    # ------------------------------------------------------------------

    def record_failure(self, url: str, mode: str) -> None:
        self._failures.append(FailureRecord(url=url, mode=mode, timestamp=self._clock()))

    def recent_failures(self) -> list[FailureRecord]:
        """Failure records, oldest first."""
        return list(self._failures)

    # ------------------------------------------------------------------
    # Catalog and metadata
    # ------------------------------------------------------------------

    async def _fetch_info(self, ref: VideoReference) -> dict:
        try:
            return await self.extractor.fetch_info(ref.url)
        except UpstreamError as e:
            raise NotFoundError(
                "Could not fetch video data for the provided URL", "video_not_found"
            ) from e

    async def get_catalog(self, ref: VideoReference) -> TrackCatalog:
        """
        Return the official and auto-generated languages for a video.

        Raises:
            NotFoundError: If the extractor returned no video data
        """
        key = catalog_key(ref.url)
        cached = await self.cache.get(key)
        if cached is not None:
            return TrackCatalog.model_validate(cached)

        info = await self._fetch_info(ref)
        catalog = TrackCatalog.from_info(info, ref.video_id)
        await self.cache.set(key, catalog.model_dump(mode="json"), self.config.cache_ttl_metadata)
        logger.info(
            "catalog_fetched",
            url=sanitize_for_log(ref.url),
            official=len(catalog.official),
            auto=len(catalog.auto),
        )
        return catalog

    async def get_video_info(self, ref: VideoReference) -> VideoMetadata:
        key = info_key(ref.url)
        cached = await self.cache.get(key)
        if cached is not None:
            return VideoMetadata.model_validate(cached)

        metadata = VideoMetadata.from_info(await self._fetch_info(ref), ref.video_id)
        await self.cache.set(key, metadata.model_dump(mode="json"), self.config.cache_ttl_metadata)
        return metadata

    async def get_video_chapters(self, ref: VideoReference) -> VideoChapters:
        key = chapters_key(ref.url)
        cached = await self.cache.get(key)
        if cached is not None:
            return VideoChapters.model_validate(cached)

        chapters = VideoChapters.from_info(await self._fetch_info(ref), ref.video_id)
        await self.cache.set(key, chapters.model_dump(mode="json"), self.config.cache_ttl_metadata)
        return chapters

    async def _known_video_id(self, ref: VideoReference) -> str:
        """Video id from an already cached catalog or info document, else from the URL."""
        for key in (catalog_key(ref.url), info_key(ref.url)):
            cached = await self.cache.get(key)
            if cached and cached.get("video_id"):
                return cached["video_id"]
        return ref.video_id

    # ------------------------------------------------------------------
    # Attempts
    # ------------------------------------------------------------------

    async def _attempt(self, ref: VideoReference, subtitle_type: SubtitleType, lang: str) -> str | None:
        """One extraction attempt; upstream failures are a miss."""
        try:
            content = await self.extractor.download_subtitles(ref.url, subtitle_type, lang)
        except UpstreamError as e:
            logger.warning(
                "subtitle_attempt_failed",
                url=sanitize_for_log(ref.url),
                type=subtitle_type,
                lang=lang,
                error=e.message,
            )
            return None
        if content and content.strip():
            return content
        return None

    async def _fallback(self, ref: VideoReference, lang: str) -> str | None:
        logger.info("whisper_fallback", url=sanitize_for_log(ref.url), lang=lang or "auto")
        content = await self.whisper.transcribe(ref.url, lang)
        if content and content.strip():
            return content
        return None

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    async def _resolve_explicit(
        self, ref: VideoReference, subtitle_type: SubtitleType, lang: str, requested_lang: str | None
    ) -> TranscriptResult | None:
        content = await self._attempt(ref, subtitle_type, lang)
        if content is not None:
            video_id = await self._known_video_id(ref)
            return TranscriptResult(video_id=video_id, type=subtitle_type, lang=lang, content=content)

        if not self.whisper.enabled:
            logger.debug("whisper_fallback_skipped", url=sanitize_for_log(ref.url))
            return None

        whisper_lang = requested_lang or ""
        content = await self._fallback(ref, whisper_lang)
        if content is None:
            return None
        video_id = await self._known_video_id(ref)
        return TranscriptResult(
            video_id=video_id, type=subtitle_type, lang=whisper_lang, content=content, source="whisper"
        )

    async def _resolve_auto(self, ref: VideoReference) -> TranscriptResult | None:
        try:
            catalog = await self.get_catalog(ref)
        except NotFoundError:
            logger.warning("catalog_unavailable", url=sanitize_for_log(ref.url))
            catalog = TrackCatalog(video_id=ref.video_id)

        for lang in catalog.official:
            content = await self._attempt(ref, "official", lang)
            if content is not None:
                return TranscriptResult(video_id=catalog.video_id, type="official", lang=lang, content=content)

        for lang in order_auto_languages(catalog.auto, ref.is_youtube):
            content = await self._attempt(ref, "auto", lang)
            if content is not None:
                return TranscriptResult(video_id=catalog.video_id, type="auto", lang=lang, content=content)

        if not self.whisper.enabled:
            return None

        content = await self._fallback(ref, "")
        if content is None:
            return None
        return TranscriptResult(video_id=catalog.video_id, type="auto", lang="", content=content, source="whisper")

    async def resolve(
        self,
        ref: VideoReference,
        subtitle_type: SubtitleType | None = None,
        lang: str | None = None,
    ) -> TranscriptResult:
        """
        Resolve a transcript for a video.

        Args:
            ref: Validated video reference
            subtitle_type: 'official' or 'auto'; None with lang None selects auto-discovery
            lang: Language code; defaults to the configured language in explicit mode

        Raises:
            ValidationError: If the language code is malformed
            NotFoundError: If every candidate (and the fallback, when enabled) came back empty
        """
        if lang is not None:
            sanitized = sanitize_lang(lang)
            if sanitized is None:
                raise ValidationError("Language code contains invalid characters", "invalid_lang")
            lang = sanitized

        auto_discovery = subtitle_type is None and lang is None
        if auto_discovery:
            key = subtitles_key(ref.url)
        else:
            effective_type: SubtitleType = subtitle_type or "auto"
            effective_lang = lang or self.config.default_lang
            key = subtitles_key(ref.url, effective_type, effective_lang)

        cached = await self.cache.get(key)
        if cached is not None:
            return TranscriptResult.model_validate(cached)

        if auto_discovery:
            result = await self._resolve_auto(ref)
        else:
            result = await self._resolve_explicit(ref, effective_type, effective_lang, lang)

        if result is None:
            mode = "auto-discovery" if auto_discovery else "explicit"
            if self.whisper.enabled:
                self.record_failure(ref.url, mode)
            logger.warning("subtitles_not_found", url=sanitize_for_log(ref.url), mode=mode)
            if auto_discovery:
                tried = "official, auto, and Whisper fallback" if self.whisper.enabled else "official and auto"
                raise NotFoundError(f"No subtitles available (tried {tried})", "subtitles_not_found")
            raise NotFoundError(f"Subtitles not found ({effective_type}, {effective_lang}).", "subtitles_not_found")

        await self.cache.set(key, result.model_dump(mode="json"), self.config.cache_ttl_subtitles)
        logger.info(
            "transcript_resolved",
            url=sanitize_for_log(ref.url),
            type=result.type,
            lang=result.lang,
            source=result.source,
        )
        return result
