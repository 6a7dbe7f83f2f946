"""
Pydantic models for the transcript domain.

These are the values that flow between the extractor, the resolver, the cache
and the tool layer. All of them serialize to JSON for the cache backend.
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

SubtitleType = Literal["official", "auto"]
TranscriptSource = Literal["youtube", "whisper"]


class TrackCatalog(BaseModel):
    """Subtitle languages available for one video."""

    model_config = ConfigDict(frozen=True)

    video_id: str = Field(..., description="Video ID reported by the extractor")
    official: list[str] = Field(default_factory=list, description="Publisher-provided languages, sorted")
    auto: list[str] = Field(default_factory=list, description="Auto-generated languages, sorted")

    @classmethod
    def from_info(cls, info: dict[str, Any], fallback_id: str) -> "TrackCatalog":
        """Create a catalog from a yt-dlp info dictionary."""
        official = sorted(set((info.get("subtitles") or {}).keys()))
        auto = sorted(set((info.get("automatic_captions") or {}).keys()))
        return cls(video_id=info.get("id") or fallback_id, official=official, auto=auto)


class TranscriptResult(BaseModel):
    """
    One successful resolution.

    ``lang`` is empty only when ``source`` is ``whisper`` and no language was
    requested (the speech-to-text service detected it).
    """

    model_config = ConfigDict(frozen=True)

    video_id: str
    type: SubtitleType
    lang: str
    content: str = Field(..., min_length=1)
    source: TranscriptSource = "youtube"


class Chapter(BaseModel):
    """A chapter marker."""

    start_time: float = 0
    end_time: float = 0
    title: str


class Thumbnail(BaseModel):
    url: str
    width: int | None = None
    height: int | None = None
    id: str | None = None


class VideoMetadata(BaseModel):
    """
    Video metadata extracted by yt-dlp.

    Attributes:
        video_id: Platform video ID
        title: Video title
        description: Video description (truncated if too long)
        duration: Video duration in seconds
        duration_formatted: Human-readable duration (HH:MM:SS)
        upload_date: Upload date (YYYYMMDD)
        live_status: yt-dlp live status (not_live, is_live, was_live, ...)
    """

    video_id: str
    title: str | None = None
    uploader: str | None = None
    uploader_id: str | None = None
    channel: str | None = None
    channel_id: str | None = None
    channel_url: str | None = None
    duration: float | None = None
    duration_formatted: str | None = None
    description: str | None = None
    upload_date: str | None = None
    webpage_url: str | None = None
    view_count: int | None = None
    like_count: int | None = None
    comment_count: int | None = None
    tags: list[str] = Field(default_factory=list)
    categories: list[str] = Field(default_factory=list)
    live_status: str | None = None
    is_live: bool | None = None
    was_live: bool | None = None
    availability: str | None = None
    thumbnail: str | None = None
    thumbnails: list[Thumbnail] = Field(default_factory=list)
    extractor: str | None = None

    @classmethod
    def from_info(cls, info: dict[str, Any], fallback_id: str) -> "VideoMetadata":
        """Create VideoMetadata from yt-dlp info dictionary."""
        # Format duration
        duration = info.get("duration")
        duration_formatted = None
        if isinstance(duration, (int, float)) and duration:
            hours, remainder = divmod(int(duration), 3600)
            minutes, seconds = divmod(remainder, 60)
            if hours > 0:
                duration_formatted = f"{hours:02d}:{minutes:02d}:{seconds:02d}"
            else:
                duration_formatted = f"{minutes:02d}:{seconds:02d}"
        elif not isinstance(duration, (int, float)):
            duration = None

        # Truncate description if too long
        description = info.get("description")
        if description and len(description) > 5000:
            description = description[:5000] + "..."

        thumbnails = [
            Thumbnail(url=t.get("url") or "", width=t.get("width"), height=t.get("height"), id=t.get("id"))
            for t in info.get("thumbnails") or []
            if isinstance(t, dict)
        ]

        return cls(
            video_id=info.get("id") or fallback_id,
            title=info.get("title"),
            uploader=info.get("uploader"),
            uploader_id=info.get("uploader_id"),
            channel=info.get("channel") or info.get("uploader"),
            channel_id=info.get("channel_id"),
            channel_url=info.get("channel_url"),
            duration=duration,
            duration_formatted=duration_formatted,
            description=description,
            upload_date=info.get("upload_date"),
            webpage_url=info.get("webpage_url"),
            view_count=info.get("view_count"),
            like_count=info.get("like_count"),
            comment_count=info.get("comment_count"),
            tags=list(info.get("tags") or []),
            categories=list(info.get("categories") or []),
            live_status=info.get("live_status"),
            is_live=info.get("is_live"),
            was_live=info.get("was_live"),
            availability=info.get("availability"),
            thumbnail=info.get("thumbnail"),
            thumbnails=thumbnails,
            extractor=info.get("extractor"),
        )


class VideoChapters(BaseModel):
    video_id: str
    chapters: list[Chapter] = Field(default_factory=list)

    @classmethod
    def from_info(cls, info: dict[str, Any], fallback_id: str) -> "VideoChapters":
        chapters = [
            Chapter(
                start_time=ch.get("start_time") or 0,
                end_time=ch.get("end_time") or 0,
                title=ch["title"],
            )
            for ch in info.get("chapters") or []
            if isinstance(ch, dict) and isinstance(ch.get("title"), str)
        ]
        return cls(video_id=info.get("id") or fallback_id, chapters=chapters)


class FailureRecord(BaseModel):
    """A resolution that exhausted every candidate including the fallback."""

    url: str
    mode: Literal["explicit", "auto-discovery"]
    timestamp: float
