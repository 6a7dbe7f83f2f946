"""
Shared utility functions for subtitle-mcp.

This module holds the video reference normalizer: validation of caller input
(URLs from supported platforms or bare YouTube IDs), canonicalization into a
single URL form, and the small sanitizers used before anything reaches yt-dlp.
Everything here is pure and performs no network I/O.
"""

import hashlib
import re
from dataclasses import dataclass, field
from urllib.parse import urlsplit, urlunsplit

from subtitle_mcp.errors import ValidationError

# Allowed video hostnames (exact or subdomain match)
ALLOWED_VIDEO_DOMAINS: tuple[str, ...] = (
    "youtube.com",
    "youtu.be",
    "x.com",
    "twitter.com",
    "instagram.com",
    "tiktok.com",
    "twitch.tv",
    "vimeo.com",
    "facebook.com",
    "fb.watch",
    "fb.com",
    "bilibili.com",
    "vk.com",
    "vk.ru",
    "vkvideo.ru",
    "dailymotion.com",
)

YOUTUBE_DOMAINS: tuple[str, ...] = ("youtube.com", "youtu.be")

YOUTUBE_WATCH_URL = "https://www.youtube.com/watch?v={video_id}"

DEFAULT_PORTS = {"http": 80, "https": 443}

# Pre-compiled regex patterns for performance
YOUTUBE_PATTERN_COMPILED = re.compile(
    r"(?:youtube\.com/watch\?(?:.*&)?v=|youtu\.be/|youtube\.com/embed/|youtube\.com/shorts/|youtube\.com/live/)"
    r"([a-zA-Z0-9_-]{11})"
)
YOUTUBE_ID_PATTERN_COMPILED = re.compile(r"^([a-zA-Z0-9_-]{11})$")

# Bare identifiers: letters, digits, hyphen, underscore; bounded length
BARE_ID_PATTERN_COMPILED = re.compile(r"^[a-zA-Z0-9_-]{1,50}$")

# Language codes such as en, ru, en-US, zh-Hans, en-orig
LANG_PATTERN_COMPILED = re.compile(r"^[a-zA-Z0-9-]{1,10}$")

SCHEME_PATTERN_COMPILED = re.compile(r"^https?://", re.IGNORECASE)


@dataclass(frozen=True)
class VideoReference:
    """
    A validated, canonical video reference.

    Attributes:
        url: Canonical URL used for extraction and as the cache identity
        video_id: Stable identifier derived from the URL (the YouTube ID when
            available, otherwise a short hash of the canonical URL)
    """

    url: str
    video_id: str = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "video_id", derive_video_id(self.url))

    @property
    def is_youtube(self) -> bool:
        return is_youtube_url(self.url)


def extract_video_id(url: str) -> str | None:
    """
    Extract video ID from a YouTube URL or return the input if it's a raw ID.

    This function handles various YouTube URL formats:
    - https://www.youtube.com/watch?v=VIDEO_ID (v may follow other parameters)
    - https://youtu.be/VIDEO_ID
    - https://www.youtube.com/embed/VIDEO_ID
    - https://www.youtube.com/shorts/VIDEO_ID
    - https://www.youtube.com/live/VIDEO_ID
    - Raw 11-character video ID

    Args:
        url: YouTube URL or video ID

    Returns:
        11-character YouTube video ID, or None if not found

    Examples:
        >>> extract_video_id("https://www.youtube.com/watch?v=dQw4w9WgXcQ")
        'dQw4w9WgXcQ'
        >>> extract_video_id("https://www.youtube.com/watch?feature=share&v=dQw4w9WgXcQ")
        'dQw4w9WgXcQ'
        >>> extract_video_id("dQw4w9WgXcQ")
        'dQw4w9WgXcQ'
    """
    match = YOUTUBE_PATTERN_COMPILED.search(url)
    if match:
        return match.group(1)

    match = YOUTUBE_ID_PATTERN_COMPILED.match(url)
    if match:
        return match.group(1)

    return None


def derive_video_id(canonical_url: str) -> str:
    """Deterministic identifier for a canonical URL."""
    video_id = extract_video_id(canonical_url) if is_youtube_url(canonical_url) else None
    if video_id:
        return video_id
    return hashlib.sha256(canonical_url.encode()).hexdigest()[:16]


def _host_matches(hostname: str, domains: tuple[str, ...]) -> bool:
    return any(hostname == domain or hostname.endswith(f".{domain}") for domain in domains)


def is_allowed_host(hostname: str | None) -> bool:
    """True when hostname equals, or is a subdomain of, an allow-listed domain."""
    if not hostname:
        return False
    return _host_matches(hostname.lower(), ALLOWED_VIDEO_DOMAINS)


def is_youtube_url(url: str) -> bool:
    """True for http(s) URLs whose host is a YouTube domain."""
    if not SCHEME_PATTERN_COMPILED.match(url):
        return False
    try:
        hostname = urlsplit(url).hostname
    except ValueError:
        return False
    return bool(hostname) and _host_matches(hostname.lower(), YOUTUBE_DOMAINS)


def sanitize_video_id(video_id: str | None) -> str | None:
    """
    Sanitize a bare video ID - allows only safe characters.

    Returns:
        The trimmed ID, or None if it is empty, too long (> 50) or contains
        characters other than letters, digits, '-' and '_'
    """
    if not video_id or not isinstance(video_id, str):
        return None
    sanitized = video_id.strip()
    if not BARE_ID_PATTERN_COMPILED.match(sanitized):
        return None
    return sanitized


def sanitize_lang(lang: str | None) -> str | None:
    """
    Sanitize a language code - allows only letters, digits and hyphens.

    Examples:
        >>> sanitize_lang("  en-US ")
        'en-US'
        >>> sanitize_lang("en US") is None
        True
    """
    if not lang or not isinstance(lang, str):
        return None
    sanitized = lang.strip()
    if not LANG_PATTERN_COMPILED.match(sanitized):
        return None
    return sanitized


def _canonicalize_url(url: str) -> str | None:
    try:
        parsed = urlsplit(url)
        hostname = parsed.hostname
        port = parsed.port
    except ValueError:
        return None

    if not is_allowed_host(hostname):
        return None

    scheme = parsed.scheme.lower()
    netloc = hostname.lower()
    if port is not None and port != DEFAULT_PORTS.get(scheme):
        netloc = f"{netloc}:{port}"

    # Fragments never reach the server; userinfo is dropped with the netloc rebuild
    return urlunsplit((scheme, netloc, parsed.path or "/", parsed.query, ""))


def normalize_video_input(url_or_id: str | None) -> str | None:
    """
    Normalize caller input to a single canonical video URL.

    A string without a scheme is treated as a YouTube video ID and expanded to
    the watch URL. Anything else must be an http(s) URL on an allow-listed host.
    Normalization is idempotent.

    Examples:
        >>> normalize_video_input("dQw4w9WgXcQ")
        'https://www.youtube.com/watch?v=dQw4w9WgXcQ'
        >>> normalize_video_input("HTTPS://YouTu.be/dQw4w9WgXcQ#t=3")
        'https://youtu.be/dQw4w9WgXcQ'
        >>> normalize_video_input("https://evil.com/?ref=youtube.com") is None
        True
    """
    if not url_or_id or not isinstance(url_or_id, str):
        return None
    trimmed = url_or_id.strip()
    if not trimmed:
        return None

    if SCHEME_PATTERN_COMPILED.match(trimmed):
        return _canonicalize_url(trimmed)

    video_id = sanitize_video_id(trimmed)
    if video_id is None:
        return None
    return YOUTUBE_WATCH_URL.format(video_id=video_id)


def validate_video_reference(url_or_id: str | None) -> VideoReference:
    """
    Validate caller input and return a VideoReference.

    Raises:
        ValidationError: If the input is not a supported URL or video ID
    """
    normalized = normalize_video_input(url_or_id)
    if normalized is None:
        raise ValidationError(
            "Invalid video URL. Use a URL from a supported platform "
            "(YouTube, Twitter/X, Instagram, TikTok, Twitch, Vimeo, Facebook, "
            "Bilibili, VK, Dailymotion) or a YouTube video ID.",
            "invalid_url",
        )
    return VideoReference(normalized)


def sanitize_for_log(input_str: str) -> str:
    """
    Sanitize user input for logging to prevent log injection attacks.

    Replaces newlines, carriage returns, and tabs with their escaped
    representations.
    """
    return input_str.replace("\n", "\\n").replace("\r", "\\r").replace("\t", "\\t")
