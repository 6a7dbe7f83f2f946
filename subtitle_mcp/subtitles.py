"""
Subtitle format detection and plain-text extraction.

yt-dlp hands back SRT or WebVTT files; the transcript tools return the raw file
(get_raw_subtitles) or the spoken text only (get_transcript). This module turns
either format into a single line of cleaned text.
"""

import html
import logging
import re
from typing import Literal

import nh3

logger = logging.getLogger(__name__)

SubtitleFormat = Literal["srt", "vtt"]

# Cue timing line for both formats: [HH:]MM:SS.mmm --> [HH:]MM:SS.mmm (SRT uses a comma)
# Uses \d+ for hours to handle videos of any length
TIMESTAMP_PATTERN = re.compile(
    r"^(?:\d+:)?\d{2}:\d{2}[.,]\d+\s*-->\s*(?:\d+:)?\d{2}:\d{2}[.,]\d+"
)

CUE_INDEX_PATTERN = re.compile(r"^\d+$")

# Pattern to remove all HTML/XML-style tags from subtitle text, including
# inline karaoke timestamps such as <00:00:02.500>
TAG_REMOVAL_PATTERN = re.compile(r"<[^>]*>")

# Sound labels: [Music], [Applause], [Laughter]
SOUND_LABEL_PATTERN = re.compile(r"\[[^\]]+\]")

SPEAKER_MARKER_PATTERN = re.compile(r"^>>\s*|\s*>>\s*")

CUE_STYLE_PATTERN = re.compile(r"::cue\([^)]*\)\s*\{[^}]*\}")

WHITESPACE_PATTERN = re.compile(r"\s+")


def detect_subtitle_format(content: str) -> SubtitleFormat:
    """Return 'vtt' for WebVTT content (starts with WEBVTT), otherwise 'srt'."""
    return "vtt" if content.lstrip("\ufeff").startswith("WEBVTT") else "srt"


def clean_subtitle_line(line: str) -> str:
    """
    Clean one subtitle text line.

    Removes tags, speaker markers (>>), bracketed sound labels and cue style
    rules, sanitizes any remaining markup with nh3 and collapses whitespace.
    """
    text = TAG_REMOVAL_PATTERN.sub("", line)
    text = SPEAKER_MARKER_PATTERN.sub(" ", text)
    text = SOUND_LABEL_PATTERN.sub("", text)
    text = CUE_STYLE_PATTERN.sub("", text)
    # nh3 drops leftover markup; the transcript is plain text so entities are decoded afterwards
    text = html.unescape(nh3.clean(text, tags=set()))
    return WHITESPACE_PATTERN.sub(" ", text).strip()


def _collect_text(lines: list[str], start: int) -> list[str]:
    text_lines: list[str] = []
    previous = None
    i = start
    while i < len(lines):
        line = lines[i].strip()

        if not line or CUE_INDEX_PATTERN.match(line) or TIMESTAMP_PATTERN.match(line):
            i += 1
            continue

        # STYLE / NOTE / REGION blocks run until the next blank line
        if line.startswith(("STYLE", "NOTE", "REGION")) or line.startswith("::cue"):
            while i < len(lines) and lines[i].strip():
                i += 1
            continue

        # A VTT cue identifier is the line right before a timing line
        if i + 1 < len(lines) and TIMESTAMP_PATTERN.match(lines[i + 1].strip()):
            i += 1
            continue

        cleaned = clean_subtitle_line(line)
        # Rolling auto-captions repeat the previous line verbatim
        if cleaned and cleaned != previous:
            text_lines.append(cleaned)
            previous = cleaned
        i += 1

    return text_lines


def parse_vtt(content: str) -> str:
    """Extract spoken text from WebVTT content."""
    lines = content.lstrip("\ufeff").splitlines()
    i = 0
    # Skip the header block (WEBVTT line plus Kind:/Language: metadata)
    if lines and lines[0].startswith("WEBVTT"):
        while i < len(lines) and lines[i].strip():
            i += 1
    return " ".join(_collect_text(lines, i))


def parse_srt(content: str) -> str:
    """Extract spoken text from SRT content."""
    return " ".join(_collect_text(content.lstrip("\ufeff").splitlines(), 0))


def parse_subtitles(content: str) -> str:
    """
    Parse SRT or VTT content and return plain text without timestamps.

    Args:
        content: Subtitle file content

    Returns:
        Cleaned text, subtitle lines joined with single spaces
    """
    subtitle_format = detect_subtitle_format(content)
    logger.debug(f"Parsing {subtitle_format} content ({len(content)} chars)")
    if subtitle_format == "vtt":
        return parse_vtt(content)
    return parse_srt(content)
