"""
Cursor pagination over transcript text.

The cursor is the decimal character offset where the next page starts. It is
opaque to callers and stateless on the server: the same text, limit and
cursor always yield the same page.
"""

from dataclasses import dataclass

from subtitle_mcp.errors import ValidationError

DEFAULT_RESPONSE_LIMIT = 50000
MIN_RESPONSE_LIMIT = 1000
MAX_RESPONSE_LIMIT = 200000

INVALID_CURSOR_MESSAGE = "Invalid next_cursor value."


@dataclass(frozen=True)
class Page:
    """
    One page of text.

    Attributes:
        chunk: text[start_offset:end_offset]
        next_cursor: Offset of the next page, None on the last page
        is_truncated: True when more text follows this page
        total_length: Length of the full text
    """

    chunk: str
    next_cursor: str | None
    is_truncated: bool
    total_length: int
    start_offset: int
    end_offset: int


def clamp_limit(
    limit: int | None,
    default: int = DEFAULT_RESPONSE_LIMIT,
    minimum: int = MIN_RESPONSE_LIMIT,
    maximum: int = MAX_RESPONSE_LIMIT,
) -> int:
    """Clamp a requested page size into [minimum, maximum]; None means default."""
    if limit is None:
        limit = default
    return max(minimum, min(maximum, limit))


def parse_cursor(cursor: str | None, total_length: int) -> int:
    """
    Decode a cursor into a start offset.

    Raises:
        ValidationError: If the cursor is not ASCII digits or points past the text
    """
    if cursor is None:
        return 0
    if not cursor.isascii() or not cursor.isdigit():
        raise ValidationError(INVALID_CURSOR_MESSAGE, "invalid_cursor")
    offset = int(cursor)
    if offset > total_length:
        raise ValidationError(INVALID_CURSOR_MESSAGE, "invalid_cursor")
    return offset


def paginate(
    text: str,
    limit: int | None = None,
    cursor: str | None = None,
    *,
    default: int = DEFAULT_RESPONSE_LIMIT,
    minimum: int = MIN_RESPONSE_LIMIT,
    maximum: int = MAX_RESPONSE_LIMIT,
) -> Page:
    """
    Return the page of ``text`` starting at ``cursor``.

    Examples:
        >>> page = paginate("abcdefghij", 4, minimum=1)
        >>> (page.chunk, page.next_cursor, page.is_truncated)
        ('abcd', '4', True)
        >>> paginate("abcdefghij", 4, "8", minimum=1).next_cursor is None
        True
    """
    total_length = len(text)
    size = clamp_limit(limit, default, minimum, maximum)
    start = parse_cursor(cursor, total_length)
    end = min(start + size, total_length)
    is_truncated = end < total_length
    return Page(
        chunk=text[start:end],
        next_cursor=str(end) if is_truncated else None,
        is_truncated=is_truncated,
        total_length=total_length,
        start_offset=start,
        end_offset=end,
    )
