"""Tests for cursor pagination."""

import pytest

from subtitle_mcp.errors import ValidationError
from subtitle_mcp.pagination import INVALID_CURSOR_MESSAGE, clamp_limit, paginate, parse_cursor

TEXT = "abcdefghij"


class TestClampLimit:
    def test_default_when_missing(self):
        assert clamp_limit(None) == 50000

    def test_clamped_to_bounds(self):
        assert clamp_limit(10) == 1000
        assert clamp_limit(10**9) == 200000
        assert clamp_limit(5000) == 5000

    def test_custom_bounds(self):
        assert clamp_limit(None, default=7, minimum=1, maximum=10) == 7
        assert clamp_limit(0, default=7, minimum=1, maximum=10) == 1


class TestParseCursor:
    def test_none_is_start(self):
        assert parse_cursor(None, 10) == 0

    def test_valid_offsets(self):
        assert parse_cursor("0", 10) == 0
        assert parse_cursor("10", 10) == 10

    @pytest.mark.parametrize("cursor", ["", "-1", "abc", "1.5", " 4", "11", "999", "٣"])
    def test_invalid_cursor(self, cursor):
        with pytest.raises(ValidationError) as exc_info:
            parse_cursor(cursor, 10)
        assert exc_info.value.message == INVALID_CURSOR_MESSAGE
        assert exc_info.value.title == "invalid_cursor"


class TestPaginate:
    """Tests for paginate."""

    def test_first_page(self):
        page = paginate(TEXT, 4, minimum=1)
        assert page.chunk == "abcd"
        assert page.next_cursor == "4"
        assert page.is_truncated is True
        assert page.total_length == 10
        assert (page.start_offset, page.end_offset) == (0, 4)

    def test_walks_all_pages(self):
        chunks = []
        cursor = None
        while True:
            page = paginate(TEXT, 4, cursor, minimum=1)
            chunks.append(page.chunk)
            if not page.is_truncated:
                break
            cursor = page.next_cursor
        assert chunks == ["abcd", "efgh", "ij"]
        assert "".join(chunks) == TEXT

    def test_last_page(self):
        page = paginate(TEXT, 4, "8", minimum=1)
        assert page.chunk == "ij"
        assert page.next_cursor is None
        assert page.is_truncated is False
        assert page.end_offset == 10

    def test_cursor_at_end_returns_empty_page(self):
        page = paginate(TEXT, 4, "10", minimum=1)
        assert page.chunk == ""
        assert page.is_truncated is False

    def test_whole_text_fits(self):
        page = paginate(TEXT)
        assert page.chunk == TEXT
        assert page.next_cursor is None
        assert page.is_truncated is False

    def test_empty_text(self):
        page = paginate("")
        assert page.chunk == ""
        assert page.total_length == 0

    def test_same_inputs_same_page(self):
        assert paginate(TEXT, 3, "2", minimum=1) == paginate(TEXT, 3, "2", minimum=1)

    def test_cursor_past_end_rejected(self):
        with pytest.raises(ValidationError):
            paginate(TEXT, 4, "11", minimum=1)
