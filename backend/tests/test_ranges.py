"""Tests for Range header parsing."""
import pytest

from filedrop.errors import RangeNotSatisfiableError
from filedrop.services.ranges import content_range, parse_range


@pytest.mark.parametrize("header,expected", [
    ("bytes=0-99", (0, 99)),
    ("bytes=500-999", (500, 999)),
    ("bytes=999-999", (999, 999)),
    ("bytes=900-", (900, 999)),
    ("bytes=-100", (900, 999)),
    ("bytes=-5000", (0, 999)),
    ("BYTES = 1 - 2", (1, 2)),
])
def test_parse_range_valid(header, expected):
    assert parse_range(header, 1000) == expected


@pytest.mark.parametrize("header", [None, "", "items=0-10", "bytes=abc", "bytes=-", "bytes=0-1,5-6"])
def test_parse_range_ignores_missing_or_malformed(header):
    assert parse_range(header, 1000) is None


@pytest.mark.parametrize("header", ["bytes=2000-2100", "bytes=0-1000", "bytes=1000-", "bytes=50-10", "bytes=-0"])
def test_parse_range_unsatisfiable(header):
    with pytest.raises(RangeNotSatisfiableError) as exc_info:
        parse_range(header, 1000)
    assert exc_info.value.size == 1000


def test_parse_range_empty_file_is_unsatisfiable():
    with pytest.raises(RangeNotSatisfiableError):
        parse_range("bytes=-10", 0)


def test_content_range():
    assert content_range(0, 99, 1000) == "bytes 0-99/1000"
