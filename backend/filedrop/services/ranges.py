"""HTTP Range header parsing for downloads (single byte range only)."""
import re
from typing import Optional

from filedrop.errors import RangeNotSatisfiableError

_RANGE_RE = re.compile(r"^\s*bytes\s*=\s*(\d*)\s*-\s*(\d*)\s*$", re.IGNORECASE)


def parse_range(header: Optional[str], size: int) -> Optional[tuple[int, int]]:
    """Return the inclusive ``(start, end)`` span requested by ``header``.

    Returns None when there is no header or it cannot be parsed (including
    multi-range requests); callers then serve the full body. Raises
    RangeNotSatisfiableError when a bound falls outside ``[0, size)``.

    Accepted forms: ``bytes=0-99``, ``bytes=900-`` (to the end) and
    ``bytes=-100`` (the last 100 bytes).
    """
    if not header:
        return None
    match = _RANGE_RE.match(header)
    if not match:
        return None

    first, last = match.groups()
    if not first and not last:
        return None

    if not first:
        suffix = int(last)
        if suffix == 0 or size == 0:
            raise RangeNotSatisfiableError(size, header)
        return max(0, size - suffix), size - 1

    start = int(first)
    end = int(last) if last else size - 1
    if start >= size or end >= size or start > end:
        raise RangeNotSatisfiableError(size, header)
    return start, end


def content_range(start: int, end: int, size: int) -> str:
    return f"bytes {start}-{end}/{size}"
