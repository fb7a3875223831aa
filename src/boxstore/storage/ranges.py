"""HTTP Range header parsing for artifact downloads."""

from __future__ import annotations

import re

from boxstore.storage.errors import RangeNotSatisfiableError
from boxstore.storage.models import RangeSpec

_RANGE_PATTERN = re.compile(r"^\s*bytes\s*=\s*(\d+)\s*-\s*(\d*)\s*$", re.IGNORECASE)


def parse_range_header(header: str, size: int) -> RangeSpec:
    """Parse a single "bytes=start-end" range against a file size.

    The end is optional and means "to end of file". An end past the last
    byte is clamped to size - 1. Suffix ranges ("bytes=-N") and multiple
    ranges are not supported and are treated as unparseable.

    Raises:
        RangeNotSatisfiableError: If the header is unparseable,
            start >= size, or start > end.
    """
    match = _RANGE_PATTERN.match(header or "")
    if match is None:
        raise RangeNotSatisfiableError(size, header)

    start = int(match.group(1))
    end = int(match.group(2)) if match.group(2) else size - 1

    if start >= size or start > end:
        raise RangeNotSatisfiableError(size, header)

    if end >= size:
        end = size - 1

    return RangeSpec(start=start, end=end, size=size)
