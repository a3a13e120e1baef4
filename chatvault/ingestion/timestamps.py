"""Timestamp parsing for locale-variant transcript date tokens.

Export tools write the date and time of every message in the device locale:
``12/5/23, 3:41 PM``, ``[05.12.2023, 15:41:07]`` or Arabic-Indic digits with
the ``ص``/``م`` meridiem markers. This module turns those tokens into naive
wall-clock ``datetime`` values.

:func:`parse_timestamp` never raises. When no candidate pattern matches it
returns the current wall-clock time, so callers comparing timestamps exactly
should treat such values as unreliable; :func:`try_parse_timestamp` exposes
the structural result (``None`` on no match) for those callers.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from datetime import datetime

from chatvault.pipeline_config import DateOrder

logger = logging.getLogger(__name__)

DIRECTION_MARKS_RE = re.compile(r"[\u200e\u200f\u202a-\u202e\u2066-\u2069]")

_DIGIT_TABLE = {
    **{0x0660 + i: str(i) for i in range(10)},  # Arabic-Indic
    **{0x06F0 + i: str(i) for i in range(10)},  # Extended Arabic-Indic (Persian)
}

PM_MARKERS = frozenset({"PM", "م"})
AM_MARKERS = frozenset({"AM", "ص"})

# Candidate patterns in priority order: 12-hour with optional meridiem, then
# plain 24-hour.
TIMESTAMP_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(
        r"(\d{1,2})[/.\-](\d{1,2})[/.\-](\d{2,4}),?\s*(\d{1,2}):(\d{2})(?::(\d{2}))?"
        r"\s*(AM|PM|ص|م)?",
        re.IGNORECASE,
    ),
    re.compile(r"(\d{1,2})[/.\-](\d{1,2})[/.\-](\d{2,4})\s+(\d{1,2}):(\d{2})(?::(\d{2}))?"),
)


def strip_direction_marks(text: str) -> str:
    """Remove bidirectional control characters and surrounding whitespace."""
    return DIRECTION_MARKS_RE.sub("", text).strip()


def normalize_digits(text: str) -> str:
    """Map Arabic-Indic and Persian digit glyphs to ASCII digits."""
    return text.translate(_DIGIT_TABLE)


def _canonical_token(token: str) -> str:
    token = normalize_digits(strip_direction_marks(token))
    token = token.replace("[", "").replace("]", "")
    # Arabic comma and full-width comma become the canonical separator.
    return token.replace("،", ",").replace("，", ",").strip()


def _expand_year(year: int) -> int:
    if year < 100:
        return year + 2000 if year < 50 else year + 1900
    return year


def _to_24_hour(hour: int, meridiem: str | None) -> int:
    if not meridiem:
        return hour
    marker = meridiem.upper()
    if marker in PM_MARKERS and hour < 12:
        return hour + 12
    if marker in AM_MARKERS and hour == 12:
        return 0
    return hour


def _build(
    first: int,
    second: int,
    year: int,
    hour: int,
    minute: int,
    sec: int,
    date_order: DateOrder,
) -> datetime | None:
    if date_order is DateOrder.DAY_FIRST:
        readings = ((first, second), (second, first))
    else:
        readings = ((second, first), (first, second))

    for day, month in readings:
        try:
            return datetime(year, month, day, hour, minute, sec)
        except ValueError:
            continue
    return None


def try_parse_timestamp(
    token: str,
    date_order: DateOrder = DateOrder.MONTH_FIRST,
) -> datetime | None:
    """Parse *token* structurally, returning ``None`` when nothing matches.

    The configured *date_order* is tried first; when it yields an impossible
    date (e.g. a 13th month) the swapped reading is tried before the next
    pattern.
    """
    text = _canonical_token(token)
    for pattern in TIMESTAMP_PATTERNS:
        match = pattern.search(text)
        if not match:
            continue
        first, second, year, hour, minute = (int(g) for g in match.group(1, 2, 3, 4, 5))
        sec = int(match.group(6)) if match.group(6) else 0
        meridiem = match.group(7) if pattern.groups >= 7 else None

        parsed = _build(
            first,
            second,
            _expand_year(year),
            _to_24_hour(hour, meridiem),
            minute,
            sec,
            date_order,
        )
        if parsed is not None:
            return parsed
    return None


def parse_timestamp(
    token: str,
    date_order: DateOrder = DateOrder.MONTH_FIRST,
    now: Callable[[], datetime] = datetime.now,
) -> datetime:
    """Parse *token*, falling back to ``now()`` when no pattern matches."""
    parsed = try_parse_timestamp(token, date_order)
    if parsed is None:
        logger.debug("Unrecognised timestamp %r, using wall clock", token)
        return now()
    return parsed
