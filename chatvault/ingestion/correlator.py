"""Matching of extracted media files to the messages that reference them."""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable, Iterable, Iterator
from datetime import date, datetime

from chatvault.config import settings
from chatvault.ingestion.media_types import VENDOR_MEDIA_RE, extension_of, kind_accepts_extension
from chatvault.ingestion.models import MediaFileDescriptor, MediaKind, ParsedMessage

logger = logging.getLogger(__name__)

SCORE_BASE = 10_000_000
MAX_DISTANCE_MS = 24 * 60 * 60 * 1000


def describe_media_file(
    filename: str,
    stored_path: str | None = None,
    now: Callable[[], datetime] = datetime.now,
) -> MediaFileDescriptor:
    """Derive a descriptor from a media file name.

    Vendor names (``IMG-20231205-WA0001.jpg``) carry their capture date, taken
    as noon of that day. Anything else is stamped with the current time.
    """
    extension = extension_of(filename)
    timestamp: datetime | None = None

    match = VENDOR_MEDIA_RE.search(filename)
    if match:
        stamp = match.group(2)
        try:
            timestamp = datetime(int(stamp[:4]), int(stamp[4:6]), int(stamp[6:8]), 12, 0, 0)
        except ValueError:
            logger.debug("Ignoring impossible date in media name %r", filename)

    return MediaFileDescriptor(
        filename=filename,
        timestamp=timestamp or now(),
        extension=extension,
        stored_path=stored_path or filename,
    )


def media_url_for(user_id: str, media: MediaFileDescriptor) -> str:
    return f"{settings.media_url_prefix}/{user_id}/{media.stored_path}"


class MediaPool:
    """Unclaimed media files of one archive.

    Shared by every transcript of the archive; a claimed file is gone for
    all later lookups, so each file backs at most one message.
    """

    def __init__(self, media: Iterable[MediaFileDescriptor] = ()) -> None:
        self._by_name: dict[str, MediaFileDescriptor] = {}
        self._by_day: dict[date, list[MediaFileDescriptor]] = defaultdict(list)
        self._unclaimed: list[MediaFileDescriptor] = []
        for item in media:
            self.add(item)

    def add(self, media: MediaFileDescriptor) -> None:
        key = media.filename.lower()
        if key in self._by_name:
            logger.warning("Duplicate media name %r ignored", media.filename)
            return
        self._by_name[key] = media
        self._by_day[media.timestamp.date()].append(media)
        self._unclaimed.append(media)

    def __len__(self) -> int:
        return len(self._unclaimed)

    def __iter__(self) -> Iterator[MediaFileDescriptor]:
        return iter(list(self._unclaimed))

    def exact(self, filename: str) -> MediaFileDescriptor | None:
        return self._by_name.get(filename.strip().lower())

    def candidates_on(self, day: date) -> list[MediaFileDescriptor]:
        return list(self._by_day.get(day, ()))

    def claim(self, media: MediaFileDescriptor) -> None:
        self._by_name.pop(media.filename.lower(), None)
        same_day = self._by_day.get(media.timestamp.date())
        if same_day is not None and media in same_day:
            same_day.remove(media)
        if media in self._unclaimed:
            self._unclaimed.remove(media)


def _distance_ms(a: datetime, b: datetime) -> float:
    return abs((a - b).total_seconds()) * 1000


def best_fuzzy_match(message: ParsedMessage, pool: MediaPool) -> MediaFileDescriptor | None:
    """Closest same-day file of a compatible bucket within 24 hours.

    Equal scores resolve to the lexicographically smallest file name.
    """
    best: MediaFileDescriptor | None = None
    best_key: tuple[float, str] | None = None

    for media in pool.candidates_on(message.timestamp.date()):
        if not kind_accepts_extension(message.media_kind, media.extension):
            continue
        distance = _distance_ms(media.timestamp, message.timestamp)
        if distance > MAX_DISTANCE_MS:
            continue
        key = (-(SCORE_BASE - distance), media.filename.lower())
        if best_key is None or key < best_key:
            best, best_key = media, key
    return best


def correlate_media(messages: Iterable[ParsedMessage], pool: MediaPool, user_id: str) -> int:
    """Attach media files from *pool* to *messages*; returns the match count.

    Exact file-name matches win over time-based matches. Messages without a
    match keep ``media_url`` unset.
    """
    matched = 0
    for message in messages:
        if message.media_kind is None or message.media_kind is MediaKind.LINK:
            continue

        media = pool.exact(message.media_name) if message.media_name else None
        if media is None:
            media = best_fuzzy_match(message, pool)
        if media is None:
            continue

        message.media_url = media_url_for(user_id, media)
        if not message.media_name:
            message.media_name = media.filename
        pool.claim(media)
        matched += 1
    return matched
