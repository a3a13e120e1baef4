"""Media reference detection for message text.

A message may stand in for an attachment in several ways: the whole message
is a file name (``IMG-20231205-WA0001.jpg``), a file name is embedded in a
caption (``photo.jpg (file attached)``), or the export replaced the media
with a phrase (``<image omitted>``, ``تم استبعاد الصورة``). Messages with no
media marker but with a URL are classified as links.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from chatvault.ingestion.media_types import GENERIC_FILENAME_RE, VENDOR_FILENAME_RE
from chatvault.ingestion.models import MediaKind, ParsedMessage

URL_RE = re.compile(r"\bhttps?://\S+", re.IGNORECASE)

# Any one of these means the message stands for an attachment.
INDICATOR_PHRASES = ("(file attached)", "<attached:", "omitted")
ARABIC_INDICATOR_PHRASES = ("الملف مرفق", "تم استبعاد")

# Kind rules in priority order; the first rule with a hit wins.
# Each rule: (kind, lower-case phrases, original-case phrases, anchored vendor prefix).
_KIND_RULES: tuple[tuple[MediaKind, tuple[str, ...], tuple[str, ...], re.Pattern[str] | None], ...] = (
    (
        MediaKind.IMAGE,
        ("image omitted", ".jpg", ".png", ".jpeg", ".gif", ".webp"),
        ("تم استبعاد الصورة",),
        re.compile(r"^IMG-\d{8}-WA\d+", re.IGNORECASE),
    ),
    (
        MediaKind.VIDEO,
        ("video omitted", ".mp4", ".mov", ".avi", ".3gp"),
        ("تم استبعاد الفيديو",),
        re.compile(r"^VID-\d{8}-WA\d+", re.IGNORECASE),
    ),
    (
        MediaKind.AUDIO,
        ("audio omitted", "voice message", "ptt", ".opus", ".mp3", ".ogg", ".m4a"),
        ("تم استبعاد الصوت",),
        re.compile(r"^(?:PTT|AUD)-\d{8}-WA\d+", re.IGNORECASE),
    ),
    (
        MediaKind.DOCUMENT,
        (".pdf", ".doc", ".docx", ".txt", ".xlsx"),
        (),
        re.compile(r"^DOC-\d{8}-WA\d+", re.IGNORECASE),
    ),
    # "Media omitted" with no type hint; exports almost always mean a photo.
    (MediaKind.IMAGE, ("media omitted",), ("الوسائط", "تم استبعاد"), None),
)


@dataclass(frozen=True)
class MediaReference:
    """Outcome of classifying one message body."""

    kind: MediaKind | None = None
    filename: str | None = None
    url: str | None = None
    is_bare_filename: bool = False


NO_REFERENCE = MediaReference()


def _bare_filename(text: str) -> str | None:
    for pattern in (VENDOR_FILENAME_RE, GENERIC_FILENAME_RE):
        if pattern.fullmatch(text):
            return text
    return None


def _embedded_filename(text: str) -> str | None:
    for pattern in (VENDOR_FILENAME_RE, GENERIC_FILENAME_RE):
        match = pattern.search(text)
        if match:
            return match.group(0)
    return None


def _has_indicator(lower: str, original: str) -> bool:
    return any(p in lower for p in INDICATOR_PHRASES) or any(
        p in original for p in ARABIC_INDICATOR_PHRASES
    )


def _kind_for(lower: str, original: str) -> MediaKind:
    for kind, lower_phrases, phrases, prefix in _KIND_RULES:
        if any(p in lower for p in lower_phrases):
            return kind
        if any(p in original for p in phrases):
            return kind
        if prefix is not None and prefix.match(original):
            return kind
    return MediaKind.FILE


def classify_media_reference(content: str | None) -> MediaReference:
    """Classify *content* as a media reference, a link, or neither."""
    if not content:
        return NO_REFERENCE

    original = content.strip()
    lower = original.lower()

    filename = _bare_filename(original)
    is_bare = filename is not None
    if not is_bare:
        filename = _embedded_filename(original)

    if is_bare or _has_indicator(lower, original):
        return MediaReference(
            kind=_kind_for(lower, original),
            filename=filename,
            is_bare_filename=is_bare,
        )

    if filename is None:
        url = URL_RE.search(original)
        if url:
            return MediaReference(kind=MediaKind.LINK, url=url.group(0))

    return NO_REFERENCE


def apply_media_reference(message: ParsedMessage) -> ParsedMessage:
    """Record the media classification of *message* on the message itself."""
    ref = classify_media_reference(message.content)
    if ref.kind is MediaKind.LINK:
        message.media_kind = ref.kind
        message.media_url = ref.url
    elif ref.kind is not None:
        message.media_kind = ref.kind
        message.media_name = ref.filename
    return message
