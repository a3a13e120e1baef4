"""Extension-to-bucket table shared by the classifier and the correlator."""

from __future__ import annotations

import re

from chatvault.ingestion.models import MediaKind

TABLE_VERSION = 1

IMAGE_EXTENSIONS = frozenset({"jpg", "jpeg", "png", "gif", "webp", "bmp"})
VIDEO_EXTENSIONS = frozenset({"mp4", "mov", "avi", "3gp", "mkv", "webm"})
AUDIO_EXTENSIONS = frozenset({"opus", "mp3", "ogg", "m4a", "aac", "wav"})
DOCUMENT_EXTENSIONS = frozenset({"pdf", "doc", "docx", "txt", "xlsx", "xls", "ppt", "pptx"})

BUCKETS: dict[MediaKind, frozenset[str]] = {
    MediaKind.IMAGE: IMAGE_EXTENSIONS,
    MediaKind.VIDEO: VIDEO_EXTENSIONS,
    MediaKind.AUDIO: AUDIO_EXTENSIONS,
    MediaKind.DOCUMENT: DOCUMENT_EXTENSIONS,
}

# Extensions recognised by the generic ``name.ext`` filename pattern.
REFERENCE_EXTENSIONS = (
    "jpg", "jpeg", "png", "gif", "webp",
    "mp4", "mov", "avi", "3gp",
    "opus", "mp3", "ogg", "m4a",
    "pdf", "doc", "docx", "txt", "xlsx",
)

# Longest alternatives first so "docx" is not cut short at "doc".
_EXT_ALTERNATION = "|".join(sorted(REFERENCE_EXTENSIONS, key=len, reverse=True))

# IMG-20231205-WA0001.jpg and friends; group 2 is the YYYYMMDD stamp.
VENDOR_MEDIA_RE = re.compile(r"(IMG|VID|AUD|DOC|PTT)-(\d{8})-WA(\d+)", re.IGNORECASE)

VENDOR_FILENAME_RE = re.compile(r"(?:IMG|VID|AUD|DOC|PTT)-\d{8}-WA\d+\.\w+", re.IGNORECASE)
GENERIC_FILENAME_RE = re.compile(rf"[\w\-]+\.(?:{_EXT_ALTERNATION})\b", re.IGNORECASE)


def extension_of(filename: str) -> str:
    """Lower-cased suffix after the last dot, or ``""``."""
    if "." not in filename:
        return ""
    return filename.rsplit(".", 1)[-1].lower()


def bucket_for_extension(extension: str) -> MediaKind | None:
    ext = extension.lower().lstrip(".")
    for kind, extensions in BUCKETS.items():
        if ext in extensions:
            return kind
    return None


def kind_accepts_extension(kind: MediaKind | None, extension: str) -> bool:
    """Whether a file with *extension* may satisfy a message of *kind*.

    Bucketed kinds require bucket membership, the generic ``file`` kind accepts
    anything, and links never take a file.
    """
    if kind is None or kind is MediaKind.LINK:
        return False
    if kind is MediaKind.FILE:
        return True
    return extension.lower().lstrip(".") in BUCKETS[kind]
