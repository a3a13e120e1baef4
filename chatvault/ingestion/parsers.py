"""Transcript parser for exported chat logs.

Each transcript line is tested against an ordered grammar:

- user lines: ``[12/5/23, 3:41 PM] - John: Hello``
- system lines: the same timestamp prefix without a ``sender:`` delimiter
  (``12/5/23, 3:41 PM - John joined using this group's invite link``)
- anything else continues the message above it.

The parser keeps a single in-progress message. A user or system line
finalizes it (media classification runs at that point) and opens the next.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import dataclass
from enum import StrEnum
from pathlib import PurePosixPath

from chatvault.ingestion.classifier import apply_media_reference
from chatvault.ingestion.models import ParsedMessage, ParsedTranscript
from chatvault.ingestion.timestamps import normalize_digits, parse_timestamp, strip_direction_marks
from chatvault.pipeline_config import DateOrder, ParserConfig

logger = logging.getLogger(__name__)

SELF_LABEL = "You"

# Compared case-insensitively against the raw sender token.
SELF_IDENTIFIERS = frozenset(
    name.casefold()
    for name in ("You", "أنت", "انت", "Vous", "Tu", "Tú", "Du", "Sie", "Você")
)

_TIMESTAMP = (
    r"\[?(\d{1,2}[/.\-]\d{1,2}[/.\-]\d{2,4}[،,]?\s+\d{1,2}:\d{2}(?::\d{2})?"
    r"\s*(?:AM|PM|ص|م)?)\]?\s*-?\s*"
)

# Checked against the first line only, with or without a timestamp prefix.
ENCRYPTION_NOTICE_RE = re.compile(
    r"^(?:" + _TIMESTAMP + r")?(?:"
    r"Messages and calls are end-to-end encrypted"
    r"|الرسائل والمكالمات مشفرة"
    r"|Les messages et les appels sont chiffrés"
    r"|Nachrichten und Anrufe sind Ende-zu-Ende-verschlüsselt"
    r"|Los mensajes y las llamadas están cifrados"
    r"|As mensagens e as chamadas são protegidas"
    r")",
    re.IGNORECASE,
)


class LineKind(StrEnum):
    """Grammar category of one transcript line."""

    USER = "user"
    SYSTEM = "system"
    CONTINUATION = "continuation"


@dataclass(frozen=True)
class LineMatch:
    """Tagged result of matching one normalized line against the grammar."""

    kind: LineKind
    body: str
    timestamp_token: str | None = None
    sender: str | None = None


# Tried in order; the first pattern that matches decides the line kind.
LINE_GRAMMAR: tuple[tuple[LineKind, re.Pattern[str]], ...] = (
    (LineKind.USER, re.compile(_TIMESTAMP + r"([^:]+?):\s*(.+)$", re.IGNORECASE)),
    (LineKind.SYSTEM, re.compile(_TIMESTAMP + r"(.+)$", re.IGNORECASE)),
)


def normalize_line(line: str) -> str:
    return normalize_digits(strip_direction_marks(line))


def match_line(line: str) -> LineMatch:
    """Classify a normalized line as a user, system or continuation line."""
    for kind, pattern in LINE_GRAMMAR:
        match = pattern.match(line)
        if not match:
            continue
        if kind is LineKind.USER:
            return LineMatch(
                kind=kind,
                timestamp_token=match.group(1),
                sender=match.group(2).strip(),
                body=match.group(3),
            )
        return LineMatch(kind=kind, timestamp_token=match.group(1), body=match.group(2))
    return LineMatch(kind=LineKind.CONTINUATION, body=line)


def is_self_identifier(sender: str) -> bool:
    return sender.strip().casefold() in SELF_IDENTIFIERS


def display_name_from_filename(filename: str) -> str:
    """Turn ``WhatsApp_Chat_with_Ana.txt`` into ``WhatsApp Chat with Ana``."""
    name = PurePosixPath(filename.replace("\\", "/")).name
    if name.lower().endswith(".txt"):
        name = name[:-4]
    return strip_direction_marks(name.replace("_", " "))


class TranscriptParser:
    """Line-oriented state machine turning transcript text into messages."""

    def __init__(
        self,
        date_order: DateOrder = DateOrder.MONTH_FIRST,
        self_share_threshold: float = 0.6,
    ) -> None:
        self.date_order = date_order
        self.self_share_threshold = self_share_threshold

    @classmethod
    def from_config(cls, config: ParserConfig) -> TranscriptParser:
        return cls(date_order=config.date_order, self_share_threshold=config.self_share_threshold)

    def parse(self, text: str, display_name: str) -> ParsedTranscript:
        messages: list[ParsedMessage] = []
        sender_counts: Counter[str] = Counter()
        current: ParsedMessage | None = None
        saw_self = False

        def flush() -> None:
            if current is not None:
                messages.append(apply_media_reference(current))

        for index, raw in enumerate(text.splitlines()):
            if not raw.strip():
                continue
            if index == 0 and ENCRYPTION_NOTICE_RE.match(normalize_line(raw)):
                continue

            line = normalize_line(raw)
            matched = match_line(line)

            if matched.kind is LineKind.USER:
                flush()
                timestamp = parse_timestamp(matched.timestamp_token or "", self.date_order)
                sender = matched.sender or ""
                if is_self_identifier(sender):
                    saw_self = True
                    current = ParsedMessage(
                        content=matched.body,
                        sender=SELF_LABEL,
                        timestamp=timestamp,
                        is_from_me=True,
                    )
                else:
                    sender_counts[sender] += 1
                    current = ParsedMessage(content=matched.body, sender=sender, timestamp=timestamp)
            elif matched.kind is LineKind.SYSTEM:
                flush()
                current = ParsedMessage(
                    content=matched.body,
                    sender=None,
                    timestamp=parse_timestamp(matched.timestamp_token or "", self.date_order),
                    is_system_message=True,
                )
            elif current is not None and not current.is_system_message:
                current.content = f"{current.content}\n{line}" if current.content else line
            else:
                logger.debug("Dropping orphan line %d of %r", index + 1, display_name)

        flush()

        if not saw_self and sender_counts:
            self._infer_self(messages, sender_counts)

        return ParsedTranscript(
            display_name=display_name,
            messages=messages,
            is_group=len(sender_counts) > 1,
        )

    def _infer_self(self, messages: list[ParsedMessage], sender_counts: Counter[str]) -> None:
        """Relabel the exporting user when the export never names them."""
        me: str | None = None
        if len(sender_counts) == 1:
            me = next(iter(sender_counts))
        elif len(sender_counts) == 2:
            (top, top_count), _ = sender_counts.most_common(2)
            total = sum(1 for m in messages if not m.is_system_message)
            if total and top_count / total > self.self_share_threshold:
                me = top

        if me is None:
            return
        for message in messages:
            if message.sender == me and not message.is_system_message:
                message.is_from_me = True


def parse_transcript(text: str, display_name: str) -> ParsedTranscript:
    """Parse *text* with the configured parser settings."""
    return TranscriptParser.from_config(ParserConfig.from_settings()).parse(text, display_name)
