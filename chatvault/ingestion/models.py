"""Data models for the ingestion pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any


class MediaKind(StrEnum):
    """Coarse media category attached to a message."""

    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"
    FILE = "file"
    LINK = "link"


class JobStatus(StrEnum):
    """Lifecycle states of an ingestion job."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class JobStateError(RuntimeError):
    """Raised when a terminal ingestion job is asked to change state."""


@dataclass
class ParsedMessage:
    """One logical message from a transcript, continuation lines folded in."""

    content: str | None
    sender: str | None
    timestamp: datetime
    is_from_me: bool = False
    is_system_message: bool = False
    media_kind: MediaKind | None = None
    media_name: str | None = None
    media_url: str | None = None

    def to_row(self, chat_id: str) -> dict[str, Any]:
        """Row shape of the ``messages`` table."""
        return {
            "chat_id": chat_id,
            "content": self.content,
            "sender": self.sender,
            "is_from_me": self.is_from_me,
            "timestamp": self.timestamp.isoformat(),
            "media_type": self.media_kind.value if self.media_kind else None,
            "media_name": self.media_name,
            "media_url": self.media_url,
            "is_system_message": self.is_system_message,
        }


@dataclass
class ParsedTranscript:
    """A parsed chat: display name, ordered messages and group flag."""

    display_name: str
    messages: list[ParsedMessage] = field(default_factory=list)
    is_group: bool = False

    @property
    def last_message_at(self) -> datetime | None:
        return self.messages[-1].timestamp if self.messages else None


@dataclass(frozen=True)
class MediaFileDescriptor:
    """A media file extracted from an archive.

    ``stored_path`` is relative to the owning user's media directory and is
    what message media URLs point at.
    """

    filename: str
    timestamp: datetime
    extension: str
    stored_path: str = ""

    def __post_init__(self) -> None:
        if not self.stored_path:
            object.__setattr__(self, "stored_path", self.filename)

    @property
    def bucket(self) -> MediaKind | None:
        from chatvault.ingestion.media_types import bucket_for_extension

        return bucket_for_extension(self.extension)


@dataclass
class IngestionJob:
    """Progress record of one archive ingestion attempt.

    Progress only moves forward while the job is running; once the job is
    completed or failed its state is frozen.
    """

    id: str
    status: JobStatus = JobStatus.PENDING
    progress: int = 0
    chat_count: int = 0
    message_count: int = 0
    error_message: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.COMPLETED, JobStatus.FAILED)

    def _check_open(self) -> None:
        if self.is_terminal:
            msg = f"Job {self.id} is already {self.status}"
            raise JobStateError(msg)

    def advance(self, progress: int) -> bool:
        """Move the job forward to *progress*.

        Returns True when the recorded progress changed. Values lower than the
        current progress are ignored.
        """
        self._check_open()
        self.status = JobStatus.PROCESSING
        progress = max(0, min(100, int(progress)))
        if progress <= self.progress:
            return False
        self.progress = progress
        return True

    def complete(self, chat_count: int, message_count: int) -> None:
        self._check_open()
        self.status = JobStatus.COMPLETED
        self.progress = 100
        self.chat_count = chat_count
        self.message_count = message_count

    def fail(self, error_message: str) -> None:
        self._check_open()
        self.status = JobStatus.FAILED
        self.error_message = error_message

    def to_update(self) -> dict[str, Any]:
        """Fields written to the ``uploads`` table for this job."""
        update: dict[str, Any] = {"progress": self.progress, "status": self.status.value}
        if self.status is JobStatus.COMPLETED:
            update["chat_count"] = self.chat_count
            update["message_count"] = self.message_count
        if self.status is JobStatus.FAILED:
            update["error_message"] = self.error_message
        return update
