"""Archive ingestion pipeline: extract -> parse -> correlate media -> store.

One :class:`ArchiveIngestion` runs per uploaded archive, normally as a
background task. Entries are read once, in archive order: transcripts are
buffered in memory, every other entry is streamed to the job's own media
directory. Any failure marks the job failed and removes the uploaded archive
and every media file the job wrote.
"""

from __future__ import annotations

import logging
import shutil
import zipfile
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING

from chatvault.config import settings
from chatvault.ingestion.correlator import MediaPool, correlate_media, describe_media_file
from chatvault.ingestion.models import IngestionJob, MediaFileDescriptor, ParsedTranscript
from chatvault.ingestion.parsers import (
    TranscriptParser,
    display_name_from_filename,
    parse_transcript,
)
from chatvault.ingestion.storage import (
    create_chat,
    create_messages,
    create_upload,
    get_supabase_client,
    update_upload,
)
from chatvault.pipeline_config import ParserConfig

if TYPE_CHECKING:
    from supabase import Client

logger = logging.getLogger(__name__)

# Progress milestones (percent)
EXTRACTION_START = 5
SCAN_END = 45
PARSING = 50
CORRELATION = 70
PERSISTENCE = 80
CLEANUP = 95
COMPLETE = 100

TRANSCRIPT_SUFFIX = ".txt"


class ArchiveError(Exception):
    """The archive is unreadable or exceeds the configured limits."""


@dataclass
class TranscriptFile:
    """A transcript entry buffered during the archive scan."""

    display_name: str
    content: str


def decode_transcript(raw: bytes) -> str:
    """Decode transcript bytes, dropping a BOM and replacing undecodable bytes."""
    return raw.decode("utf-8-sig", errors="replace")


class ArchiveIngestion:
    """Ingest one uploaded archive for one user and upload job."""

    def __init__(
        self,
        client: Client | None,
        user_id: str,
        upload_id: str,
        archive_path: str | Path,
        media_root: str | Path | None = None,
        parser: TranscriptParser | None = None,
    ) -> None:
        self.client = client
        self.user_id = user_id
        self.upload_id = upload_id
        self.archive_path = Path(archive_path)
        self.media_dir = Path(media_root or settings.media_root) / user_id / upload_id
        self.parser = parser or TranscriptParser.from_config(ParserConfig.from_settings())
        self.job = IngestionJob(id=upload_id)
        self.extracted_paths: list[Path] = []
        # Lower-cased basenames already written; duplicates compare case-insensitively.
        self._extracted_names: set[str] = set()

    # ------------------------------------------------------------------
    # Job lifecycle
    # ------------------------------------------------------------------

    def run(self) -> IngestionJob:
        """Run the whole pipeline; failures are recorded on the job, not raised."""
        try:
            if self.client is None:
                self.client = get_supabase_client()
            self._report(EXTRACTION_START)
            transcripts, pool = self._scan_archive()

            self._report(PARSING)
            parsed = [self.parser.parse(t.content, t.display_name) for t in transcripts]
            for chat in parsed:
                logger.info("Parsed chat %r (%d messages)", chat.display_name, len(chat.messages))

            self._report(CORRELATION)
            for chat in parsed:
                correlate_media(chat.messages, pool, self.user_id)
            if len(pool):
                logger.info("%d media files not referenced by any message", len(pool))
                logger.debug("Unreferenced media: %s", ", ".join(m.filename for m in pool))

            self._report(PERSISTENCE)
            chat_count, message_count = self._persist(parsed)

            self._report(CLEANUP)
            self.archive_path.unlink(missing_ok=True)

            self.job.complete(chat_count, message_count)
            self._write_job()
            logger.info(
                "Upload %s complete: %d chats, %d messages",
                self.upload_id,
                chat_count,
                message_count,
            )
        except Exception as exc:
            logger.exception("Ingestion failed for upload %s", self.upload_id)
            if not self.job.is_terminal:
                self.job.fail(str(exc) or type(exc).__name__)
                self._write_job()
            self._cleanup()
        return self.job

    def _report(self, progress: int) -> None:
        if self.job.advance(progress):
            self._write_job()

    def _write_job(self) -> None:
        # Status writes are best effort; the job keeps running without them.
        if self.client is None:
            logger.warning("No storage client; status of upload %s not written", self.upload_id)
            return
        try:
            update_upload(self.client, self.upload_id, self.job.to_update())
        except Exception:
            logger.exception("Failed to update status of upload %s", self.upload_id)
        else:
            logger.debug("Upload %s: %d%% (%s)", self.upload_id, self.job.progress, self.job.status)

    def _cleanup(self) -> None:
        for path in (self.archive_path, *self.extracted_paths):
            try:
                path.unlink(missing_ok=True)
            except OSError:
                logger.exception("Failed to remove %s", path)

        try:
            if self.media_dir.is_dir() and not any(self.media_dir.iterdir()):
                self.media_dir.rmdir()
        except OSError:
            logger.exception("Failed to remove media directory %s", self.media_dir)

        if self.extracted_paths:
            logger.info("Cleaned up %d extracted media files", len(self.extracted_paths))

    # ------------------------------------------------------------------
    # Archive scan
    # ------------------------------------------------------------------

    def _is_skipped(self, info: zipfile.ZipInfo) -> bool:
        return info.is_dir() or info.filename.startswith(settings.metadata_prefix)

    def _check_limits(self, entries: list[zipfile.ZipInfo]) -> None:
        if len(entries) > settings.max_archive_members:
            msg = f"Archive contains {len(entries)} files; maximum is {settings.max_archive_members}."
            raise ArchiveError(msg)

        for info in entries:
            if info.file_size > settings.max_member_bytes:
                msg = (
                    f"{info.filename}: file too large ({info.file_size // (1024 * 1024)} MB, "
                    f"max {settings.max_member_bytes // (1024 * 1024)} MB)"
                )
                raise ArchiveError(msg)

        total = sum(info.file_size for info in entries)
        if total > settings.max_total_bytes:
            msg = (
                f"Archive would expand to {total // (1024 * 1024)} MB; "
                f"maximum is {settings.max_total_bytes // (1024 * 1024)} MB."
            )
            raise ArchiveError(msg)

    def _scan_archive(self) -> tuple[list[TranscriptFile], MediaPool]:
        try:
            archive = zipfile.ZipFile(self.archive_path)
        except zipfile.BadZipFile as exc:
            raise ArchiveError(f"Invalid zip file: {exc}") from exc

        transcripts: list[TranscriptFile] = []
        pool = MediaPool()

        with archive:
            entries = [info for info in archive.infolist() if not self._is_skipped(info)]
            self._check_limits(entries)
            self.media_dir.mkdir(parents=True, exist_ok=True)

            total = len(entries)
            for processed, info in enumerate(entries, start=1):
                if info.filename.lower().endswith(TRANSCRIPT_SUFFIX):
                    transcripts.append(self._read_transcript(archive, info))
                else:
                    media = self._extract_media(archive, info)
                    if media is not None:
                        pool.add(media)

                if processed % settings.progress_every == 0 or processed == total:
                    span = SCAN_END - EXTRACTION_START
                    self._report(EXTRACTION_START + span * processed // total)

        logger.info(
            "Extracted %d chat files, %d media files from %s",
            len(transcripts),
            len(pool),
            self.archive_path.name,
        )
        return transcripts, pool

    def _read_transcript(self, archive: zipfile.ZipFile, info: zipfile.ZipInfo) -> TranscriptFile:
        content = decode_transcript(archive.read(info))
        return TranscriptFile(display_name=display_name_from_filename(info.filename), content=content)

    def _extract_media(
        self, archive: zipfile.ZipFile, info: zipfile.ZipInfo
    ) -> MediaFileDescriptor | None:
        """Stream one entry to the media directory and describe it."""
        basename = PurePosixPath(info.filename.replace("\\", "/")).name
        if not basename:
            return None

        key = basename.lower()
        if key in self._extracted_names:
            logger.warning("Duplicate media entry %s skipped", info.filename)
            return None

        dest = self.media_dir / basename

        try:
            with archive.open(info) as source, dest.open("wb") as target:
                shutil.copyfileobj(source, target)
        except Exception:
            dest.unlink(missing_ok=True)
            raise

        self.extracted_paths.append(dest)
        self._extracted_names.add(key)
        return describe_media_file(basename, stored_path=f"{self.upload_id}/{basename}")

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _persist(self, parsed: list[ParsedTranscript]) -> tuple[int, int]:
        total_messages = 0
        for chat in parsed:
            chat_id = create_chat(
                self.client,
                self.user_id,
                chat.display_name,
                chat.is_group,
                chat.last_message_at,
                len(chat.messages),
            )
            if chat.messages:
                logger.info("Inserting %d messages for chat %r", len(chat.messages), chat.display_name)
                total_messages += create_messages(self.client, chat_id, chat.messages)
        return len(parsed), total_messages


def ingest_archive(
    user_id: str,
    upload_id: str,
    archive_path: str | Path,
    client: Client | None = None,
) -> IngestionJob:
    """Background-task entry point for one uploaded archive.

    Without *client* one is built inside the guarded run, so a storage outage
    still fails the job and removes the uploaded archive.
    """
    return ArchiveIngestion(client, user_id, upload_id, archive_path).run()


def ingest_transcript_file(
    client: Client,
    user_id: str,
    path: str | Path,
    original_name: str,
) -> IngestionJob:
    """Ingest a single uploaded transcript synchronously.

    There is no media to correlate. The temporary upload file is removed
    whether or not ingestion succeeds; errors propagate to the caller.
    """
    path = Path(path)
    try:
        file_size = path.stat().st_size
        content = decode_transcript(path.read_bytes())
        chat = parse_transcript(content, display_name_from_filename(original_name))

        chat_id = create_chat(
            client,
            user_id,
            chat.display_name,
            chat.is_group,
            chat.last_message_at,
            len(chat.messages),
        )
        message_count = create_messages(client, chat_id, chat.messages) if chat.messages else 0

        upload_id = create_upload(client, user_id, original_name, file_size)
        job = IngestionJob(id=upload_id)
        job.complete(chat_count=1, message_count=message_count)
        update_upload(client, upload_id, job.to_update())
    finally:
        path.unlink(missing_ok=True)

    logger.info("Text upload complete: 1 chat, %d messages", message_count)
    return job
