"""Tests for archive ingestion, using real zip files and an in-memory store."""

from __future__ import annotations

import zipfile
from datetime import datetime
from pathlib import Path
from typing import Any

import pytest

from chatvault.config import settings
from chatvault.ingestion import pipeline
from chatvault.ingestion.models import JobStatus, MediaKind, ParsedMessage
from chatvault.ingestion.pipeline import (
    ArchiveIngestion,
    decode_transcript,
    ingest_archive,
    ingest_transcript_file,
)

CHAT = (
    "12/5/23, 3:41 PM - Ana: Hello\n"
    "12/5/23, 3:42 PM - Ana: IMG-20231205-WA0001.jpg (file attached)\n"
    "12/5/23, 3:43 PM - Ana: nice"
)

# Stands in for a Supabase client; the storage helpers are replaced by FakeStore.
CLIENT = object()


class FakeStore:
    """Stand-in for the Supabase helpers used by the pipeline."""

    def __init__(self) -> None:
        self.updates: list[dict[str, Any]] = []
        self.chats: list[dict[str, Any]] = []
        self.messages: dict[str, list[ParsedMessage]] = {}
        self.uploads: list[str] = []
        self.fail_updates = False
        self.fail_chats = False

    def update_upload(self, client: Any, upload_id: str, fields: dict[str, Any]) -> None:
        if self.fail_updates:
            raise ConnectionError("status write failed")
        self.updates.append(dict(fields))

    def create_chat(
        self,
        client: Any,
        user_id: str,
        name: str,
        is_group: bool,
        last_message_at: Any,
        message_count: int,
    ) -> str:
        if self.fail_chats:
            raise RuntimeError("db down")
        chat_id = f"chat-{len(self.chats) + 1}"
        self.chats.append(
            {"id": chat_id, "user_id": user_id, "name": name, "is_group": is_group, "message_count": message_count}
        )
        return chat_id

    def create_messages(self, client: Any, chat_id: str, messages: list[ParsedMessage]) -> int:
        self.messages[chat_id] = list(messages)
        return len(messages)

    def create_upload(self, client: Any, user_id: str, file_name: str, file_size: int, *args: Any) -> str:
        self.uploads.append(file_name)
        return "up-txt"

    @property
    def progress(self) -> list[int]:
        return [u["progress"] for u in self.updates]


@pytest.fixture
def store(monkeypatch: pytest.MonkeyPatch) -> FakeStore:
    fake = FakeStore()
    for name in ("update_upload", "create_chat", "create_messages", "create_upload"):
        monkeypatch.setattr(pipeline, name, getattr(fake, name))
    return fake


@pytest.fixture
def media_root(tmp_path: Path) -> Path:
    return tmp_path / "media"


def _archive(path: Path, entries: dict[str, bytes | str]) -> Path:
    with zipfile.ZipFile(path, "w") as zf:
        for name, data in entries.items():
            if name.endswith("/"):
                zf.writestr(zipfile.ZipInfo(name), "")
            else:
                zf.writestr(name, data)
    return path


def _run(archive: Path, media_root: Path) -> ArchiveIngestion:
    ingestion = ArchiveIngestion(CLIENT, "u1", "up1", archive, media_root=media_root)
    ingestion.run()
    return ingestion


class TestArchiveIngestion:
    def test_end_to_end(self, tmp_path: Path, store: FakeStore, media_root: Path) -> None:
        archive = _archive(
            tmp_path / "export.zip",
            {"WhatsApp Chat with Ana.txt": CHAT, "IMG-20231205-WA0001.jpg": b"\xff\xd8jpeg"},
        )

        ingestion = _run(archive, media_root)

        job = ingestion.job
        assert job.status is JobStatus.COMPLETED
        assert (job.chat_count, job.message_count) == (1, 3)
        assert store.chats[0]["name"] == "WhatsApp Chat with Ana"
        assert store.chats[0]["is_group"] is False

        media_message = store.messages["chat-1"][1]
        assert media_message.timestamp == datetime(2023, 12, 5, 15, 42)
        assert media_message.media_kind is MediaKind.IMAGE
        assert media_message.media_url == "/media/u1/up1/IMG-20231205-WA0001.jpg"
        assert (media_root / "u1" / "up1" / "IMG-20231205-WA0001.jpg").read_bytes() == b"\xff\xd8jpeg"
        assert not archive.exists()

    def test_progress_monotonic(self, tmp_path: Path, store: FakeStore, media_root: Path) -> None:
        archive = _archive(
            tmp_path / "export.zip",
            {"chat.txt": CHAT, "IMG-20231205-WA0001.jpg": b"x"},
        )

        _run(archive, media_root)

        assert store.progress == [5, 45, 50, 70, 80, 95, 100]
        assert store.progress[-1] == pipeline.COMPLETE
        assert store.updates[0]["status"] == "processing"
        assert store.updates[-1]["status"] == "completed"
        assert store.updates[-1]["message_count"] == 3

    def test_progress_interpolated_during_scan(
        self, tmp_path: Path, store: FakeStore, media_root: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr(settings, "progress_every", 1)
        entries: dict[str, bytes | str] = {f"file{i}.bin": b"x" for i in range(4)}
        archive = _archive(tmp_path / "export.zip", entries)

        _run(archive, media_root)

        assert store.progress[:5] == [5, 15, 25, 35, 45]
        assert store.progress == sorted(store.progress)

    def test_metadata_and_directories_skipped(self, tmp_path: Path, store: FakeStore, media_root: Path) -> None:
        archive = _archive(
            tmp_path / "export.zip",
            {
                "__MACOSX/._IMG-20231205-WA0001.jpg": b"junk",
                "__MACOSX/chat.txt": "12/5/23, 3:41 PM - X: not a chat",
                "media/": b"",
                "chat.txt": CHAT,
                "IMG-20231205-WA0001.jpg": b"x",
            },
        )

        ingestion = _run(archive, media_root)

        assert ingestion.job.chat_count == 1
        assert sorted(p.name for p in (media_root / "u1" / "up1").iterdir()) == ["IMG-20231205-WA0001.jpg"]

    def test_invalid_zip_fails(self, tmp_path: Path, store: FakeStore, media_root: Path) -> None:
        archive = tmp_path / "export.zip"
        archive.write_bytes(b"this is not a zip")

        ingestion = _run(archive, media_root)

        assert ingestion.job.status is JobStatus.FAILED
        assert ingestion.job.error_message.startswith("Invalid zip file")
        assert store.updates[-1]["status"] == "failed"
        assert store.updates[-1]["progress"] == 5
        assert not archive.exists()
        assert store.chats == []

    def test_failure_removes_extracted_media(self, tmp_path: Path, store: FakeStore, media_root: Path) -> None:
        store.fail_chats = True
        archive = _archive(
            tmp_path / "export.zip",
            {"chat.txt": CHAT, "IMG-20231205-WA0001.jpg": b"x", "song.mp3": b"y"},
        )

        ingestion = _run(archive, media_root)

        assert ingestion.job.status is JobStatus.FAILED
        assert ingestion.job.error_message == "db down"
        assert not (media_root / "u1" / "up1").exists()
        assert not archive.exists()
        # Progress stays where the failure happened.
        assert store.updates[-1] == {"progress": 80, "status": "failed", "error_message": "db down"}

    def test_member_limit(
        self, tmp_path: Path, store: FakeStore, media_root: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr(settings, "max_archive_members", 1)
        archive = _archive(tmp_path / "export.zip", {"chat.txt": CHAT, "a.jpg": b"x"})

        ingestion = _run(archive, media_root)

        assert ingestion.job.status is JobStatus.FAILED
        assert "maximum is 1" in ingestion.job.error_message
        assert not (media_root / "u1" / "up1").exists()

    def test_member_size_limit(
        self, tmp_path: Path, store: FakeStore, media_root: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr(settings, "max_member_bytes", 4)
        archive = _archive(tmp_path / "export.zip", {"big.mp4": b"0123456789"})

        ingestion = _run(archive, media_root)

        assert ingestion.job.status is JobStatus.FAILED
        assert "big.mp4: file too large" in ingestion.job.error_message

    def test_media_shared_across_transcripts(self, tmp_path: Path, store: FakeStore, media_root: Path) -> None:
        archive = _archive(
            tmp_path / "export.zip",
            {"first.txt": CHAT, "second.txt": CHAT, "IMG-20231205-WA0001.jpg": b"x"},
        )

        ingestion = _run(archive, media_root)

        assert ingestion.job.chat_count == 2
        first, second = store.messages["chat-1"][1], store.messages["chat-2"][1]
        assert first.media_url == "/media/u1/up1/IMG-20231205-WA0001.jpg"
        assert second.media_url is None

    def test_omitted_audio_matched_by_time(self, tmp_path: Path, store: FakeStore, media_root: Path) -> None:
        chat = "12/5/23, 10:00 AM - Ana: <audio omitted>\n12/5/23, 10:01 AM - Bo: ok"
        archive = _archive(
            tmp_path / "export.zip",
            {"chat.txt": chat, "AUD-20231205-WA0007.mp3": b"x", "IMG-20231205-WA0002.jpg": b"y"},
        )

        _run(archive, media_root)

        message = store.messages["chat-1"][0]
        assert message.media_kind is MediaKind.AUDIO
        assert message.media_name == "AUD-20231205-WA0007.mp3"
        assert message.media_url == "/media/u1/up1/AUD-20231205-WA0007.mp3"

    def test_duplicate_basenames_keep_first(self, tmp_path: Path, store: FakeStore, media_root: Path) -> None:
        archive = _archive(
            tmp_path / "export.zip",
            {"a/photo.jpg": b"first", "b/photo.jpg": b"second"},
        )

        ingestion = _run(archive, media_root)

        assert ingestion.job.status is JobStatus.COMPLETED
        assert (media_root / "u1" / "up1" / "photo.jpg").read_bytes() == b"first"
        assert len(ingestion.extracted_paths) == 1

    def test_names_differing_in_case_keep_first(self, tmp_path: Path, store: FakeStore, media_root: Path) -> None:
        archive = _archive(
            tmp_path / "export.zip",
            {"Photo.jpg": b"first", "photo.JPG": b"second"},
        )

        ingestion = _run(archive, media_root)

        assert ingestion.job.status is JobStatus.COMPLETED
        assert [p.name for p in (media_root / "u1" / "up1").iterdir()] == ["Photo.jpg"]
        assert (media_root / "u1" / "up1" / "Photo.jpg").read_bytes() == b"first"
        assert ingestion.extracted_paths == [media_root / "u1" / "up1" / "Photo.jpg"]

    def test_omitted_media_matched_on_export_date(self, tmp_path: Path, store: FakeStore, media_root: Path) -> None:
        chat = "12/5/23, 3:41 PM - John: Hello\n12/5/23, 3:42 PM - John: <Media omitted>"
        archive = _archive(
            tmp_path / "export.zip",
            {"chat.txt": chat, "IMG-20231205-WA0001.jpg": b"x"},
        )

        _run(archive, media_root)

        message = store.messages["chat-1"][1]
        assert message.timestamp == datetime(2023, 12, 5, 15, 42)
        assert message.media_kind is MediaKind.IMAGE
        assert message.media_name == "IMG-20231205-WA0001.jpg"
        assert message.media_url == "/media/u1/up1/IMG-20231205-WA0001.jpg"

    def test_storage_client_failure_fails_job(
        self, tmp_path: Path, store: FakeStore, media_root: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        def unreachable() -> None:
            raise ConnectionError("supabase unreachable")

        monkeypatch.setattr(pipeline, "get_supabase_client", unreachable)
        monkeypatch.setattr(settings, "media_root", str(media_root))
        archive = _archive(tmp_path / "export.zip", {"chat.txt": CHAT, "a.jpg": b"x"})

        job = ingest_archive("u1", "up1", archive)

        assert job.status is JobStatus.FAILED
        assert job.error_message == "supabase unreachable"
        assert not archive.exists()
        assert not (media_root / "u1" / "up1").exists()
        assert store.updates == []
        assert store.chats == []

    def test_status_write_failures_do_not_abort(self, tmp_path: Path, store: FakeStore, media_root: Path) -> None:
        store.fail_updates = True
        archive = _archive(tmp_path / "export.zip", {"chat.txt": CHAT})

        ingestion = _run(archive, media_root)

        assert ingestion.job.status is JobStatus.COMPLETED
        assert store.chats

    def test_partial_media_removed_on_copy_error(
        self, tmp_path: Path, store: FakeStore, media_root: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        def broken_copy(source: Any, target: Any) -> None:
            target.write(b"partial")
            raise OSError("disk full")

        archive = _archive(tmp_path / "export.zip", {"IMG-20231205-WA0001.jpg": b"x"})
        monkeypatch.setattr(pipeline.shutil, "copyfileobj", broken_copy)

        ingestion = _run(archive, media_root)

        assert ingestion.job.status is JobStatus.FAILED
        assert ingestion.job.error_message == "disk full"
        assert not (media_root / "u1" / "up1").exists()

    def test_ingest_archive_entry_point(
        self, tmp_path: Path, store: FakeStore, media_root: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr(settings, "media_root", str(media_root))
        archive = _archive(tmp_path / "export.zip", {"chat.txt": CHAT})

        job = ingest_archive("u1", "up9", archive, client=object())

        assert job.id == "up9"
        assert job.status is JobStatus.COMPLETED


class TestTranscriptUpload:
    def test_single_transcript(self, tmp_path: Path, store: FakeStore) -> None:
        path = tmp_path / "upload.txt"
        path.write_text(CHAT, encoding="utf-8")

        job = ingest_transcript_file(None, "u1", path, "WhatsApp Chat with Ana.txt")

        assert job.id == "up-txt"
        assert job.status is JobStatus.COMPLETED
        assert (job.chat_count, job.message_count) == (1, 3)
        assert store.chats[0]["name"] == "WhatsApp Chat with Ana"
        assert store.updates[-1]["status"] == "completed"
        assert not path.exists()

    def test_failure_propagates_and_removes_file(self, tmp_path: Path, store: FakeStore) -> None:
        store.fail_chats = True
        path = tmp_path / "upload.txt"
        path.write_text(CHAT, encoding="utf-8")

        with pytest.raises(RuntimeError, match="db down"):
            ingest_transcript_file(None, "u1", path, "chat.txt")
        assert not path.exists()


class TestDecodeTranscript:
    def test_bom_dropped(self) -> None:
        assert decode_transcript(b"\xef\xbb\xbfhello") == "hello"

    def test_invalid_bytes_replaced(self) -> None:
        assert decode_transcript(b"ok \xff") == "ok �"
