"""Load a directory of chat exports (.zip archives and .txt transcripts) for one user."""

import argparse
import shutil
import sys
import uuid
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from chatvault.config import settings
from chatvault.ingestion.models import JobStatus
from chatvault.ingestion.pipeline import ArchiveIngestion, ingest_transcript_file
from chatvault.ingestion.storage import create_upload, get_supabase_client


def _staged_copy(source: Path) -> Path:
    """Copy *source* into the upload directory; ingestion deletes what it consumes."""
    upload_dir = Path(settings.upload_dir)
    upload_dir.mkdir(parents=True, exist_ok=True)
    dest = upload_dir / f"{uuid.uuid4().hex}{source.suffix.lower()}"
    shutil.copyfile(source, dest)
    return dest


def load_exports(user_id: str, data_dir: str = "data/exports", max_files: int | None = None) -> None:
    """Ingest every export found in *data_dir* into Supabase."""
    data_path = Path(data_dir)

    if not data_path.exists():
        print(f"Data directory {data_dir} not found.")
        return

    files = sorted(p for p in data_path.iterdir() if p.suffix.lower() in (".zip", ".txt"))
    if max_files:
        files = files[:max_files]

    print(f"Loading {len(files)} exports for user {user_id}...")

    client = get_supabase_client()
    loaded = 0
    errors = 0

    for i, filepath in enumerate(files):
        staged = _staged_copy(filepath)
        if filepath.suffix.lower() == ".txt":
            try:
                job = ingest_transcript_file(client, user_id, staged, filepath.name)
            except Exception as e:
                errors += 1
                print(f"  [{i + 1}] ERROR {filepath.name}: {e}")
                continue
        else:
            upload_id = create_upload(
                client, user_id, filepath.name, staged.stat().st_size, str(staged)
            )
            job = ArchiveIngestion(client, user_id, upload_id, staged).run()

        if job.status is JobStatus.FAILED:
            errors += 1
            print(f"  [{i + 1}] ERROR {filepath.name}: {job.error_message}")
            continue

        loaded += 1
        print(
            f"  [{i + 1}/{len(files)}] Loaded {filepath.name} -- "
            f"{job.chat_count} chats, {job.message_count} messages"
        )

    print(f"\nDone! Loaded {loaded} exports, {errors} errors.")


if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument("--user", required=True)
    parser.add_argument("--dir", default="data/exports")
    parser.add_argument("--max", type=int, default=None)
    args = parser.parse_args()
    load_exports(args.user, args.dir, args.max)
