"""Upload endpoints: submit chat exports and poll ingestion progress."""

from __future__ import annotations

import uuid
from pathlib import Path, PurePosixPath
from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, File, Form, HTTPException, Query, UploadFile
from fastapi.responses import JSONResponse

from chatvault.api.models import (
    TranscriptUploadResponse,
    UploadAcceptedResponse,
    UploadStatusResponse,
)
from chatvault.config import settings
from chatvault.ingestion.pipeline import ingest_archive, ingest_transcript_file
from chatvault.ingestion.storage import create_upload, get_supabase_client, get_upload

router = APIRouter()

ARCHIVE_CONTENT_TYPES = ("application/zip", "application/x-zip-compressed")

# Copy uploads to disk in 1 MB pieces.
COPY_CHUNK_BYTES = 1024 * 1024


async def _save_upload(file: UploadFile, dest: Path) -> int:
    """Stream an upload to *dest*, enforcing the size limit. Returns bytes written."""
    written = 0
    try:
        with dest.open("wb") as target:
            while chunk := await file.read(COPY_CHUNK_BYTES):
                written += len(chunk)
                if written > settings.max_upload_bytes:
                    raise HTTPException(
                        status_code=413,
                        detail=(
                            "File too large. Maximum size is "
                            f"{settings.max_upload_bytes // (1024 * 1024)} MB."
                        ),
                    )
                target.write(chunk)
    except Exception:
        dest.unlink(missing_ok=True)
        raise
    return written


@router.post("/api/upload", response_model=UploadAcceptedResponse | TranscriptUploadResponse)
async def upload_export(
    background_tasks: BackgroundTasks,
    file: Annotated[UploadFile, File(...)],
    user_id: Annotated[str, Form()],
) -> JSONResponse | TranscriptUploadResponse:
    """Upload a chat export.

    - ``.zip`` archives are saved, recorded as a pending upload job and
      ingested in the background. Responds 202 with the upload ID to poll.
    - ``.txt`` transcripts are parsed and stored before responding.
    - Anything else is rejected with 400.
    """
    filename = PurePosixPath(file.filename or "").name
    ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
    content_type = (file.content_type or "").lower()

    is_archive = ext == "zip" or content_type in ARCHIVE_CONTENT_TYPES
    if not is_archive and ext != "txt":
        raise HTTPException(
            status_code=400,
            detail="Invalid file type. Please upload .txt or .zip files",
        )

    upload_dir = Path(settings.upload_dir)
    upload_dir.mkdir(parents=True, exist_ok=True)
    dest = upload_dir / f"{uuid.uuid4().hex}.{ext or 'zip'}"
    file_size = await _save_upload(file, dest)

    client = get_supabase_client()

    if not is_archive:
        job = ingest_transcript_file(client, user_id, dest, filename)
        return TranscriptUploadResponse(
            upload_id=job.id,
            chat_count=job.chat_count,
            message_count=job.message_count,
        )

    try:
        upload_id = create_upload(client, user_id, filename, file_size, str(dest))
    except Exception:
        dest.unlink(missing_ok=True)
        raise

    background_tasks.add_task(ingest_archive, user_id, upload_id, dest)
    accepted = UploadAcceptedResponse(upload_id=upload_id)
    return JSONResponse(status_code=202, content=accepted.model_dump(mode="json"))


@router.get("/api/upload/{upload_id}/status", response_model=UploadStatusResponse)
async def upload_status(
    upload_id: str,
    user_id: Annotated[str, Query()],
) -> UploadStatusResponse:
    """Current status and progress of an upload job."""
    client = get_supabase_client()
    upload = get_upload(client, upload_id)

    if upload is None:
        raise HTTPException(status_code=404, detail="Upload not found")
    if upload.get("user_id") != user_id:
        raise HTTPException(status_code=403, detail="Forbidden")

    return UploadStatusResponse(
        id=str(upload["id"]),
        file_name=upload.get("file_name"),
        file_size=upload.get("file_size"),
        status=upload["status"],
        progress=upload.get("progress") or 0,
        chat_count=upload.get("chat_count") or 0,
        message_count=upload.get("message_count") or 0,
        error_message=upload.get("error_message"),
        uploaded_at=upload.get("uploaded_at"),
        processed_at=upload.get("processed_at"),
    )
