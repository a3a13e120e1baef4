"""Pydantic request/response schemas for the chat archive API."""

from __future__ import annotations

from pydantic import BaseModel

from chatvault.ingestion.models import JobStatus


class UploadAcceptedResponse(BaseModel):
    """Response body for an archive accepted for background processing."""

    upload_id: str
    status: JobStatus = JobStatus.PROCESSING
    message: str = "Upload received and processing started. Poll the status endpoint for progress."


class TranscriptUploadResponse(BaseModel):
    """Response body for a single transcript ingested synchronously."""

    upload_id: str
    chat_count: int
    message_count: int


class UploadStatusResponse(BaseModel):
    """Pollable status of an ingestion job."""

    id: str
    file_name: str | None = None
    file_size: int | None = None
    status: JobStatus
    progress: int = 0
    chat_count: int = 0
    message_count: int = 0
    error_message: str | None = None
    uploaded_at: str | None = None
    processed_at: str | None = None


class SwapSenderRequest(BaseModel):
    """Request body for marking a sender as the exporting user."""

    user_id: str
    sender_name: str


class SwapSenderResponse(BaseModel):
    chat_id: str
    sender_name: str
    updated_messages: int = 0
    success: bool = True
