"""Chat endpoints: manual correction of sender inference."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException

from chatvault.api.models import SwapSenderRequest, SwapSenderResponse
from chatvault.ingestion.storage import get_chat, get_supabase_client, swap_message_senders

router = APIRouter()


@router.post("/api/chats/{chat_id}/swap-sender", response_model=SwapSenderResponse)
async def swap_sender(chat_id: str, request: SwapSenderRequest) -> SwapSenderResponse:
    """Mark ``sender_name`` as the exporting user of a chat.

    Used when the parser could not tell which participant exported the chat
    (three or more senders, or a two-party chat without a clear majority).
    """
    client = get_supabase_client()
    if get_chat(client, chat_id, request.user_id) is None:
        raise HTTPException(status_code=404, detail="Chat not found")

    updated = swap_message_senders(client, chat_id, request.sender_name)
    return SwapSenderResponse(
        chat_id=chat_id,
        sender_name=request.sender_name,
        updated_messages=updated,
    )
