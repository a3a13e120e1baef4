"""Supabase storage helpers for uploads, chats and messages."""

from __future__ import annotations

import random
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from postgrest import CountMethod
from supabase import Client, create_client

from chatvault.config import settings

if TYPE_CHECKING:
    from chatvault.ingestion.models import ParsedMessage

AVATAR_COLORS = (
    "#FF6B6B",
    "#4ECDC4",
    "#45B7D1",
    "#96CEB4",
    "#FFEAA7",
    "#DFE6E9",
    "#A29BFE",
    "#FD79A8",
)

TERMINAL_STATUSES = ("completed", "failed")


def get_supabase_client() -> Client:
    """Create and return a Supabase client from settings."""
    return create_client(settings.supabase_url, settings.supabase_key)


def create_upload(
    client: Client,
    user_id: str,
    file_name: str,
    file_size: int,
    file_path: str | None = None,
    status: str = "pending",
) -> str:
    """Create the job record for an upload and return its ID."""
    result = (
        client.table("uploads")
        .insert(
            {
                "user_id": user_id,
                "file_name": file_name,
                "file_size": file_size,
                "file_path": file_path,
                "status": status,
                "progress": 0,
                "chat_count": 0,
                "message_count": 0,
            }
        )
        .execute()
    )
    return str(result.data[0]["id"])


def get_upload(client: Client, upload_id: str) -> dict[str, Any] | None:
    result = client.table("uploads").select("*").eq("id", upload_id).execute()
    return result.data[0] if result.data else None


def update_upload(client: Client, upload_id: str, fields: dict[str, Any]) -> None:
    """Write progress/status fields for an upload job."""
    update = dict(fields)
    if update.get("status") in TERMINAL_STATUSES:
        update["processed_at"] = datetime.now(UTC).isoformat()
    client.table("uploads").update(update).eq("id", upload_id).execute()


def create_chat(
    client: Client,
    user_id: str,
    name: str,
    is_group: bool,
    last_message_at: datetime | None,
    message_count: int,
) -> str:
    """Store chat metadata and return the generated chat ID."""
    result = (
        client.table("chats")
        .insert(
            {
                "user_id": user_id,
                "name": name,
                "is_group": is_group,
                "avatar_color": random.choice(AVATAR_COLORS),
                "last_message_at": (last_message_at or datetime.now()).isoformat(),
                "message_count": message_count,
                "is_pinned": False,
                "is_archived": False,
            }
        )
        .execute()
    )
    return str(result.data[0]["id"])


def get_chat(client: Client, chat_id: str, user_id: str) -> dict[str, Any] | None:
    result = (
        client.table("chats").select("*").eq("id", chat_id).eq("user_id", user_id).execute()
    )
    return result.data[0] if result.data else None


def create_messages(client: Client, chat_id: str, messages: list[ParsedMessage]) -> int:
    """Store messages for a chat (batched by 50) and return how many were written."""
    rows = [message.to_row(chat_id) for message in messages]

    # Insert in batches of 50
    batch_size = 50
    for i in range(0, len(rows), batch_size):
        client.table("messages").insert(rows[i : i + batch_size]).execute()
    return len(rows)


def swap_message_senders(client: Client, chat_id: str, sender_name: str) -> int:
    """Mark *sender_name* as the exporting user of a chat.

    Clears ``is_from_me`` on every non-system message, then sets it on the
    non-system messages sent by *sender_name*. Returns how many messages
    are now attributed to the exporting user.
    """
    (
        client.table("messages")
        .update({"is_from_me": False})
        .eq("chat_id", chat_id)
        .eq("is_system_message", False)
        .execute()
    )
    result = (
        client.table("messages")
        .update({"is_from_me": True}, count=CountMethod.exact)
        .eq("chat_id", chat_id)
        .eq("sender", sender_name)
        .eq("is_system_message", False)
        .execute()
    )
    return result.count or 0
