"""Message history: an audit trail of user and assistant turns per conversation."""

from __future__ import annotations

import json
from typing import Optional

from remote_agent.storage.database import Database
from remote_agent.storage.models import MessageRecord, parse_timestamp

_SENDER_LABELS = {"user": "User", "assistant": "Assistant", "system": "System"}


class MessageRepository:
    def __init__(self, db: Database):
        self._db = db

    async def create(
        self,
        conversation_id: str,
        platform_type: str,
        codebase_id: Optional[str],
        codebase_name: Optional[str],
        sender: str,
        content: str,
        images: Optional[list[dict[str, str]]] = None,
    ) -> int:
        """Save a message and return its ID."""
        cursor = await self._db.conn.execute(
            """INSERT INTO messages
               (conversation_id, platform_type, codebase_id, codebase_name,
                sender, content, images_json)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (
                conversation_id,
                platform_type,
                codebase_id,
                codebase_name,
                sender,
                content,
                json.dumps(images) if images else None,
            ),
        )
        await self._db.conn.commit()
        return cursor.lastrowid  # type: ignore[return-value]

    async def get_history(self, conversation_id: str, limit: int = 100) -> list[MessageRecord]:
        """Return the most recent *limit* messages, oldest first."""
        cursor = await self._db.conn.execute(
            """SELECT * FROM (
                   SELECT * FROM messages
                   WHERE conversation_id = ?
                   ORDER BY created_at DESC, id DESC
                   LIMIT ?
               ) ORDER BY created_at ASC, id ASC""",
            (conversation_id, limit),
        )
        rows = await cursor.fetchall()
        return [self._row_to_record(row) for row in rows]

    @staticmethod
    def _row_to_record(row) -> MessageRecord:
        return MessageRecord(
            id=row["id"],
            conversation_id=row["conversation_id"],
            platform_type=row["platform_type"],
            codebase_id=row["codebase_id"],
            codebase_name=row["codebase_name"],
            sender=row["sender"],
            content=row["content"],
            images=json.loads(row["images_json"]) if row["images_json"] else None,
            created_at=parse_timestamp(row["created_at"]),
        )


def format_messages_as_context(history: list[MessageRecord]) -> str:
    """Render stored messages as a plain-text transcript for prompt injection."""
    lines: list[str] = []
    for record in history:
        label = _SENDER_LABELS.get(record.sender, record.sender.title())
        tags = [record.platform_type]
        if record.codebase_name:
            tags.append(record.codebase_name)
        lines.append(f"[{label} via {' / '.join(tags)}]\n{record.content}")
    return "\n\n".join(lines)
