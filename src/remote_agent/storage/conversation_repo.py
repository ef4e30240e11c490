"""Conversation repository: get-or-create and partial updates keyed by platform thread."""

from __future__ import annotations

import uuid
from typing import Any, Optional

from remote_agent.log import get_logger
from remote_agent.storage.database import Database
from remote_agent.storage.models import Conversation, parse_timestamp

logger = get_logger(__name__)

_UPDATABLE_FIELDS = frozenset({"codebase_id", "cwd", "worktree_path", "ai_assistant_type"})


class ConversationRepository:
    """CRUD over platform conversations. (platform_type, platform_conversation_id) is unique."""

    def __init__(self, db: Database, default_assistant: str = "claude"):
        self._db = db
        self._default_assistant = default_assistant

    async def get_or_create(
        self,
        platform_type: str,
        platform_conversation_id: str,
        codebase_id: Optional[str] = None,
        parent_conversation_id: Optional[str] = None,
    ) -> Conversation:
        """Return the conversation for a platform thread, creating it lazily."""
        existing = await self.get_by_platform_id(platform_type, platform_conversation_id)
        if existing:
            return existing

        assistant_type = self._default_assistant
        if codebase_id:
            cursor = await self._db.conn.execute(
                "SELECT ai_assistant_type FROM codebases WHERE id = ?", (codebase_id,)
            )
            row = await cursor.fetchone()
            if row:
                assistant_type = row["ai_assistant_type"]

        await self._db.conn.execute(
            """INSERT INTO conversations
               (id, platform_type, platform_conversation_id, codebase_id,
                ai_assistant_type, parent_conversation_id)
               VALUES (?, ?, ?, ?, ?, ?)
               ON CONFLICT(platform_type, platform_conversation_id) DO NOTHING""",
            (
                str(uuid.uuid4()),
                platform_type,
                platform_conversation_id,
                codebase_id,
                assistant_type,
                parent_conversation_id,
            ),
        )
        await self._db.conn.commit()

        created = await self.get_by_platform_id(platform_type, platform_conversation_id)
        if created is None:
            raise RuntimeError(
                f"Conversation {platform_type}/{platform_conversation_id} vanished after insert"
            )
        logger.info(
            "conversation_created",
            platform=platform_type,
            platform_conversation_id=platform_conversation_id,
            conversation_id=created.id,
        )
        return created

    async def get(self, conversation_id: str) -> Conversation | None:
        cursor = await self._db.conn.execute(
            "SELECT * FROM conversations WHERE id = ?", (conversation_id,)
        )
        row = await cursor.fetchone()
        return self._row_to_conversation(row) if row else None

    async def get_by_platform_id(
        self, platform_type: str, platform_conversation_id: str
    ) -> Conversation | None:
        cursor = await self._db.conn.execute(
            """SELECT * FROM conversations
               WHERE platform_type = ? AND platform_conversation_id = ?""",
            (platform_type, platform_conversation_id),
        )
        row = await cursor.fetchone()
        return self._row_to_conversation(row) if row else None

    async def update(self, conversation_id: str, **changes: Any) -> None:
        """Apply a partial update. Passing ``None`` clears a column."""
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update conversation fields: {', '.join(sorted(unknown))}")
        if not changes:
            return

        assignments = ", ".join(f"{name} = ?" for name in changes)
        await self._db.conn.execute(
            f"""UPDATE conversations
                SET {assignments}, updated_at = strftime('%Y-%m-%dT%H:%M:%f','now')
                WHERE id = ?""",
            (*changes.values(), conversation_id),
        )
        await self._db.conn.commit()

    @staticmethod
    def _row_to_conversation(row) -> Conversation:
        return Conversation(
            id=row["id"],
            platform_type=row["platform_type"],
            platform_conversation_id=row["platform_conversation_id"],
            ai_assistant_type=row["ai_assistant_type"],
            codebase_id=row["codebase_id"],
            cwd=row["cwd"],
            worktree_path=row["worktree_path"],
            parent_conversation_id=row["parent_conversation_id"],
            created_at=parse_timestamp(row["created_at"]),
            updated_at=parse_timestamp(row["updated_at"]),
        )
