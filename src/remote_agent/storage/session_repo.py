"""Session repository: one AI-assistant dialogue per row, at most one active per conversation."""

from __future__ import annotations

import json
import uuid
from typing import Any, Optional

from remote_agent.log import get_logger
from remote_agent.storage.database import Database
from remote_agent.storage.models import Session, parse_timestamp

logger = get_logger(__name__)


class SessionRepository:
    """CRUD over assistant sessions. Sessions are deactivated, never deleted."""

    def __init__(self, db: Database):
        self._db = db

    async def get_active(self, conversation_id: str) -> Session | None:
        cursor = await self._db.conn.execute(
            """SELECT * FROM sessions
               WHERE conversation_id = ? AND active = 1
               ORDER BY started_at DESC
               LIMIT 1""",
            (conversation_id,),
        )
        row = await cursor.fetchone()
        return self._row_to_session(row) if row else None

    async def get(self, session_id: str) -> Session | None:
        cursor = await self._db.conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,))
        row = await cursor.fetchone()
        return self._row_to_session(row) if row else None

    async def list_for_conversation(self, conversation_id: str) -> list[Session]:
        cursor = await self._db.conn.execute(
            "SELECT * FROM sessions WHERE conversation_id = ? ORDER BY started_at ASC, rowid ASC",
            (conversation_id,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_session(row) for row in rows]

    async def create(
        self,
        conversation_id: str,
        ai_assistant_type: str,
        codebase_id: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Session:
        """Create a new active session.

        Any session still active for the conversation is ended in the same
        transaction, so the one-active-session index can never be violated.
        """
        session_id = str(uuid.uuid4())
        conn = self._db.conn
        await conn.execute(
            """UPDATE sessions
               SET active = 0, ended_at = strftime('%Y-%m-%dT%H:%M:%f','now')
               WHERE conversation_id = ? AND active = 1""",
            (conversation_id,),
        )
        await conn.execute(
            """INSERT INTO sessions
               (id, conversation_id, codebase_id, ai_assistant_type, metadata_json)
               VALUES (?, ?, ?, ?, ?)""",
            (
                session_id,
                conversation_id,
                codebase_id,
                ai_assistant_type,
                json.dumps(metadata or {}),
            ),
        )
        await conn.commit()
        logger.info("session_created", conversation_id=conversation_id, session_id=session_id)

        session = await self.get(session_id)
        if session is None:
            raise RuntimeError(f"Session {session_id} vanished after insert")
        return session

    async def update_assistant_session_id(self, session_id: str, assistant_session_id: str) -> None:
        await self._db.conn.execute(
            "UPDATE sessions SET assistant_session_id = ? WHERE id = ?",
            (assistant_session_id, session_id),
        )
        await self._db.conn.commit()

    async def update_metadata(self, session_id: str, patch: dict[str, Any]) -> dict[str, Any]:
        """Merge *patch* into the session's metadata. Keys set to ``None`` are removed."""
        cursor = await self._db.conn.execute(
            "SELECT metadata_json FROM sessions WHERE id = ?", (session_id,)
        )
        row = await cursor.fetchone()
        if row is None:
            raise LookupError(f"Session not found: {session_id}")

        metadata = json.loads(row["metadata_json"] or "{}")
        for key, value in patch.items():
            if value is None:
                metadata.pop(key, None)
            else:
                metadata[key] = value

        await self._db.conn.execute(
            "UPDATE sessions SET metadata_json = ? WHERE id = ?",
            (json.dumps(metadata), session_id),
        )
        await self._db.conn.commit()
        return metadata

    async def deactivate(self, session_id: str) -> None:
        await self._db.conn.execute(
            """UPDATE sessions
               SET active = 0, ended_at = strftime('%Y-%m-%dT%H:%M:%f','now')
               WHERE id = ? AND active = 1""",
            (session_id,),
        )
        await self._db.conn.commit()
        logger.info("session_deactivated", session_id=session_id)

    @staticmethod
    def _row_to_session(row) -> Session:
        return Session(
            id=row["id"],
            conversation_id=row["conversation_id"],
            codebase_id=row["codebase_id"],
            ai_assistant_type=row["ai_assistant_type"],
            assistant_session_id=row["assistant_session_id"],
            active=bool(row["active"]),
            metadata=json.loads(row["metadata_json"] or "{}"),
            started_at=parse_timestamp(row["started_at"]),
            ended_at=parse_timestamp(row["ended_at"]),
        )
