"""Codebase repository: registered projects and their invocable command files."""

from __future__ import annotations

import json
import uuid
from typing import Optional

from remote_agent.log import get_logger
from remote_agent.storage.database import Database
from remote_agent.storage.models import Codebase, CommandDefinition, parse_timestamp

logger = get_logger(__name__)


class CodebaseRepository:
    def __init__(self, db: Database):
        self._db = db

    async def create(
        self,
        name: str,
        default_cwd: str,
        repository_url: Optional[str] = None,
        ai_assistant_type: str = "claude",
    ) -> Codebase:
        codebase_id = str(uuid.uuid4())
        await self._db.conn.execute(
            """INSERT INTO codebases (id, name, repository_url, default_cwd, ai_assistant_type)
               VALUES (?, ?, ?, ?, ?)""",
            (codebase_id, name, repository_url, default_cwd, ai_assistant_type),
        )
        await self._db.conn.commit()
        logger.info("codebase_created", codebase_id=codebase_id, name=name, cwd=default_cwd)

        codebase = await self.get(codebase_id)
        if codebase is None:
            raise RuntimeError(f"Codebase {codebase_id} vanished after insert")
        return codebase

    async def get(self, codebase_id: str) -> Codebase | None:
        cursor = await self._db.conn.execute("SELECT * FROM codebases WHERE id = ?", (codebase_id,))
        row = await cursor.fetchone()
        return self._row_to_codebase(row) if row else None

    async def find_by_default_cwd(self, default_cwd: str) -> Codebase | None:
        cursor = await self._db.conn.execute(
            "SELECT * FROM codebases WHERE default_cwd = ? ORDER BY created_at DESC LIMIT 1",
            (default_cwd,),
        )
        row = await cursor.fetchone()
        return self._row_to_codebase(row) if row else None

    async def list_all(self) -> list[Codebase]:
        cursor = await self._db.conn.execute("SELECT * FROM codebases ORDER BY name ASC")
        rows = await cursor.fetchall()
        return [self._row_to_codebase(row) for row in rows]

    async def update_commands(self, codebase_id: str, commands: dict[str, CommandDefinition]) -> None:
        payload = {
            name: {"path": cmd.path, "description": cmd.description}
            for name, cmd in commands.items()
        }
        await self._db.conn.execute(
            """UPDATE codebases
               SET commands_json = ?, updated_at = strftime('%Y-%m-%dT%H:%M:%f','now')
               WHERE id = ?""",
            (json.dumps(payload), codebase_id),
        )
        await self._db.conn.commit()

    async def register_command(self, codebase_id: str, name: str, command: CommandDefinition) -> None:
        codebase = await self.get(codebase_id)
        if codebase is None:
            raise LookupError(f"Codebase not found: {codebase_id}")
        codebase.commands[name] = command
        await self.update_commands(codebase_id, codebase.commands)

    async def delete(self, codebase_id: str) -> bool:
        cursor = await self._db.conn.execute("DELETE FROM codebases WHERE id = ?", (codebase_id,))
        await self._db.conn.commit()
        return cursor.rowcount > 0

    @staticmethod
    def _row_to_codebase(row) -> Codebase:
        raw_commands = json.loads(row["commands_json"] or "{}")
        return Codebase(
            id=row["id"],
            name=row["name"],
            repository_url=row["repository_url"],
            default_cwd=row["default_cwd"],
            ai_assistant_type=row["ai_assistant_type"],
            commands={
                name: CommandDefinition(path=entry["path"], description=entry.get("description", ""))
                for name, entry in raw_commands.items()
            },
            created_at=parse_timestamp(row["created_at"]),
            updated_at=parse_timestamp(row["updated_at"]),
        )
