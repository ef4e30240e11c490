"""Global command templates, usable from any conversation as ``/<name>``."""

from __future__ import annotations

import uuid

from remote_agent.storage.database import Database
from remote_agent.storage.models import CommandTemplate, parse_timestamp


class TemplateRepository:
    def __init__(self, db: Database):
        self._db = db

    async def get(self, name: str) -> CommandTemplate | None:
        cursor = await self._db.conn.execute(
            "SELECT * FROM command_templates WHERE name = ?", (name,)
        )
        row = await cursor.fetchone()
        return self._row_to_template(row) if row else None

    async def list_all(self) -> list[CommandTemplate]:
        cursor = await self._db.conn.execute("SELECT * FROM command_templates ORDER BY name ASC")
        rows = await cursor.fetchall()
        return [self._row_to_template(row) for row in rows]

    async def upsert(self, name: str, content: str, description: str = "") -> CommandTemplate:
        await self._db.conn.execute(
            """INSERT INTO command_templates (id, name, description, content)
               VALUES (?, ?, ?, ?)
               ON CONFLICT(name) DO UPDATE SET
                   description = excluded.description,
                   content = excluded.content,
                   updated_at = strftime('%Y-%m-%dT%H:%M:%f','now')""",
            (str(uuid.uuid4()), name, description, content),
        )
        await self._db.conn.commit()
        template = await self.get(name)
        if template is None:
            raise RuntimeError(f"Template {name} vanished after upsert")
        return template

    async def delete(self, name: str) -> bool:
        cursor = await self._db.conn.execute(
            "DELETE FROM command_templates WHERE name = ?", (name,)
        )
        await self._db.conn.commit()
        return cursor.rowcount > 0

    @staticmethod
    def _row_to_template(row) -> CommandTemplate:
        return CommandTemplate(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            content=row["content"],
            created_at=parse_timestamp(row["created_at"]),
            updated_at=parse_timestamp(row["updated_at"]),
        )
