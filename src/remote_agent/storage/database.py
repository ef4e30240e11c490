"""SQLite database connection manager with schema migration."""

from __future__ import annotations

from pathlib import Path

import aiosqlite

from remote_agent.log import get_logger

logger = get_logger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS codebases (
    id                  TEXT PRIMARY KEY,
    name                TEXT NOT NULL,
    repository_url      TEXT,
    default_cwd         TEXT NOT NULL,
    ai_assistant_type   TEXT NOT NULL DEFAULT 'claude',
    commands_json       TEXT NOT NULL DEFAULT '{}',
    created_at          TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now')),
    updated_at          TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now'))
);

CREATE TABLE IF NOT EXISTS conversations (
    id                          TEXT PRIMARY KEY,
    platform_type               TEXT NOT NULL,
    platform_conversation_id    TEXT NOT NULL,
    codebase_id                 TEXT REFERENCES codebases(id) ON DELETE SET NULL,
    cwd                         TEXT,
    worktree_path               TEXT,
    ai_assistant_type           TEXT NOT NULL DEFAULT 'claude',
    parent_conversation_id      TEXT,
    created_at                  TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now')),
    updated_at                  TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now')),
    UNIQUE (platform_type, platform_conversation_id)
);

CREATE INDEX IF NOT EXISTS idx_conversations_codebase
    ON conversations(codebase_id);

CREATE TABLE IF NOT EXISTS sessions (
    id                      TEXT PRIMARY KEY,
    conversation_id         TEXT NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
    codebase_id             TEXT REFERENCES codebases(id) ON DELETE SET NULL,
    ai_assistant_type       TEXT NOT NULL,
    assistant_session_id    TEXT,
    active                  INTEGER NOT NULL DEFAULT 1,
    metadata_json           TEXT NOT NULL DEFAULT '{}',
    started_at              TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now')),
    ended_at                TEXT
);

CREATE INDEX IF NOT EXISTS idx_sessions_conversation
    ON sessions(conversation_id, active);

-- At most one active session per conversation
CREATE UNIQUE INDEX IF NOT EXISTS uq_sessions_one_active
    ON sessions(conversation_id) WHERE active = 1;

CREATE TABLE IF NOT EXISTS command_templates (
    id              TEXT PRIMARY KEY,
    name            TEXT NOT NULL UNIQUE,
    description     TEXT NOT NULL DEFAULT '',
    content         TEXT NOT NULL,
    created_at      TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now')),
    updated_at      TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now'))
);

CREATE TABLE IF NOT EXISTS messages (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    conversation_id     TEXT NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
    platform_type       TEXT NOT NULL,
    codebase_id         TEXT REFERENCES codebases(id) ON DELETE SET NULL,
    codebase_name       TEXT,
    sender              TEXT NOT NULL CHECK(sender IN ('user','assistant','system')),
    content             TEXT NOT NULL,
    images_json         TEXT,
    created_at          TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now'))
);

CREATE INDEX IF NOT EXISTS idx_messages_conversation
    ON messages(conversation_id, created_at);
"""


class Database:
    """Async SQLite database manager."""

    def __init__(self, db_path: str):
        self._db_path = db_path
        self._conn: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Open connection and run migrations."""
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(self._db_path)
        self._conn.row_factory = aiosqlite.Row
        await self._conn.execute("PRAGMA journal_mode=WAL")
        await self._conn.execute("PRAGMA foreign_keys=ON")
        await self._conn.executescript(SCHEMA_SQL)
        await self._conn.commit()
        logger.info("database_initialized", path=self._db_path)

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("Database not initialized. Call initialize() first.")
        return self._conn

    async def close(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None
            logger.info("database_closed")
