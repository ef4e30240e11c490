"""Data models for storage layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

# Session metadata keys
LAST_COMMAND = "lastCommand"
MCP_CONFIG_HASH = "mcpConfigHash"
RESUMED_WITH_HISTORY = "resumedWithHistory"
HISTORY_CONTEXT = "historyContext"
HISTORY_MESSAGE_COUNT = "historyMessageCount"


@dataclass
class CommandDefinition:
    path: str  # relative to the conversation's working directory
    description: str = ""


@dataclass
class Codebase:
    id: str
    name: str
    default_cwd: str
    repository_url: Optional[str] = None
    ai_assistant_type: str = "claude"
    commands: dict[str, CommandDefinition] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class Conversation:
    id: str
    platform_type: str
    platform_conversation_id: str
    ai_assistant_type: str = "claude"
    codebase_id: Optional[str] = None
    cwd: Optional[str] = None
    worktree_path: Optional[str] = None  # takes precedence over cwd
    parent_conversation_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class Session:
    id: str
    conversation_id: str
    ai_assistant_type: str
    codebase_id: Optional[str] = None
    assistant_session_id: Optional[str] = None  # remote handle used to resume
    active: bool = True
    metadata: dict[str, Any] = field(default_factory=dict)
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None


@dataclass
class CommandTemplate:
    name: str
    content: str
    description: str = ""
    id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class MessageRecord:
    conversation_id: str
    platform_type: str
    sender: str  # "user" | "assistant" | "system"
    content: str
    codebase_id: Optional[str] = None
    codebase_name: Optional[str] = None
    images: Optional[list[dict[str, str]]] = None  # [{"filename": ..., "mimeType": ...}]
    id: Optional[int] = None
    created_at: Optional[datetime] = None


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None
