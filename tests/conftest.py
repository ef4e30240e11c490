"""Shared fixtures: a real SQLite database on tmp_path, a fake platform and a scripted assistant."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncIterator, Optional

import pytest
import pytest_asyncio

from remote_agent.ai.auto_research import AutoResearch
from remote_agent.ai.client import AssistantClient, MessageChunk
from remote_agent.config import AppConfig, AutoResearchConfig, McpConfig, StorageConfig
from remote_agent.core.types import AssistantKind
from remote_agent.handlers.command_handler import CommandHandler
from remote_agent.messenger.base import MessengerAdapter
from remote_agent.messenger.models import Attachment
from remote_agent.orchestrator.handler import Orchestrator
from remote_agent.services.mcp_manager import McpManager
from remote_agent.storage.codebase_repo import CodebaseRepository
from remote_agent.storage.conversation_repo import ConversationRepository
from remote_agent.storage.database import Database
from remote_agent.storage.message_repo import MessageRepository
from remote_agent.storage.session_repo import SessionRepository
from remote_agent.storage.template_repo import TemplateRepository


class FakePlatform(MessengerAdapter):
    """Records outbound messages instead of talking to a chat service."""

    def __init__(
        self,
        streaming_mode: str = "stream",
        unscoped: tuple[str, ...] = (),
        supports_topics: bool = False,
    ):
        super().__init__("fake-bot", {"streaming_mode": streaming_mode})
        self._unscoped = set(unscoped)
        self._supports_topics = supports_topics
        self.sent: list[tuple[str, str]] = []
        self.typing: list[str] = []
        self.topics: list[tuple[str, str]] = []

    @property
    def platform_type(self) -> str:
        return "telegram"

    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        pass

    async def send_message(self, conversation_id: str, text: str) -> None:
        self.sent.append((conversation_id, text))

    async def send_typing_indicator(self, conversation_id: str) -> None:
        self.typing.append(conversation_id)

    async def create_topic(self, conversation_id: str, name: str) -> Optional[str]:
        if not self._supports_topics:
            return None
        topic_id = f"{conversation_id}:{len(self.topics) + 1}"
        self.topics.append((topic_id, name))
        return topic_id

    def is_unscoped(self, conversation_id: str) -> bool:
        return conversation_id in self._unscoped

    @property
    def texts(self) -> list[str]:
        return [text for _, text in self.sent]


@dataclass
class QueryCall:
    prompt: str
    cwd: str
    resume_session_id: Optional[str]
    images: Optional[list[Attachment]]


class ScriptedClient(AssistantClient):
    """Yields a fixed chunk script per call and records every query."""

    def __init__(self, script: Optional[list[MessageChunk]] = None):
        self.script = script if script is not None else [
            MessageChunk(type="assistant", content="Done."),
            MessageChunk(type="result", session_id="remote-1"),
        ]
        self.calls: list[QueryCall] = []
        self.closed = False

    @property
    def kind(self) -> AssistantKind:
        return AssistantKind.CLAUDE

    async def send_query(
        self,
        prompt: str,
        cwd: str,
        resume_session_id: Optional[str] = None,
        images: Optional[list[Attachment]] = None,
    ) -> AsyncIterator[MessageChunk]:
        self.calls.append(QueryCall(prompt, cwd, resume_session_id, images))
        try:
            for chunk in self.script:
                yield chunk
        finally:
            self.closed = True


@dataclass
class Harness:
    config: AppConfig
    workspace: Path
    conversations: ConversationRepository
    sessions: SessionRepository
    codebases: CodebaseRepository
    templates: TemplateRepository
    messages: MessageRepository
    mcp: McpManager
    client: ScriptedClient
    orchestrator: Orchestrator
    config_hash: dict = field(default_factory=lambda: {"value": "hash-a"})


@pytest.fixture
def workspace(tmp_path) -> Path:
    path = tmp_path / "workspace"
    path.mkdir()
    return path


@pytest.fixture
def app_config(tmp_path, workspace) -> AppConfig:
    return AppConfig(
        data_dir=str(tmp_path / "data"),
        workspace_path=str(workspace),
        storage=StorageConfig(db_path=str(tmp_path / "data" / "test.db")),
        mcp=McpConfig(config_path=str(tmp_path / "data" / "mcp.json")),
        auto_research=AutoResearchConfig(enabled=False),
    )


@pytest_asyncio.fixture
async def db(app_config) -> AsyncIterator[Database]:
    database = Database(app_config.storage.db_path)
    await database.initialize()
    yield database
    await database.close()


@pytest.fixture
def mcp(app_config) -> McpManager:
    return McpManager(app_config.mcp.config_path, cli_path="claude")


@pytest.fixture
def harness(app_config, workspace, db, mcp) -> Harness:
    conversations = ConversationRepository(db, app_config.default_ai_assistant)
    sessions = SessionRepository(db)
    codebases = CodebaseRepository(db)
    templates = TemplateRepository(db)
    messages = MessageRepository(db)
    client = ScriptedClient()
    config_hash = {"value": "hash-a"}

    command_handler = CommandHandler(
        app_config, conversations, sessions, codebases, templates, messages, mcp
    )
    orchestrator = Orchestrator(
        app_config,
        conversations,
        sessions,
        codebases,
        templates,
        messages,
        command_handler,
        client_factory=lambda kind: client,
        config_hash=lambda: config_hash["value"],
        auto_research=AutoResearch(app_config.auto_research),
    )
    return Harness(
        config=app_config,
        workspace=workspace,
        conversations=conversations,
        sessions=sessions,
        codebases=codebases,
        templates=templates,
        messages=messages,
        mcp=mcp,
        client=client,
        orchestrator=orchestrator,
        config_hash=config_hash,
    )


@pytest.fixture
def platform() -> FakePlatform:
    return FakePlatform()
