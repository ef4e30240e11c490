"""Application wiring: storage, orchestrator, assistant clients and bot adapters."""

from __future__ import annotations

import asyncio
from pathlib import Path

from remote_agent.ai.auto_research import AutoResearch
from remote_agent.ai.client import AssistantClient, create_assistant_client
from remote_agent.config import AppConfig, BotConfig
from remote_agent.core.bot_registry import BotRegistry
from remote_agent.handlers.command_handler import CommandHandler
from remote_agent.log import get_logger
from remote_agent.messenger.base import MessengerAdapter
from remote_agent.messenger.models import IncomingMessage
from remote_agent.orchestrator.handler import Orchestrator
from remote_agent.orchestrator.locks import ConversationLockManager
from remote_agent.services.mcp_manager import McpManager
from remote_agent.storage.codebase_repo import CodebaseRepository
from remote_agent.storage.conversation_repo import ConversationRepository
from remote_agent.storage.database import Database
from remote_agent.storage.message_repo import MessageRepository
from remote_agent.storage.seed import seed_default_commands
from remote_agent.storage.session_repo import SessionRepository
from remote_agent.storage.template_repo import TemplateRepository

logger = get_logger(__name__)


class RemoteAgentApp:
    """Top-level application: owns the database and every running adapter."""

    def __init__(self, config: AppConfig):
        self.config = config
        self.db = Database(config.storage.db_path)
        self.conversations = ConversationRepository(self.db, config.default_ai_assistant)
        self.sessions = SessionRepository(self.db)
        self.codebases = CodebaseRepository(self.db)
        self.templates = TemplateRepository(self.db)
        self.messages = MessageRepository(self.db)
        self.mcp = McpManager(config.mcp.config_path, cli_path=config.claude_code.cli_path)
        self.command_handler = CommandHandler(
            config,
            self.conversations,
            self.sessions,
            self.codebases,
            self.templates,
            self.messages,
            self.mcp,
        )
        self.orchestrator = Orchestrator(
            config,
            self.conversations,
            self.sessions,
            self.codebases,
            self.templates,
            self.messages,
            self.command_handler,
            client_factory=self.get_client,
            config_hash=self.mcp.config_hash,
            auto_research=AutoResearch(config.auto_research),
        )
        self.lock_manager = ConversationLockManager(config.orchestrator.max_concurrent_conversations)
        self.bot_registry = BotRegistry()
        self._clients: dict[str, AssistantClient] = {}
        self._tasks: set[asyncio.Task] = set()

    def get_client(self, kind: str) -> AssistantClient:
        """Return the (cached) assistant client for an ``ai_assistant_type`` tag."""
        if kind not in self._clients:
            self._clients[kind] = create_assistant_client(kind, self.config)
        return self._clients[kind]

    async def initialize(self) -> None:
        """Open storage and seed templates. Enough for one-shot use without adapters."""
        await self.db.initialize()
        Path(self.config.workspace_path).mkdir(parents=True, exist_ok=True)

        if self.config.orchestrator.load_builtin_commands:
            await seed_default_commands(self.templates, self.config.orchestrator.builtin_commands_path)

    async def start(self) -> None:
        """Initialize storage, register MCP servers and start every configured bot."""
        await self.initialize()
        await self.mcp.ensure_servers()

        for bot_cfg in self.config.bots:
            try:
                adapter = self._create_adapter(bot_cfg)
                adapter.on_message(self._make_callback(adapter))
                await adapter.start()
                self.bot_registry.register(adapter)
                logger.info(
                    "bot_started",
                    bot_id=bot_cfg.id,
                    platform=bot_cfg.platform,
                    streaming_mode=bot_cfg.streaming_mode,
                )
            except Exception as e:
                logger.error("bot_start_failed", bot_id=bot_cfg.id, error=str(e))

        logger.info("remote_agent_started", bot_count=len(self.bot_registry))

    async def stop(self) -> None:
        """Stop adapters, let in-flight turns finish cancelling, then close storage."""
        await self.bot_registry.stop_all()

        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

        await self.db.close()
        logger.info("remote_agent_stopped")

    async def dispatch(self, adapter: MessengerAdapter, msg: IncomingMessage) -> None:
        """Run one message through the orchestrator, serialized per conversation."""
        key = f"{adapter.platform_type}:{msg.conversation_id}"
        await self.lock_manager.run(
            key,
            lambda: self.orchestrator.handle_message(
                adapter,
                msg.conversation_id,
                msg.text,
                thread_context=msg.thread_context,
                parent_conversation_id=msg.parent_conversation_id,
                images=msg.images,
            ),
        )

    def _make_callback(self, adapter: MessengerAdapter):
        async def _on_message(msg: IncomingMessage) -> None:
            # Platform receive loops must not wait on an AI turn
            task = asyncio.create_task(self.dispatch(adapter, msg))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        return _on_message

    def _create_adapter(self, cfg: BotConfig) -> MessengerAdapter:
        match cfg.platform:
            case "telegram":
                from remote_agent.messenger.telegram import TelegramAdapter

                return TelegramAdapter(cfg.id, cfg.model_dump())
            case "discord":
                from remote_agent.messenger.discord_adapter import DiscordAdapter

                return DiscordAdapter(cfg.id, cfg.model_dump())
            case _:
                raise ValueError(f"Unknown platform: {cfg.platform}")
