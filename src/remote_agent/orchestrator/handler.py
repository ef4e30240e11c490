"""Orchestrator: turns one inbound chat message into an AI turn or a command reply.

Per message it resolves the conversation, classifies the text (deterministic
command, codebase command, global template or natural language), decides
whether the assistant session is resumed or replaced, streams the response
back to the platform and keeps the audit trail.
"""

from __future__ import annotations

import asyncio
import os
from contextlib import aclosing
from dataclasses import dataclass
from typing import Callable, Optional

import structlog

from remote_agent.ai.auto_research import AutoResearch
from remote_agent.ai.client import AssistantClient
from remote_agent.ai.tool_formatter import format_tool_call
from remote_agent.config import AppConfig
from remote_agent.core.types import StreamingMode
from remote_agent.handlers.command_handler import CommandHandler
from remote_agent.log import get_logger
from remote_agent.messenger.base import MessengerAdapter
from remote_agent.messenger.models import Attachment
from remote_agent.orchestrator.commands import (
    COMMAND_INVOKE,
    DETERMINISTIC_COMMANDS,
    ROUTER_TEMPLATE,
    SYSTEM_CONTEXT_TEMPLATE,
    UNSCOPED_COMMANDS,
    append_issue_context,
    parse_command,
    prepend_thread_context,
    requires_new_session,
    substitute_variables,
    wrap_for_execution,
)
from remote_agent.orchestrator.errors import (
    CommandRestrictedError,
    ConfigurationError,
    NotFoundError,
    OrchestratorError,
    UsageError,
    classify_and_format_error,
)
from remote_agent.orchestrator.locks import KeyedLocks
from remote_agent.orchestrator.response import build_batch_message
from remote_agent.storage.codebase_repo import CodebaseRepository
from remote_agent.storage.conversation_repo import ConversationRepository
from remote_agent.storage.message_repo import MessageRepository
from remote_agent.storage.models import (
    HISTORY_CONTEXT,
    HISTORY_MESSAGE_COUNT,
    LAST_COMMAND,
    MCP_CONFIG_HASH,
    RESUMED_WITH_HISTORY,
    Codebase,
    Conversation,
    Session,
)
from remote_agent.storage.session_repo import SessionRepository
from remote_agent.storage.template_repo import TemplateRepository

logger = get_logger(__name__)

NO_CODEBASE_MESSAGE = (
    "No codebase configured. Use /clone for a new repo or /repos to list your "
    "current repos you can switch to."
)
RESTRICTED_MESSAGE = (
    "❌ This command can only be used in project topics, not general chat.\n\n"
    "Use /new-topic to create a project topic, then run commands there."
)


@dataclass(slots=True)
class PreparedPrompt:
    text: str
    command_name: Optional[str] = None


@dataclass(slots=True)
class TurnContext:
    session: Session
    cwd: str
    codebase: Optional[Codebase]


class Orchestrator:
    """Routes platform messages to deterministic commands or an AI assistant."""

    def __init__(
        self,
        config: AppConfig,
        conversations: ConversationRepository,
        sessions: SessionRepository,
        codebases: CodebaseRepository,
        templates: TemplateRepository,
        messages: MessageRepository,
        command_handler: CommandHandler,
        client_factory: Callable[[str], AssistantClient],
        config_hash: Callable[[], str],
        auto_research: Optional[AutoResearch] = None,
    ):
        self._config = config
        self._conversations = conversations
        self._sessions = sessions
        self._codebases = codebases
        self._templates = templates
        self._messages = messages
        self._commands = command_handler
        self._client_factory = client_factory
        self._config_hash = config_hash
        self._auto_research = auto_research
        self._session_locks = KeyedLocks()

    async def handle_message(
        self,
        platform: MessengerAdapter,
        conversation_id: str,
        message: str,
        issue_context: Optional[str] = None,
        thread_context: Optional[str] = None,
        parent_conversation_id: Optional[str] = None,
        images: Optional[list[Attachment]] = None,
    ) -> None:
        """Handle one inbound message. Errors are reported to the platform, never raised."""
        with structlog.contextvars.bound_contextvars(
            platform=platform.platform_type, conversation=conversation_id
        ):
            try:
                await self._handle(
                    platform,
                    conversation_id,
                    message,
                    issue_context,
                    thread_context,
                    parent_conversation_id,
                    images or [],
                )
            except OrchestratorError as e:
                logger.info("request_rejected", reason=type(e).__name__, detail=e.user_message)
                await self._reply_safely(platform, conversation_id, e.user_message)
            except Exception as e:
                logger.exception("message_handling_failed", error=str(e))
                await self._reply_safely(platform, conversation_id, classify_and_format_error(e))

    async def _reply_safely(self, platform: MessengerAdapter, conversation_id: str, text: str) -> None:
        try:
            await platform.send_message(conversation_id, text)
        except Exception as e:
            logger.error("error_reply_failed", error=str(e))

    async def _handle(
        self,
        platform: MessengerAdapter,
        conversation_id: str,
        message: str,
        issue_context: Optional[str],
        thread_context: Optional[str],
        parent_conversation_id: Optional[str],
        images: list[Attachment],
    ) -> None:
        conversation = await self._resolve_conversation(
            platform.platform_type, conversation_id, parent_conversation_id
        )

        if message.startswith("/"):
            parsed = parse_command(message)
            if platform.is_unscoped(conversation_id) and parsed.command not in UNSCOPED_COMMANDS:
                raise CommandRestrictedError(RESTRICTED_MESSAGE)

            if parsed.command in DETERMINISTIC_COMMANDS:
                logger.info("deterministic_command", command=parsed.command)
                result = await self._commands.handle(conversation, message, platform)
                await platform.send_message(conversation_id, result.message)
                if result.modified:
                    logger.debug("conversation_modified_by_command", command=parsed.command)
                return

            if parsed.command == COMMAND_INVOKE:
                prepared = await self._codebase_command_prompt(conversation, parsed.args, issue_context)
            else:
                prepared = await self._template_prompt(parsed.command, parsed.args, issue_context)
        else:
            prepared = await self._natural_language_prompt(conversation, message)

        prompt = await self._augment_prompt(prepared.text, message, thread_context)
        await self._show_typing(platform, conversation_id)

        client = self._client_factory(conversation.ai_assistant_type)
        async with self._session_locks.hold(conversation.id):
            turn = await self._prepare_turn(conversation, prepared.command_name)

        prompt = await self._replay_history(turn.session, prompt)
        await self._record(conversation, turn.codebase, "user", message, images)

        logger.info(
            "assistant_turn_started",
            assistant=conversation.ai_assistant_type,
            session_id=turn.session.id,
            resuming=turn.session.assistant_session_id is not None,
            cwd=turn.cwd,
            command=prepared.command_name,
        )
        if platform.streaming_mode == StreamingMode.BATCH:
            reply = await self._run_batch(platform, conversation_id, client, prompt, turn, images)
        else:
            reply = await self._run_stream(platform, conversation_id, client, prompt, turn, images)

        if reply:
            await self._record(conversation, turn.codebase, "assistant", reply)

        if prepared.command_name:
            await self._sessions.update_metadata(
                turn.session.id, {LAST_COMMAND: prepared.command_name}
            )
        logger.info("assistant_turn_completed", session_id=turn.session.id)

    # ── conversation & prompt ───────────────────────────────────

    async def _resolve_conversation(
        self,
        platform_type: str,
        conversation_id: str,
        parent_conversation_id: Optional[str],
    ) -> Conversation:
        conversation = await self._conversations.get_or_create(
            platform_type, conversation_id, parent_conversation_id=parent_conversation_id
        )
        if not parent_conversation_id or conversation.codebase_id:
            return conversation

        parent = await self._conversations.get_by_platform_id(platform_type, parent_conversation_id)
        if parent is None or not parent.codebase_id:
            return conversation

        await self._conversations.update(
            conversation.id, codebase_id=parent.codebase_id, cwd=parent.cwd
        )
        logger.info("thread_inherited_parent_context", parent=parent_conversation_id)
        return await self._conversations.get_or_create(platform_type, conversation_id)

    async def _codebase_command_prompt(
        self,
        conversation: Conversation,
        args: list[str],
        issue_context: Optional[str],
    ) -> PreparedPrompt:
        if not args:
            raise UsageError("Usage: /command-invoke <name> [args...]")
        command_name, command_args = args[0], args[1:]

        if not conversation.codebase_id:
            raise ConfigurationError(NO_CODEBASE_MESSAGE)
        codebase = await self._codebases.get(conversation.codebase_id)
        if codebase is None:
            raise NotFoundError("Codebase not found.")

        definition = codebase.commands.get(command_name)
        if definition is None:
            raise NotFoundError(f"Command '{command_name}' not found. Use /commands to see available.")

        base = conversation.worktree_path or conversation.cwd or codebase.default_cwd
        path = os.path.join(base, definition.path)
        try:
            content = await asyncio.to_thread(_read_text, path)
        except OSError as e:
            raise NotFoundError(f"Failed to read command file: {e}") from e

        prompt = wrap_for_execution(command_name, substitute_variables(content, command_args))
        logger.info("codebase_command_invoked", command=command_name, args=len(command_args))
        return PreparedPrompt(append_issue_context(prompt, issue_context), command_name)

    async def _template_prompt(
        self,
        command: str,
        args: list[str],
        issue_context: Optional[str],
    ) -> PreparedPrompt:
        template = await self._templates.get(command)
        if template is None:
            raise NotFoundError(
                f"Unknown command: /{command}\n\n"
                "Type /help for available commands or /templates for command templates."
            )
        prompt = wrap_for_execution(command, substitute_variables(template.content, args))
        logger.info("template_invoked", template=command, args=len(args))
        return PreparedPrompt(append_issue_context(prompt, issue_context), command)

    async def _natural_language_prompt(self, conversation: Conversation, message: str) -> PreparedPrompt:
        if not conversation.codebase_id:
            raise ConfigurationError(NO_CODEBASE_MESSAGE)

        router = await self._templates.get(ROUTER_TEMPLATE)
        if router is None:
            return PreparedPrompt(message)
        logger.debug("message_routed", template=ROUTER_TEMPLATE)
        return PreparedPrompt(substitute_variables(router.content, [message]), ROUTER_TEMPLATE)

    async def _augment_prompt(
        self, prompt: str, original_message: str, thread_context: Optional[str]
    ) -> str:
        prompt = prepend_thread_context(prompt, thread_context)

        system_context = await self._templates.get(SYSTEM_CONTEXT_TEMPLATE)
        if system_context is not None:
            prompt = f"{system_context.content}\n\n---\n\n{prompt}"

        if self._auto_research is not None and self._auto_research.is_enabled():
            instructions = self._auto_research.instructions_for(original_message)
            if instructions:
                prompt = instructions + prompt
        return prompt

    # ── session lifecycle ───────────────────────────────────────

    async def _prepare_turn(self, conversation: Conversation, command_name: Optional[str]) -> TurnContext:
        session = await self._sessions.get_active(conversation.id)
        codebase = (
            await self._codebases.get(conversation.codebase_id) if conversation.codebase_id else None
        )
        default_cwd = codebase.default_cwd if codebase else self._config.workspace_path
        cwd = conversation.worktree_path or conversation.cwd or default_cwd

        if not await asyncio.to_thread(os.path.exists, cwd):
            logger.warning("working_directory_missing", cwd=cwd, default_cwd=default_cwd)
            if session is not None:
                await self._sessions.deactivate(session.id)
                session = None
            if conversation.worktree_path or (conversation.cwd and conversation.cwd != default_cwd):
                await self._conversations.update(conversation.id, worktree_path=None, cwd=default_cwd)
                logger.info("stale_worktree_cleared", conversation_id=conversation.id)
            cwd = default_cwd

        current_hash = self._config_hash()
        last_command = session.metadata.get(LAST_COMMAND) if session else None

        if requires_new_session(command_name, last_command):
            logger.info("plan_execute_transition", previous=last_command, command=command_name)
            if session is not None:
                await self._sessions.deactivate(session.id)
            session = await self._create_session(conversation, current_hash)
        elif session is None:
            session = await self._create_session(conversation, current_hash)
        else:
            stored_hash = session.metadata.get(MCP_CONFIG_HASH)
            if stored_hash is None:
                session.metadata = await self._sessions.update_metadata(
                    session.id, {MCP_CONFIG_HASH: current_hash}
                )
                logger.info("session_resumed", session_id=session.id, config_hash="stamped")
            elif stored_hash != current_hash:
                logger.info(
                    "tool_config_changed", session_id=session.id, old=stored_hash, new=current_hash
                )
                await self._sessions.deactivate(session.id)
                session = await self._create_session(conversation, current_hash)
            else:
                logger.info("session_resumed", session_id=session.id)

        return TurnContext(session=session, cwd=cwd, codebase=codebase)

    async def _create_session(self, conversation: Conversation, config_hash: str) -> Session:
        return await self._sessions.create(
            conversation_id=conversation.id,
            ai_assistant_type=conversation.ai_assistant_type,
            codebase_id=conversation.codebase_id,
            metadata={MCP_CONFIG_HASH: config_hash},
        )

    async def _replay_history(self, session: Session, prompt: str) -> str:
        history = session.metadata.get(HISTORY_CONTEXT)
        if not session.metadata.get(RESUMED_WITH_HISTORY) or not history:
            return prompt

        session.metadata = await self._sessions.update_metadata(
            session.id,
            {RESUMED_WITH_HISTORY: None, HISTORY_CONTEXT: None, HISTORY_MESSAGE_COUNT: None},
        )
        logger.info("history_replayed", session_id=session.id)
        return f"## Previous Conversation History\n\n{history}\n\n---\n\n{prompt}"

    async def _capture_session_id(self, session: Session, assistant_session_id: str) -> None:
        if assistant_session_id == session.assistant_session_id:
            return
        await self._sessions.update_assistant_session_id(session.id, assistant_session_id)
        session.assistant_session_id = assistant_session_id

    # ── dispatch ────────────────────────────────────────────────

    async def _run_stream(
        self,
        platform: MessengerAdapter,
        conversation_id: str,
        client: AssistantClient,
        prompt: str,
        turn: TurnContext,
        images: list[Attachment],
    ) -> str:
        parts: list[str] = []
        stream = client.send_query(prompt, turn.cwd, turn.session.assistant_session_id, images or None)
        async with aclosing(stream):
            async for chunk in stream:
                match chunk.type:
                    case "assistant" if chunk.content:
                        parts.append(chunk.content)
                        await platform.send_message(conversation_id, chunk.content)
                    case "tool" if chunk.tool_name:
                        await platform.send_message(
                            conversation_id, format_tool_call(chunk.tool_name, chunk.tool_input)
                        )
                    case "system" if chunk.content:
                        await platform.send_message(conversation_id, chunk.content)
                    case "result" if chunk.session_id:
                        await self._capture_session_id(turn.session, chunk.session_id)
                    case "thinking":
                        logger.debug("assistant_thinking", length=len(chunk.content or ""))
        return "\n\n".join(parts)

    async def _run_batch(
        self,
        platform: MessengerAdapter,
        conversation_id: str,
        client: AssistantClient,
        prompt: str,
        turn: TurnContext,
        images: list[Attachment],
    ) -> str:
        await platform.send_message(
            conversation_id, f"{self._config.orchestrator.bot_display_name} is on the case..."
        )

        assistant_messages: list[str] = []
        tool_calls: list[str] = []
        stream = client.send_query(prompt, turn.cwd, turn.session.assistant_session_id, images or None)
        async with aclosing(stream):
            async for chunk in stream:
                match chunk.type:
                    case "assistant" | "system" if chunk.content:
                        assistant_messages.append(chunk.content)
                    case "tool" if chunk.tool_name:
                        tool_calls.append(format_tool_call(chunk.tool_name, chunk.tool_input))
                        logger.debug("tool_call", tool=chunk.tool_name)
                    case "result" if chunk.session_id:
                        await self._capture_session_id(turn.session, chunk.session_id)

        logger.info(
            "batch_collected", assistant_messages=len(assistant_messages), tool_calls=len(tool_calls)
        )
        final = build_batch_message(assistant_messages)
        if final:
            await platform.send_message(conversation_id, final)
        return final

    # ── audit ───────────────────────────────────────────────────

    async def _record(
        self,
        conversation: Conversation,
        codebase: Optional[Codebase],
        sender: str,
        content: str,
        images: Optional[list[Attachment]] = None,
    ) -> None:
        image_meta = [{"filename": img.filename, "mimeType": img.media_type} for img in images or []]
        try:
            await self._messages.create(
                conversation_id=conversation.id,
                platform_type=conversation.platform_type,
                codebase_id=codebase.id if codebase else None,
                codebase_name=codebase.name if codebase else None,
                sender=sender,
                content=content,
                images=image_meta or None,
            )
        except Exception as e:
            # History is an audit trail; losing a row must not fail the reply
            logger.warning("message_history_write_failed", sender=sender, error=str(e))

    async def _show_typing(self, platform: MessengerAdapter, conversation_id: str) -> None:
        try:
            await platform.send_typing_indicator(conversation_id)
        except Exception as e:
            logger.debug("typing_indicator_failed", error=str(e))


def _read_text(path: str) -> str:
    with open(path, encoding="utf-8") as f:
        return f.read()
