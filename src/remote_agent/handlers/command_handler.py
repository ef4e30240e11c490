"""Deterministic slash commands: project, session and template management.

None of these touch an AI assistant. Each returns a :class:`CommandResult`
whose ``modified`` flag tells the orchestrator to reload the conversation.
"""

from __future__ import annotations

import asyncio
import os
import re
import shutil
from collections import Counter
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Optional

from remote_agent.config import AppConfig
from remote_agent.log import get_logger
from remote_agent.messenger.base import MessengerAdapter
from remote_agent.orchestrator.commands import parse_command
from remote_agent.services.mcp_manager import McpManager
from remote_agent.storage.codebase_repo import CodebaseRepository
from remote_agent.storage.conversation_repo import ConversationRepository
from remote_agent.storage.message_repo import MessageRepository, format_messages_as_context
from remote_agent.storage.models import (
    HISTORY_CONTEXT,
    HISTORY_MESSAGE_COUNT,
    MCP_CONFIG_HASH,
    RESUMED_WITH_HISTORY,
    Codebase,
    CommandDefinition,
    Conversation,
)
from remote_agent.storage.seed import extract_description
from remote_agent.storage.session_repo import SessionRepository
from remote_agent.storage.template_repo import TemplateRepository

logger = get_logger(__name__)

COMMAND_FOLDERS = (".claude/commands", ".agents/commands")

_BRANCH_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")
_GIT_TIMEOUT = 300

HELP_TEXT = """Available Commands:

Project Management:
  /new-topic <name> - Create a new project workspace and link it here

Command Templates (global):
  /<name> [args] - Invoke a template directly
  /templates - List all templates
  /template-add <name> <path> - Add template from file
  /template-delete <name> - Remove a template

Codebase Commands (per-project):
  /command-set <name> <path> [text] - Register command
  /load-commands <folder> - Bulk load (recursive)
  /command-invoke <name> [args] - Execute
  /commands - List registered
  Note: Commands use relative paths (e.g., .claude/commands)
  Note: Arguments are split on spaces; quotes are not supported

Codebase:
  /clone <repo-url> - Clone repository
  /repos - List repositories (numbered)
  /repo <#|name> [pull] - Switch repo (auto-loads commands)
  /repo-remove <#|name> - Remove repo and codebase record
  /getcwd - Show working directory
  /setcwd <path> - Set directory

Worktrees:
  /worktree create <branch> - Create isolated worktree
  /worktree list - Show worktrees for this repo
  /worktree remove [--force] - Remove current worktree

Tools (MCP):
  /mcp list - Show configured MCP servers
  /mcp add <name> <npm-package> [KEY=VALUE...] - Register a server
  /mcp remove <name> - Unregister a server

Session:
  /status - Show state
  /reset - Clear session
  /reset-context - Reset AI context, keep worktree
  /resume - Replay recent message history into a fresh session
  /help - Show help"""


@dataclass(frozen=True, slots=True)
class CommandResult:
    success: bool
    message: str
    modified: bool = False


class GitCommandError(Exception):
    """A git subprocess exited non-zero."""


async def run_git(*args: str, cwd: Optional[str] = None) -> str:
    """Run git with *args* and return stdout. Raises GitCommandError on failure."""
    try:
        proc = await asyncio.create_subprocess_exec(
            "git",
            *args,
            cwd=cwd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as e:
        raise GitCommandError("git is not installed") from e

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=_GIT_TIMEOUT)
    except asyncio.TimeoutError as e:
        proc.kill()
        await proc.wait()
        raise GitCommandError(f"git {args[0]} timed out") from e

    if proc.returncode != 0:
        message = stderr.decode("utf-8", errors="replace").strip()
        raise GitCommandError(message or f"git {args[0]} exited with code {proc.returncode}")
    return stdout.decode("utf-8", errors="replace")


def is_path_within(path: str | Path, root: str | Path) -> bool:
    return Path(path).resolve().is_relative_to(Path(root).resolve())


def find_markdown_files(root: Path) -> list[tuple[str, str]]:
    """Return ``(command_name, relative_path)`` for every ``.md`` file under *root*.

    Hidden directories and ``node_modules`` are skipped.
    """
    results: list[tuple[str, str]] = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if not d.startswith(".") and d != "node_modules")
        for filename in sorted(filenames):
            if filename.endswith(".md") and not filename.startswith("."):
                full = Path(dirpath) / filename
                results.append((full.stem, full.relative_to(root).as_posix()))
    return results


def shorten_path(path: str, repo_root: Optional[str], workspace: str) -> str:
    for base in (repo_root, workspace):
        if base and is_path_within(path, base):
            return Path(path).resolve().relative_to(Path(base).resolve()).as_posix() or "."
    return path


class CommandHandler:
    """Executes the deterministic command set against the stores."""

    def __init__(
        self,
        config: AppConfig,
        conversations: ConversationRepository,
        sessions: SessionRepository,
        codebases: CodebaseRepository,
        templates: TemplateRepository,
        messages: MessageRepository,
        mcp: McpManager,
    ):
        self._config = config
        self._workspace = Path(config.workspace_path).resolve()
        self._conversations = conversations
        self._sessions = sessions
        self._codebases = codebases
        self._templates = templates
        self._messages = messages
        self._mcp = mcp

        self._handlers: dict[str, Callable[[Conversation, list[str]], Awaitable[CommandResult]]] = {
            "help": self._help,
            "status": self._status,
            "getcwd": self._getcwd,
            "setcwd": self._setcwd,
            "clone": self._clone,
            "repos": self._repos,
            "repo": self._repo,
            "repo-remove": self._repo_remove,
            "reset": self._reset,
            "reset-context": self._reset_context,
            "resume": self._resume,
            "command-set": self._command_set,
            "load-commands": self._load_commands,
            "commands": self._commands,
            "template-add": self._template_add,
            "template-list": self._template_list,
            "templates": self._template_list,
            "template-delete": self._template_delete,
            "worktree": self._worktree,
            "new-topic": self._new_topic,
            "mcp": self._mcp_command,
        }

    @property
    def commands(self) -> frozenset[str]:
        return frozenset(self._handlers)

    async def handle(
        self,
        conversation: Conversation,
        message: str,
        platform: Optional[MessengerAdapter] = None,
    ) -> CommandResult:
        parsed = parse_command(message)
        handler = self._handlers.get(parsed.command)
        if handler is None:
            return CommandResult(False, f"Unknown command: /{parsed.command}")
        logger.info("command_dispatched", command=parsed.command, conversation_id=conversation.id)
        if parsed.command == "new-topic":
            return await self._new_topic(conversation, parsed.args, platform)
        return await handler(conversation, parsed.args)

    # ── helpers ─────────────────────────────────────────────────

    async def _deactivate_active_session(self, conversation_id: str) -> bool:
        session = await self._sessions.get_active(conversation_id)
        if session is None:
            return False
        await self._sessions.deactivate(session.id)
        return True

    def _resolve_in_workspace(self, raw: str, base: Optional[str] = None) -> Path:
        return (Path(base or self._workspace) / raw).resolve()

    def _outside_workspace(self) -> CommandResult:
        return CommandResult(False, f"Path must be within {self._workspace} directory")

    def _detect_assistant(self, path: Path) -> str:
        if (path / ".codex").is_dir():
            return "codex"
        if (path / ".claude").is_dir():
            return "claude"
        return self._config.default_ai_assistant

    def _workspace_folders(self) -> list[str]:
        if not self._workspace.is_dir():
            return []
        return sorted(entry.name for entry in self._workspace.iterdir() if entry.is_dir())

    @staticmethod
    def _pick_folder(folders: list[str], identifier: str) -> Optional[str]:
        if identifier.isdigit() and 1 <= int(identifier) <= len(folders):
            return folders[int(identifier) - 1]
        if identifier in folders:
            return identifier
        return next((f for f in folders if f.startswith(identifier)), None)

    async def _autoload_commands(self, codebase: Codebase, repo_path: Path) -> int:
        for folder in COMMAND_FOLDERS:
            command_dir = repo_path / folder
            if not command_dir.is_dir():
                continue
            found = find_markdown_files(command_dir)
            if not found:
                continue
            commands = dict(codebase.commands)
            for name, relative in found:
                commands[name] = CommandDefinition(
                    path=f"{folder}/{relative}", description=f"From {folder}"
                )
            await self._codebases.update_commands(codebase.id, commands)
            return len(found)
        return 0

    async def _current_codebase(self, conversation: Conversation) -> Optional[Codebase]:
        if conversation.codebase_id:
            return await self._codebases.get(conversation.codebase_id)
        return None

    # ── commands ────────────────────────────────────────────────

    async def _help(self, conversation: Conversation, args: list[str]) -> CommandResult:
        return CommandResult(True, HELP_TEXT)

    async def _status(self, conversation: Conversation, args: list[str]) -> CommandResult:
        msg = (
            f"Platform: {conversation.platform_type}\n"
            f"AI Assistant: {conversation.ai_assistant_type}"
        )

        codebase = await self._current_codebase(conversation)
        if codebase is None and conversation.cwd:
            codebase = await self._codebases.find_by_default_cwd(conversation.cwd)
            if codebase is not None:
                await self._conversations.update(conversation.id, codebase_id=codebase.id)
                logger.info("codebase_auto_linked", codebase=codebase.name)

        if codebase is not None:
            msg += f"\n\nCodebase: {codebase.name}"
            if codebase.repository_url:
                msg += f"\nRepository: {codebase.repository_url}"
        else:
            msg += "\n\nNo codebase configured. Use /clone <repo-url> to get started."

        msg += f"\n\nCurrent Working Directory: {conversation.cwd or 'Not set'}"
        if conversation.worktree_path:
            short = shorten_path(
                conversation.worktree_path,
                codebase.default_cwd if codebase else None,
                str(self._workspace),
            )
            msg += f"\nWorktree: {short}"

        session = await self._sessions.get_active(conversation.id)
        if session is not None:
            msg += f"\nActive Session: {session.id[:8]}..."

        return CommandResult(True, msg)

    async def _getcwd(self, conversation: Conversation, args: list[str]) -> CommandResult:
        return CommandResult(True, f"Current working directory: {conversation.cwd or 'Not set'}")

    async def _setcwd(self, conversation: Conversation, args: list[str]) -> CommandResult:
        if not args:
            return CommandResult(False, "Usage: /setcwd <path>")
        new_cwd = self._resolve_in_workspace(" ".join(args))
        if not is_path_within(new_cwd, self._workspace):
            return self._outside_workspace()

        await self._conversations.update(conversation.id, cwd=str(new_cwd))
        try:
            await run_git("config", "--global", "--add", "safe.directory", str(new_cwd))
        except GitCommandError:
            logger.debug("safe_directory_skipped", path=str(new_cwd))

        if await self._deactivate_active_session(conversation.id):
            logger.info("session_deactivated_after_cwd_change", conversation_id=conversation.id)

        return CommandResult(
            True,
            f"Working directory set to: {new_cwd}\n\nSession reset - starting fresh on next message.",
            modified=True,
        )

    async def _clone(self, conversation: Conversation, args: list[str]) -> CommandResult:
        if not args:
            return CommandResult(False, "Usage: /clone <repo-url>")

        url = args[0].rstrip("/")
        if url.startswith("git@github.com:"):
            url = url.replace("git@github.com:", "https://github.com/", 1)
        repo_name = url.rsplit("/", 1)[-1].removesuffix(".git") or "unknown"
        target = self._workspace / repo_name

        if target.exists():
            existing = await self._codebases.find_by_default_cwd(str(target))
            if existing is None:
                return CommandResult(
                    False,
                    f"Directory already exists: {target}\n\n"
                    "No matching codebase found in database. Options:\n"
                    "- Remove the directory and re-clone\n"
                    f"- Use /setcwd {target} (limited functionality)",
                )
            await self._conversations.update(
                conversation.id,
                codebase_id=existing.id,
                cwd=str(target),
                ai_assistant_type=existing.ai_assistant_type,
            )
            await self._deactivate_active_session(conversation.id)
            msg = (
                f"Repository already cloned.\n\nLinked to existing codebase: {existing.name}\n"
                f"Path: {target}\n\nSession reset - starting fresh on next message."
            )
            folder = next((f for f in COMMAND_FOLDERS if (target / f).is_dir()), None)
            if folder:
                msg += f"\n\n📁 Found: {folder}/\nUse /load-commands {folder} to register commands."
            return CommandResult(True, msg, modified=True)

        logger.info("repository_cloning", url=url, target=str(target))
        try:
            self._workspace.mkdir(parents=True, exist_ok=True)
            await run_git("clone", "--", url, str(target))
            await run_git("config", "--global", "--add", "safe.directory", str(target))
        except GitCommandError as e:
            logger.error("repository_clone_failed", url=url, error=str(e))
            return CommandResult(False, f"Failed to clone repository: {e}")

        codebase = await self._codebases.create(
            name=repo_name,
            default_cwd=str(target),
            repository_url=url,
            ai_assistant_type=self._detect_assistant(target),
        )
        await self._conversations.update(
            conversation.id,
            codebase_id=codebase.id,
            cwd=str(target),
            ai_assistant_type=codebase.ai_assistant_type,
        )
        await self._deactivate_active_session(conversation.id)
        loaded = await self._autoload_commands(codebase, target)

        msg = f"Repository cloned successfully!\n\nCodebase: {repo_name}\nPath: {target}"
        if loaded:
            msg += f"\n✓ Loaded {loaded} commands"
        msg += (
            "\n\nSession reset - starting fresh on next message."
            "\n\nYou can now start asking questions about the code."
        )
        return CommandResult(True, msg, modified=True)

    async def _repos(self, conversation: Conversation, args: list[str]) -> CommandResult:
        folders = self._workspace_folders()
        if not folders:
            return CommandResult(
                True, f"No repositories found in {self._workspace}\n\nUse /clone <repo-url> to add one."
            )

        current = await self._current_codebase(conversation)
        if current is None and conversation.cwd:
            current = await self._codebases.find_by_default_cwd(conversation.cwd)

        lines = ["Repositories:", ""]
        for index, folder in enumerate(folders, start=1):
            active = current is not None and current.default_cwd == str(self._workspace / folder)
            lines.append(f"{index}. {folder}{' ← active' if active else ''}")
        lines.extend(["", "Use /repo <number|name> to switch"])
        return CommandResult(True, "\n".join(lines))

    async def _repo(self, conversation: Conversation, args: list[str]) -> CommandResult:
        if not args:
            return CommandResult(False, "Usage: /repo <number|name> [pull]")

        folders = self._workspace_folders()
        if not folders:
            return CommandResult(False, "No repositories found. Use /clone <repo-url> first.")
        folder = self._pick_folder(folders, args[0])
        if folder is None:
            return CommandResult(
                False, f"Repository not found: {args[0]}\n\nUse /repos to see available repositories."
            )

        target = self._workspace / folder
        should_pull = len(args) > 1 and args[1].lower() == "pull"
        if should_pull:
            try:
                await run_git("-C", str(target), "pull")
            except GitCommandError as e:
                return CommandResult(False, f"Failed to pull: {e}")

        codebase = await self._codebases.find_by_default_cwd(str(target))
        if codebase is None:
            codebase = await self._codebases.create(
                name=folder,
                default_cwd=str(target),
                ai_assistant_type=self._detect_assistant(target),
            )

        await self._conversations.update(
            conversation.id,
            codebase_id=codebase.id,
            cwd=str(target),
            ai_assistant_type=codebase.ai_assistant_type,
        )
        await self._deactivate_active_session(conversation.id)
        loaded = await self._autoload_commands(codebase, target)

        msg = f"Switched to: {folder}"
        if should_pull:
            msg += "\n✓ Pulled latest changes"
        if loaded:
            msg += f"\n✓ Loaded {loaded} commands"
        msg += "\n\nReady to work!"
        return CommandResult(True, msg, modified=True)

    async def _repo_remove(self, conversation: Conversation, args: list[str]) -> CommandResult:
        if not args:
            return CommandResult(False, "Usage: /repo-remove <number|name>")

        folders = self._workspace_folders()
        if not folders:
            return CommandResult(False, "No repositories found. Nothing to remove.")
        folder = self._pick_folder(folders, args[0])
        if folder is None:
            return CommandResult(
                False, f"Repository not found: {args[0]}\n\nUse /repos to see available repositories."
            )

        target = self._workspace / folder
        codebase = await self._codebases.find_by_default_cwd(str(target))
        unlinked = codebase is not None and conversation.codebase_id == codebase.id
        if unlinked:
            await self._conversations.update(conversation.id, codebase_id=None, cwd=None)
            await self._deactivate_active_session(conversation.id)
        if codebase is not None:
            await self._codebases.delete(codebase.id)
            logger.info("codebase_deleted", name=codebase.name)

        await asyncio.to_thread(shutil.rmtree, target, True)
        logger.info("repository_removed", path=str(target))

        msg = f"Removed: {folder}"
        if codebase is not None:
            msg += "\n✓ Deleted codebase record"
        if unlinked:
            msg += "\n✓ Unlinked from current conversation"
        return CommandResult(True, msg, modified=True)

    async def _reset(self, conversation: Conversation, args: list[str]) -> CommandResult:
        if await self._deactivate_active_session(conversation.id):
            return CommandResult(
                True,
                "Session cleared. Starting fresh on next message.\n\nCodebase configuration preserved.",
            )
        return CommandResult(True, "No active session to reset.")

    async def _reset_context(self, conversation: Conversation, args: list[str]) -> CommandResult:
        if await self._deactivate_active_session(conversation.id):
            return CommandResult(
                True,
                "AI context reset. Your next message will start a fresh conversation "
                "while keeping your current working directory.",
            )
        return CommandResult(True, "No active session to reset.")

    async def _resume(self, conversation: Conversation, args: list[str]) -> CommandResult:
        history = await self._messages.get_history(
            conversation.id, limit=self._config.orchestrator.message_history_limit
        )
        if not history:
            return CommandResult(True, "📜 No previous messages found. Starting fresh!")

        projects = sorted({m.codebase_name for m in history if m.codebase_name})
        platforms = sorted({m.platform_type for m in history})
        by_sender = Counter(m.sender for m in history)

        # create() deactivates the previous session
        session = await self._sessions.create(
            conversation_id=conversation.id,
            ai_assistant_type=conversation.ai_assistant_type,
            codebase_id=conversation.codebase_id,
            metadata={
                MCP_CONFIG_HASH: self._mcp.config_hash(),
                RESUMED_WITH_HISTORY: True,
                HISTORY_MESSAGE_COUNT: len(history),
                HISTORY_CONTEXT: format_messages_as_context(history),
            },
        )
        logger.info("session_resumed_with_history", session_id=session.id, messages=len(history))

        msg = f"📜 Loaded last {len(history)} messages from conversation history.\n\n"
        if projects:
            msg += f"🔍 Projects: {', '.join(projects)}\n"
        msg += f"📱 Platforms: {', '.join(platforms)}\n"
        msg += "\n📊 Breakdown:\n"
        msg += f"  - {by_sender['user']} user messages\n"
        msg += f"  - {by_sender['assistant']} assistant responses\n"
        if by_sender["system"]:
            msg += f"  - {by_sender['system']} system messages\n"
        msg += "\nContext is now active. Your next message will include this history!"
        return CommandResult(True, msg, modified=True)

    async def _command_set(self, conversation: Conversation, args: list[str]) -> CommandResult:
        if len(args) < 2:
            return CommandResult(False, "Usage: /command-set <name> <path> [text]")
        if not conversation.codebase_id:
            return CommandResult(False, "No codebase configured. Use /clone first.")

        name, relative, *text_parts = args
        full_path = self._resolve_in_workspace(relative, conversation.cwd)
        if not is_path_within(full_path, self._workspace):
            return self._outside_workspace()

        text = " ".join(text_parts)
        try:
            if text:
                full_path.parent.mkdir(parents=True, exist_ok=True)
                full_path.write_text(text, encoding="utf-8")
            elif not full_path.is_file():
                return CommandResult(False, f"Failed: file not found: {relative}")
        except OSError as e:
            logger.error("command_set_failed", name=name, error=str(e))
            return CommandResult(False, f"Failed: {e}")

        await self._codebases.register_command(
            conversation.codebase_id,
            name,
            CommandDefinition(path=relative, description=f"Custom: {name}"),
        )
        return CommandResult(True, f"Command '{name}' registered!\nPath: {relative}")

    async def _load_commands(self, conversation: Conversation, args: list[str]) -> CommandResult:
        if not args:
            return CommandResult(False, "Usage: /load-commands <folder>")
        codebase = await self._current_codebase(conversation)
        if codebase is None:
            return CommandResult(False, "No codebase configured.")

        folder = " ".join(args)
        full_path = self._resolve_in_workspace(folder, conversation.cwd)
        if not is_path_within(full_path, self._workspace):
            return self._outside_workspace()
        if not full_path.is_dir():
            return CommandResult(False, f"Failed: folder not found: {folder}")

        found = find_markdown_files(full_path)
        if not found:
            return CommandResult(False, f"No .md files found in {folder} (searched recursively)")

        commands = dict(codebase.commands)
        for name, relative in found:
            commands[name] = CommandDefinition(
                path=f"{folder.rstrip('/')}/{relative}", description=f"From {folder}"
            )
        await self._codebases.update_commands(codebase.id, commands)
        names = ", ".join(name for name, _ in found)
        return CommandResult(True, f"Loaded {len(found)} commands recursively: {names}")

    async def _commands(self, conversation: Conversation, args: list[str]) -> CommandResult:
        codebase = await self._current_codebase(conversation)
        if codebase is None:
            return CommandResult(False, "No codebase configured.")
        if not codebase.commands:
            return CommandResult(True, "No commands registered.\n\nUse /command-set or /load-commands.")

        lines = ["Registered Commands:", ""]
        lines.extend(f"{name} - {cmd.path}" for name, cmd in codebase.commands.items())
        return CommandResult(True, "\n".join(lines))

    async def _template_add(self, conversation: Conversation, args: list[str]) -> CommandResult:
        if len(args) < 2:
            return CommandResult(False, "Usage: /template-add <name> <file-path>")
        if not conversation.cwd:
            return CommandResult(False, "No working directory set. Use /clone or /setcwd first.")

        name, *path_parts = args
        file_path = " ".join(path_parts)
        full_path = self._resolve_in_workspace(file_path, conversation.cwd)
        if not is_path_within(full_path, self._workspace):
            return self._outside_workspace()
        try:
            content = full_path.read_text(encoding="utf-8")
        except OSError as e:
            return CommandResult(False, f"Failed to read file: {e}")

        await self._templates.upsert(
            name=name,
            content=content,
            description=extract_description(content) or f"From {file_path}",
        )
        return CommandResult(True, f"Template '{name}' saved!\n\nUse it with: /{name} [args]")

    async def _template_list(self, conversation: Conversation, args: list[str]) -> CommandResult:
        templates = await self._templates.list_all()
        if not templates:
            return CommandResult(
                True,
                "No command templates registered.\n\nUse /template-add <name> <file-path> to add one.",
            )
        lines = ["Command Templates:", ""]
        for template in templates:
            suffix = f" - {template.description}" if template.description else ""
            lines.append(f"/{template.name}{suffix}")
        lines.extend(["", "Use /<name> [args] to invoke any template."])
        return CommandResult(True, "\n".join(lines))

    async def _template_delete(self, conversation: Conversation, args: list[str]) -> CommandResult:
        if not args:
            return CommandResult(False, "Usage: /template-delete <name>")
        if await self._templates.delete(args[0]):
            return CommandResult(True, f"Template '{args[0]}' deleted.")
        return CommandResult(False, f"Template '{args[0]}' not found.")

    async def _worktree(self, conversation: Conversation, args: list[str]) -> CommandResult:
        if not conversation.codebase_id:
            return CommandResult(False, "No codebase configured. Use /clone first.")
        codebase = await self._codebases.get(conversation.codebase_id)
        if codebase is None:
            return CommandResult(False, "Codebase not found.")

        main_path = codebase.default_cwd
        subcommand = args[0] if args else ""
        match subcommand:
            case "create":
                return await self._worktree_create(conversation, main_path, args[1:])
            case "list":
                return await self._worktree_list(conversation, main_path)
            case "remove":
                return await self._worktree_remove(conversation, main_path, args[1:])
            case _:
                return CommandResult(
                    False,
                    "Usage:\n  /worktree create <branch>\n  /worktree list\n  /worktree remove [--force]",
                )

    async def _worktree_create(
        self, conversation: Conversation, main_path: str, args: list[str]
    ) -> CommandResult:
        if not args:
            return CommandResult(False, "Usage: /worktree create <branch-name>")
        branch = args[0]
        if conversation.worktree_path:
            short = shorten_path(conversation.worktree_path, main_path, str(self._workspace))
            return CommandResult(False, f"Already using worktree: {short}\n\nRun /worktree remove first.")
        if not _BRANCH_NAME_PATTERN.match(branch):
            return CommandResult(
                False, "Branch name must contain only letters, numbers, dashes, and underscores."
            )

        worktree_path = str(Path(main_path) / "worktrees" / branch)
        try:
            await run_git("-C", main_path, "worktree", "add", worktree_path, "-b", branch)
            await run_git("config", "--global", "--add", "safe.directory", worktree_path)
        except GitCommandError as e:
            logger.error("worktree_create_failed", branch=branch, error=str(e))
            if "already exists" in str(e):
                return CommandResult(False, f"Branch '{branch}' already exists. Use a different name.")
            return CommandResult(False, f"Failed to create worktree: {e}")

        await self._conversations.update(conversation.id, worktree_path=worktree_path)
        await self._deactivate_active_session(conversation.id)
        short = shorten_path(worktree_path, main_path, str(self._workspace))
        return CommandResult(
            True,
            f"Worktree created!\n\nBranch: {branch}\nPath: {short}"
            "\n\nThis conversation now works in isolation."
            "\nRun dependency install if needed (e.g., npm install).",
            modified=True,
        )

    async def _worktree_list(self, conversation: Conversation, main_path: str) -> CommandResult:
        try:
            output = await run_git("-C", main_path, "worktree", "list")
        except GitCommandError as e:
            return CommandResult(False, f"Failed to list worktrees: {e}")

        lines = ["Worktrees:", ""]
        for line in output.strip().splitlines():
            full_path, _, rest = line.partition(" ")
            short = shorten_path(full_path, main_path, str(self._workspace))
            active = conversation.worktree_path is not None and full_path == conversation.worktree_path
            entry = f"{short} {rest.strip()}".strip()
            lines.append(f"{entry}{' <- active' if active else ''}")
        return CommandResult(True, "\n".join(lines))

    async def _worktree_remove(
        self, conversation: Conversation, main_path: str, args: list[str]
    ) -> CommandResult:
        if not conversation.worktree_path:
            return CommandResult(False, "This conversation is not using a worktree.")

        worktree_path = conversation.worktree_path
        git_args = ["-C", main_path, "worktree", "remove"]
        if args and args[0] == "--force":
            git_args.append("--force")
        git_args.append(worktree_path)
        try:
            await run_git(*git_args)
        except GitCommandError as e:
            logger.error("worktree_remove_failed", path=worktree_path, error=str(e))
            if "untracked files" in str(e) or "modified" in str(e):
                return CommandResult(
                    False,
                    "Worktree has uncommitted changes.\n\n"
                    "Commit your work first, or use `/worktree remove --force` to discard.",
                )
            return CommandResult(False, f"Failed to remove worktree: {e}")

        await self._conversations.update(conversation.id, worktree_path=None, cwd=main_path)
        await self._deactivate_active_session(conversation.id)
        short = shorten_path(worktree_path, main_path, str(self._workspace))
        return CommandResult(
            True, f"Worktree removed: {short}\n\nSwitched back to main repo.", modified=True
        )

    async def _new_topic(
        self,
        conversation: Conversation,
        args: list[str],
        platform: Optional[MessengerAdapter] = None,
    ) -> CommandResult:
        if not args:
            return CommandResult(
                False, "Usage: /new-topic <project-name>\n\nExample: /new-topic Github search agent"
            )

        project_name = " ".join(args)
        slug = re.sub(r"[^a-z0-9]+", "-", project_name.lower()).strip("-")
        if not slug:
            return CommandResult(False, "Project name must contain letters or numbers.")

        target = self._workspace / slug
        if target.exists():
            return CommandResult(
                False, f"Directory already exists: {target}\n\nUse /repo {slug} to switch to it."
            )

        target.mkdir(parents=True)
        try:
            await run_git("init", str(target))
        except GitCommandError as e:
            logger.warning("new_topic_git_init_failed", path=str(target), error=str(e))

        codebase = await self._codebases.create(
            name=slug,
            default_cwd=str(target),
            ai_assistant_type=self._config.default_ai_assistant,
        )
        logger.info("project_created", name=slug, path=str(target))
        summary = f"Project created: {project_name}\n\nCodebase: {slug}\nPath: {target}"

        # A general chat never gets a codebase; the project lives in its own topic
        if platform is not None and platform.is_unscoped(conversation.platform_conversation_id):
            topic_id = await platform.create_topic(conversation.platform_conversation_id, project_name)
            if topic_id is None:
                return CommandResult(
                    True,
                    f"{summary}\n\nOpen a project topic and run /repo {slug} there to start working.",
                )
            topic = await self._conversations.get_or_create(
                conversation.platform_type, topic_id, codebase_id=codebase.id
            )
            await self._conversations.update(
                topic.id,
                codebase_id=codebase.id,
                cwd=str(target),
                ai_assistant_type=codebase.ai_assistant_type,
            )
            logger.info("project_topic_linked", name=slug, topic=topic_id)
            return CommandResult(
                True, f"{summary}\n\nTopic created. Switch to the new topic to start working!"
            )

        await self._conversations.update(
            conversation.id,
            codebase_id=codebase.id,
            cwd=str(target),
            ai_assistant_type=codebase.ai_assistant_type,
        )
        await self._deactivate_active_session(conversation.id)
        return CommandResult(
            True,
            f"{summary}\n\nThis conversation is now linked to the new project.",
            modified=True,
        )

    async def _mcp_command(self, conversation: Conversation, args: list[str]) -> CommandResult:
        subcommand = args[0] if args else "list"
        match subcommand:
            case "list":
                return CommandResult(
                    True, f"{self._mcp.list_servers()}\n\nConfig hash: {self._mcp.config_hash()}"
                )
            case "add" if len(args) >= 3:
                env: dict[str, str] = {}
                for pair in args[3:]:
                    key, sep, value = pair.partition("=")
                    if not sep or not key:
                        return CommandResult(False, f"Invalid env entry '{pair}'. Use KEY=VALUE.")
                    env[key] = value
                message = await self._mcp.add_server(args[1], args[2], env or None)
                return CommandResult(not message.startswith("Failed"), message)
            case "remove" if len(args) >= 2:
                message = await self._mcp.remove_server(args[1])
                return CommandResult(message.endswith("removed."), message)
            case _:
                return CommandResult(
                    False,
                    "Usage:\n  /mcp list\n  /mcp add <name> <npm-package> [KEY=VALUE...]\n  /mcp remove <name>",
                )
