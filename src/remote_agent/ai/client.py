"""AI assistant client abstraction with Claude Code and Codex CLI backends.

Both backends run the vendor CLI as a subprocess in the conversation's working
directory and translate its JSON-lines event stream into ``MessageChunk``s.
"""

from __future__ import annotations

import asyncio
import base64
import json
import os
import platform
import shutil
import tempfile
from contextlib import aclosing
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, AsyncIterator, Literal, Optional

from remote_agent.config import AppConfig, ClaudeCodeConfig, CodexConfig
from remote_agent.core.types import AssistantKind
from remote_agent.log import get_logger
from remote_agent.messenger.models import Attachment

logger = get_logger(__name__)

ChunkType = Literal["assistant", "tool", "result", "system", "thinking"]

_STREAM_LINE_LIMIT = 16 * 1024 * 1024
_STDERR_TAIL = 2000


@dataclass(frozen=True, slots=True)
class MessageChunk:
    """One element of an assistant response stream."""

    type: ChunkType
    content: Optional[str] = None
    session_id: Optional[str] = None
    tool_name: Optional[str] = None
    tool_input: dict[str, Any] = field(default_factory=dict)


class AssistantClientError(Exception):
    """The assistant backend failed to produce a response."""


class AssistantTimeoutError(AssistantClientError):
    """The assistant backend went silent for longer than its timeout."""


class AssistantClient(ABC):
    """Abstract base class for AI coding assistants."""

    @property
    @abstractmethod
    def kind(self) -> AssistantKind:
        ...

    @abstractmethod
    def send_query(
        self,
        prompt: str,
        cwd: str,
        resume_session_id: Optional[str] = None,
        images: Optional[list[Attachment]] = None,
    ) -> AsyncIterator[MessageChunk]:
        """Stream the assistant's response to *prompt*, run inside *cwd*.

        When *resume_session_id* is given the backend continues that remote
        session. A ``result`` chunk carrying ``session_id`` is yielded on
        success so the caller can resume later.
        """
        ...


def _resolve_cli_path(cli_path: str, windows_names: tuple[str, ...] = ()) -> str:
    """Resolve a CLI path, checking PATH and common npm global locations."""
    if os.path.isabs(cli_path) and os.path.exists(cli_path):
        return cli_path

    found = shutil.which(cli_path)
    if found:
        return found

    if platform.system() == "Windows":
        candidates = []
        for env_var in ("APPDATA", "LOCALAPPDATA"):
            base = os.environ.get(env_var, "")
            if base:
                candidates.extend(os.path.join(base, "npm", name) for name in windows_names)
        for candidate in candidates:
            if os.path.exists(candidate):
                return candidate

    return cli_path


class CliAssistantClient(AssistantClient):
    """Shared subprocess plumbing for JSON-lines streaming CLIs."""

    def __init__(self, cli_path: str, timeout: int):
        self._cli_path = cli_path
        self._timeout = timeout

    async def _stream_events(
        self,
        cmd: list[str],
        cwd: str,
        stdin_data: bytes,
        env: Optional[dict[str, str]] = None,
    ) -> AsyncIterator[dict[str, Any]]:
        """Run *cmd* and yield each JSON object printed on stdout.

        The subprocess is killed if the consumer stops iterating early.
        """
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                cwd=cwd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
                limit=_STREAM_LINE_LIMIT,
            )
        except FileNotFoundError as e:
            # Either the CLI or the cwd is missing
            logger.error("assistant_cli_not_found", cli_path=self._cli_path, cwd=cwd)
            raise AssistantClientError(f"Assistant CLI could not be started: {e}") from e

        stderr_task = asyncio.create_task(process.stderr.read())  # type: ignore[union-attr]
        try:
            assert process.stdin is not None and process.stdout is not None
            process.stdin.write(stdin_data)
            await process.stdin.drain()
            process.stdin.close()

            while True:
                try:
                    line = await asyncio.wait_for(process.stdout.readline(), timeout=self._timeout)
                except asyncio.TimeoutError as e:
                    logger.error("assistant_timeout", cli_path=self._cli_path, timeout=self._timeout)
                    raise AssistantTimeoutError(
                        f"Assistant produced no output for {self._timeout} seconds"
                    ) from e
                if not line:
                    break

                text = line.decode("utf-8", errors="replace").strip()
                if not text:
                    continue
                try:
                    event = json.loads(text)
                except json.JSONDecodeError:
                    logger.debug("assistant_non_json_output", line=text[:200])
                    continue
                if isinstance(event, dict):
                    yield event

            returncode = await process.wait()
            if returncode != 0:
                stderr = (await stderr_task).decode("utf-8", errors="replace").strip()
                logger.error(
                    "assistant_process_failed",
                    cli_path=self._cli_path,
                    returncode=returncode,
                    stderr=stderr[-_STDERR_TAIL:],
                )
                raise AssistantClientError(
                    f"Assistant process exited with code {returncode}: "
                    f"{stderr[-_STDERR_TAIL:] or '(no output)'}"
                )
        finally:
            if process.returncode is None:
                process.kill()
                await process.wait()
            if not stderr_task.done():
                stderr_task.cancel()


class ClaudeCodeClient(CliAssistantClient):
    """Claude Code CLI backend (``claude -p --output-format stream-json``)."""

    def __init__(self, config: ClaudeCodeConfig):
        super().__init__(
            _resolve_cli_path(config.cli_path, ("claude.cmd", "claude")),
            config.timeout,
        )
        self._config = config

    @property
    def kind(self) -> AssistantKind:
        return AssistantKind.CLAUDE

    def _build_command(self, resume_session_id: Optional[str], with_images: bool) -> list[str]:
        cmd = [
            self._cli_path,
            "-p",
            "--output-format",
            "stream-json",
            "--verbose",
            "--permission-mode",
            self._config.permission_mode,
        ]
        if self._config.model:
            cmd.extend(["--model", self._config.model])
        if resume_session_id:
            cmd.extend(["--resume", resume_session_id])
        if with_images:
            cmd.extend(["--input-format", "stream-json"])
        return cmd

    def _build_env(self) -> dict[str, str]:
        # Drop ANTHROPIC_API_KEY so the CLI uses subscription auth unless a key is configured
        env = {k: v for k, v in os.environ.items() if k != "ANTHROPIC_API_KEY"}
        if self._config.api_key:
            env["ANTHROPIC_API_KEY"] = self._config.api_key
        return env

    @staticmethod
    def _build_stdin(prompt: str, images: Optional[list[Attachment]]) -> bytes:
        if not images:
            return prompt.encode("utf-8")

        content: list[dict[str, Any]] = [{"type": "text", "text": prompt}]
        for image in images:
            content.append(
                {
                    "type": "image",
                    "source": {
                        "type": "base64",
                        "media_type": image.media_type,
                        "data": base64.b64encode(image.data).decode(),
                    },
                }
            )
        message = {"type": "user", "message": {"role": "user", "content": content}}
        return (json.dumps(message) + "\n").encode("utf-8")

    async def send_query(
        self,
        prompt: str,
        cwd: str,
        resume_session_id: Optional[str] = None,
        images: Optional[list[Attachment]] = None,
    ) -> AsyncIterator[MessageChunk]:
        if resume_session_id:
            logger.info("claude_resuming_session", session_id=resume_session_id)
        else:
            logger.info("claude_starting_session", cwd=cwd)

        cmd = self._build_command(resume_session_id, with_images=bool(images))
        stdin = self._build_stdin(prompt, images)

        events = self._stream_events(cmd, cwd, stdin, env=self._build_env())
        async with aclosing(events):
            async for event in events:
                event_type = event.get("type")

                if event_type == "assistant":
                    for block in event.get("message", {}).get("content", []):
                        block_type = block.get("type")
                        if block_type == "text" and block.get("text"):
                            yield MessageChunk(type="assistant", content=block["text"])
                        elif block_type == "tool_use":
                            yield MessageChunk(
                                type="tool",
                                tool_name=block.get("name", "unknown"),
                                tool_input=block.get("input") or {},
                            )
                        elif block_type == "thinking" and block.get("thinking"):
                            yield MessageChunk(type="thinking", content=block["thinking"])

                elif event_type == "result":
                    if event.get("is_error"):
                        logger.warning("claude_result_error", subtype=event.get("subtype"))
                    yield MessageChunk(type="result", session_id=event.get("session_id"))


class CodexClient(CliAssistantClient):
    """OpenAI Codex CLI backend (``codex exec --json``)."""

    def __init__(self, config: CodexConfig):
        super().__init__(
            _resolve_cli_path(config.cli_path, ("codex.cmd", "codex")),
            config.timeout,
        )

    @property
    def kind(self) -> AssistantKind:
        return AssistantKind.CODEX

    def _build_command(
        self, cwd: str, resume_session_id: Optional[str], image_paths: list[str]
    ) -> list[str]:
        cmd = [self._cli_path, "exec", "--json", "--skip-git-repo-check", "--cd", cwd]
        for path in image_paths:
            cmd.extend(["-i", path])
        if resume_session_id:
            cmd.extend(["resume", resume_session_id])
        cmd.append("-")  # prompt on stdin
        return cmd

    async def send_query(
        self,
        prompt: str,
        cwd: str,
        resume_session_id: Optional[str] = None,
        images: Optional[list[Attachment]] = None,
    ) -> AsyncIterator[MessageChunk]:
        if resume_session_id:
            logger.info("codex_resuming_thread", thread_id=resume_session_id)
        else:
            logger.info("codex_starting_thread", cwd=cwd)

        with tempfile.TemporaryDirectory(prefix="remote-agent-img-") as tmp_dir:
            image_paths: list[str] = []
            for index, image in enumerate(images or []):
                path = Path(tmp_dir) / f"{index}-{Path(image.filename).name}"
                path.write_bytes(image.data)
                image_paths.append(str(path))

            cmd = self._build_command(cwd, resume_session_id, image_paths)
            thread_id = resume_session_id

            events = self._stream_events(cmd, cwd, prompt.encode("utf-8"))
            async with aclosing(events):
                async for event in events:
                    event_type = event.get("type")

                    if event_type == "thread.started":
                        thread_id = event.get("thread_id") or thread_id

                    elif event_type == "error":
                        message = str(event.get("message", ""))
                        logger.error("codex_stream_error", message=message)
                        # MCP startup timeouts are optional tools failing, not the turn
                        if "MCP client" not in message:
                            yield MessageChunk(type="system", content=f"⚠️ {message}")

                    elif event_type == "turn.failed":
                        message = (event.get("error") or {}).get("message") or "Unknown error"
                        logger.error("codex_turn_failed", message=message)
                        yield MessageChunk(type="system", content=f"❌ Turn failed: {message}")
                        return

                    elif event_type == "item.completed":
                        item = event.get("item") or {}
                        item_type = item.get("type")
                        if item_type == "agent_message" and item.get("text"):
                            yield MessageChunk(type="assistant", content=item["text"])
                        elif item_type == "command_execution" and item.get("command"):
                            yield MessageChunk(
                                type="tool",
                                tool_name=item["command"],
                                tool_input={"command": item["command"]},
                            )
                        elif item_type == "reasoning" and item.get("text"):
                            yield MessageChunk(type="thinking", content=item["text"])

                    elif event_type == "turn.completed":
                        yield MessageChunk(type="result", session_id=thread_id)
                        # The CLI may keep the stream open after the turn ends
                        return


def create_assistant_client(kind: str, config: AppConfig) -> AssistantClient:
    """Create an assistant client for a conversation's ``ai_assistant_type`` tag."""
    match AssistantKind(kind):
        case AssistantKind.CLAUDE:
            return ClaudeCodeClient(config.claude_code)
        case AssistantKind.CODEX:
            return CodexClient(config.codex)
