"""Orchestrator exceptions and the user-facing error classifier."""

from __future__ import annotations

import asyncio
import re
import sqlite3

from remote_agent.ai.client import AssistantClientError, AssistantTimeoutError

_MAX_DETAIL_LENGTH = 200

_SENSITIVE_PATTERN = re.compile(
    r"password|passwd|secret|token|api[_-]?key|credential|authorization|bearer"
    r"|\b(?:postgres(?:ql)?|mysql|mongodb(?:\+srv)?|redis|amqp)://",
    re.IGNORECASE,
)
_RATE_LIMIT_PATTERN = re.compile(r"rate[ _-]?limit|too many requests|\b429\b", re.IGNORECASE)


class OrchestratorError(Exception):
    """Expected failure whose message is sent to the user verbatim."""

    def __init__(self, user_message: str):
        super().__init__(user_message)
        self.user_message = user_message


class ConfigurationError(OrchestratorError):
    """The conversation lacks the project context the request needs."""


class NotFoundError(OrchestratorError):
    """Unknown command, sub-command, command file or codebase."""


class UsageError(OrchestratorError):
    """A command was invoked with missing arguments."""


class CommandRestrictedError(OrchestratorError):
    """The command is not allowed in an unscoped conversation."""


def _first_line(text: str) -> str:
    line = text.strip().splitlines()[0] if text.strip() else ""
    if len(line) > _MAX_DETAIL_LENGTH:
        line = line[: _MAX_DETAIL_LENGTH - 3] + "..."
    return line.rstrip(".")


def classify_and_format_error(error: BaseException) -> str:
    """Map an unexpected exception to one short message safe to show on a chat platform."""
    text = str(error)

    if _RATE_LIMIT_PATTERN.search(text):
        return "⚠️ AI rate limit reached. Please wait a moment and try again."

    # Nothing that might carry credentials is echoed back
    if _SENSITIVE_PATTERN.search(text):
        return "⚠️ An unexpected error occurred. Try /reset to start a fresh session."

    if isinstance(error, sqlite3.Error):
        return "⚠️ Database error. Please try again in a moment."

    if isinstance(error, (AssistantTimeoutError, asyncio.TimeoutError)):
        return "⚠️ The AI assistant timed out. Try a smaller request or /reset to start over."

    if isinstance(error, AssistantClientError):
        return (
            f"⚠️ AI session error: {_first_line(text) or 'the assistant stopped unexpectedly'}. "
            "Try /reset to start a fresh session."
        )

    if isinstance(error, OSError):
        detail = error.strerror or _first_line(text) or type(error).__name__
        return f"⚠️ Filesystem error: {detail}. Check the working directory with /getcwd."

    detail = _first_line(text) or type(error).__name__
    return f"⚠️ Error: {detail}. Try /reset if issue persists."
