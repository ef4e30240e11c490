"""Shared types and enumerations."""

from __future__ import annotations

from enum import StrEnum


class Platform(StrEnum):
    TELEGRAM = "telegram"
    SLACK = "slack"
    GITHUB = "github"
    DISCORD = "discord"
    CLI = "cli"
    WEB = "web"


class AssistantKind(StrEnum):
    CLAUDE = "claude"
    CODEX = "codex"


class StreamingMode(StrEnum):
    STREAM = "stream"
    BATCH = "batch"
