"""Configuration loader with YAML parsing, env-var interpolation, and Pydantic validation."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Literal, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field


class BotConfig(BaseModel):
    id: str
    platform: str  # "telegram" | "discord"
    token: str
    streaming_mode: Literal["stream", "batch"] = "stream"
    allowed_user_ids: list[int] = Field(default_factory=list)
    thread_context_limit: int = 20


class ClaudeCodeConfig(BaseModel):
    cli_path: str = "claude"
    model: str = ""  # e.g. "sonnet", "opus"; empty = CLI default
    timeout: int = 1800  # idle seconds between stream events
    api_key: Optional[str] = None  # Anthropic API key; if set, uses API auth instead of OAuth
    permission_mode: str = "bypassPermissions"  # "default" | "bypassPermissions"


class CodexConfig(BaseModel):
    cli_path: str = "codex"
    timeout: int = 1800


class StorageConfig(BaseModel):
    db_path: str = "./data/remote_agent.db"


class OrchestratorConfig(BaseModel):
    bot_display_name: str = "The agent"
    message_history_limit: int = 50
    max_concurrent_conversations: int = 10
    load_builtin_commands: bool = True
    builtin_commands_path: str = ".claude/commands/exp-piv-loop"


class AutoResearchConfig(BaseModel):
    enabled: bool = False
    strategy: Literal["background", "blocking", "suggest"] = "background"
    max_wait_ms: int = 60000


class McpConfig(BaseModel):
    config_path: str = "./data/mcp_servers.json"


class AppConfig(BaseModel):
    log_level: str = "INFO"
    data_dir: str = "./data"
    workspace_path: str = "/workspace"
    default_ai_assistant: str = "claude"
    bots: list[BotConfig] = Field(default_factory=list)
    claude_code: ClaudeCodeConfig = Field(default_factory=ClaudeCodeConfig)
    codex: CodexConfig = Field(default_factory=CodexConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    orchestrator: OrchestratorConfig = Field(default_factory=OrchestratorConfig)
    auto_research: AutoResearchConfig = Field(default_factory=AutoResearchConfig)
    mcp: McpConfig = Field(default_factory=McpConfig)


_ENV_VAR_PATTERN = re.compile(r"\$\{(\w+)\}")


def _interpolate_env_vars(text: str, extra: dict[str, str] | None = None) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        if extra and var_name in extra:
            return extra[var_name]
        value = os.environ.get(var_name)
        if value is None:
            return match.group(0)
        return value

    return _ENV_VAR_PATTERN.sub(_replace, text)


def load_config(config_path: str | Path = "config.yaml", env_path: str | Path = ".env") -> AppConfig:
    """Load and validate configuration from YAML file with env-var interpolation."""
    env_file = Path(env_path)
    if env_file.exists():
        load_dotenv(env_file)

    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_file}")

    raw_text = config_file.read_text(encoding="utf-8")

    # First pass: extract self-referencing roots
    raw_data = yaml.safe_load(raw_text) or {}
    extra = {
        "data_dir": _interpolate_env_vars(raw_data.get("data_dir", "./data")),
        "workspace_path": _interpolate_env_vars(raw_data.get("workspace_path", "/workspace")),
    }

    # Second pass: interpolate all env vars
    interpolated = _interpolate_env_vars(raw_text, extra=extra)
    data = yaml.safe_load(interpolated) or {}

    return AppConfig(**data)
