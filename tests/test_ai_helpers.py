"""Tests for tool-call formatting, auto-research and assistant stream parsing."""

from typing import Any, AsyncIterator

import pytest

from remote_agent.ai.auto_research import (
    KNOWN_DEPENDENCIES,
    AutoResearch,
    build_instructions,
    detect_dependencies,
    is_worth_indexing,
)
from remote_agent.ai.client import (
    ClaudeCodeClient,
    CodexClient,
    MessageChunk,
    create_assistant_client,
)
from remote_agent.ai.tool_formatter import format_tool_call
from remote_agent.config import AppConfig, AutoResearchConfig, ClaudeCodeConfig, CodexConfig
from remote_agent.core.types import AssistantKind
from remote_agent.messenger.models import Attachment


class TestFormatToolCall:
    def test_name_only(self):
        assert format_tool_call("TodoWrite") == "🔧 TODOWRITE"

    def test_command_detail(self):
        assert format_tool_call("Bash", {"command": "npm test"}) == "🔧 BASH\nnpm test"

    def test_detail_key_priority(self):
        text = format_tool_call("Grep", {"pattern": "TODO", "path": "src/"})
        assert text == "🔧 GREP\nsrc/"

    def test_long_detail_is_truncated_to_one_line(self):
        text = format_tool_call("Bash", {"command": "echo " + "a " * 200})
        detail = text.split("\n", 1)[1]
        assert len(detail) == 100
        assert detail.endswith("...")

    def test_missing_name(self):
        assert format_tool_call(None, {}) == "🔧 TOOL"


class TestAutoResearch:
    def test_detects_on_word_boundaries(self):
        names = [dep.name for dep in detect_dependencies("Build a React page backed by Supabase")]
        assert names == ["React", "Supabase"]

    def test_no_partial_word_matches(self):
        assert detect_dependencies("reactive programming with jester") == []

    def test_blocklisted_keywords_are_not_worth_indexing(self):
        angular = next(dep for dep in KNOWN_DEPENDENCIES if dep.name == "Angular")
        react = next(dep for dep in KNOWN_DEPENDENCIES if dep.name == "React")
        assert is_worth_indexing(angular) is False
        assert is_worth_indexing(react) is True

    @pytest.mark.parametrize("strategy", ["background", "blocking", "suggest"])
    def test_instructions_per_strategy(self, strategy):
        deps = detect_dependencies("use redis")
        text = build_instructions(deps, strategy, 5000)
        assert text.startswith("## 🔍 Archon Auto-Research Detected")
        assert "- Redis (https://redis.io/docs)" in text
        assert f"**{strategy.upper()}**" in text
        assert text.endswith("\n---\n\n")

    def test_blocking_mentions_wait_budget(self):
        text = build_instructions(detect_dependencies("use redis"), "blocking", 1234)
        assert "max 1234ms" in text

    def test_disabled_returns_none(self):
        assert AutoResearch(AutoResearchConfig(enabled=False)).instructions_for("react app") is None

    def test_enabled_without_matches_returns_none(self):
        research = AutoResearch(AutoResearchConfig(enabled=True))
        assert research.is_enabled() is True
        assert research.instructions_for("rename a variable") is None

    def test_only_blocked_dependencies_returns_none(self):
        research = AutoResearch(AutoResearchConfig(enabled=True))
        assert research.instructions_for("migrate the angularjs app") is None


def _scripted_events(events: list[dict[str, Any]], captured: dict):
    async def fake_stream(cmd, cwd, stdin_data, env=None) -> AsyncIterator[dict[str, Any]]:
        captured["cmd"] = cmd
        captured["cwd"] = cwd
        captured["stdin"] = stdin_data
        for event in events:
            yield event

    return fake_stream


async def _collect(stream) -> list[MessageChunk]:
    return [chunk async for chunk in stream]


class TestClaudeCodeClient:
    @pytest.mark.asyncio
    async def test_maps_stream_json_events(self, monkeypatch):
        client = ClaudeCodeClient(ClaudeCodeConfig(cli_path="claude", model="sonnet"))
        captured: dict = {}
        events = [
            {"type": "system", "subtype": "init"},
            {
                "type": "assistant",
                "message": {
                    "content": [
                        {"type": "thinking", "thinking": "let me see"},
                        {"type": "text", "text": "Reading files."},
                        {"type": "tool_use", "name": "Read", "input": {"file_path": "a.py"}},
                    ]
                },
            },
            {"type": "result", "session_id": "sess-123"},
        ]
        monkeypatch.setattr(client, "_stream_events", _scripted_events(events, captured))

        chunks = await _collect(client.send_query("hi", "/repo", resume_session_id="sess-100"))

        assert [c.type for c in chunks] == ["thinking", "assistant", "tool", "result"]
        assert chunks[1].content == "Reading files."
        assert chunks[2].tool_name == "Read"
        assert chunks[2].tool_input == {"file_path": "a.py"}
        assert chunks[3].session_id == "sess-123"
        assert captured["cwd"] == "/repo"
        assert captured["stdin"] == b"hi"
        assert captured["cmd"][-2:] == ["--resume", "sess-100"]
        assert "--model" in captured["cmd"]

    @pytest.mark.asyncio
    async def test_images_use_stream_json_input(self, monkeypatch):
        client = ClaudeCodeClient(ClaudeCodeConfig(cli_path="claude"))
        captured: dict = {}
        monkeypatch.setattr(client, "_stream_events", _scripted_events([], captured))

        image = Attachment(data=b"img", media_type="image/png", filename="a.png")
        await _collect(client.send_query("look", "/repo", images=[image]))

        assert captured["cmd"][-2:] == ["--input-format", "stream-json"]
        assert b'"type": "image"' in captured["stdin"]
        assert b'"media_type": "image/png"' in captured["stdin"]

    def test_api_key_is_only_passed_when_configured(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "from-env")
        assert "ANTHROPIC_API_KEY" not in ClaudeCodeClient(ClaudeCodeConfig())._build_env()
        configured = ClaudeCodeClient(ClaudeCodeConfig(api_key="from-config"))
        assert configured._build_env()["ANTHROPIC_API_KEY"] == "from-config"


class TestCodexClient:
    @pytest.mark.asyncio
    async def test_maps_item_events_and_thread_id(self, monkeypatch):
        client = CodexClient(CodexConfig(cli_path="codex"))
        captured: dict = {}
        events = [
            {"type": "thread.started", "thread_id": "thread-1"},
            {"type": "error", "message": "MCP client for archon failed to start"},
            {"type": "item.completed", "item": {"type": "reasoning", "text": "thinking"}},
            {"type": "item.completed", "item": {"type": "command_execution", "command": "ls"}},
            {"type": "item.completed", "item": {"type": "agent_message", "text": "Here you go."}},
            {"type": "turn.completed"},
            {"type": "item.completed", "item": {"type": "agent_message", "text": "never seen"}},
        ]
        monkeypatch.setattr(client, "_stream_events", _scripted_events(events, captured))

        chunks = await _collect(client.send_query("list files", "/repo"))

        assert [c.type for c in chunks] == ["thinking", "tool", "assistant", "result"]
        assert chunks[1].tool_input == {"command": "ls"}
        assert chunks[3].session_id == "thread-1"
        assert captured["cmd"][-1] == "-"
        assert "--cd" in captured["cmd"]

    @pytest.mark.asyncio
    async def test_turn_failure_becomes_system_chunk(self, monkeypatch):
        client = CodexClient(CodexConfig(cli_path="codex"))
        events = [
            {"type": "error", "message": "stream disconnected"},
            {"type": "turn.failed", "error": {"message": "quota exceeded"}},
        ]
        monkeypatch.setattr(client, "_stream_events", _scripted_events(events, {}))

        chunks = await _collect(client.send_query("x", "/repo", resume_session_id="thread-9"))

        assert [c.content for c in chunks] == [
            "⚠️ stream disconnected",
            "❌ Turn failed: quota exceeded",
        ]

    @pytest.mark.asyncio
    async def test_resume_passes_thread_id(self, monkeypatch):
        client = CodexClient(CodexConfig(cli_path="codex"))
        captured: dict = {}
        monkeypatch.setattr(
            client, "_stream_events", _scripted_events([{"type": "turn.completed"}], captured)
        )

        chunks = await _collect(client.send_query("x", "/repo", resume_session_id="thread-9"))

        assert captured["cmd"][-3:] == ["resume", "thread-9", "-"]
        assert chunks[-1].session_id == "thread-9"


class TestClientFactory:
    def test_selects_backend_by_kind(self):
        config = AppConfig()
        assert create_assistant_client("claude", config).kind == AssistantKind.CLAUDE
        assert create_assistant_client("codex", config).kind == AssistantKind.CODEX

    def test_unknown_kind_is_rejected(self):
        with pytest.raises(ValueError):
            create_assistant_client("gemini", AppConfig())
