"""Tests for the MCP server tracker and its configuration hash."""

import json

import pytest

from remote_agent.services.mcp_manager import McpManager


@pytest.fixture
def manager(tmp_path, monkeypatch):
    mgr = McpManager(tmp_path / "mcp.json", cli_path="claude")
    calls: list[list[str]] = []

    async def fake_run(cmd):
        calls.append(cmd)
        return True, ""

    monkeypatch.setattr(mgr, "_run", fake_run)
    mgr.calls = calls
    return mgr


class TestConfigHash:
    def test_hash_is_stable_across_key_order(self, tmp_path):
        first = tmp_path / "a.json"
        second = tmp_path / "b.json"
        first.write_text(json.dumps({"x": {"package": "p1"}, "y": {"package": "p2"}}))
        second.write_text(json.dumps({"y": {"package": "p2"}, "x": {"package": "p1"}}))

        assert McpManager(first).config_hash() == McpManager(second).config_hash()
        assert len(McpManager(first).config_hash()) == 16

    @pytest.mark.asyncio
    async def test_add_and_remove_change_hash(self, manager):
        empty = manager.config_hash()

        await manager.add_server("github", "@modelcontextprotocol/server-github", {"TOKEN": "t"})
        with_github = manager.config_hash()
        await manager.remove_server("github")

        assert with_github != empty
        assert manager.config_hash() == empty


class TestServerTracking:
    @pytest.mark.asyncio
    async def test_add_registers_through_cli_and_persists(self, manager, tmp_path):
        message = await manager.add_server("fs", "@scope/fs-server", {"ROOT": "/w"})

        assert "added" in message
        assert manager.calls[0] == [
            manager._cli_path, "mcp", "add", "-s", "user", "fs",
            "-e", "ROOT=/w", "--", "npx", "-y", "@scope/fs-server",
        ]
        saved = json.loads((tmp_path / "mcp.json").read_text())
        assert saved == {"fs": {"package": "@scope/fs-server", "env": {"ROOT": "/w"}}}
        assert McpManager(tmp_path / "mcp.json").list_servers() == "- fs: @scope/fs-server (env: ROOT)"

    @pytest.mark.asyncio
    async def test_failed_cli_call_is_not_tracked(self, manager, monkeypatch, tmp_path):
        async def failing_run(cmd):
            return False, "npx not found"

        monkeypatch.setattr(manager, "_run", failing_run)

        message = await manager.add_server("fs", "@scope/fs-server")

        assert message == "Failed to add MCP server 'fs': npx not found"
        assert manager.list_servers() == "No MCP servers configured."
        assert not (tmp_path / "mcp.json").exists()

    @pytest.mark.asyncio
    async def test_remove_unknown(self, manager):
        assert await manager.remove_server("ghost") == "MCP server 'ghost' not found."
        assert manager.calls == []

    @pytest.mark.asyncio
    async def test_list_servers(self, manager):
        assert manager.list_servers() == "No MCP servers configured."
        await manager.add_server("fs", "@scope/fs-server", {"ROOT": "/w"})
        assert manager.list_servers() == "- fs: @scope/fs-server (env: ROOT)"

    def test_corrupt_file_starts_empty(self, tmp_path):
        path = tmp_path / "mcp.json"
        path.write_text("{not json")
        assert McpManager(path).list_servers() == "No MCP servers configured."
