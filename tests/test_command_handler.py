"""Tests for the deterministic command set. Git is stubbed out."""

from pathlib import Path

import pytest

from remote_agent.handlers import command_handler as command_module
from remote_agent.handlers.command_handler import (
    CommandHandler,
    GitCommandError,
    find_markdown_files,
    is_path_within,
    shorten_path,
)
from remote_agent.storage.models import (
    HISTORY_CONTEXT,
    HISTORY_MESSAGE_COUNT,
    MCP_CONFIG_HASH,
    RESUMED_WITH_HISTORY,
)


@pytest.fixture
def git_calls(monkeypatch):
    calls: list[tuple[str, ...]] = []

    async def fake_git(*args, cwd=None):
        calls.append(args)
        if args[0] == "clone":
            Path(args[-1]).mkdir(parents=True)
            commands = Path(args[-1]) / ".claude" / "commands"
            commands.mkdir(parents=True)
            (commands / "prime.md").write_text("Prime", encoding="utf-8")
        if "worktree" in args and "add" in args:
            Path(args[args.index("add") + 1]).mkdir(parents=True)
        return ""

    monkeypatch.setattr(command_module, "run_git", fake_git)
    return calls


@pytest.fixture
def handler(harness, git_calls) -> CommandHandler:
    return CommandHandler(
        harness.config,
        harness.conversations,
        harness.sessions,
        harness.codebases,
        harness.templates,
        harness.messages,
        harness.mcp,
    )


async def fresh(harness, chat="chat-1"):
    return await harness.conversations.get_or_create("telegram", chat)


class TestPathHelpers:
    def test_is_path_within(self, tmp_path):
        assert is_path_within(tmp_path / "a" / "b", tmp_path)
        assert not is_path_within(tmp_path / ".." / "elsewhere", tmp_path)

    def test_find_markdown_files_recurses_and_skips_hidden(self, tmp_path):
        (tmp_path / "sub").mkdir()
        (tmp_path / ".hidden").mkdir()
        (tmp_path / "a.md").write_text("a")
        (tmp_path / "sub" / "b.md").write_text("b")
        (tmp_path / ".hidden" / "c.md").write_text("c")
        (tmp_path / "notes.txt").write_text("n")

        assert find_markdown_files(tmp_path) == [("a", "a.md"), ("b", "sub/b.md")]

    def test_shorten_path(self, tmp_path):
        repo = tmp_path / "repo"
        assert shorten_path(str(repo / "worktrees" / "x"), str(repo), str(tmp_path)) == "worktrees/x"
        assert shorten_path("/elsewhere/x", str(repo), str(tmp_path)) == "/elsewhere/x"


class TestBasics:
    @pytest.mark.asyncio
    async def test_unknown_command(self, harness, handler):
        result = await handler.handle(await fresh(harness), "/nope")
        assert result.success is False

    @pytest.mark.asyncio
    async def test_status_without_codebase(self, harness, handler):
        result = await handler.handle(await fresh(harness), "/status")
        assert "Platform: telegram" in result.message
        assert "No codebase configured" in result.message

    @pytest.mark.asyncio
    async def test_setcwd_stays_inside_workspace(self, harness, handler):
        conversation = await fresh(harness)

        outside = await handler.handle(conversation, "/setcwd ../../etc")
        inside = await handler.handle(conversation, "/setcwd project")

        assert outside.success is False
        assert "must be within" in outside.message
        assert inside.modified is True
        updated = await harness.conversations.get(conversation.id)
        assert updated.cwd == str((harness.workspace / "project").resolve())

    @pytest.mark.asyncio
    async def test_reset_deactivates_session(self, harness, handler):
        conversation = await fresh(harness)
        await harness.sessions.create(conversation.id, "claude")

        first = await handler.handle(conversation, "/reset")
        second = await handler.handle(conversation, "/reset")

        assert first.message.startswith("Session cleared.")
        assert second.message == "No active session to reset."
        assert await harness.sessions.get_active(conversation.id) is None


class TestRepositories:
    @pytest.mark.asyncio
    async def test_clone_registers_codebase_and_autoloads_commands(self, harness, handler, git_calls):
        conversation = await fresh(harness)

        result = await handler.handle(conversation, "/clone https://github.com/acme/widget.git")

        assert result.success is True
        assert "✓ Loaded 1 commands" in result.message
        updated = await harness.conversations.get(conversation.id)
        codebase = await harness.codebases.get(updated.codebase_id)
        assert codebase.name == "widget"
        assert codebase.repository_url == "https://github.com/acme/widget.git"
        assert codebase.commands["prime"].path == ".claude/commands/prime.md"
        assert updated.cwd == str(harness.workspace.resolve() / "widget")
        assert git_calls[0] == (
            "clone", "--", "https://github.com/acme/widget.git", str(harness.workspace.resolve() / "widget")
        )

    @pytest.mark.asyncio
    async def test_clone_existing_links_codebase(self, harness, handler):
        first = await fresh(harness, "a")
        second = await fresh(harness, "b")
        await handler.handle(first, "/clone https://github.com/acme/widget")

        result = await handler.handle(second, "/clone https://github.com/acme/widget")

        assert result.message.startswith("Repository already cloned.")
        linked = await harness.conversations.get(second.id)
        assert linked.codebase_id == (await harness.conversations.get(first.id)).codebase_id

    @pytest.mark.asyncio
    async def test_clone_failure_is_reported(self, harness, handler, monkeypatch):
        async def failing_git(*args, cwd=None):
            raise GitCommandError("repository not found")

        monkeypatch.setattr(command_module, "run_git", failing_git)

        result = await handler.handle(await fresh(harness), "/clone https://github.com/acme/gone")

        assert result.success is False
        assert "repository not found" in result.message

    @pytest.mark.asyncio
    async def test_repos_and_switch_by_number(self, harness, handler):
        (harness.workspace / "alpha").mkdir()
        (harness.workspace / "beta").mkdir()
        conversation = await fresh(harness)

        listing = await handler.handle(conversation, "/repos")
        switched = await handler.handle(conversation, "/repo 2")

        assert "1. alpha" in listing.message
        assert "2. beta" in listing.message
        assert switched.message.startswith("Switched to: beta")
        updated = await harness.conversations.get(conversation.id)
        assert (await harness.codebases.get(updated.codebase_id)).name == "beta"

    @pytest.mark.asyncio
    async def test_new_topic_creates_project(self, harness, handler, git_calls):
        conversation = await fresh(harness)

        result = await handler.handle(conversation, "/new-topic Github Search Agent")

        assert result.success is True
        assert (harness.workspace / "github-search-agent").is_dir()
        assert git_calls[0][0] == "init"
        updated = await harness.conversations.get(conversation.id)
        assert (await harness.codebases.get(updated.codebase_id)).name == "github-search-agent"


class TestCommandsAndTemplates:
    @pytest.mark.asyncio
    async def test_command_set_and_list(self, harness, handler):
        conversation = await fresh(harness)
        await handler.handle(conversation, "/new-topic demo")
        conversation = await harness.conversations.get(conversation.id)

        result = await handler.handle(conversation, "/command-set hello cmds/hello.md Say hello to $1")
        listing = await handler.handle(conversation, "/commands")

        assert result.success is True
        assert (harness.workspace / "demo" / "cmds" / "hello.md").read_text() == "Say hello to $1"
        assert "hello - cmds/hello.md" in listing.message

    @pytest.mark.asyncio
    async def test_load_commands_recursively(self, harness, handler):
        conversation = await fresh(harness)
        await handler.handle(conversation, "/new-topic demo")
        conversation = await harness.conversations.get(conversation.id)
        folder = harness.workspace / "demo" / ".agents" / "commands"
        (folder / "nested").mkdir(parents=True)
        (folder / "plan.md").write_text("Plan")
        (folder / "nested" / "ship.md").write_text("Ship")

        result = await handler.handle(conversation, "/load-commands .agents/commands")

        assert result.message == "Loaded 2 commands recursively: plan, ship"
        codebase = await harness.codebases.get(conversation.codebase_id)
        assert codebase.commands["ship"].path == ".agents/commands/nested/ship.md"

    @pytest.mark.asyncio
    async def test_template_add_list_delete(self, harness, handler):
        conversation = await fresh(harness)
        await handler.handle(conversation, "/new-topic demo")
        conversation = await harness.conversations.get(conversation.id)
        (harness.workspace / "demo" / "review.md").write_text(
            "---\ndescription: Review code\n---\nReview $1"
        )

        added = await handler.handle(conversation, "/template-add review review.md")
        listing = await handler.handle(conversation, "/templates")
        deleted = await handler.handle(conversation, "/template-delete review")

        assert added.success is True
        assert "/review - Review code" in listing.message
        assert deleted.message == "Template 'review' deleted."
        assert await harness.templates.get("review") is None


class TestResume:
    @pytest.mark.asyncio
    async def test_resume_without_history(self, harness, handler):
        result = await handler.handle(await fresh(harness), "/resume")
        assert result.message == "📜 No previous messages found. Starting fresh!"

    @pytest.mark.asyncio
    async def test_resume_loads_history_into_new_session(self, harness, handler):
        conversation = await fresh(harness)
        old = await harness.sessions.create(conversation.id, "claude")
        await harness.messages.create(conversation.id, "telegram", None, "app", "user", "q1")
        await harness.messages.create(conversation.id, "telegram", None, "app", "assistant", "a1")

        result = await handler.handle(conversation, "/resume")

        assert "Loaded last 2 messages" in result.message
        assert "1 user messages" in result.message
        session = await harness.sessions.get_active(conversation.id)
        assert session.id != old.id
        assert session.metadata[RESUMED_WITH_HISTORY] is True
        assert session.metadata[HISTORY_MESSAGE_COUNT] == 2
        assert "q1" in session.metadata[HISTORY_CONTEXT]
        assert session.metadata[MCP_CONFIG_HASH] == harness.mcp.config_hash()


class TestWorktrees:
    @pytest.mark.asyncio
    async def test_create_and_remove(self, harness, handler, git_calls):
        conversation = await fresh(harness)
        await handler.handle(conversation, "/new-topic demo")
        conversation = await harness.conversations.get(conversation.id)

        created = await handler.handle(conversation, "/worktree create feat-1")
        conversation = await harness.conversations.get(conversation.id)
        again = await handler.handle(conversation, "/worktree create feat-2")
        removed = await handler.handle(conversation, "/worktree remove")

        repo = harness.workspace.resolve() / "demo"
        assert created.success is True
        assert conversation.worktree_path == str(repo / "worktrees" / "feat-1")
        assert again.message.startswith("Already using worktree: worktrees/feat-1")
        assert removed.message.startswith("Worktree removed: worktrees/feat-1")
        final = await harness.conversations.get(conversation.id)
        assert final.worktree_path is None
        assert final.cwd == str(repo)

    @pytest.mark.asyncio
    async def test_branch_name_validation(self, harness, handler):
        conversation = await fresh(harness)
        await handler.handle(conversation, "/new-topic demo")
        conversation = await harness.conversations.get(conversation.id)

        result = await handler.handle(conversation, "/worktree create bad/name")

        assert result.success is False
        assert "letters, numbers" in result.message


class TestMcp:
    @pytest.mark.asyncio
    async def test_add_changes_hash(self, harness, handler, monkeypatch):
        async def ok_run(cmd):
            return True, ""

        monkeypatch.setattr(harness.mcp, "_run", ok_run)
        conversation = await fresh(harness)
        before = harness.mcp.config_hash()

        added = await handler.handle(conversation, "/mcp add fs @scope/fs ROOT=/w")
        listing = await handler.handle(conversation, "/mcp")
        bad = await handler.handle(conversation, "/mcp add fs @scope/fs NOVALUE")

        assert added.success is True
        assert harness.mcp.config_hash() != before
        assert "- fs: @scope/fs (env: ROOT)" in listing.message
        assert bad.success is False
