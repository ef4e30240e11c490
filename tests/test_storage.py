"""Repository tests against a real SQLite file."""

import sqlite3

import pytest

from remote_agent.storage.codebase_repo import CodebaseRepository
from remote_agent.storage.conversation_repo import ConversationRepository
from remote_agent.storage.message_repo import MessageRepository, format_messages_as_context
from remote_agent.storage.models import CommandDefinition
from remote_agent.storage.seed import extract_description, seed_default_commands
from remote_agent.storage.session_repo import SessionRepository
from remote_agent.storage.template_repo import TemplateRepository


class TestConversationRepository:
    @pytest.mark.asyncio
    async def test_get_or_create_is_idempotent(self, db):
        repo = ConversationRepository(db)
        first = await repo.get_or_create("telegram", "100")
        second = await repo.get_or_create("telegram", "100")
        other_platform = await repo.get_or_create("discord", "100")

        assert first.id == second.id
        assert other_platform.id != first.id
        assert first.ai_assistant_type == "claude"

    @pytest.mark.asyncio
    async def test_assistant_type_follows_codebase(self, db):
        codebase = await CodebaseRepository(db).create("svc", "/w/svc", ai_assistant_type="codex")
        conversation = await ConversationRepository(db).get_or_create(
            "telegram", "7", codebase_id=codebase.id
        )
        assert conversation.ai_assistant_type == "codex"
        assert conversation.codebase_id == codebase.id

    @pytest.mark.asyncio
    async def test_update_and_clear(self, db):
        repo = ConversationRepository(db)
        conversation = await repo.get_or_create("telegram", "1")

        await repo.update(conversation.id, cwd="/w/a", worktree_path="/w/a/worktrees/x")
        updated = await repo.get(conversation.id)
        assert updated.cwd == "/w/a"
        assert updated.worktree_path == "/w/a/worktrees/x"

        await repo.update(conversation.id, worktree_path=None)
        assert (await repo.get(conversation.id)).worktree_path is None

    @pytest.mark.asyncio
    async def test_update_rejects_unknown_fields(self, db):
        repo = ConversationRepository(db)
        conversation = await repo.get_or_create("telegram", "1")
        with pytest.raises(ValueError):
            await repo.update(conversation.id, platform_type="discord")


class TestSessionRepository:
    @pytest.mark.asyncio
    async def test_create_supersedes_active_session(self, db):
        conversation = await ConversationRepository(db).get_or_create("telegram", "1")
        repo = SessionRepository(db)

        first = await repo.create(conversation.id, "claude", metadata={"mcpConfigHash": "h"})
        second = await repo.create(conversation.id, "claude")

        assert (await repo.get(first.id)).active is False
        assert (await repo.get(first.id)).ended_at is not None
        assert (await repo.get_active(conversation.id)).id == second.id
        assert first.metadata == {"mcpConfigHash": "h"}

    @pytest.mark.asyncio
    async def test_only_one_active_session_allowed(self, db):
        conversation = await ConversationRepository(db).get_or_create("telegram", "1")
        await SessionRepository(db).create(conversation.id, "claude")

        with pytest.raises(sqlite3.IntegrityError):
            await db.conn.execute(
                """INSERT INTO sessions (id, conversation_id, ai_assistant_type)
                   VALUES ('manual', ?, 'claude')""",
                (conversation.id,),
            )

    @pytest.mark.asyncio
    async def test_metadata_patch_merges_and_removes(self, db):
        conversation = await ConversationRepository(db).get_or_create("telegram", "1")
        repo = SessionRepository(db)
        session = await repo.create(conversation.id, "claude", metadata={"a": 1, "b": 2})

        merged = await repo.update_metadata(session.id, {"b": None, "c": "x"})

        assert merged == {"a": 1, "c": "x"}
        assert (await repo.get(session.id)).metadata == {"a": 1, "c": "x"}

    @pytest.mark.asyncio
    async def test_update_metadata_unknown_session(self, db):
        with pytest.raises(LookupError):
            await SessionRepository(db).update_metadata("missing", {"a": 1})

    @pytest.mark.asyncio
    async def test_assistant_session_id_and_deactivate(self, db):
        conversation = await ConversationRepository(db).get_or_create("telegram", "1")
        repo = SessionRepository(db)
        session = await repo.create(conversation.id, "claude")

        await repo.update_assistant_session_id(session.id, "remote-9")
        await repo.deactivate(session.id)

        stored = await repo.get(session.id)
        assert stored.assistant_session_id == "remote-9"
        assert stored.active is False
        assert await repo.get_active(conversation.id) is None


class TestCodebaseRepository:
    @pytest.mark.asyncio
    async def test_commands_round_trip(self, db):
        repo = CodebaseRepository(db)
        codebase = await repo.create("app", "/w/app", repository_url="https://github.com/o/app")

        await repo.register_command(
            codebase.id, "prime", CommandDefinition(".claude/commands/prime.md", "Prime it")
        )
        await repo.register_command(codebase.id, "plan", CommandDefinition("plan.md"))

        stored = await repo.get(codebase.id)
        assert set(stored.commands) == {"prime", "plan"}
        assert stored.commands["prime"].description == "Prime it"
        assert (await repo.find_by_default_cwd("/w/app")).id == codebase.id

    @pytest.mark.asyncio
    async def test_delete(self, db):
        repo = CodebaseRepository(db)
        codebase = await repo.create("app", "/w/app")
        assert await repo.delete(codebase.id) is True
        assert await repo.delete(codebase.id) is False
        assert await repo.list_all() == []


class TestTemplateRepository:
    @pytest.mark.asyncio
    async def test_upsert_replaces_content(self, db):
        repo = TemplateRepository(db)
        await repo.upsert("router", "v1", "first")
        updated = await repo.upsert("router", "v2", "second")

        assert updated.content == "v2"
        assert [t.name for t in await repo.list_all()] == ["router"]
        assert await repo.delete("router") is True
        assert await repo.get("router") is None


class TestMessageRepository:
    @pytest.mark.asyncio
    async def test_history_is_oldest_first_and_limited(self, db):
        conversation = await ConversationRepository(db).get_or_create("telegram", "1")
        repo = MessageRepository(db)
        for i in range(5):
            await repo.create(conversation.id, "telegram", None, None, "user", f"m{i}")

        history = await repo.get_history(conversation.id, limit=3)

        assert [m.content for m in history] == ["m2", "m3", "m4"]

    @pytest.mark.asyncio
    async def test_format_messages_as_context(self, db):
        conversation = await ConversationRepository(db).get_or_create("telegram", "1")
        repo = MessageRepository(db)
        await repo.create(conversation.id, "telegram", None, "app", "user", "hi")
        await repo.create(conversation.id, "telegram", None, "app", "assistant", "hello")

        text = format_messages_as_context(await repo.get_history(conversation.id))

        assert text == "[User via telegram / app]\nhi\n\n[Assistant via telegram / app]\nhello"


class TestSeeding:
    def test_extract_description_from_front_matter(self):
        content = "---\ndescription: Plan a feature\nargument-hint: <name>\n---\n\nBody"
        assert extract_description(content) == "Plan a feature"
        assert extract_description("No front matter") is None

    @pytest.mark.asyncio
    async def test_seed_default_commands(self, db, tmp_path):
        commands_dir = tmp_path / "commands"
        commands_dir.mkdir()
        (commands_dir / "plan-feature.md").write_text("---\ndescription: Plan\n---\nBody $1")
        (commands_dir / "execute.md").write_text("Execute")
        (commands_dir / "notes.txt").write_text("ignored")
        repo = TemplateRepository(db)

        assert await seed_default_commands(repo, commands_dir) == 2
        assert (await repo.get("plan-feature")).description == "Plan"
        assert (await repo.get("execute")).description == f"From {commands_dir}"

    @pytest.mark.asyncio
    async def test_missing_directory_seeds_nothing(self, db, tmp_path):
        assert await seed_default_commands(TemplateRepository(db), tmp_path / "nope") == 0
