"""Discord messenger adapter using discord.py v2+.

Each channel is a conversation. Messages inside a thread carry the parent
channel as ``parent_conversation_id`` so the thread inherits its project, and
the thread's recent history as ``thread_context``.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any

import discord
from discord.ext import commands

from remote_agent.core.types import Platform
from remote_agent.log import get_logger
from remote_agent.messenger.base import MessengerAdapter, split_message
from remote_agent.messenger.models import Attachment, IncomingMessage

logger = get_logger(__name__)

MAX_MESSAGE_LENGTH = 2000


class DiscordAdapter(MessengerAdapter):
    """Discord bot adapter using discord.py."""

    def __init__(self, bot_id: str, config: dict):
        super().__init__(bot_id, config)
        intents = discord.Intents.default()
        intents.message_content = True
        self._bot = commands.Bot(command_prefix="!", intents=intents)
        self._task: asyncio.Task[Any] | None = None
        self._ready = asyncio.Event()
        self._allowed_user_ids: set[int] = set(config.get("allowed_user_ids") or [])
        self._thread_context_limit: int = config.get("thread_context_limit", 20)

        # Register event handlers
        @self._bot.event
        async def on_ready() -> None:
            logger.info("discord_bot_ready", user=str(self._bot.user), bot_id=self.bot_id)
            self._ready.set()

        @self._bot.event
        async def on_message(message: discord.Message) -> None:
            if message.author == self._bot.user:
                return
            if message.author.bot:
                return
            await self._on_discord_message(message)

    @property
    def platform_type(self) -> str:
        return Platform.DISCORD

    async def start(self) -> None:
        token = self.config.get("token", "")
        if not token:
            raise ValueError(f"Discord bot token not configured for bot '{self.bot_id}'")

        self._task = asyncio.create_task(self._bot.start(token))
        # Wait for the bot to be ready
        try:
            await asyncio.wait_for(self._ready.wait(), timeout=30)
        except asyncio.TimeoutError:
            logger.warning("discord_ready_timeout", bot_id=self.bot_id)

        logger.info("discord_adapter_started", bot_id=self.bot_id)

    async def stop(self) -> None:
        await self._bot.close()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info("discord_adapter_stopped", bot_id=self.bot_id)

    async def _resolve_channel(self, conversation_id: str) -> Any:
        channel = self._bot.get_channel(int(conversation_id))
        if channel is None:
            try:
                channel = await self._bot.fetch_channel(int(conversation_id))
            except discord.DiscordException:
                logger.error("discord_channel_not_found", conversation_id=conversation_id)
                return None
        if not isinstance(channel, (discord.TextChannel, discord.DMChannel, discord.Thread)):
            return None
        return channel

    async def send_message(self, conversation_id: str, text: str) -> None:
        if not text:
            return
        channel = await self._resolve_channel(conversation_id)
        if channel is None:
            return
        for chunk in split_message(text, MAX_MESSAGE_LENGTH):
            await channel.send(chunk)

    async def send_typing_indicator(self, conversation_id: str) -> None:
        channel = self._bot.get_channel(int(conversation_id))
        if channel and hasattr(channel, "typing"):
            await channel.typing()  # type: ignore[union-attr]

    async def _fetch_thread_context(self, thread: discord.Thread, current: discord.Message) -> str | None:
        lines: list[str] = []
        async for previous in thread.history(limit=self._thread_context_limit, before=current):
            if previous.content:
                lines.append(f"{previous.author.display_name}: {previous.content}")
        if not lines:
            return None
        lines.reverse()  # history() yields newest first
        return "\n".join(lines)

    async def _on_discord_message(self, message: discord.Message) -> None:
        """Handle incoming Discord message (text and/or images)."""
        if not self._message_callback:
            return
        if self._allowed_user_ids and message.author.id not in self._allowed_user_ids:
            logger.info("discord_unauthorized_user", user_id=message.author.id)
            return

        text = message.content or ""
        if self._bot.user is not None:
            text = text.replace(self._bot.user.mention, "").strip()
        attachments: list[Attachment] = []

        for att in message.attachments:
            try:
                data = await att.read()
                media_type = att.content_type or "application/octet-stream"
                attachments.append(
                    Attachment(data=data, media_type=media_type, filename=att.filename)
                )
            except discord.DiscordException as e:
                logger.warning("discord_attachment_download_error", error=str(e))

        # Skip if no text and no attachments
        if not text and not attachments:
            return

        parent_id: str | None = None
        thread_context: str | None = None
        if isinstance(message.channel, discord.Thread):
            parent_id = str(message.channel.parent_id) if message.channel.parent_id else None
            try:
                thread_context = await self._fetch_thread_context(message.channel, message)
            except discord.DiscordException as e:
                logger.warning("discord_thread_history_error", error=str(e))

        incoming = IncomingMessage(
            platform=Platform.DISCORD,
            bot_id=self.bot_id,
            conversation_id=str(message.channel.id),
            user_id=str(message.author.id),
            user_display_name=message.author.display_name,
            text=text,
            timestamp=message.created_at or datetime.now(timezone.utc),
            parent_conversation_id=parent_id,
            thread_context=thread_context,
            attachments=attachments,
        )

        try:
            await self._message_callback(incoming)
        except Exception as e:
            logger.error(
                "discord_handler_error", error=str(e), channel_id=str(message.channel.id)
            )
