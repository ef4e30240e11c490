"""Telegram messenger adapter using python-telegram-bot v21+.

Forum topics are separate conversations: their id is ``<chat_id>:<thread_id>``.
Messages in a group's general chat (no topic) use the bare chat id and are
treated as unscoped.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from telegram import Update
from telegram.constants import ChatAction
from telegram.error import TelegramError
from telegram.ext import Application, MessageHandler as TGMessageHandler, filters

from remote_agent.core.types import Platform
from remote_agent.log import get_logger
from remote_agent.messenger.base import MessengerAdapter, split_message
from remote_agent.messenger.models import Attachment, IncomingMessage

logger = get_logger(__name__)

MAX_MESSAGE_LENGTH = 4096
MAX_TOPIC_NAME_LENGTH = 128


def parse_conversation_id(conversation_id: str) -> tuple[int, Optional[int]]:
    """Split ``chat[:thread]`` into Telegram chat and topic ids."""
    chat, _, thread = conversation_id.partition(":")
    return int(chat), int(thread) if thread else None


class TelegramAdapter(MessengerAdapter):
    """Telegram bot adapter using python-telegram-bot."""

    def __init__(self, bot_id: str, config: dict):
        super().__init__(bot_id, config)
        self._app: Application | None = None  # type: ignore[type-arg]
        self._allowed_user_ids: set[int] = set(config.get("allowed_user_ids") or [])

    @property
    def platform_type(self) -> str:
        return Platform.TELEGRAM

    def is_unscoped(self, conversation_id: str) -> bool:
        return ":" not in conversation_id

    async def start(self) -> None:
        token = self.config.get("token", "")
        if not token:
            raise ValueError(f"Telegram bot token not configured for bot '{self.bot_id}'")

        self._app = Application.builder().token(token).build()

        # Slash commands are routed by the orchestrator, so they arrive as plain text too
        self._app.add_handler(
            TGMessageHandler((filters.TEXT | filters.PHOTO), self._on_telegram_message)
        )

        await self._app.initialize()
        await self._app.start()
        await self._app.updater.start_polling(drop_pending_updates=True)  # type: ignore[union-attr]
        if self._allowed_user_ids:
            logger.info("telegram_user_whitelist", count=len(self._allowed_user_ids))
        logger.info("telegram_adapter_started", bot_id=self.bot_id)

    async def stop(self) -> None:
        if self._app:
            await self._app.updater.stop()  # type: ignore[union-attr]
            await self._app.stop()
            await self._app.shutdown()
            logger.info("telegram_adapter_stopped", bot_id=self.bot_id)

    async def send_message(self, conversation_id: str, text: str) -> None:
        if not self._app or not self._app.bot or not text:
            return

        chat_id, thread_id = parse_conversation_id(conversation_id)
        for chunk in split_message(text, MAX_MESSAGE_LENGTH):
            await self._app.bot.send_message(
                chat_id=chat_id,
                text=chunk,
                message_thread_id=thread_id,
            )

    async def send_typing_indicator(self, conversation_id: str) -> None:
        if self._app and self._app.bot:
            chat_id, thread_id = parse_conversation_id(conversation_id)
            await self._app.bot.send_chat_action(
                chat_id=chat_id, action=ChatAction.TYPING, message_thread_id=thread_id
            )

    async def create_topic(self, conversation_id: str, name: str) -> Optional[str]:
        if not self._app or not self._app.bot:
            return None
        chat_id, _ = parse_conversation_id(conversation_id)
        try:
            topic = await self._app.bot.create_forum_topic(
                chat_id=chat_id, name=name[:MAX_TOPIC_NAME_LENGTH]
            )
        except TelegramError as e:
            logger.warning("telegram_topic_create_failed", chat_id=chat_id, error=str(e))
            return None
        logger.info("telegram_topic_created", chat_id=chat_id, thread_id=topic.message_thread_id)
        return f"{chat_id}:{topic.message_thread_id}"

    def _is_authorized(self, user_id: Optional[int]) -> bool:
        if not self._allowed_user_ids:
            return True
        return user_id is not None and user_id in self._allowed_user_ids

    async def _on_telegram_message(self, update: Update, context: Any) -> None:
        """Handle incoming Telegram message (text and/or photo)."""
        if not update.message:
            return
        if not self._message_callback:
            return

        msg = update.message
        user_id = msg.from_user.id if msg.from_user else None
        if not self._is_authorized(user_id):
            logger.info("telegram_unauthorized_user", user_id=user_id)
            return

        text = msg.text or msg.caption or ""
        attachments: list[Attachment] = []

        # Download photo if present (highest resolution = last element)
        if msg.photo:
            try:
                photo = msg.photo[-1]
                tg_file = await photo.get_file()
                photo_bytes = await tg_file.download_as_bytearray()
                attachments.append(
                    Attachment(data=bytes(photo_bytes), media_type="image/jpeg", filename="photo.jpg")
                )
            except TelegramError as e:
                logger.warning("telegram_photo_download_error", error=str(e))

        # Skip if no text and no attachments
        if not text and not attachments:
            return

        conversation_id = str(msg.chat_id)
        if msg.is_topic_message and msg.message_thread_id:
            conversation_id = f"{msg.chat_id}:{msg.message_thread_id}"

        incoming = IncomingMessage(
            platform=Platform.TELEGRAM,
            bot_id=self.bot_id,
            conversation_id=conversation_id,
            user_id=str(user_id) if user_id is not None else "unknown",
            user_display_name=(
                msg.from_user.full_name if msg.from_user else "Unknown"
            ),
            text=text,
            timestamp=msg.date or datetime.now(timezone.utc),
            attachments=attachments,
        )

        try:
            await self._message_callback(incoming)
        except Exception as e:
            logger.error("telegram_handler_error", error=str(e), conversation_id=conversation_id)
