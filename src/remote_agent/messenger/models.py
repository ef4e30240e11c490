"""Unified message models for all messenger platforms."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from remote_agent.core.types import Platform


@dataclass(frozen=True, slots=True)
class Attachment:
    """Binary attachment (image, file, etc.)."""

    data: bytes
    media_type: str  # e.g. "image/jpeg", "image/png"
    filename: str = "attachment"

    @property
    def is_image(self) -> bool:
        return self.media_type.startswith("image/")


@dataclass(frozen=True, slots=True)
class IncomingMessage:
    platform: Platform
    bot_id: str
    conversation_id: str
    user_id: str
    user_display_name: str
    text: str
    timestamp: datetime
    parent_conversation_id: Optional[str] = None  # channel a thread was opened from
    thread_context: Optional[str] = None  # earlier messages of that thread
    attachments: list[Attachment] = field(default_factory=list)

    @property
    def images(self) -> list[Attachment]:
        return [att for att in self.attachments if att.is_image]
