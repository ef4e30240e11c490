"""Batch-mode response assembly."""

from __future__ import annotations

import re

_VS16 = "\N{VARIATION SELECTOR-16}"

# 🔧 💭 📝 ✏️ 🗑️ 📂 🔍
TOOL_INDICATOR_PATTERN = re.compile(
    "^(?:"
    "\N{WRENCH}|\N{THOUGHT BALLOON}|\N{MEMO}|\N{PENCIL}" + _VS16 + "|"
    "\N{WASTEBASKET}" + _VS16 + "|\N{OPEN FILE FOLDER}|\N{LEFT-POINTING MAGNIFYING GLASS}"
    ")"
)

MESSAGE_SEPARATOR = "\n\n---\n\n"


def build_batch_message(assistant_messages: list[str]) -> str:
    """Join assistant texts and drop sections that narrate tool usage.

    Falls back to the unfiltered text when every section is tool narration.
    """
    texts = [text for text in assistant_messages if text.strip()]
    if not texts:
        return ""

    joined = MESSAGE_SEPARATOR.join(texts)
    sections = [
        section
        for section in joined.split("\n\n")
        if not TOOL_INDICATOR_PATTERN.match(section.strip())
    ]
    cleaned = "\n\n".join(sections).strip()
    return cleaned if cleaned else joined.strip()
