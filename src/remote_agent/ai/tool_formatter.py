"""Human-readable rendering of assistant tool calls for chat platforms."""

from __future__ import annotations

from typing import Any, Optional

_MAX_DETAIL_LENGTH = 100

# Input keys checked in order for the one-line detail under the tool name
_DETAIL_KEYS = ("command", "file_path", "path", "pattern", "url", "query", "description")


def _truncate(text: str, limit: int = _MAX_DETAIL_LENGTH) -> str:
    text = " ".join(text.split())
    return text if len(text) <= limit else text[: limit - 3] + "..."


def format_tool_call(tool_name: Optional[str], tool_input: Optional[dict[str, Any]] = None) -> str:
    """Format a tool invocation as ``🔧 NAME`` followed by an optional detail line."""
    header = f"🔧 {(tool_name or 'tool').upper()}"
    if not tool_input:
        return header

    for key in _DETAIL_KEYS:
        value = tool_input.get(key)
        if isinstance(value, str) and value.strip():
            return f"{header}\n{_truncate(value)}"
    return header
