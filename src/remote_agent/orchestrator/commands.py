"""Slash-command parsing, template variable substitution and prompt framing."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Mapping, Optional

# Handled by CommandHandler without touching an AI session
DETERMINISTIC_COMMANDS = frozenset(
    {
        "help",
        "status",
        "getcwd",
        "setcwd",
        "clone",
        "repos",
        "repo",
        "repo-remove",
        "reset",
        "reset-context",
        "resume",
        "command-set",
        "load-commands",
        "commands",
        "template-add",
        "template-list",
        "templates",
        "template-delete",
        "worktree",
        "new-topic",
        "mcp",
    }
)

# Allowed where the platform has no project context (e.g. Telegram general chat)
UNSCOPED_COMMANDS = frozenset({"new-topic", "help", "status", "commands", "templates"})

COMMAND_INVOKE = "command-invoke"
ROUTER_TEMPLATE = "router"
SYSTEM_CONTEXT_TEMPLATE = "system-context"

# execute command -> planning command whose session it must not inherit
WORKFLOW_TRANSITIONS: dict[str, str] = {
    "execute": "plan-feature",
    "execute-github": "plan-feature-github",
}

_VARIABLE_PATTERN = re.compile(r"\$(?:(\d+)|([A-Z][A-Z0-9_]*))")


@dataclass(frozen=True, slots=True)
class ParsedCommand:
    command: str
    args: list[str] = field(default_factory=list)


def parse_command(message: str) -> ParsedCommand:
    """Split ``/name arg1 arg2`` on whitespace.

    Quoting is not supported: an argument cannot contain spaces.
    """
    tokens = message.strip().removeprefix("/").split()
    if not tokens:
        return ParsedCommand(command="")
    return ParsedCommand(command=tokens[0], args=tokens[1:])


def substitute_variables(
    template: str,
    args: list[str],
    named: Optional[Mapping[str, str]] = None,
) -> str:
    """Fill ``$1``..``$N``, ``$ARGUMENTS`` and named ``$UPPER_CASE`` placeholders.

    A positional placeholder past the end of *args* becomes an empty string.
    ``$0`` and named placeholders with no value in *named* are left as written.
    """

    def _replace(match: re.Match) -> str:
        index, name = match.groups()
        if index is not None:
            position = int(index)
            if position == 0:
                return match.group(0)
            return args[position - 1] if position <= len(args) else ""
        if name == "ARGUMENTS":
            return " ".join(args)
        if named is not None and name in named:
            return named[name]
        return match.group(0)

    return _VARIABLE_PATTERN.sub(_replace, template)


def wrap_for_execution(command_name: str, content: str) -> str:
    """Frame a command body so the assistant acts on it instead of asking first."""
    return (
        f"The user invoked the `/{command_name}` command. "
        "Execute the following instructions immediately without asking for confirmation:\n\n"
        f"---\n\n{content}\n\n---\n\n"
        "Remember: The user already decided to run this command. Take action now."
    )


def append_issue_context(prompt: str, issue_context: Optional[str]) -> str:
    if not issue_context:
        return prompt
    return f"{prompt}\n\n---\n\n{issue_context}"


def prepend_thread_context(prompt: str, thread_context: Optional[str]) -> str:
    if not thread_context:
        return prompt
    return (
        "## Thread Context (previous messages)\n\n"
        f"{thread_context}\n\n---\n\n"
        f"## Current Request\n\n{prompt}"
    )


def requires_new_session(command_name: Optional[str], last_command: Optional[str]) -> bool:
    """True when *command_name* executes a plan produced by *last_command*."""
    if command_name is None:
        return False
    planning = WORKFLOW_TRANSITIONS.get(command_name)
    return planning is not None and planning == last_command
