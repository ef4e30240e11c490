"""Seed global command templates from a directory of markdown files."""

from __future__ import annotations

import re
from pathlib import Path

import yaml

from remote_agent.log import get_logger
from remote_agent.storage.template_repo import TemplateRepository

logger = get_logger(__name__)

_FRONTMATTER_PATTERN = re.compile(r"\A---\n(.*?)\n---", re.DOTALL)


def extract_description(content: str) -> str | None:
    """Return the ``description`` field of a markdown file's YAML front-matter, if any."""
    match = _FRONTMATTER_PATTERN.match(content)
    if not match:
        return None
    try:
        data = yaml.safe_load(match.group(1))
    except yaml.YAMLError:
        return None
    if isinstance(data, dict) and data.get("description"):
        return str(data["description"]).strip()
    return None


async def seed_default_commands(templates: TemplateRepository, commands_dir: str | Path) -> int:
    """Upsert every ``*.md`` file in *commands_dir* as a global template. Returns the count."""
    directory = Path(commands_dir)
    if not directory.is_dir():
        logger.info("builtin_commands_missing", path=str(directory))
        return 0

    count = 0
    for path in sorted(directory.glob("*.md")):
        content = path.read_text(encoding="utf-8")
        description = extract_description(content) or f"From {directory}"
        await templates.upsert(name=path.stem, content=content, description=description)
        logger.debug("builtin_template_loaded", name=path.stem)
        count += 1

    logger.info("builtin_templates_seeded", count=count, path=str(directory))
    return count
