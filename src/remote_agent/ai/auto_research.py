"""Knowledge-base auto-research: spot external dependencies in a request and
tell the assistant to check its documentation index before answering.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from remote_agent.config import AutoResearchConfig
from remote_agent.log import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class Dependency:
    name: str
    docs_url: str
    category: str  # framework | library | service | database | platform
    keywords: tuple[str, ...]


KNOWN_DEPENDENCIES: tuple[Dependency, ...] = (
    # Frontend frameworks
    Dependency("React", "https://react.dev", "framework", ("react", "reactjs", "react.js")),
    Dependency("Vue", "https://vuejs.org", "framework", ("vue", "vuejs", "vue.js")),
    Dependency("Angular", "https://angular.io", "framework", ("angular", "angularjs")),
    Dependency("Svelte", "https://svelte.dev", "framework", ("svelte", "sveltekit")),
    Dependency("Next.js", "https://nextjs.org/docs", "framework", ("next", "nextjs", "next.js")),
    # Backend frameworks
    Dependency("Express", "https://expressjs.com", "framework", ("express", "expressjs", "express.js")),
    Dependency("FastAPI", "https://fastapi.tiangolo.com", "framework", ("fastapi", "fast api")),
    Dependency("Django", "https://docs.djangoproject.com", "framework", ("django",)),
    Dependency("Flask", "https://flask.palletsprojects.com", "framework", ("flask",)),
    Dependency("NestJS", "https://docs.nestjs.com", "framework", ("nest", "nestjs", "nest.js")),
    # Services and platforms
    Dependency("Supabase", "https://supabase.com/docs", "service", ("supabase",)),
    Dependency("Firebase", "https://firebase.google.com/docs", "service", ("firebase",)),
    Dependency("Stripe", "https://stripe.com/docs", "service", ("stripe",)),
    Dependency("Vercel", "https://vercel.com/docs", "platform", ("vercel",)),
    Dependency("AWS", "https://docs.aws.amazon.com", "platform", ("aws", "amazon web services")),
    # Databases
    Dependency("PostgreSQL", "https://www.postgresql.org/docs", "database", ("postgres", "postgresql", "pg")),
    Dependency("MongoDB", "https://www.mongodb.com/docs", "database", ("mongodb", "mongo")),
    Dependency("Redis", "https://redis.io/docs", "database", ("redis",)),
    Dependency("MySQL", "https://dev.mysql.com/doc", "database", ("mysql",)),
    # Libraries and tools
    Dependency("Discord.js", "https://discord.js.org", "library", ("discord.js", "discordjs", "discord bot")),
    Dependency("Telegraf", "https://telegraf.js.org", "library", ("telegraf", "telegram bot")),
    Dependency("Grammy", "https://grammy.dev", "library", ("grammy", "grammyjs")),
    Dependency("Socket.io", "https://socket.io/docs", "library", ("socket.io", "socketio", "websocket")),
    Dependency("Prisma", "https://www.prisma.io/docs", "library", ("prisma", "prisma orm")),
    Dependency("TypeORM", "https://typeorm.io", "library", ("typeorm", "type-orm")),
    Dependency("Zod", "https://zod.dev", "library", ("zod", "validation")),
    Dependency("Tailwind CSS", "https://tailwindcss.com/docs", "library", ("tailwind", "tailwindcss", "tailwind css")),
    Dependency("GraphQL", "https://graphql.org/learn", "library", ("graphql", "graph ql")),
    Dependency("Axios", "https://axios-http.com/docs", "library", ("axios",)),
    Dependency("Jest", "https://jestjs.io/docs", "library", ("jest", "jestjs")),
    Dependency("Vitest", "https://vitest.dev", "library", ("vitest",)),
)

# Deprecated or internal; never worth indexing
BLOCKLIST = ("angularjs", "backbone", "knockout", "internal-auth-lib", "company-framework")

# Too small or too legacy to warrant their own index
LOW_VALUE = ("lodash", "moment", "jquery")

_VALUABLE_CATEGORIES = frozenset({"framework", "library", "service", "database", "platform"})

_KEYWORD_PATTERNS = {
    dep.name: [re.compile(rf"\b{re.escape(keyword)}\b", re.IGNORECASE) for keyword in dep.keywords]
    for dep in KNOWN_DEPENDENCIES
}


def detect_dependencies(text: str) -> list[Dependency]:
    """Return known dependencies mentioned in *text*, in table order, without duplicates."""
    return [
        dep
        for dep in KNOWN_DEPENDENCIES
        if any(pattern.search(text) for pattern in _KEYWORD_PATTERNS[dep.name])
    ]


def is_worth_indexing(dep: Dependency) -> bool:
    names = [dep.name.lower(), *(k.lower() for k in dep.keywords)]
    for excluded in (*BLOCKLIST, *LOW_VALUE):
        if any(excluded in name for name in names):
            return False
    return bool(dep.docs_url) and dep.category in _VALUABLE_CATEGORIES


_STRATEGY_TEXT = {
    "background": """**Background Mode**: If documentation is missing:
- Inform user: "🔍 Detected [DEP] - indexing documentation in background..."
- Continue with response using available knowledge
- Documentation will be available for future requests

DO NOT block or wait for crawl completion.
""",
    "blocking": """**Blocking Mode**: If documentation is missing:
- Inform user: "🔍 Detected [DEP] - indexing documentation (this may take a moment)..."
- Wait for crawl completion (max {max_wait_ms}ms)
- Use freshly indexed documentation in your response
- If timeout, proceed with available knowledge and inform user

Example MCP call sequence:
1. Check sources: `mcp__archon__rag_get_available_sources()`
2. If missing, trigger crawl (if MCP tool available)
3. Wait for completion or timeout
4. Respond with indexed knowledge
""",
    "suggest": """**Suggest Mode**: If documentation is missing:
- Inform user: "📚 Would you like me to index [DEP] documentation for better context?"
- Wait for user confirmation
- Only crawl if user approves

Be helpful and explain the benefit of indexing.
""",
}


def build_instructions(dependencies: list[Dependency], strategy: str, max_wait_ms: int) -> str:
    dep_list = "\n".join(f"- {dep.name} ({dep.docs_url})" for dep in dependencies)
    text = f"""## 🔍 Archon Auto-Research Detected

The following external dependencies were detected in the user's request:

{dep_list}

**IMPORTANT: Before proceeding, check Archon knowledge base:**

1. Use `mcp__archon__rag_get_available_sources()` to list all indexed documentation sources
2. For each detected dependency:
   - Check if documentation is already indexed
   - If missing AND the dependency is mentioned in the request, inform the user
3. Based on crawl strategy: **{strategy.upper()}**

"""
    text += _STRATEGY_TEXT[strategy].format(max_wait_ms=max_wait_ms)
    return text + "\n---\n\n"


class AutoResearch:
    """Prompt-prefix generator driven by :class:`AutoResearchConfig`."""

    def __init__(self, config: AutoResearchConfig):
        self._config = config

    def is_enabled(self) -> bool:
        return self._config.enabled

    def instructions_for(self, message: str) -> Optional[str]:
        """Instructions to prepend for *message*, or None when nothing applies."""
        if not self._config.enabled:
            return None

        dependencies = [dep for dep in detect_dependencies(message) if is_worth_indexing(dep)]
        if not dependencies:
            return None

        logger.debug(
            "auto_research_dependencies",
            names=[dep.name for dep in dependencies],
            strategy=self._config.strategy,
        )
        return build_instructions(dependencies, self._config.strategy, self._config.max_wait_ms)
