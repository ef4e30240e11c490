"""External tool (MCP server) configuration, registered through the Claude Code CLI.

Servers are registered with ``claude mcp add/remove -s user`` and tracked in a
local JSON file. The digest of that file's contents is stamped onto every new
assistant session; a session whose stamp no longer matches is not resumed.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import shutil
from pathlib import Path

from remote_agent.log import get_logger

logger = get_logger(__name__)

_HASH_LENGTH = 16


class McpManager:
    """Tracks MCP server registrations and exposes a stable configuration hash.

    Workflow:
      1. ``add_server`` runs ``claude mcp add -s user ...`` to register globally.
      2. Server metadata is saved to the tracking file.
      3. ``remove_server`` runs ``claude mcp remove -s user ...`` and deletes
         the tracking entry.
      4. ``config_hash`` digests the tracked servers; any add/remove changes it.
    """

    def __init__(self, config_path: str | Path, cli_path: str = "claude") -> None:
        self._config_path = Path(config_path)
        self._cli_path = shutil.which(cli_path) or cli_path
        self._servers: dict[str, dict] = {}
        self._load()

    # ── persistence ─────────────────────────────────────────────

    def _load(self) -> None:
        if not self._config_path.exists():
            return
        try:
            self._servers = json.loads(self._config_path.read_text(encoding="utf-8"))
            logger.info("mcp_config_loaded", count=len(self._servers))
        except (json.JSONDecodeError, OSError) as e:
            logger.error("mcp_config_load_error", error=str(e))
            self._servers = {}

    def _save(self) -> None:
        self._config_path.parent.mkdir(parents=True, exist_ok=True)
        self._config_path.write_text(
            json.dumps(self._servers, indent=2, ensure_ascii=False),
            encoding="utf-8",
        )

    # ── public API ──────────────────────────────────────────────

    def config_hash(self) -> str:
        """Digest of the tracked server configuration, independent of key order."""
        canonical = json.dumps(self._servers, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:_HASH_LENGTH]

    async def add_server(
        self,
        name: str,
        package: str,
        env: dict[str, str] | None = None,
    ) -> str:
        """Register an MCP server via the Claude CLI and track it locally."""
        ok, output = await self._run(self._build_add_command(name, package, env))
        if not ok:
            return f"Failed to add MCP server '{name}': {output}"

        self._servers[name] = {"package": package}
        if env:
            self._servers[name]["env"] = env
        self._save()
        logger.info("mcp_server_added", name=name, package=package, config_hash=self.config_hash())
        return f"MCP server '{name}' added. New sessions will start with the updated tools."

    async def remove_server(self, name: str) -> str:
        """Unregister an MCP server from the Claude CLI and remove tracking."""
        if name not in self._servers:
            return f"MCP server '{name}' not found."

        ok, output = await self._run([self._cli_path, "mcp", "remove", "-s", "user", name])
        if not ok:
            return f"Failed to remove MCP server '{name}': {output}"

        del self._servers[name]
        self._save()
        logger.info("mcp_server_removed", name=name, config_hash=self.config_hash())
        return f"MCP server '{name}' removed."

    def list_servers(self) -> str:
        if not self._servers:
            return "No MCP servers configured."
        lines: list[str] = []
        for name, cfg in self._servers.items():
            pkg = cfg.get("package", "?")
            env_keys = ", ".join(cfg.get("env", {}).keys())
            env_info = f" (env: {env_keys})" if env_keys else ""
            lines.append(f"- {name}: {pkg}{env_info}")
        return "\n".join(lines)

    async def ensure_servers(self) -> None:
        """Re-register all tracked servers on startup (idempotent)."""
        for name, cfg in list(self._servers.items()):
            package = cfg.get("package", "")
            if not package:
                continue
            ok, output = await self._run(self._build_add_command(name, package, cfg.get("env")))
            if ok:
                logger.info("mcp_server_ensured", name=name)
            else:
                logger.warning("mcp_server_ensure_failed", name=name, output=output)

    # ── helpers ─────────────────────────────────────────────────

    def _build_add_command(self, name: str, package: str, env: dict[str, str] | None) -> list[str]:
        cmd = [self._cli_path, "mcp", "add", "-s", "user", name]
        for key, val in (env or {}).items():
            cmd.extend(["-e", f"{key}={val}"])
        cmd.extend(["--", "npx", "-y", package])
        return cmd

    async def _run(self, cmd: list[str]) -> tuple[bool, str]:
        """Run a CLI command and return (success, output)."""
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=30)
            out = (stdout or b"").decode("utf-8", errors="replace").strip()
            err = (stderr or b"").decode("utf-8", errors="replace").strip()
            if proc.returncode != 0:
                return False, err or out
            return True, out or err
        except asyncio.TimeoutError:
            return False, "Command timed out."
        except FileNotFoundError:
            return False, f"CLI not found: {self._cli_path}"
