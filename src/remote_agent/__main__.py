"""CLI entry point for remote-agent."""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys

from remote_agent.app import RemoteAgentApp
from remote_agent.config import load_config
from remote_agent.log import setup_logging
from remote_agent.messenger.console import ConsoleAdapter


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="remote-agent",
        description="Drive AI coding assistants from chat platforms",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # start command
    start_parser = subparsers.add_parser("start", help="Start all configured bots")
    start_parser.add_argument(
        "-c", "--config", default="config.yaml", help="Path to config file"
    )
    start_parser.add_argument(
        "-e", "--env", default=".env", help="Path to .env file"
    )
    start_parser.add_argument(
        "--json-logs", action="store_true", help="Emit JSON log lines instead of console output"
    )

    # config-check command
    check_parser = subparsers.add_parser("config-check", help="Validate configuration")
    check_parser.add_argument(
        "-c", "--config", default="config.yaml", help="Path to config file"
    )
    check_parser.add_argument(
        "-e", "--env", default=".env", help="Path to .env file"
    )

    # send command
    send_parser = subparsers.add_parser(
        "send", help="Send one message through the orchestrator and print the replies"
    )
    send_parser.add_argument("message", help="Message text, e.g. '/status' or a question")
    send_parser.add_argument(
        "-c", "--config", default="config.yaml", help="Path to config file"
    )
    send_parser.add_argument(
        "-e", "--env", default=".env", help="Path to .env file"
    )
    send_parser.add_argument(
        "--conversation", default="local", help="Conversation id to use (default: local)"
    )
    send_parser.add_argument(
        "--mode", choices=["stream", "batch"], default="stream", help="Reply streaming mode"
    )

    args = parser.parse_args()

    if args.command is None:
        # Default to start
        args.command = "start"
        args.config = "config.yaml"
        args.env = ".env"
        args.json_logs = False

    if args.command == "config-check":
        _check_config(args.config, args.env)
    elif args.command == "send":
        _send(args.config, args.env, args.message, args.conversation, args.mode)
    elif args.command == "start":
        _run(args.config, args.env, args.json_logs)


def _check_config(config_path: str, env_path: str) -> None:
    """Validate configuration and print summary."""
    try:
        config = load_config(config_path, env_path)
        print(f"Configuration valid: {config_path}")
        print(f"  Data directory: {config.data_dir}")
        print(f"  Workspace: {config.workspace_path}")
        print(f"  Default assistant: {config.default_ai_assistant}")
        print(f"  Bots configured: {len(config.bots)}")
        for bot in config.bots:
            print(f"    - {bot.id} ({bot.platform}) [{bot.streaming_mode}]")
        print(f"  Storage: {config.storage.db_path}")
        print(f"  Claude CLI: {config.claude_code.cli_path} (model={config.claude_code.model or 'default'})")
        print(f"  Codex CLI: {config.codex.cli_path}")
        print(f"  Auto-research: {'on' if config.auto_research.enabled else 'off'}")
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)


def _load_or_exit(config_path: str, env_path: str):
    try:
        return load_config(config_path, env_path)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        print("Run 'python install.py' first or copy config.example.yaml to config.yaml")
        sys.exit(1)
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)


def _send(config_path: str, env_path: str, message: str, conversation_id: str, mode: str) -> None:
    """Handle a single message with console output, without starting any bot."""
    config = _load_or_exit(config_path, env_path)
    setup_logging(config.log_level)

    async def _async_send() -> None:
        app = RemoteAgentApp(config)
        await app.initialize()
        try:
            adapter = ConsoleAdapter(streaming_mode=mode)
            await app.orchestrator.handle_message(adapter, conversation_id, message)
        finally:
            await app.db.close()

    asyncio.run(_async_send())


def _run(config_path: str, env_path: str, json_logs: bool = False) -> None:
    """Load config and start the application."""
    config = _load_or_exit(config_path, env_path)
    setup_logging(config.log_level, json_output=json_logs)

    async def _async_main() -> None:
        loop = asyncio.get_running_loop()
        stop_event = asyncio.Event()

        def _signal_handler() -> None:
            stop_event.set()

        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, _signal_handler)
            except NotImplementedError:
                # Windows doesn't support add_signal_handler
                signal.signal(sig, lambda s, f: _signal_handler())

        app = RemoteAgentApp(config)
        await app.start()
        try:
            await stop_event.wait()
        finally:
            await app.stop()

    asyncio.run(_async_main())


if __name__ == "__main__":
    main()
