#!/usr/bin/env python3
"""Cross-platform install script for remote-agent.

Usage:
    python install.py          # Production install
    python install.py --dev    # Development install (includes test tools)
"""

import os
import platform
import shutil
import subprocess
import sys

MIN_PYTHON = (3, 11)
ASSISTANT_CLIS = ("claude", "codex")


def main() -> None:
    # 1. Check Python version
    if sys.version_info < MIN_PYTHON:
        sys.exit(
            f"Error: Python {MIN_PYTHON[0]}.{MIN_PYTHON[1]}+ is required. "
            f"You have {sys.version_info.major}.{sys.version_info.minor}."
        )

    print(f"Python {sys.version_info.major}.{sys.version_info.minor} detected. OK.")

    dev = "--dev" in sys.argv
    project_dir = os.path.dirname(os.path.abspath(__file__))
    venv_dir = os.path.join(project_dir, ".venv")
    is_windows = platform.system() == "Windows"

    bin_dir = "Scripts" if is_windows else "bin"
    pip = os.path.join(venv_dir, bin_dir, "pip")

    # 2. Create virtual environment
    if not os.path.isdir(venv_dir):
        print("Creating virtual environment...")
        subprocess.check_call([sys.executable, "-m", "venv", venv_dir])
    else:
        print("Virtual environment already exists.")

    # 3. Install project
    subprocess.check_call([pip, "install", "--upgrade", "pip"])
    target = ".[test]" if dev else "."
    print(f"Installing remote-agent ({target})...")
    subprocess.check_call([pip, "install", "-e", target], cwd=project_dir)

    # 4. Assistant CLIs are external; only report what is missing
    for cli in ASSISTANT_CLIS:
        found = shutil.which(cli)
        print(f"  {cli} CLI: {found or 'NOT FOUND (install it to use this assistant)'}")

    # 5. Data and workspace directories
    for name in ("data", "workspace"):
        os.makedirs(os.path.join(project_dir, name), exist_ok=True)

    # 6. Copy config files if missing
    for src, dst in [("config.example.yaml", "config.yaml"), (".env.example", ".env")]:
        src_path = os.path.join(project_dir, src)
        dst_path = os.path.join(project_dir, dst)
        if not os.path.exists(dst_path) and os.path.exists(src_path):
            shutil.copy(src_path, dst_path)
            print(f"Created {dst} from {src}")
        elif os.path.exists(dst_path):
            print(f"{dst} already exists, skipping.")

    activate_cmd = r".\.venv\Scripts\activate" if is_windows else "source .venv/bin/activate"

    print()
    print("=" * 50)
    print("  remote-agent installation complete!")
    print("=" * 50)
    print()
    print("Next steps:")
    print("  1. Edit config.yaml - configure bots and workspace_path")
    print("  2. Edit .env - set TELEGRAM_BOT_TOKEN / DISCORD_BOT_TOKEN")
    print("  3. Activate the virtual environment:")
    print(f"       {activate_cmd}")
    print("  4. Check config, then start:")
    print("       remote-agent config-check")
    print("       remote-agent start")
    print("  5. Try one message locally:")
    print("       remote-agent send /help")
    print()


if __name__ == "__main__":
    main()
