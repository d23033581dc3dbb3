"""Desktop integration: clipboard and notifications."""

from __future__ import annotations

import subprocess
import sys
from pathlib import Path


def _is_wsl() -> bool:
    try:
        version = Path("/proc/version").read_text()
    except OSError:
        return False
    return "microsoft" in version.lower()


def _run_with_input(command: list[str], text: str) -> None:
    subprocess.run(command, input=text.encode(), check=True)


def copy_to_clipboard(text: str) -> None:
    """Copy text to the system clipboard.

    Raises OSError or subprocess.CalledProcessError when the clipboard tool
    is missing or fails.
    """
    if sys.platform == "darwin":
        _run_with_input(["pbcopy"], text)
    elif sys.platform == "win32":
        _run_with_input(["clip"], text)
    elif _is_wsl():
        _run_with_input(["clip.exe"], text)
    else:
        try:
            _run_with_input(["xclip", "-selection", "clipboard"], text)
            return
        except (OSError, subprocess.CalledProcessError):
            pass
        _run_with_input(["xsel", "--clipboard", "--input"], text)


def escape_applescript(text: str) -> str:
    """Escape text for an AppleScript string literal, dropping control characters."""
    text = text.replace("\\", "\\\\").replace('"', '\\"')
    text = text.replace("\n", " ").replace("\r", " ")
    return "".join(ch for ch in text if ord(ch) >= 32 or ch == "\t")


def send_notification(title: str, message: str) -> None:
    """Show a desktop notification; a no-op on unsupported platforms."""
    if sys.platform == "darwin":
        script = (
            f'display notification "{escape_applescript(message)}"'
            f' with title "{escape_applescript(title)}"'
        )
        subprocess.run(["osascript", "-e", script], check=True)
    elif sys.platform.startswith("linux"):
        subprocess.run(["notify-send", title, message], check=True)