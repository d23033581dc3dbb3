"""Persistence of which apps were running in the last session."""

from __future__ import annotations

import json
import os
from collections.abc import Iterable
from pathlib import Path

STATE_FILE = ".humrun-state.json"


def state_path(project_root: str | os.PathLike[str]) -> Path:
    """Path of the session state file of a project."""
    return Path(project_root) / STATE_FILE


def save_session(project_root: str | os.PathLike[str], running_apps: Iterable[str]) -> None:
    """Write the names of the running apps to the state file."""
    data = json.dumps(list(running_apps), indent=2, ensure_ascii=False) + "\n"
    fd = os.open(state_path(project_root), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as handle:
        handle.write(data)


def load_session(project_root: str | os.PathLike[str]) -> list[str] | None:
    """The app names saved for a project, or None if none can be read."""
    try:
        data = json.loads(state_path(project_root).read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return None
    if not isinstance(data, list) or not all(isinstance(name, str) for name in data):
        return None
    return data


def clear_session(project_root: str | os.PathLike[str]) -> None:
    """Remove the state file, if there is one."""
    try:
        state_path(project_root).unlink()
    except OSError:
        pass