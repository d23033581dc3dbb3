"""Per-app file watching with debounced change events."""

from __future__ import annotations

import fnmatch
import os
import queue
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

FILE_WATCH_DEBOUNCE = 0.3
EVENT_QUEUE_SIZE = 64
_STOP_JOIN_TIMEOUT = 2.0

DEFAULT_IGNORE_DIRS = frozenset(
    {
        "node_modules",
        ".git",
        "dist",
        "build",
        ".next",
        "__pycache__",
        "venv",
        ".turbo",
        ".cache",
        "coverage",
        "tmp",
        ".idea",
        ".vscode",
    }
)

DEFAULT_IGNORE_PATTERNS = ("*.swp", "*.swo", "*~", ".DS_Store", "*.lock")


@dataclass
class WatchConfig:
    """What to watch for an app.

    ``paths`` are relative to the app's base directory (the base directory
    itself when empty); ``extensions`` such as ".go" restrict the files that
    count (all when empty); ``ignore`` holds directory names or glob patterns.
    """

    paths: list[str] = field(default_factory=list)
    extensions: list[str] = field(default_factory=list)
    ignore: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class FileWatchEvent:
    """A watched file changed."""

    app_name: str
    file_path: str
    time: datetime


def _extension(path: str) -> str:
    name = os.path.basename(path)
    dot = name.rfind(".")
    return name[dot:] if dot >= 0 else ""


class _Handler(FileSystemEventHandler):
    def __init__(self, watcher: _AppWatcher, root: str) -> None:
        super().__init__()
        self._watcher = watcher
        self._root = root

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        if event.event_type in ("created", "modified"):
            path = event.src_path
        elif event.event_type == "moved":
            path = event.dest_path
        else:
            return
        self._watcher.handle(self._root, os.fsdecode(path))


class _AppWatcher:
    def __init__(
        self,
        app_name: str,
        base_dir: str,
        config: WatchConfig | None,
        emit: Callable[[FileWatchEvent], None],
    ) -> None:
        self.app_name = app_name
        self.base_dir = base_dir
        self.extensions: set[str] = set()
        self.ignore_dirs: set[str] = set(DEFAULT_IGNORE_DIRS)
        self.ignore_patterns: list[str] = list(DEFAULT_IGNORE_PATTERNS)
        self.enabled = True
        self.restart_pending = False
        self.lock = threading.Lock()
        self._emit = emit
        self._timer: threading.Timer | None = None
        self._stopped = False
        self._observer = Observer()

        paths = ["."]
        if config is not None:
            self.extensions.update(config.extensions)
            for entry in config.ignore:
                if any(ch in entry for ch in "*?["):
                    self.ignore_patterns.append(entry)
                else:
                    self.ignore_dirs.add(entry)
            if config.paths:
                paths = list(config.paths)

        roots: list[str] = []
        for path in paths:
            root = os.path.normpath(os.path.join(base_dir, path))
            if root not in roots:
                roots.append(root)
        self.roots = roots

    def start(self) -> None:
        for root in self.roots:
            if os.path.isdir(root):
                self._observer.schedule(_Handler(self, root), root, recursive=True)
        self._observer.start()

    def stop(self) -> None:
        with self.lock:
            self._stopped = True
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
        self._observer.stop()
        if self._observer.is_alive():
            self._observer.join(_STOP_JOIN_TIMEOUT)

    def should_watch(self, path: str) -> bool:
        name = os.path.basename(path)
        if any(fnmatch.fnmatchcase(name, pattern) for pattern in self.ignore_patterns):
            return False
        return not self.extensions or _extension(path) in self.extensions

    def in_ignored_dir(self, root: str, path: str) -> bool:
        relative = os.path.relpath(os.path.dirname(path), root)
        if relative == ".":
            return False
        return any(part in self.ignore_dirs for part in Path(relative).parts)

    def handle(self, root: str, path: str) -> None:
        if self.in_ignored_dir(root, path) or not self.should_watch(path):
            return
        with self.lock:
            if self._stopped or not self.enabled or self.restart_pending:
                return
            if self._timer is not None:
                self._timer.cancel()
            timer = threading.Timer(FILE_WATCH_DEBOUNCE, self._fire, args=(path,))
            timer.daemon = True
            self._timer = timer
            timer.start()

    def _fire(self, path: str) -> None:
        with self.lock:
            if self._stopped:
                return
        self._emit(FileWatchEvent(app_name=self.app_name, file_path=path, time=datetime.now()))


class FileWatchManager:
    """Watches the files of registered apps and queues debounced change events."""

    def __init__(self) -> None:
        self._apps: dict[str, _AppWatcher] = {}
        self._events: queue.Queue[FileWatchEvent] = queue.Queue(maxsize=EVENT_QUEUE_SIZE)
        self._lock = threading.Lock()

    def _emit(self, event: FileWatchEvent) -> None:
        try:
            self._events.put_nowait(event)
        except queue.Full:
            pass

    def register(
        self, app_name: str, base_dir: str, config: WatchConfig | None = None
    ) -> None:
        """Start watching for app_name, replacing any existing watcher."""
        with self._lock:
            existing = self._apps.pop(app_name, None)
            if existing is not None:
                existing.stop()
            watcher = _AppWatcher(app_name, base_dir, config, self._emit)
            try:
                watcher.start()
            except Exception:
                watcher.stop()
                raise
            self._apps[app_name] = watcher

    def unregister(self, app_name: str) -> None:
        """Stop watching for app_name."""
        with self._lock:
            watcher = self._apps.pop(app_name, None)
        if watcher is not None:
            watcher.stop()

    def _get(self, app_name: str) -> _AppWatcher | None:
        with self._lock:
            return self._apps.get(app_name)

    def toggle(self, app_name: str) -> bool:
        """Flip whether watching is enabled; return the new state."""
        watcher = self._get(app_name)
        if watcher is None:
            return False
        with watcher.lock:
            watcher.enabled = not watcher.enabled
            return watcher.enabled

    def set_enabled(self, app_name: str, enabled: bool) -> None:
        """Enable or disable watching for app_name."""
        watcher = self._get(app_name)
        if watcher is None:
            return
        with watcher.lock:
            watcher.enabled = enabled

    def set_restart_in_flight(self, app_name: str, in_flight: bool) -> None:
        """Suppress change events while a restart is in progress."""
        watcher = self._get(app_name)
        if watcher is None:
            return
        with watcher.lock:
            watcher.restart_pending = in_flight

    def is_enabled(self, app_name: str) -> bool:
        """Whether watching is enabled for app_name."""
        watcher = self._get(app_name)
        if watcher is None:
            return False
        with watcher.lock:
            return watcher.enabled

    def has_watch(self, app_name: str) -> bool:
        """Whether app_name has a registered watcher."""
        return self._get(app_name) is not None

    def next_event(self, timeout: float = 0.0) -> FileWatchEvent | None:
        """The next change event, waiting up to timeout seconds; None if none."""
        try:
            if timeout <= 0:
                return self._events.get_nowait()
            return self._events.get(timeout=timeout)
        except queue.Empty:
            return None

    def stop_all(self) -> None:
        """Stop every watcher."""
        with self._lock:
            watchers = list(self._apps.values())
            self._apps.clear()
        for watcher in watchers:
            watcher.stop()