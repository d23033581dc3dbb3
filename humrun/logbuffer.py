"""Bounded, thread-safe buffer of process output lines."""

from __future__ import annotations

import re
import threading
from dataclasses import dataclass, field
from datetime import datetime

MAX_LOG_LINES = 5000
MAX_LINE_LENGTH = 8192
TRUNCATION_MARKER = "... [truncated]"

# Cursor and screen control sequences.
_CSI_CONTROL_RE = re.compile(r"\x1b\[\??[0-9;]*[HABCDEFGJKSTfhlr]")
# Operating-system command sequences.
_OSC_RE = re.compile(r"\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)")
# Escapes that are not CSI sequences.
_NON_CSI_RE = re.compile(r"\x1b[^\[]\S?")
# Colour and style sequences.
_ANSI_RE = re.compile(r"\x1b\[[0-9;]*[a-zA-Z]")
_NEWLINE_RE = re.compile(r"\r\n|\r|\n")


@dataclass
class LogLine:
    """A single line of process output."""

    text: str
    timestamp: datetime | None = None
    is_stderr: bool = False


def split_lines(text: str) -> list[str]:
    """Split on CRLF, LF or CR; a trailing terminator yields no empty line."""
    if not text:
        return []
    parts = _NEWLINE_RE.split(text)
    if parts[-1] == "":
        parts.pop()
    return parts


def sanitize_line(text: str) -> str:
    """Remove cursor control, OSC and stray escapes, keeping colour codes."""
    text = _CSI_CONTROL_RE.sub("", text)
    text = _OSC_RE.sub("", text)
    text = text.replace("\r", "")
    return _NON_CSI_RE.sub("", text)


def strip_ansi(text: str) -> str:
    """Remove all ANSI colour and style escape sequences."""
    return _ANSI_RE.sub("", text)


@dataclass
class LogBuffer:
    """Output lines of one process, capped at MAX_LOG_LINES, with scroll state."""

    lines: list[LogLine] = field(default_factory=list)
    scroll_pos: int = 0
    follow: bool = True
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def append(self, text: str, is_stderr: bool = False) -> list[int]:
        """Add text split into lines; return the indices of the lines kept."""
        with self._lock:
            indices: list[int] = []
            for raw in split_lines(text):
                if not raw:
                    continue
                clean = sanitize_line(raw)
                if not clean:
                    continue
                if len(clean) > MAX_LINE_LENGTH:
                    clean = clean[:MAX_LINE_LENGTH] + TRUNCATION_MARKER
                indices.append(len(self.lines))
                self.lines.append(LogLine(clean, datetime.now(), is_stderr))

            excess = len(self.lines) - MAX_LOG_LINES
            if excess > 0:
                del self.lines[:excess]
                self.scroll_pos = min(max(self.scroll_pos - excess, 0), len(self.lines))
                indices = [i - excess for i in indices if i >= excess]
            return indices

    def __len__(self) -> int:
        with self._lock:
            return len(self.lines)

    def clear(self) -> None:
        """Drop all lines and return to follow mode."""
        with self._lock:
            self.lines.clear()
            self.scroll_pos = 0
            self.follow = True

    def _scroll_to_locked(self, pos: int, view_height: int) -> None:
        max_scroll = max(len(self.lines) - view_height, 0)
        pos = min(max(pos, 0), max_scroll)
        self.scroll_pos = pos
        self.follow = pos >= max_scroll

    def scroll_to(self, pos: int, view_height: int) -> None:
        """Set the scroll position, clamped to the valid range."""
        with self._lock:
            self._scroll_to_locked(pos, view_height)

    def scroll_by(self, delta: int, view_height: int) -> None:
        """Move the scroll position by delta lines."""
        with self._lock:
            self._scroll_to_locked(self.scroll_pos + delta, view_height)

    def snap_to_bottom(self, view_height: int) -> None:
        """Scroll to the end and enable follow mode."""
        with self._lock:
            self.scroll_pos = max(len(self.lines) - view_height, 0)
            self.follow = True

    def snapshot(self) -> tuple[list[LogLine], int, bool]:
        """Return a copy of the lines with the scroll position and follow flag."""
        with self._lock:
            return list(self.lines), self.scroll_pos, self.follow

    def get_line(self, idx: int) -> LogLine | None:
        """Return the line at idx, or None when idx is out of range."""
        with self._lock:
            if 0 <= idx < len(self.lines):
                return self.lines[idx]
            return None

    def get_lines_from(self, idx: int) -> list[str]:
        """Return line texts from idx up to, not including, the first blank line."""
        with self._lock:
            result: list[str] = []
            for line in self.lines[max(idx, 0):]:
                if not strip_ansi(line.text).strip():
                    break
                result.append(line.text)
            return result