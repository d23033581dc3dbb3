"""Captured errors, their structured form and per-process storage."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum

from humrun.logbuffer import LogBuffer, strip_ansi

MAX_STORED_ERRORS = 100


@dataclass
class SourceLocation:
    """A file:line:col reference."""

    file: str
    line: int
    column: int = 0

    def __str__(self) -> str:
        if self.column > 0:
            return f"{self.file}:{self.line}:{self.column}"
        return f"{self.file}:{self.line}"


class ErrorKind(IntEnum):
    """Origin of a parsed error."""

    GENERIC = 0
    V8 = 1
    TS_COMPILER = 2
    BUNDLER = 3


@dataclass
class ParsedError:
    """Structured information extracted from raw error lines."""

    kind: ErrorKind = ErrorKind.GENERIC
    error_type: str = ""
    message: str = ""
    location: SourceLocation | None = None
    stack_trace: list[str] = field(default_factory=list)
    raw_lines: list[str] = field(default_factory=list)
    plain_lines: list[str] = field(default_factory=list)

    def dedup_key(self) -> str:
        """Key used to group duplicates: error type and message."""
        return f"{self.error_type}:{self.message}"


@dataclass
class CapturedError:
    """The lines of one detected error."""

    timestamp: datetime
    lines: list[str]
    app_name: str = ""
    parsed: ParsedError | None = None
    dedup_key: str = ""


@dataclass
class ErrorGroup:
    """Occurrences of errors sharing a dedup key."""

    key: str
    count: int
    latest: CapturedError
    first_seen: datetime
    last_seen: datetime


class ErrorBuffer:
    """Thread-safe store of the most recent captured errors of one process."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.errors: list[CapturedError] = []

    def _store_locked(self, error: CapturedError) -> None:
        self.errors.append(error)
        if len(self.errors) > MAX_STORED_ERRORS:
            del self.errors[: len(self.errors) - MAX_STORED_ERRORS]

    def capture_error(self, log_buffer: LogBuffer, line_idx: int) -> None:
        """Capture lines from line_idx up to the next blank line."""
        lines = log_buffer.get_lines_from(line_idx)
        if not lines:
            return
        with self._lock:
            self._store_locked(CapturedError(timestamp=datetime.now(), lines=lines))

    def add_parsed_error(
        self, app_name: str, raw_lines: list[str], parsed: ParsedError | None
    ) -> None:
        """Store an error along with its parse result for deduplication."""
        if not raw_lines:
            return
        key = parsed.dedup_key() if parsed is not None else ""
        with self._lock:
            self._store_locked(
                CapturedError(
                    timestamp=datetime.now(),
                    lines=list(raw_lines),
                    app_name=app_name,
                    parsed=parsed,
                    dedup_key=key,
                )
            )

    def grouped_errors(self) -> list[ErrorGroup]:
        """Errors grouped by dedup key, in order of first occurrence."""
        with self._lock:
            return self._grouped_locked()

    def _grouped_locked(self) -> list[ErrorGroup]:
        groups: dict[str, ErrorGroup] = {}
        for i, error in enumerate(self.errors):
            key = error.dedup_key or f"_ungrouped_{i}"
            group = groups.get(key)
            if group is None:
                groups[key] = ErrorGroup(
                    key=key,
                    count=1,
                    latest=error,
                    first_seen=error.timestamp,
                    last_seen=error.timestamp,
                )
            else:
                group.count += 1
                group.latest = error
                group.last_seen = error.timestamp
        return list(groups.values())

    def snapshot(self) -> list[CapturedError]:
        """A copy of all captured errors."""
        with self._lock:
            return list(self.errors)

    def __len__(self) -> int:
        with self._lock:
            return len(self.errors)

    def unique_count(self) -> int:
        """Number of distinct error groups."""
        with self._lock:
            return len(self._grouped_locked())

    def last_error_text(self) -> str:
        """The most recent error as plain text, or an empty string."""
        with self._lock:
            if not self.errors:
                return ""
            return "\n".join(strip_ansi(line) for line in self.errors[-1].lines)

    def all_errors_text(self) -> str:
        """All errors as plain text, each under a numbered heading."""
        with self._lock:
            return "\n\n".join(
                f"--- Error {n} ---\n" + "\n".join(strip_ansi(line) for line in error.lines)
                for n, error in enumerate(self.errors, start=1)
            )

    def clear(self) -> None:
        """Remove all captured errors."""
        with self._lock:
            self.errors.clear()