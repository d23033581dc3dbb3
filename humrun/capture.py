"""Finding the extent of an error block around a triggering log line."""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import timedelta

from humrun.logbuffer import LogLine, strip_ansi

MAX_BACKWARD_LINES = 20
MAX_FORWARD_LINES = 50
MAX_TIMESTAMP_GAP = timedelta(seconds=2)

# Lines that continue an error across blank lines.
CONTINUATION_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^\s+at\s+"),
    re.compile(r"(?i)^\s*Caused by:"),
    re.compile(r"(?i)^\s+\d+\s*\|"),
    re.compile(r"^\s+~+$"),
    re.compile(r"^\s+\^"),
    re.compile(r"(?i)^\s+error\s+TS\d+"),
)

# Lines that start a new log entry.
BOUNDARY_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^\d{4}-\d{2}-\d{2}[T ]"),
    re.compile(r"^\[\d{2}:\d{2}:\d{2}"),
    re.compile(r"(?i)^\s*\[(INFO|WARN|DEBUG|TRACE)\]"),
    re.compile(r"(?i)^(INFO|WARN|DEBUG|TRACE)\s*[:\|]"),
)


@dataclass(frozen=True)
class CaptureRange:
    """A captured block of lines: start inclusive, end exclusive."""

    start: int
    end: int


def _is_blank(line: LogLine) -> bool:
    return not strip_ansi(line.text).strip()


def _gap_exceeded(earlier: LogLine, later: LogLine) -> bool:
    if earlier.timestamp is None or later.timestamp is None:
        return False
    return later.timestamp - earlier.timestamp > MAX_TIMESTAMP_GAP


class BoundaryDetector:
    """Decides where an error block starts and ends."""

    def __init__(
        self,
        boundaries: Iterable[re.Pattern[str]] | None = None,
        continuations: Iterable[re.Pattern[str]] | None = None,
    ) -> None:
        self.boundaries = tuple(boundaries) if boundaries is not None else BOUNDARY_PATTERNS
        self.continuations = (
            tuple(continuations) if continuations is not None else CONTINUATION_PATTERNS
        )

    def _is_boundary(self, text: str) -> bool:
        stripped = strip_ansi(text)
        return any(pattern.search(stripped) for pattern in self.boundaries)

    def _is_continuation(self, text: str) -> bool:
        stripped = strip_ansi(text)
        return any(pattern.search(stripped) for pattern in self.continuations)

    def capture_backward(self, lines: Sequence[LogLine], trigger_idx: int) -> int:
        """Index (inclusive) where the error starts, walking back from the trigger."""
        trigger = lines[trigger_idx]
        limit = max(trigger_idx - MAX_BACKWARD_LINES, 0)
        start = trigger_idx
        preceding = enumerate(lines[limit:trigger_idx], start=limit)
        for i, line in reversed(list(preceding)):
            if _is_blank(line):
                break
            if self._is_boundary(line.text) and not self._is_continuation(line.text):
                break
            if _gap_exceeded(line, trigger):
                break
            start = i
        return start

    def capture_forward(self, lines: Sequence[LogLine], trigger_idx: int) -> int:
        """Index (exclusive) where the error ends, walking forward from the trigger.

        A single blank line is crossed when a continuation line follows it;
        once continuation lines have been seen, the first other line ends it.
        """
        trigger = lines[trigger_idx]
        limit = min(trigger_idx + MAX_FORWARD_LINES, len(lines))
        end = trigger_idx + 1
        blank_count = 0
        in_continuation = False
        for i in range(trigger_idx + 1, limit):
            line = lines[i]
            if _is_blank(line):
                blank_count += 1
                if blank_count > 1:
                    break
                if i + 1 < limit and self._is_continuation(lines[i + 1].text):
                    end = i + 1
                    continue
                break
            blank_count = 0

            if self._is_boundary(line.text) and not self._is_continuation(line.text):
                break
            if _gap_exceeded(trigger, line):
                break
            if self._is_continuation(line.text):
                in_continuation = True
                end = i + 1
                continue
            if in_continuation:
                break
            end = i + 1
        return end

    def process_batch(
        self, lines: Sequence[LogLine], trigger_indices: Iterable[int]
    ) -> list[CaptureRange]:
        """Capture a block for every trigger and merge the overlapping ones."""
        ranges = [
            CaptureRange(self.capture_backward(lines, idx), self.capture_forward(lines, idx))
            for idx in trigger_indices
            if 0 <= idx < len(lines)
        ]
        return merge_ranges(ranges)


def merge_ranges(ranges: Iterable[CaptureRange]) -> list[CaptureRange]:
    """Merge overlapping or adjacent ranges, ordered by start."""
    merged: list[CaptureRange] = []
    for current in sorted(ranges, key=lambda r: r.start):
        if merged and current.start <= merged[-1].end:
            last = merged[-1]
            if current.end > last.end:
                merged[-1] = CaptureRange(last.start, current.end)
        else:
            merged.append(current)
    return merged


def extract_lines(lines: Sequence[LogLine], start: int, end: int) -> list[str]:
    """Texts of the lines in [start, end), clamped to the sequence."""
    return [line.text for line in lines[max(start, 0):min(end, len(lines))]]