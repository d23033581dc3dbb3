"""Detection of error lines in process output."""

from __future__ import annotations

import re
from collections.abc import Iterable

from humrun.logbuffer import strip_ansi

ERROR_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"(?i)\bERROR\b"),
    re.compile(r"\bError:"),
    re.compile(r"\bException\b"),
    re.compile(r"(?i)\bFailed\b"),
    re.compile(r"(?i)\bFATAL\b"),
    re.compile(r"\bTypeError\b|\bReferenceError\b|\bSyntaxError\b"),
    re.compile(r"at\s+\S+\s+\([^)]+:\d+:\d+\)"),
    re.compile(r"^\s+at\s+"),
)

# Lines that match a trigger but are not errors.
EXCLUSION_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"(?i)\b0\s+errors?\b"),
    re.compile(r"(?i)error\s*handl"),
    re.compile(r"(?i)Failed to find cached"),
    re.compile(r"(?i)error.?free"),
    re.compile(r"(?i)\bno\s+errors?\b"),
    re.compile(r"(?i)(?:if|on|handle)\s*.*error"),
    re.compile(r"(?i)warning:\s*.*deprecated"),
)

# Red (31) and bright red (91) foreground colour codes.
RED_ANSI_RE = re.compile(r"\x1b\[(0;)?(1;)?(31|91)m")


class ErrorDetector:
    """Flags error lines using trigger patterns, exclusions and red colouring."""

    def __init__(
        self,
        triggers: Iterable[re.Pattern[str]] | None = None,
        exclusions: Iterable[re.Pattern[str]] | None = None,
    ) -> None:
        self.triggers = tuple(triggers) if triggers is not None else ERROR_PATTERNS
        self.exclusions = tuple(exclusions) if exclusions is not None else EXCLUSION_PATTERNS
        self.red_ansi = RED_ANSI_RE

    def is_error(self, line: str) -> bool:
        """True if the line triggers or is coloured red and no exclusion matches."""
        stripped = strip_ansi(line)
        if any(ex.search(stripped) for ex in self.exclusions):
            return False
        if any(trigger.search(stripped) for trigger in self.triggers):
            return True
        return self.red_ansi.search(line) is not None