"""Structured parsing of captured error output."""

from __future__ import annotations

import re
from collections.abc import Sequence

from humrun.errors import ErrorKind, ParsedError, SourceLocation
from humrun.logbuffer import strip_ansi

# "TypeError: msg", "ReferenceError: msg" and the like.
V8_ERROR_LINE_RE = re.compile(r"^(\w*(?:Error|Exception)):\s*(.+)")
# "    at fn (file:line:col)" or "    at file:line:col".
V8_STACK_FRAME_RE = re.compile(
    r"^\s+at\s+(?:(.+?)\s+\((.+?):(\d+):(\d+)\)|(.+?):(\d+):(\d+))"
)
# "file.ts(line,col): error TS2322: msg".
TS_ERROR_RE = re.compile(r"^(.+?)\((\d+),(\d+)\):\s*error\s+(TS\d+):\s*(.+)")
VITE_ERROR_RE = re.compile(r"\[vite\]\s*(?:Internal server error:\s*)?(.+)")
ESBUILD_ERROR_RE = re.compile(r"^✘\s*\[ERROR\]\s*(.+)")
WEBPACK_ERROR_RE = re.compile(r"^ERROR\s+in\s+(.+)")
FILE_LOCATION_RE = re.compile(r"(\S+?):(\d+):(\d+)")


def extract_file_location(lines: Sequence[str]) -> SourceLocation | None:
    """First file:line:col reference in the lines that is not a URL."""
    for line in lines:
        match = FILE_LOCATION_RE.search(line)
        if match is None:
            continue
        file = match.group(1)
        if "://" in file or file.startswith("http"):
            continue
        return SourceLocation(file=file, line=int(match.group(2)), column=int(match.group(3)))
    return None


def _parse_v8_frame(frame: str) -> SourceLocation | None:
    match = V8_STACK_FRAME_RE.search(frame)
    if match is None:
        return None
    if match.group(2):
        return SourceLocation(match.group(2), int(match.group(3)), int(match.group(4)))
    if match.group(5):
        return SourceLocation(match.group(5), int(match.group(6)), int(match.group(7)))
    return None


class ErrorParser:
    """Recognises one family of error output and extracts its structure.

    The base class recognises lines matching any of ``triggers`` and falls
    back to using the first plain line as the message.
    """

    kind: ErrorKind = ErrorKind.GENERIC
    default_error_type: str = ""
    triggers: tuple[re.Pattern[str], ...] = ()

    def can_parse(self, lines: Sequence[str]) -> bool:
        """True if any line, with ANSI codes removed, matches a trigger."""
        return any(
            trigger.search(strip_ansi(line)) for line in lines for trigger in self.triggers
        )

    def parse(self, lines: Sequence[str]) -> ParsedError:
        """Fallback parse: the first plain line becomes the message."""
        parsed = self._new(lines)
        if parsed.plain_lines:
            parsed.message = parsed.plain_lines[0]
        return parsed

    def _new(self, lines: Sequence[str]) -> ParsedError:
        return ParsedError(
            kind=self.kind,
            error_type=self.default_error_type,
            raw_lines=list(lines),
            plain_lines=[strip_ansi(line) for line in lines],
        )


class V8ErrorParser(ErrorParser):
    """Node.js / V8 runtime errors with their stack traces."""

    kind = ErrorKind.V8
    triggers = (V8_ERROR_LINE_RE,)

    def can_parse(self, lines: Sequence[str]) -> bool:
        return super().can_parse(lines)

    def parse(self, lines: Sequence[str]) -> ParsedError:
        parsed = self._new(lines)
        for i, line in enumerate(parsed.plain_lines):
            match = V8_ERROR_LINE_RE.search(line)
            if match is None:
                continue
            parsed.error_type = match.group(1)
            parsed.message = match.group(2)
            parsed.stack_trace = [
                frame for frame in parsed.plain_lines[i + 1:] if V8_STACK_FRAME_RE.search(frame)
            ]
            if parsed.stack_trace:
                parsed.location = _parse_v8_frame(parsed.stack_trace[0])
            return parsed
        return super().parse(lines)


class TSCompilerParser(ErrorParser):
    """TypeScript compiler diagnostics."""

    kind = ErrorKind.TS_COMPILER
    triggers = (TS_ERROR_RE,)

    def can_parse(self, lines: Sequence[str]) -> bool:
        return super().can_parse(lines)

    def parse(self, lines: Sequence[str]) -> ParsedError:
        parsed = self._new(lines)
        for line in parsed.plain_lines:
            match = TS_ERROR_RE.search(line)
            if match is None:
                continue
            parsed.error_type = match.group(4)
            parsed.message = match.group(5)
            parsed.location = SourceLocation(
                file=match.group(1), line=int(match.group(2)), column=int(match.group(3))
            )
            return parsed
        return super().parse(lines)


class BundlerErrorParser(ErrorParser):
    """Vite, esbuild and webpack build errors."""

    kind = ErrorKind.BUNDLER
    default_error_type = "Build Error"
    triggers = (VITE_ERROR_RE, ESBUILD_ERROR_RE, WEBPACK_ERROR_RE)

    _labelled = (
        (VITE_ERROR_RE, "Vite Error"),
        (ESBUILD_ERROR_RE, "esbuild Error"),
        (WEBPACK_ERROR_RE, "webpack Error"),
    )

    def can_parse(self, lines: Sequence[str]) -> bool:
        return super().can_parse(lines)

    def parse(self, lines: Sequence[str]) -> ParsedError:
        parsed = self._new(lines)
        for line in parsed.plain_lines:
            for pattern, error_type in self._labelled:
                match = pattern.search(line)
                if match is None:
                    continue
                parsed.message = match.group(1)
                parsed.error_type = error_type
                parsed.location = extract_file_location(parsed.plain_lines)
                return parsed
        return super().parse(lines)


class GenericErrorParser(ErrorParser):
    """Fallback that accepts any output."""

    kind = ErrorKind.GENERIC

    def can_parse(self, lines: Sequence[str]) -> bool:
        return True

    def parse(self, lines: Sequence[str]) -> ParsedError:
        parsed = self._new(lines)
        if parsed.plain_lines:
            first = parsed.plain_lines[0]
            parsed.message = first
            match = V8_ERROR_LINE_RE.search(first)
            if match is not None:
                parsed.error_type = match.group(1)
                parsed.message = match.group(2)
        parsed.location = extract_file_location(parsed.plain_lines)
        parsed.stack_trace = [
            line for line in parsed.plain_lines if line.strip().startswith("at ")
        ]
        return parsed


DEFAULT_PARSERS: tuple[ErrorParser, ...] = (
    V8ErrorParser(),
    TSCompilerParser(),
    BundlerErrorParser(),
    GenericErrorParser(),
)


def parse_error(lines: Sequence[str]) -> ParsedError | None:
    """Parse with the first parser, in priority order, that accepts the lines."""
    for parser in DEFAULT_PARSERS:
        if parser.can_parse(lines):
            return parser.parse(lines)
    return None