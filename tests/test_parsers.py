import pytest

from humrun.errors import ErrorKind, ParsedError, SourceLocation
from humrun.parsers import (
    BundlerErrorParser,
    GenericErrorParser,
    TSCompilerParser,
    V8ErrorParser,
    extract_file_location,
    parse_error,
)


def test_v8_error_parser():
    lines = [
        "TypeError: undefined is not a function",
        "    at processQueue (src/app.ts:42:11)",
        "    at Router.handle (src/router.ts:100:5)",
        "    at Object.<anonymous> (src/index.ts:10:3)",
    ]
    parsed = parse_error(lines)
    assert parsed.kind == ErrorKind.V8
    assert parsed.error_type == "TypeError"
    assert parsed.message == "undefined is not a function"
    assert parsed.location == SourceLocation("src/app.ts", 42, 11)
    assert len(parsed.stack_trace) == 3


def test_v8_reference_error():
    parsed = parse_error(
        ["ReferenceError: myVar is not defined", "    at eval (eval at <anonymous>:1:1)"]
    )
    assert parsed.error_type == "ReferenceError"
    assert parsed.message == "myVar is not defined"


def test_ts_compiler_parser():
    parsed = parse_error(
        [
            "src/components/App.tsx(15,3): error TS2322: "
            "Type 'string' is not assignable to type 'number'."
        ]
    )
    assert parsed.kind == ErrorKind.TS_COMPILER
    assert parsed.error_type == "TS2322"
    assert parsed.message == "Type 'string' is not assignable to type 'number'."
    assert parsed.location.file == "src/components/App.tsx"
    assert (parsed.location.line, parsed.location.column) == (15, 3)


def test_bundler_vite_parser():
    parsed = parse_error(
        [
            "[vite] Internal server error: Transform failed",
            "  Plugin: vite:esbuild",
            "  File: /src/main.ts:10:5",
        ]
    )
    assert parsed.kind == ErrorKind.BUNDLER
    assert parsed.error_type == "Vite Error"
    assert parsed.message == "Transform failed"
    assert parsed.location == SourceLocation("/src/main.ts", 10, 5)


def test_bundler_esbuild_parser():
    parsed = parse_error(
        ['✘ [ERROR] Could not resolve "missing-module"', "", "    src/index.ts:1:0:"]
    )
    assert parsed.kind == ErrorKind.BUNDLER
    assert parsed.error_type == "esbuild Error"
    assert parsed.message == 'Could not resolve "missing-module"'
    assert str(parsed.location) == "src/index.ts:1"


def test_bundler_webpack_parser():
    parsed = parse_error(
        ["ERROR in ./src/index.js", "Module not found: Can't resolve 'missing'"]
    )
    assert parsed.kind == ErrorKind.BUNDLER
    assert parsed.error_type == "webpack Error"
    assert parsed.message == "./src/index.js"
    assert parsed.location is None


def test_generic_parser():
    parsed = parse_error(["Something failed completely", "  at /path/to/file.js:10:5"])
    assert parsed.kind == ErrorKind.GENERIC
    assert parsed.message == "Something failed completely"
    assert parsed.location == SourceLocation("/path/to/file.js", 10, 5)
    assert parsed.stack_trace == ["  at /path/to/file.js:10:5"]


def test_parsed_error_dedup_key():
    parsed = ParsedError(error_type="TypeError", message="undefined is not a function")
    assert parsed.dedup_key() == "TypeError:undefined is not a function"


def test_parser_with_ansi():
    parsed = parse_error(
        [
            "\x1b[31mTypeError: Cannot read property 'x' of null\x1b[0m",
            "\x1b[90m    at foo (/app/src/bar.ts:5:10)\x1b[0m",
        ]
    )
    assert parsed.error_type == "TypeError"
    assert parsed.location.file == "/app/src/bar.ts"
    assert parsed.raw_lines[0].startswith("\x1b[31m")
    assert parsed.plain_lines[0] == "TypeError: Cannot read property 'x' of null"


def test_parse_error_empty_lines_uses_generic():
    parsed = parse_error([])
    assert parsed.kind == ErrorKind.GENERIC
    assert parsed.message == ""
    assert parsed.location is None


@pytest.mark.parametrize(
    "parser, lines, expected",
    [
        (V8ErrorParser(), ["TypeError: x"], True),
        (V8ErrorParser(), ["plain output"], False),
        (TSCompilerParser(), ["a.ts(1,2): error TS1000: bad"], True),
        (TSCompilerParser(), ["TypeError: x"], False),
        (BundlerErrorParser(), ["ERROR in ./x.js"], True),
        (BundlerErrorParser(), ["plain output"], False),
        (GenericErrorParser(), [], True),
    ],
)
def test_can_parse(parser, lines, expected):
    assert parser.can_parse(lines) is expected


def test_v8_parser_fallback_uses_first_line():
    parsed = V8ErrorParser().parse(["plain line", "second"])
    assert parsed.kind == ErrorKind.V8
    assert parsed.message == "plain line"
    assert parsed.error_type == ""


def test_ts_parser_fallback_uses_first_line():
    parsed = TSCompilerParser().parse(["nothing here"])
    assert parsed.message == "nothing here"
    assert parsed.location is None


def test_bundler_fallback_keeps_build_error_type():
    parsed = BundlerErrorParser().parse(["unrelated"])
    assert parsed.error_type == "Build Error"
    assert parsed.message == "unrelated"


def test_generic_parser_extracts_error_type_from_first_line():
    parsed = GenericErrorParser().parse(["TypeError: boom"])
    assert parsed.error_type == "TypeError"
    assert parsed.message == "boom"


def test_extract_file_location_skips_urls():
    location = extract_file_location(["see http://localhost:3000:1:2", "at app.js:5:6"])
    assert location == SourceLocation("app.js", 5, 6)


def test_extract_file_location_none():
    assert extract_file_location(["no location here"]) is None