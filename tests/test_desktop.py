import pathlib
import subprocess
from unittest.mock import patch

import pytest

from humrun.desktop import copy_to_clipboard, escape_applescript, send_notification


def _ok() -> subprocess.CompletedProcess:
    return subprocess.CompletedProcess(args=[], returncode=0)


def test_escape_applescript_quotes():
    assert escape_applescript('say "hi"') == 'say \\"hi\\"'


def test_escape_applescript_newlines():
    assert escape_applescript("a\nb\rc") == "a b c"


def test_escape_applescript_control_characters():
    assert escape_applescript("a\x01\tb") == "a\tb"


@pytest.mark.parametrize("text", ["plain", "back\\slash", "\\\\", "x\\y\\z"])
def test_escape_applescript_doubles_backslashes(text):
    assert escape_applescript(text).count("\\") == 2 * text.count("\\")


@pytest.mark.parametrize("text", ["\x00\x07\x1b[31m", "line\nnext", "tab\there\x1f"])
def test_escape_applescript_leaves_no_control_characters(text):
    result = escape_applescript(text)
    assert all(ord(ch) >= 32 or ch == "\t" for ch in result)


def test_copy_to_clipboard_macos():
    with patch("sys.platform", "darwin"), patch("subprocess.run", return_value=_ok()) as run:
        result = copy_to_clipboard("hello")
    assert result is None
    assert run.call_args[0][0] == ["pbcopy"]
    assert run.call_args[1]["input"] == b"hello"


def test_copy_to_clipboard_falls_back_to_xsel():
    failure = subprocess.CalledProcessError(1, ["xclip"])
    with patch("sys.platform", "linux"), patch.object(
        pathlib.Path, "read_text", side_effect=OSError
    ), patch("subprocess.run", side_effect=[failure, _ok()]) as run:
        result = copy_to_clipboard("text")
    assert result is None
    commands = [c[0][0] for c in run.call_args_list]
    assert commands[0][0] == "xclip"
    assert commands[1] == ["xsel", "--clipboard", "--input"]


def test_copy_to_clipboard_wsl():
    with patch("sys.platform", "linux"), patch.object(
        pathlib.Path, "read_text", return_value="Linux version 5.15 Microsoft"
    ), patch("subprocess.run", return_value=_ok()) as run:
        result = copy_to_clipboard("text")
    assert result is None
    assert run.call_args[0][0] == ["clip.exe"]
    assert run.call_count == 1


def test_copy_to_clipboard_propagates_failure():
    failure = subprocess.CalledProcessError(1, ["pbcopy"])
    with patch("sys.platform", "darwin"), patch("subprocess.run", side_effect=failure):
        with pytest.raises(subprocess.CalledProcessError):
            copy_to_clipboard("text")


def test_send_notification_linux():
    with patch("sys.platform", "linux"), patch("subprocess.run", return_value=_ok()) as run:
        result = send_notification("Build", "done")
    assert result is None
    assert run.call_args[0][0] == ["notify-send", "Build", "done"]


def test_send_notification_macos_script():
    with patch("sys.platform", "darwin"), patch("subprocess.run", return_value=_ok()) as run:
        result = send_notification("T", "M")
    assert result is None
    args = run.call_args[0][0]
    assert args[:2] == ["osascript", "-e"]
    assert args[2] == 'display notification "M" with title "T"'


def test_send_notification_unsupported_platform():
    with patch("sys.platform", "sunos5"), patch("subprocess.run") as run:
        result = send_notification("T", "M")
    assert result is None
    assert run.call_count == 0