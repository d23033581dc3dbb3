import socket
import subprocess
from unittest.mock import patch

import pytest

from humrun.ports import (
    PortOwnerInfo,
    find_free_port,
    get_port_owner_info,
    is_port_free,
    suggest_alternative_port,
    wait_for_port_free,
)


@pytest.fixture
def listener():
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    sock.listen()
    yield sock
    sock.close()


def _completed(stdout: str) -> subprocess.CompletedProcess:
    return subprocess.CompletedProcess(args=[], returncode=0, stdout=stdout, stderr="")


def test_is_port_free():
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    sock.listen()
    port = sock.getsockname()[1]

    assert is_port_free(port) is False
    sock.close()
    assert is_port_free(port) is True


def test_find_free_port_above_9999():
    port = find_free_port(None, 49990)
    assert 49990 <= port <= 65535
    assert is_port_free(port) is True


def test_find_free_port_skips_used_ports():
    base = find_free_port(None, 49990)
    result = find_free_port([base], base)
    assert result > base


def test_find_free_port_skips_busy_port(listener):
    busy = listener.getsockname()[1]
    result = find_free_port([], busy)
    assert result > busy


def test_suggest_alternative_port():
    alt = suggest_alternative_port(49999)
    assert alt in (50000, 50009, 50099)


def test_suggest_alternative_port_out_of_range():
    assert suggest_alternative_port(65535) == 0


def test_wait_for_port_free_immediately():
    port = find_free_port(None, 49990)
    assert wait_for_port_free(port, 1.0) is True


def test_wait_for_port_free_times_out(listener):
    port = listener.getsockname()[1]
    assert wait_for_port_free(port, 0.3) is False


def test_get_port_owner_info_parses_lsof():
    output = (
        "COMMAND PID USER FD TYPE DEVICE SIZE/OFF NODE NAME\n"
        "node 1234 alice 22u IPv4 0x1 0t0 TCP 127.0.0.1:3000 (LISTEN)\n"
    )
    with patch("subprocess.run", return_value=_completed(output)) as run:
        info = get_port_owner_info(3000)
    assert info == PortOwnerInfo(command="node", pid=1234, user="alice")
    assert ":3000" in run.call_args[0][0]


def test_get_port_owner_info_lsof_failure():
    with patch("subprocess.run", side_effect=subprocess.CalledProcessError(1, ["lsof"])):
        assert get_port_owner_info(3000) is None


def test_get_port_owner_info_header_only():
    output = "COMMAND PID USER FD TYPE DEVICE SIZE/OFF NODE NAME\n"
    with patch("subprocess.run", return_value=_completed(output)):
        assert get_port_owner_info(3000) is None


def test_get_port_owner_info_bad_pid():
    output = "COMMAND PID USER\nnode notapid alice\n"
    with patch("subprocess.run", return_value=_completed(output)):
        assert get_port_owner_info(3000) is None