"""Checking and choosing local TCP ports."""

from __future__ import annotations

import socket
import subprocess
import time
from collections.abc import Iterable
from dataclasses import dataclass

MAX_PORT = 65535
_ALTERNATIVE_OFFSETS = (1, 10, 100)


@dataclass(frozen=True)
class PortOwnerInfo:
    """The process listening on a port."""

    command: str
    pid: int
    user: str


def is_port_free(port: int) -> bool:
    """True if a TCP listener can be opened on 127.0.0.1:port."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind(("127.0.0.1", port))
            sock.listen()
        except (OSError, OverflowError):
            return False
    return True


def get_port_owner_info(port: int) -> PortOwnerInfo | None:
    """Identify the listener on a port with lsof; None if it cannot be told."""
    try:
        result = subprocess.run(
            ["lsof", "-i", f":{port}", "-P", "-n", "-sTCP:LISTEN"],
            capture_output=True,
            text=True,
            check=True,
        )
    except (OSError, subprocess.CalledProcessError):
        return None

    lines = result.stdout.strip().split("\n")
    if len(lines) < 2:
        return None
    # COMMAND PID USER FD TYPE DEVICE SIZE/OFF NODE NAME
    parts = lines[1].split()
    if len(parts) < 3:
        return None
    try:
        pid = int(parts[1])
    except ValueError:
        return None
    return PortOwnerInfo(command=parts[0], pid=pid, user=parts[2])


def suggest_alternative_port(base_port: int) -> int:
    """A free port at base_port + 1, + 10 or + 100, or 0 if none is free."""
    for offset in _ALTERNATIVE_OFFSETS:
        candidate = base_port + offset
        if candidate <= MAX_PORT and is_port_free(candidate):
            return candidate
    return 0


def find_free_port(used_ports: Iterable[int] | None, base_port: int) -> int:
    """The first free port from base_port upward not in used_ports, or 0."""
    used = set(used_ports or ())
    for port in range(base_port, MAX_PORT + 1):
        if port not in used and is_port_free(port):
            return port
    return 0


def wait_for_port_free(port: int, timeout: float) -> bool:
    """Wait up to timeout seconds for port to become free."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if is_port_free(port):
            return True
        time.sleep(0.1)
    return False