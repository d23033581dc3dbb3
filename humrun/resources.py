"""CPU and memory usage of processes."""

from __future__ import annotations

import subprocess
from dataclasses import dataclass

_KIB = 1024
_MIB = 1024 * 1024
_GIB = 1024 * 1024 * 1024


@dataclass(frozen=True)
class ResourceUsage:
    """CPU percentage and resident memory of a process."""

    cpu_percent: float
    memory_rss: int  # bytes


def get_resource_usage(pid: int) -> ResourceUsage:
    """Query ps for the CPU and memory usage of a process.

    Raises ProcessLookupError when ps fails (for instance, no such process)
    and ValueError when its output cannot be understood.
    """
    try:
        result = subprocess.run(
            ["ps", "-o", "%cpu=,rss=", "-p", str(pid)],
            capture_output=True,
            text=True,
            check=True,
        )
    except (OSError, subprocess.CalledProcessError) as exc:
        raise ProcessLookupError(f"ps failed for PID {pid}: {exc}") from exc

    fields = result.stdout.split()
    if len(fields) < 2:
        raise ValueError(f"unexpected ps output for PID {pid}")
    try:
        cpu = float(fields[0])
    except ValueError as exc:
        raise ValueError(f"parse CPU: {exc}") from exc
    try:
        rss_kb = int(fields[1])
    except ValueError as exc:
        raise ValueError(f"parse RSS: {exc}") from exc
    # ps reports resident memory in kilobytes.
    return ResourceUsage(cpu_percent=cpu, memory_rss=rss_kb * _KIB)


def format_memory(num_bytes: int) -> str:
    """Format a byte count as a short human-readable string."""
    if num_bytes < _KIB:
        return f"{num_bytes}B"
    if num_bytes < _MIB:
        return f"{num_bytes / _KIB:.0f}K"
    if num_bytes < _GIB:
        return f"{num_bytes / _MIB:.1f}M"
    return f"{num_bytes / _GIB:.1f}G"