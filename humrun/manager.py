"""Spawning, stopping and monitoring of app processes."""

from __future__ import annotations

import os
import queue
import signal
import subprocess
import sys
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum, IntEnum
from typing import IO

from humrun.detector import ErrorDetector
from humrun.errors import ErrorBuffer
from humrun.logbuffer import LogBuffer

STOP_TIMEOUT = 5.0
EVENT_CHANNEL_SIZE = 8192
CRITICAL_EVENT_TIMEOUT = 2.0
SYSTEM_LOG = "humrun"

# Environment variables whose names start with these are not passed to children.
SENSITIVE_ENV_PREFIXES = ("HUMSAFE_", "HUMRUN_TOKEN", "HUMRUN_API_TOKEN")


class Status(str, Enum):
    """Lifecycle state of a managed process."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    CRASHED = "crashed"

    def __str__(self) -> str:
        return self.value


class EventType(IntEnum):
    """Kind of a process event."""

    STARTED = 0
    STOPPED = 1
    CRASHED = 2
    OUTPUT = 3
    STDERR_OUTPUT = 4
    ERROR = 5
    ERROR_DETECTED = 6

    @property
    def label(self) -> str:
        return _EVENT_LABELS[self]


_EVENT_LABELS = {
    EventType.STARTED: "started",
    EventType.STOPPED: "stopped",
    EventType.CRASHED: "crashed",
    EventType.OUTPUT: "output",
    EventType.STDERR_OUTPUT: "stderr",
    EventType.ERROR: "error",
    EventType.ERROR_DETECTED: "error-detected",
}

_CRITICAL_EVENTS = frozenset(
    {
        EventType.CRASHED,
        EventType.ERROR_DETECTED,
        EventType.ERROR,
        EventType.STARTED,
        EventType.STOPPED,
    }
)


@dataclass
class ProcessEvent:
    """A change in the state or output of a process."""

    app_name: str
    type: EventType
    message: str = ""
    code: int = 0


class ProcessStartError(RuntimeError):
    """Raised when a process cannot be started."""


VaultResolver = Callable[[str, Mapping[str, str], str], Mapping[str, str]]


@dataclass
class Entry:
    """A managed process and its metadata."""

    process: subprocess.Popen[bytes] | None = None
    status: Status = Status.STOPPED
    started_at: datetime | None = None
    exit_code: int = 0
    restart_count: int = 0
    auto_restart_disabled: bool = False
    done: threading.Event = field(default_factory=threading.Event, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def detail(self) -> tuple[int, int]:
        """The restart count and the exit code."""
        with self._lock:
            return self.restart_count, self.exit_code

    def auto_restart_state(self) -> tuple[bool, int]:
        """Whether auto-restart is disabled, and the restart count."""
        with self._lock:
            return self.auto_restart_disabled, self.restart_count

    def toggle_auto_restart(self) -> bool:
        """Flip the auto-restart disabled flag; return its new value."""
        with self._lock:
            self.auto_restart_disabled = not self.auto_restart_disabled
            return self.auto_restart_disabled

    def enable_auto_restart(self) -> None:
        """Enable auto-restart and reset the restart count."""
        with self._lock:
            self.auto_restart_disabled = False
            self.restart_count = 0

    def disable_auto_restart(self) -> None:
        """Disable auto-restart."""
        with self._lock:
            self.auto_restart_disabled = True

    def try_auto_restart(self, max_restarts: int) -> tuple[bool, int]:
        """Count a restart if allowed; return whether it is, and the count."""
        with self._lock:
            if self.auto_restart_disabled or self.restart_count >= max_restarts:
                return False, self.restart_count
            self.restart_count += 1
            return True, self.restart_count


def filtered_env() -> dict[str, str]:
    """The current environment without sensitive variables."""
    return {
        key: value
        for key, value in os.environ.items()
        if not key.startswith(SENSITIVE_ENV_PREFIXES)
    }


def get_process_command(pid: int) -> str:
    """The command name of a process, or an empty string if it is unknown."""
    try:
        result = subprocess.run(
            ["ps", "-p", str(pid), "-o", "comm="],
            capture_output=True,
            check=True,
            text=True,
        )
    except (OSError, subprocess.CalledProcessError):
        return ""
    return result.stdout.strip()


def _signal_group_or_pid(pid: int, sig: int) -> None:
    try:
        os.killpg(pid, sig)
    except OSError:
        os.kill(pid, sig)


def kill_external_process(pid: int) -> None:
    """Terminate a process and its group: SIGTERM, then SIGKILL after 2.5 s."""
    original = get_process_command(pid)
    _signal_group_or_pid(pid, signal.SIGTERM)

    for _ in range(10):
        time.sleep(0.25)
        try:
            os.kill(pid, 0)
        except OSError:
            return

    # The PID may have been reused by an unrelated process meanwhile.
    if original and get_process_command(pid) != original:
        return

    try:
        _signal_group_or_pid(pid, signal.SIGKILL)
    except OSError:
        pass
    time.sleep(0.5)


class Manager:
    """Starts, stops and watches the processes of a project."""

    def __init__(self, project_root: str) -> None:
        self.project_root = project_root
        self.entries: dict[str, Entry] = {}
        self.log_buffers: dict[str, LogBuffer] = {}
        self.error_buffers: dict[str, ErrorBuffer] = {}
        self.error_detector = ErrorDetector()
        self.events: queue.Queue[ProcessEvent] = queue.Queue(maxsize=EVENT_CHANNEL_SIZE)
        self._lock = threading.Lock()
        self._vault_resolver: VaultResolver | None = None
        self._dropped = 0
        self._dropped_lock = threading.Lock()

    def set_vault_resolver(self, resolver: VaultResolver | None) -> None:
        """Set the function that merges vault secrets into an environment."""
        with self._lock:
            self._vault_resolver = resolver

    def resolve_env(self, plain_env: Mapping[str, str], vault_env: str) -> Mapping[str, str]:
        """Merge vault secrets into plain_env; on failure log and keep plain_env."""
        with self._lock:
            resolver = self._vault_resolver
        if not vault_env or resolver is None:
            return plain_env
        try:
            return resolver(self.project_root, plain_env, vault_env)
        except Exception as exc:  # the resolver is user supplied
            self.get_log_buffer(SYSTEM_LOG).append(
                f"Warning: vault resolution failed: {exc}", False
            )
            return plain_env

    def get_log_buffer(self, name: str) -> LogBuffer:
        """The log buffer of an app, created on first use."""
        with self._lock:
            return self.log_buffers.setdefault(name, LogBuffer())

    def get_entry(self, name: str) -> Entry | None:
        """The entry of an app, or None."""
        with self._lock:
            return self.entries.get(name)

    def get_status(self, name: str) -> Status:
        """The status of an app; STOPPED if it is unknown."""
        entry = self.get_entry(name)
        if entry is None:
            return Status.STOPPED
        with entry._lock:
            return entry.status

    def _discard_entry(self, name: str) -> None:
        with self._lock:
            self.entries.pop(name, None)

    def start(
        self,
        name: str,
        command: str,
        directory: str = ".",
        env: Mapping[str, str] | None = None,
    ) -> None:
        """Spawn command through the shell as app name."""
        with self._lock:
            existing = self.entries.get(name)
            if existing is not None:
                with existing._lock:
                    status = existing.status
                if status in (Status.RUNNING, Status.STARTING):
                    raise ProcessStartError(f"{name} is already running")
                if status is Status.STOPPING:
                    raise ProcessStartError(f"{name} is still stopping")
            self.entries[name] = Entry(status=Status.STARTING)

        full_dir = (
            directory if os.path.isabs(directory) else os.path.join(self.project_root, directory)
        )
        if not os.path.exists(full_dir):
            self.get_log_buffer(name).append(
                f"Warning: directory does not exist: {full_dir}", False
            )

        child_env = filtered_env()
        child_env["TURBO_UI"] = "stream"
        if env:
            child_env.update(env)

        try:
            process = subprocess.Popen(
                ["sh", "-c", command],
                cwd=full_dir,
                env=child_env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as exc:
            self._discard_entry(name)
            self.send_event(ProcessEvent(name, EventType.ERROR, f"failed to start: {exc}"))
            raise ProcessStartError(f"failed to start {name}: {exc}") from exc

        entry = Entry(process=process, status=Status.RUNNING, started_at=datetime.now())
        if existing is not None:
            with existing._lock:
                entry.restart_count = existing.restart_count
                entry.auto_restart_disabled = existing.auto_restart_disabled

        with self._lock:
            self.entries[name] = entry

        started = f"Started {name} (PID {process.pid})"
        self.get_log_buffer(name).append(started, False)
        self.send_event(ProcessEvent(name, EventType.STARTED, started))

        for stream, is_stderr in ((process.stdout, False), (process.stderr, True)):
            threading.Thread(
                target=self._read_output, args=(name, stream, is_stderr), daemon=True
            ).start()
        threading.Thread(target=self._wait, args=(name, entry, process), daemon=True).start()

    def _wait(self, name: str, entry: Entry, process: subprocess.Popen[bytes]) -> None:
        try:
            returncode = process.wait()
            with entry._lock:
                was_stopping = entry.status is Status.STOPPING
                exit_code = -1
                if was_stopping:
                    entry.status = Status.STOPPED
                    entry.restart_count = 0
                else:
                    entry.status = Status.CRASHED
                    if returncode != 0:
                        exit_code = returncode if returncode > 0 else -1
                        entry.exit_code = exit_code
                entry.process = None

            buf = self.get_log_buffer(name)
            if was_stopping:
                message = f"Stopped {name}."
                buf.append(message, False)
                self.send_event(ProcessEvent(name, EventType.STOPPED, message))
            else:
                message = f"[{name}] exited (code={exit_code})"
                buf.append(message, False)
                self.send_event(ProcessEvent(name, EventType.CRASHED, message, exit_code))
        finally:
            entry.done.set()

    def stop(self, name: str) -> None:
        """SIGTERM the process group, then SIGKILL it after STOP_TIMEOUT."""
        entry = self.get_entry(name)
        if entry is None:
            return
        with entry._lock:
            if entry.status is not Status.RUNNING:
                return
            entry.status = Status.STOPPING
            process = entry.process
        if process is None:
            return

        pid = process.pid
        buf = self.get_log_buffer(name)
        try:
            os.killpg(pid, signal.SIGTERM)
        except ProcessLookupError:
            pass
        except OSError as exc:
            buf.append(f"[{name}] SIGTERM failed: {exc}", False)

        if entry.done.wait(STOP_TIMEOUT):
            return
        buf.append(f"[{name}] SIGTERM timeout, sending SIGKILL...", False)
        try:
            os.killpg(pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        except OSError as exc:
            buf.append(f"[{name}] SIGKILL failed: {exc}", False)
        entry.done.wait()

    def restart(
        self,
        name: str,
        command: str,
        directory: str = ".",
        env: Mapping[str, str] | None = None,
    ) -> None:
        """Stop the app, then start it again."""
        self.stop(name)
        self.start(name, command, directory, env)

    def stop_all(self) -> None:
        """Stop every running process concurrently."""
        with self._lock:
            entries = list(self.entries.items())
        running = []
        for name, entry in entries:
            with entry._lock:
                if entry.status is Status.RUNNING:
                    running.append(name)
        threads = [threading.Thread(target=self.stop, args=(name,)) for name in running]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

    def pid(self, name: str) -> int:
        """PID of the app's process, or 0."""
        entry = self.get_entry(name)
        if entry is None:
            return 0
        with entry._lock:
            return entry.process.pid if entry.process is not None else 0

    def uptime(self, name: str) -> timedelta:
        """Time since the app started, or zero when it is not running."""
        entry = self.get_entry(name)
        if entry is None:
            return timedelta(0)
        with entry._lock:
            if entry.status is not Status.RUNNING or entry.started_at is None:
                return timedelta(0)
            return datetime.now() - entry.started_at

    def get_error_buffer(self, name: str) -> ErrorBuffer:
        """The error buffer of an app, created on first use."""
        with self._lock:
            return self.error_buffers.setdefault(name, ErrorBuffer())

    def error_count(self, name: str) -> int:
        """Number of errors captured for an app."""
        with self._lock:
            buf = self.error_buffers.get(name)
        return len(buf) if buf is not None else 0

    def clear_errors(self, name: str) -> None:
        """Forget the captured errors of an app."""
        with self._lock:
            buf = self.error_buffers.get(name)
        if buf is not None:
            buf.clear()

    def clear_all_errors(self) -> None:
        """Forget the captured errors of every app."""
        with self._lock:
            buffers = list(self.error_buffers.values())
        for buf in buffers:
            buf.clear()

    def remove_entries(self, name: str) -> None:
        """Drop the entry, log buffer and error buffer of an app."""
        with self._lock:
            self.entries.pop(name, None)
            self.log_buffers.pop(name, None)
            self.error_buffers.pop(name, None)

    def find_owner(self, pid: int) -> str:
        """Name of the running app with this PID, or an empty string."""
        with self._lock:
            for name, entry in self.entries.items():
                with entry._lock:
                    if (
                        entry.status is Status.RUNNING
                        and entry.process is not None
                        and entry.process.pid == pid
                    ):
                        return name
        return ""

    def _read_output(self, name: str, stream: IO[bytes] | None, is_stderr: bool) -> None:
        if stream is None:
            return
        log_buf = self.get_log_buffer(name)
        err_buf = self.get_error_buffer(name)
        event_type = EventType.STDERR_OUTPUT if is_stderr else EventType.OUTPUT
        with stream:
            for raw in stream:
                text = raw.decode("utf-8", errors="replace").removesuffix("\n").removesuffix("\r")
                indices = log_buf.append(text + "\n", is_stderr)
                self.send_event(ProcessEvent(name, event_type, text + "\n"))
                for idx in indices:
                    line = log_buf.get_line(idx)
                    if line is not None and self.error_detector.is_error(line.text):
                        err_buf.capture_error(log_buf, idx)
                        self.send_event(
                            ProcessEvent(name, EventType.ERROR_DETECTED, "Error detected")
                        )

    def send_event(self, event: ProcessEvent) -> None:
        """Queue an event; critical ones wait briefly for room, others are dropped."""
        try:
            self.events.put_nowait(event)
            return
        except queue.Full:
            pass
        if event.type in _CRITICAL_EVENTS:
            try:
                self.events.put(event, timeout=CRITICAL_EVENT_TIMEOUT)
                return
            except queue.Full:
                print(
                    f"humrun: critical event dropped for {event.app_name}: {event.type.label}",
                    file=sys.stderr,
                )
        with self._dropped_lock:
            self._dropped += 1

    def dropped_events(self) -> int:
        """Total number of events dropped because the queue was full."""
        with self._dropped_lock:
            return self._dropped