import queue
import threading
import time
from datetime import timedelta

import pytest

from humrun.manager import (
    EVENT_CHANNEL_SIZE,
    Entry,
    EventType,
    Manager,
    ProcessEvent,
    ProcessStartError,
    Status,
    filtered_env,
    get_process_command,
)


def wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


def drain(manager):
    events = []
    while True:
        try:
            events.append(manager.events.get_nowait())
        except queue.Empty:
            return events


def log_texts(manager, name):
    lines, _, _ = manager.get_log_buffer(name).snapshot()
    return [line.text for line in lines]


@pytest.fixture
def manager(tmp_path):
    m = Manager(str(tmp_path))
    yield m
    m.stop_all()


def test_start_captures_output(manager):
    manager.start("echo-app", "echo hello", ".", None)
    assert wait_for(lambda: "hello" in log_texts(manager, "echo-app"))
    assert len(manager.get_log_buffer("echo-app")) > 0


def test_start_already_running_raises(manager):
    manager.start("sleep-app", "sleep 10", ".", None)
    assert wait_for(lambda: manager.get_status("sleep-app") is Status.RUNNING)
    with pytest.raises(ProcessStartError, match="already running"):
        manager.start("sleep-app", "sleep 10", ".", None)


def test_stop_unknown_app_leaves_it_stopped(manager):
    assert manager.stop("nonexistent") is None
    assert manager.get_status("nonexistent") is Status.STOPPED


def test_restart_changes_pid(manager):
    manager.start("sleep-app", "sleep 10", ".", None)
    assert wait_for(lambda: manager.pid("sleep-app") != 0)
    pid1 = manager.pid("sleep-app")

    manager.restart("sleep-app", "sleep 10", ".", None)
    assert wait_for(lambda: manager.pid("sleep-app") != 0)
    pid2 = manager.pid("sleep-app")
    assert pid2 != 0
    assert pid1 != pid2


def test_stop_all(manager):
    manager.start("app1", "sleep 10", ".", None)
    manager.start("app2", "sleep 10", ".", None)
    assert manager.get_status("app1") is Status.RUNNING
    assert manager.get_status("app2") is Status.RUNNING

    manager.stop_all()

    assert manager.get_status("app1") is Status.STOPPED
    assert manager.get_status("app2") is Status.STOPPED


def test_status_transitions(manager):
    assert manager.get_status("app") is Status.STOPPED
    manager.start("app", "sleep 10", ".", None)
    assert manager.get_status("app") is Status.RUNNING
    manager.stop("app")
    assert manager.get_status("app") is Status.STOPPED
    assert "Stopped app." in log_texts(manager, "app")


def test_crash_detection(manager):
    manager.start("crash-app", "exit 1", ".", None)
    assert wait_for(lambda: manager.get_status("crash-app") is Status.CRASHED)
    entry = manager.get_entry("crash-app")
    assert entry.detail() == (0, 1)
    crashed = [e for e in drain(manager) if e.type is EventType.CRASHED]
    assert crashed and crashed[0].code == 1
    assert crashed[0].message == "[crash-app] exited (code=1)"


def test_uptime(manager):
    assert manager.uptime("nonexistent") == timedelta(0)
    manager.start("app", "sleep 10", ".", None)
    time.sleep(0.2)
    assert manager.uptime("app") >= timedelta(milliseconds=100)


def test_remove_entries(manager):
    manager.start("app", "echo done", ".", None)
    assert wait_for(lambda: "done" in log_texts(manager, "app"))
    manager.remove_entries("app")
    assert manager.get_entry("app") is None
    assert "app" not in manager.log_buffers


def test_group_kill(manager):
    manager.start("parent", "sh -c 'sleep 30 & wait'", ".", None)
    time.sleep(0.3)
    assert manager.get_status("parent") is Status.RUNNING
    manager.stop("parent")
    assert manager.get_status("parent") is not Status.RUNNING


def test_started_event(manager):
    manager.start("app", "echo test", ".", None)
    event = manager.events.get(timeout=2)
    assert event.app_name == "app"
    assert event.type is EventType.STARTED


def test_error_output_is_captured(manager):
    manager.start("err-app", "echo 'Error: boom'", ".", None)
    assert wait_for(lambda: manager.error_count("err-app") >= 1)
    assert "Error: boom" in manager.get_error_buffer("err-app").last_error_text()
    manager.clear_errors("err-app")
    assert manager.error_count("err-app") == 0


def test_missing_directory_fails_to_start(manager):
    with pytest.raises(ProcessStartError):
        manager.start("app", "echo hi", "does-not-exist", None)
    assert manager.get_entry("app") is None
    assert any("directory does not exist" in t for t in log_texts(manager, "app"))


def test_find_owner(manager):
    manager.start("app", "sleep 10", ".", None)
    assert manager.find_owner(manager.pid("app")) == "app"
    assert manager.find_owner(999999999) == ""


def test_env_is_passed(manager):
    manager.start("env-app", "echo $GREETING-$TURBO_UI", ".", {"GREETING": "hi"})
    wait_for(lambda: "hi-stream" in log_texts(manager, "env-app"))
    lines = log_texts(manager, "env-app")
    assert "hi-stream" in lines


def test_resolve_env(manager):
    plain = {"A": "1"}
    assert manager.resolve_env(plain, "dev") is plain

    manager.set_vault_resolver(lambda root, env, vault: {**env, "B": vault})
    assert manager.resolve_env(plain, "") is plain
    assert manager.resolve_env(plain, "dev") == {"A": "1", "B": "dev"}


def test_resolve_env_failure_logs_warning(manager):
    def failing(root, env, vault):
        raise RuntimeError("locked")

    manager.set_vault_resolver(failing)
    plain = {"A": "1"}
    assert manager.resolve_env(plain, "dev") is plain
    assert "Warning: vault resolution failed: locked" in log_texts(manager, "humrun")


def test_event_channel_capacity(manager):
    for _ in range(EVENT_CHANNEL_SIZE):
        manager.events.put_nowait(ProcessEvent("fill", EventType.OUTPUT, "fill"))
    manager.send_event(ProcessEvent("test", EventType.OUTPUT, "dropped"))
    assert manager.dropped_events() == 1


def test_send_event_does_not_block(manager):
    for _ in range(EVENT_CHANNEL_SIZE):
        manager.events.put_nowait(ProcessEvent("test", EventType.OUTPUT))
    done = threading.Event()

    def send():
        manager.send_event(ProcessEvent("test", EventType.OUTPUT))
        done.set()

    threading.Thread(target=send, daemon=True).start()
    assert done.wait(3)
    assert manager.dropped_events() == 1
    assert manager.events.qsize() == EVENT_CHANNEL_SIZE


def test_critical_event_delivery(manager):
    for _ in range(EVENT_CHANNEL_SIZE):
        manager.events.put_nowait(ProcessEvent("fill", EventType.OUTPUT, "fill"))

    def drainer():
        time.sleep(0.05)
        for _ in range(EVENT_CHANNEL_SIZE):
            manager.events.get_nowait()

    threading.Thread(target=drainer, daemon=True).start()
    sender = threading.Thread(
        target=manager.send_event,
        args=(ProcessEvent("test", EventType.CRASHED, "crash"),),
        daemon=True,
    )
    sender.start()
    sender.join(3)
    assert not sender.is_alive()
    assert manager.dropped_events() == 0


def test_filtered_env_strips_secrets(monkeypatch):
    monkeypatch.setenv("HUMSAFE_SECRET_KEY", "secret")
    monkeypatch.setenv("HUMRUN_TOKEN", "token")
    env = filtered_env()
    assert not any(key.startswith("HUMSAFE_") for key in env)
    assert not any(key.startswith("HUMRUN_TOKEN") for key in env)


def test_filtered_env_keeps_normal(monkeypatch):
    monkeypatch.setenv("PATH", "/usr/bin:/bin")
    assert filtered_env()["PATH"] == "/usr/bin:/bin"


def test_get_process_command_empty_on_invalid_pid():
    assert get_process_command(999999999) == ""


def test_entry_auto_restart():
    entry = Entry()
    assert entry.try_auto_restart(2) == (True, 1)
    assert entry.try_auto_restart(2) == (True, 2)
    assert entry.try_auto_restart(2) == (False, 2)

    entry.enable_auto_restart()
    assert entry.auto_restart_state() == (False, 0)

    assert entry.toggle_auto_restart() is True
    assert entry.try_auto_restart(5) == (False, 0)
    entry.disable_auto_restart()
    assert entry.auto_restart_state() == (True, 0)


def test_restart_count_preserved_across_start(manager):
    manager.start("app", "exit 3", ".", None)
    assert wait_for(lambda: manager.get_status("app") is Status.CRASHED)
    manager.get_entry("app").try_auto_restart(5)
    manager.start("app", "sleep 10", ".", None)
    assert manager.get_entry("app").detail()[0] == 1