# humrun

Building blocks for supervising local development processes. `humrun` starts
shell commands, keeps a bounded log of their output, spots and parses error
output, watches source trees for changes, samples CPU and memory use, and
carries a few helpers for the accompanying secrets server (roles, TOTP, JWT).

It works on macOS and Linux; processes are started through `sh -c` in their
own process group so that a stop reaches every child.

## Running processes

```python
from humrun.manager import Manager, Status

manager = Manager("/path/to/project")
manager.start("web", "npm run dev", "frontend", {"PORT": "3000"})

assert manager.get_status("web") is Status.RUNNING
print(manager.pid("web"), manager.uptime("web"))

for line in manager.get_log_buffer("web").snapshot()[0]:
    print(line.text)

manager.restart("web", "npm run dev", "frontend", {"PORT": "3000"})
manager.stop_all()
```

A start fails with `ProcessStartError` when the app is already running or
still stopping. Every state change and output line becomes a `ProcessEvent`;
events that cannot be queued are counted by `manager.dropped_events()`.
Child processes never inherit variables from `filtered_env()`'s deny list.

## Log buffers

`LogBuffer` keeps the last 5000 lines, truncates overlong lines, removes
cursor-control escapes while keeping colours, and tracks a scroll position
with a follow mode:

```python
from humrun.logbuffer import LogBuffer, strip_ansi

buf = LogBuffer()
buf.append("ready\nlistening on :3000\n", False)
buf.scroll_to(0, 20)
buf.snap_to_bottom(20)
print(len(buf), strip_ansi(buf.get_line(0).text))
```

## Errors

`ErrorDetector` decides whether a line looks like an error, suppressing
common false positives such as "0 errors" or "error handling":

```python
from humrun.detector import ErrorDetector

detector = ErrorDetector()
detector.is_error("TypeError: x is not a function")   # True
detector.is_error("Found 0 errors. Watching...")       # False
```

`BoundaryDetector` finds where an error block starts and ends around a
trigger line, and `parse_error` turns the block into a `ParsedError` for
V8/Node.js errors, TypeScript diagnostics, bundler errors (Vite, esbuild,
webpack) or, failing those, a generic form:

```python
from humrun.capture import BoundaryDetector, extract_lines
from humrun.parsers import parse_error

lines = buf.snapshot()[0]
for block in BoundaryDetector().process_batch(lines, [1]):
    parsed = parse_error(extract_lines(lines, block.start, block.end))
    print(parsed.kind, parsed.error_type, parsed.message, parsed.location)
```

`ErrorBuffer` stores up to 100 captured errors per app, groups repeats by
`ParsedError.dedup_key()`, and renders them as plain text with
`last_error_text()` and `all_errors_text()`.

## Resources, ports and the desktop

```python
from humrun.monitor import ResourceMonitor, ThresholdConfig
from humrun.resources import format_memory
from humrun.ports import is_port_free, find_free_port
from humrun.desktop import send_notification, copy_to_clipboard

monitor = ResourceMonitor(manager.pid)
monitor.register("web", ThresholdConfig(max_cpu_percent=80.0, max_memory_mb=512))
stats = monitor.get_stats("web")
alert = monitor.next_alert(1.0)

port = 3000 if is_port_free(3000) else find_free_port([3000], 3001)
send_notification("web", "restarted")
copy_to_clipboard(manager.get_error_buffer("web").last_error_text())
```

## File watching

```python
from humrun.filewatcher import FileWatchManager, WatchConfig

watcher = FileWatchManager()
watcher.register("web", "/path/to/project", WatchConfig(extensions=[".ts", ".tsx"]))
event = watcher.next_event(2.0)   # debounced; None on timeout
watcher.stop_all()
```

Directories such as `node_modules`, `.git` and `dist` are skipped, as are
editor swap files and lock files.

## Sessions

`save_session(root, names)` records which apps were running in
`.humrun-state.json`; `load_session(root)` reads them back and
`clear_session(root)` removes the file.

## Server helpers

```python
from humrun.rbac import Role, Action, can, enforce
from humrun.totp import generate_totp_secret, generate_totp_code, totp_provisioning_uri
from humrun.auth import generate_jwt, validate_jwt, hash_password, verify_password

can(Role.DEVELOPER, Action.WRITE)          # True
enforce(Role.VIEWER, Action.WRITE)         # raises PermissionDenied

totp_key = generate_totp_secret()
uri = totp_provisioning_uri(totp_key, "dev@example.com", "humrun")

jwt = generate_jwt("dev@example.com", "secret")
claims = validate_jwt(jwt, "secret")       # raises TokenError when invalid

password = "password"
encoded = hash_password(password)
verify_password(password, encoded)         # True
```