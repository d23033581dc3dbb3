"""Periodic sampling of process resource usage with threshold alerts."""

from __future__ import annotations

import queue
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from humrun.resources import get_resource_usage

DEFAULT_POLL_INTERVAL = 2.0
MAX_SAMPLES = 1800  # one hour at two-second intervals
ALERT_COOLDOWN = 30.0
ALERT_QUEUE_SIZE = 64
_MIB = 1024 * 1024


@dataclass(frozen=True)
class ResourceSample:
    """One measurement of a process."""

    timestamp: datetime
    cpu_percent: float
    memory_rss: int  # bytes


@dataclass(frozen=True)
class ResourceStats:
    """Aggregates over the stored samples of an app."""

    current: ResourceSample
    avg_cpu: float
    min_cpu: float
    max_cpu: float
    avg_memory: int
    min_memory: int
    max_memory: int
    sample_count: int
    duration: timedelta


@dataclass(frozen=True)
class ThresholdConfig:
    """Resource limits of an app; zero means no limit."""

    max_cpu_percent: float = 0.0
    max_memory_mb: int = 0


class AlertType(str, Enum):
    """Kind of threshold breach."""

    CPU = "cpu"
    MEMORY = "memory"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class ThresholdAlert:
    """A resource threshold was exceeded."""

    app_name: str
    type: AlertType
    value: float  # CPU percent or megabytes
    threshold: float
    timestamp: datetime


class AppMonitor:
    """The most recent samples and the thresholds of one app."""

    def __init__(self, threshold: ThresholdConfig | None = None) -> None:
        self.threshold = threshold if threshold is not None else ThresholdConfig()
        self.last_alert: float | None = None
        self._samples: deque[ResourceSample] = deque(maxlen=MAX_SAMPLES)
        self._lock = threading.Lock()
        self._stop_event = threading.Event()

    def add_sample(self, sample: ResourceSample) -> None:
        """Store a sample, discarding the oldest once MAX_SAMPLES are held."""
        with self._lock:
            self._samples.append(sample)

    def latest(self) -> ResourceSample | None:
        """The most recent sample, or None."""
        with self._lock:
            return self._samples[-1] if self._samples else None

    def history(self, limit: int = 0) -> list[ResourceSample]:
        """Up to limit most recent samples, oldest first; all when limit <= 0."""
        with self._lock:
            samples = list(self._samples)
        if 0 < limit < len(samples):
            return samples[-limit:]
        return samples

    def compute_stats(self) -> ResourceStats | None:
        """Aggregate statistics over the stored samples, or None if there are none."""
        with self._lock:
            samples = list(self._samples)
        if not samples:
            return None
        cpus = [s.cpu_percent for s in samples]
        memories = [s.memory_rss for s in samples]
        first, latest = samples[0], samples[-1]
        return ResourceStats(
            current=latest,
            avg_cpu=sum(cpus) / len(samples),
            min_cpu=min(cpus),
            max_cpu=max(cpus),
            avg_memory=sum(memories) // len(samples),
            min_memory=min(memories),
            max_memory=max(memories),
            sample_count=len(samples),
            duration=latest.timestamp - first.timestamp,
        )

    def is_exceeded(self) -> bool:
        """True if the latest sample breaks a threshold."""
        latest = self.latest()
        if latest is None:
            return False
        limits = self.threshold
        if limits.max_cpu_percent > 0 and latest.cpu_percent > limits.max_cpu_percent:
            return True
        return limits.max_memory_mb > 0 and latest.memory_rss > limits.max_memory_mb * _MIB

    def _stop(self) -> None:
        self._stop_event.set()


class ResourceMonitor:
    """Polls the resource usage of registered apps in background threads."""

    def __init__(
        self,
        pid_func: Callable[[str], int],
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ) -> None:
        self.pid_func = pid_func
        self.poll_interval = poll_interval
        self._apps: dict[str, AppMonitor] = {}
        self._alerts: queue.Queue[ThresholdAlert] = queue.Queue(maxsize=ALERT_QUEUE_SIZE)
        self._lock = threading.Lock()

    def register(self, app_name: str, config: ThresholdConfig | None = None) -> None:
        """Start polling app_name, replacing any existing monitor for it."""
        monitor = AppMonitor(config)
        with self._lock:
            existing = self._apps.get(app_name)
            if existing is not None:
                existing._stop()
            self._apps[app_name] = monitor
        threading.Thread(target=self._poll, args=(app_name, monitor), daemon=True).start()

    def unregister(self, app_name: str) -> None:
        """Stop polling app_name."""
        with self._lock:
            monitor = self._apps.pop(app_name, None)
        if monitor is not None:
            monitor._stop()

    def app_names(self) -> list[str]:
        """Names of the registered apps."""
        with self._lock:
            return list(self._apps)

    def _get(self, app_name: str) -> AppMonitor | None:
        with self._lock:
            return self._apps.get(app_name)

    def get_stats(self, app_name: str) -> ResourceStats | None:
        """Aggregate statistics of an app, or None."""
        monitor = self._get(app_name)
        return monitor.compute_stats() if monitor is not None else None

    def get_latest(self, app_name: str) -> ResourceSample | None:
        """The most recent sample of an app, or None."""
        monitor = self._get(app_name)
        return monitor.latest() if monitor is not None else None

    def get_history(self, app_name: str, limit: int = 0) -> list[ResourceSample]:
        """Up to limit recent samples of an app, oldest first."""
        monitor = self._get(app_name)
        return monitor.history(limit) if monitor is not None else []

    def is_exceeded(self, app_name: str) -> bool:
        """True if the app's latest sample breaks its thresholds."""
        monitor = self._get(app_name)
        return monitor.is_exceeded() if monitor is not None else False

    def check_thresholds(
        self, app_name: str, monitor: AppMonitor, sample: ResourceSample
    ) -> None:
        """Queue alerts for the limits the sample breaks, at most once per cooldown."""
        with monitor._lock:
            last_alert = monitor.last_alert
            limits = monitor.threshold
        if last_alert is not None and time.monotonic() - last_alert < ALERT_COOLDOWN:
            return

        alerts: list[ThresholdAlert] = []
        if limits.max_cpu_percent > 0 and sample.cpu_percent > limits.max_cpu_percent:
            alerts.append(
                ThresholdAlert(
                    app_name=app_name,
                    type=AlertType.CPU,
                    value=sample.cpu_percent,
                    threshold=limits.max_cpu_percent,
                    timestamp=sample.timestamp,
                )
            )
        if limits.max_memory_mb > 0 and sample.memory_rss > limits.max_memory_mb * _MIB:
            alerts.append(
                ThresholdAlert(
                    app_name=app_name,
                    type=AlertType.MEMORY,
                    value=sample.memory_rss / _MIB,
                    threshold=float(limits.max_memory_mb),
                    timestamp=sample.timestamp,
                )
            )
        if not alerts:
            return

        with monitor._lock:
            monitor.last_alert = time.monotonic()
        for alert in alerts:
            try:
                self._alerts.put_nowait(alert)
            except queue.Full:
                pass

    def next_alert(self, timeout: float = 0.0) -> ThresholdAlert | None:
        """The next queued alert, waiting up to timeout seconds; None if none."""
        try:
            if timeout <= 0:
                return self._alerts.get_nowait()
            return self._alerts.get(timeout=timeout)
        except queue.Empty:
            return None

    def stop_all(self) -> None:
        """Stop polling every app."""
        with self._lock:
            monitors = list(self._apps.values())
            self._apps.clear()
        for monitor in monitors:
            monitor._stop()

    def _poll(self, app_name: str, monitor: AppMonitor) -> None:
        self._sample(app_name, monitor)
        while not monitor._stop_event.wait(self.poll_interval):
            self._sample(app_name, monitor)

    def _sample(self, app_name: str, monitor: AppMonitor) -> None:
        pid = self.pid_func(app_name)
        if pid == 0:
            return
        try:
            usage = get_resource_usage(pid)
        except (OSError, ValueError):
            return
        sample = ResourceSample(
            timestamp=datetime.now(),
            cpu_percent=usage.cpu_percent,
            memory_rss=usage.memory_rss,
        )
        monitor.add_sample(sample)
        self.check_thresholds(app_name, monitor, sample)