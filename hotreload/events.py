"""Typed lifecycle events and the fan-out bus that delivers them."""

from __future__ import annotations

from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Callable, Protocol, Union

from . import db
from .db import log_event, utc_now
from .models import ConfigChange, RestartResult


@dataclass(frozen=True)
class ConfigChangeDetected:
    change: ConfigChange
    kind: str = "configChange"
    at: str = field(default_factory=utc_now)


@dataclass(frozen=True)
class RestartStarted:
    change: ConfigChange
    strategy: str
    kind: str = "restartStarted"
    at: str = field(default_factory=utc_now)


@dataclass(frozen=True)
class ServiceRestarting:
    service: str
    status: str = "starting"
    kind: str = "serviceRestarting"
    at: str = field(default_factory=utc_now)


@dataclass(frozen=True)
class ServiceRestarted:
    service: str
    duration_ms: float
    status: str = "healthy"
    kind: str = "serviceRestarted"
    at: str = field(default_factory=utc_now)


@dataclass(frozen=True)
class ServiceRestartFailed:
    service: str
    error: str
    kind: str = "serviceRestartFailed"
    at: str = field(default_factory=utc_now)


@dataclass(frozen=True)
class RestartCompleted:
    change: ConfigChange
    results: tuple[RestartResult, ...]
    kind: str = "restartCompleted"
    at: str = field(default_factory=utc_now)

    @property
    def failed_count(self) -> int:
        return sum(1 for r in self.results if not r.success)


@dataclass(frozen=True)
class RestartFailed:
    change: ConfigChange
    error: str
    kind: str = "restartFailed"
    at: str = field(default_factory=utc_now)


@dataclass(frozen=True)
class HealthReported:
    """Health observed outside of a restart, service -> healthy?"""

    services: dict[str, bool]
    kind: str = "healthReported"
    at: str = field(default_factory=utc_now)


@dataclass(frozen=True)
class ErrorReported:
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    kind: str = "error"
    at: str = field(default_factory=utc_now)


LifecycleEvent = Union[
    ConfigChangeDetected,
    RestartStarted,
    ServiceRestarting,
    ServiceRestarted,
    ServiceRestartFailed,
    RestartCompleted,
    RestartFailed,
    HealthReported,
    ErrorReported,
]


class EventSink(Protocol):
    def publish(self, event: LifecycleEvent) -> None: ...


class NullSink:
    def publish(self, event: LifecycleEvent) -> None:
        return None


class EventBus:
    """Delivers each event to every subscribed sink, in subscription order.

    Delivery is best-effort: a failing sink is logged and skipped.
    """

    def __init__(self, log: Callable[..., None] = log_event) -> None:
        self._lock = Lock()
        self._sinks: list[EventSink] = []
        self._log = log

    def subscribe(self, sink: EventSink) -> None:
        with self._lock:
            self._sinks.append(sink)

    def unsubscribe(self, sink: EventSink) -> None:
        with self._lock:
            if sink in self._sinks:
                self._sinks.remove(sink)

    def publish(self, event: LifecycleEvent) -> None:
        with self._lock:
            sinks = list(self._sinks)
        for sink in sinks:
            try:
                sink.publish(event)
            except Exception as e:
                self._log("ERROR", f"Event sink {type(sink).__name__} failed on {event.kind}: {type(e).__name__}: {e}")


class EventRecorder:
    """Persists classified changes and their restart results."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._change_ids: dict[int, int] = {}  # id(ConfigChange) -> row id

    def publish(self, event: LifecycleEvent) -> None:
        if isinstance(event, ConfigChangeDetected):
            c = event.change
            row_id = db.insert_change(c.timestamp, c.file_path, c.change_type, c.severity, c.affected_services, c.changed_keys)
            with self._lock:
                self._change_ids[id(c)] = row_id
        elif isinstance(event, RestartCompleted):
            with self._lock:
                change_id = self._change_ids.pop(id(event.change), None)
            for r in event.results:
                db.insert_result(change_id, r.service, r.success, r.duration_ms, r.error)
        elif isinstance(event, RestartFailed):
            with self._lock:
                self._change_ids.pop(id(event.change), None)
