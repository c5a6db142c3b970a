"""Fan-out of lifecycle events and status snapshots to live clients."""

from __future__ import annotations

import queue
from threading import Lock
from typing import Any, Callable

from .db import log_event, utc_now
from .events import (
    ConfigChangeDetected,
    ErrorReported,
    HealthReported,
    LifecycleEvent,
    RestartCompleted,
    RestartFailed,
    ServiceRestartFailed,
    ServiceRestarted,
    ServiceRestarting,
)
from .models import SystemStatus


def message(kind: str, data: Any) -> dict[str, Any]:
    return {"type": kind, "timestamp": utc_now(), "data": data}


class RealtimeBroadcaster:
    """Keeps one bounded queue per connected client; the oldest message is dropped on overflow."""

    def __init__(
        self,
        status_provider: Callable[[], SystemStatus] | None = None,
        maxlen: int = 200,
        log: Callable[..., None] = log_event,
    ) -> None:
        self._lock = Lock()
        self._clients: list[queue.Queue] = []
        self._maxlen = maxlen
        self._status_provider = status_provider
        self._log = log

    def register(self) -> queue.Queue:
        q: queue.Queue = queue.Queue(maxsize=self._maxlen)
        with self._lock:
            self._clients.append(q)
            n = len(self._clients)
        self._log("INFO", f"Client connected ({n} total)")
        return q

    def unregister(self, q: queue.Queue) -> None:
        with self._lock:
            if q in self._clients:
                self._clients.remove(q)
            n = len(self._clients)
        self._log("INFO", f"Client disconnected ({n} total)")

    def client_count(self) -> int:
        with self._lock:
            return len(self._clients)

    def status_message(self) -> dict[str, Any]:
        status = self._status_provider() if self._status_provider else SystemStatus()
        return message("status_update", status.to_dict())

    def services_message(self) -> dict[str, Any]:
        status = self._status_provider() if self._status_provider else SystemStatus()
        return message("services_list", {"services": sorted(status.services)})

    def publish_status(self, status: SystemStatus) -> None:
        self.broadcast(message("status_update", status.to_dict()))

    def publish(self, event: LifecycleEvent) -> None:
        msg = self.to_message(event)
        if msg is not None:
            self.broadcast(msg)

    def to_message(self, event: LifecycleEvent) -> dict[str, Any] | None:
        if isinstance(event, ConfigChangeDetected):
            return message("config_change", event.change.to_dict())
        if isinstance(event, ServiceRestarting):
            return message("restart_progress", {"service": event.service, "status": event.status, "progress": 0})
        if isinstance(event, ServiceRestarted):
            return message(
                "restart_progress",
                {"service": event.service, "status": event.status, "progress": 100, "duration_ms": event.duration_ms},
            )
        if isinstance(event, ServiceRestartFailed):
            return message("restart_progress", {"service": event.service, "status": "failed", "error": event.error})
        if isinstance(event, RestartCompleted):
            results = [r.to_dict() for r in event.results]
            return message(
                "restart_completed",
                {
                    "results": results,
                    "totalServices": len(results),
                    "successCount": len(results) - event.failed_count,
                    "failedCount": event.failed_count,
                    "totalDuration": sum(r.duration_ms for r in event.results),
                },
            )
        if isinstance(event, RestartFailed):
            return message("error", {"error": "Restart failed", "details": {"change": event.change.to_dict(), "error": event.error}})
        if isinstance(event, HealthReported):
            return message("health_update", {"services": dict(event.services)})
        if isinstance(event, ErrorReported):
            return message("error", {"error": event.message, "details": dict(event.details)})
        return None

    def broadcast(self, msg: dict[str, Any]) -> None:
        with self._lock:
            clients = list(self._clients)
        for q in clients:
            while True:
                try:
                    q.put_nowait(msg)
                    break
                except queue.Full:
                    try:
                        q.get_nowait()
                    except queue.Empty:
                        pass

    def close(self) -> None:
        with self._lock:
            self._clients.clear()
