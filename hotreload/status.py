from __future__ import annotations

from threading import Lock
from typing import Callable, Mapping

from .db import utc_now
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
from .models import ServiceState, SystemState, SystemStatus


def derive_status(services: Mapping[str, ServiceState]) -> SystemState:
    """System status as a pure function of the per-service states."""
    if not services:
        return "stable"
    states = list(services.values())
    if any(s.status == "error" or s.health == "unhealthy" for s in states):
        return "error"
    if any(s.status == "restarting" for s in states):
        return "restarting"
    return "stable"


class StatusAggregator:
    """Owns the process-wide `SystemStatus`.

    All mutations go through `publish` (lifecycle events) or the explicit
    update methods, under one lock. Readers only ever get copies.
    """

    def __init__(
        self,
        on_update: Callable[[SystemStatus], None] | None = None,
        clock: Callable[[], str] = utc_now,
    ) -> None:
        self._lock = Lock()
        self._clock = clock
        self._status = SystemStatus(last_update=clock())
        self._on_update = on_update
        self._handlers: dict[type, Callable[[LifecycleEvent], None]] = {
            ConfigChangeDetected: self._on_config_change,
            ServiceRestarting: self._on_restarting,
            ServiceRestarted: self._on_restarted,
            ServiceRestartFailed: self._on_restart_failed,
            RestartCompleted: self._on_completed,
            RestartFailed: self._on_failed,
            HealthReported: self._on_health,
            ErrorReported: self._on_error,
        }

    def snapshot(self) -> SystemStatus:
        with self._lock:
            return self._status.copy()

    def publish(self, event: LifecycleEvent) -> None:
        handler = self._handlers.get(type(event))
        if handler is None:
            return
        with self._lock:
            handler(event)
            self._status.last_update = self._clock()
            snap = self._status.copy()
        if self._on_update is not None:
            self._on_update(snap)

    # Handlers run with the lock held.

    def _service(self, name: str) -> ServiceState:
        st = self._status.services.get(name)
        if st is None:
            st = self._status.services[name] = ServiceState()
        return st

    def _rederive(self) -> None:
        self._status.status = derive_status(self._status.services)

    def _on_config_change(self, event: ConfigChangeDetected) -> None:
        self._status.status = "updating"

    def _on_restarting(self, event: ServiceRestarting) -> None:
        self._service(event.service).status = "restarting"
        self._status.status = "restarting"

    def _on_restarted(self, event: ServiceRestarted) -> None:
        st = self._service(event.service)
        st.status = "running"
        st.health = "healthy"
        st.last_healthy_at = self._clock()
        self._rederive()

    def _on_restart_failed(self, event: ServiceRestartFailed) -> None:
        st = self._service(event.service)
        st.status = "error"
        st.health = "unhealthy"
        self._status.status = "error"

    def _on_completed(self, event: RestartCompleted) -> None:
        self._status.status = "error" if event.failed_count else "stable"

    def _on_failed(self, event: RestartFailed) -> None:
        self._status.status = "error"

    def _on_health(self, event: HealthReported) -> None:
        for name, healthy in event.services.items():
            st = self._status.services.get(name)
            if st is None:
                st = self._status.services[name] = ServiceState(status="running")
            st.health = "healthy" if healthy else "unhealthy"
            st.status = "running" if healthy else "error"
            if healthy:
                st.last_healthy_at = self._clock()
        self._rederive()

    def _on_error(self, event: ErrorReported) -> None:
        self._status.status = "error"
