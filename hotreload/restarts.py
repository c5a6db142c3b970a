from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable

from .db import log_event
from .dependencies import DependencyGraph
from .docker_ops import ContainerNotFound, ContainerRuntime, container_name
from .events import (
    EventSink,
    NullSink,
    RestartCompleted,
    RestartFailed,
    RestartStarted,
    ServiceRestartFailed,
    ServiceRestarted,
    ServiceRestarting,
)
from .models import ConfigChange, RestartResult

STRATEGY_BY_SEVERITY = {
    "critical": "full",
    "moderate": "selective",
    "minor": "reload",
}


class RestartTimeout(Exception):
    pass


class UnknownStrategy(ValueError):
    pass


def select_strategy(severity: str) -> str:
    return STRATEGY_BY_SEVERITY.get(severity, "reload")


@dataclass(frozen=True)
class RestartTimings:
    stop_grace_s: int = 10
    stop_poll_s: float = 1.0
    stop_timeout_s: float = 30.0
    ready_poll_s: float = 2.0
    ready_timeout_s: float = 60.0
    settle_s: float = 2.0

    @classmethod
    def from_settings(cls, s) -> "RestartTimings":
        return cls(
            stop_grace_s=s.stop_grace_s,
            stop_poll_s=s.stop_poll_s,
            stop_timeout_s=s.stop_timeout_s,
            ready_poll_s=s.ready_poll_s,
            ready_timeout_s=s.ready_timeout_s,
            settle_s=s.settle_s,
        )


class RestartOrchestrator:
    """Drives restarts for classified config changes.

    Services in a batch are handled strictly one at a time in dependency
    order; a failing service is recorded and the batch moves on.
    Invocations are not serialized against each other.
    """

    def __init__(
        self,
        runtime: ContainerRuntime,
        graph: DependencyGraph | None = None,
        sink: EventSink | None = None,
        project_name: str = "clash-docker",
        timings: RestartTimings | None = None,
        reload_signal: str = "SIGHUP",
        on_failure: Callable[[str, Exception], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        log: Callable[..., None] = log_event,
    ):
        self.runtime = runtime
        self.graph = graph or DependencyGraph()
        self.sink = sink or NullSink()
        self.project_name = project_name
        self.timings = timings or RestartTimings()
        self.reload_signal = reload_signal
        self.on_failure = on_failure
        self._clock = clock
        self._sleep = sleep
        self._log = log

    def handle_config_change(self, change: ConfigChange, strategy: str | None = None) -> list[RestartResult]:
        """Restart whatever `change` affects. Per-service failures never raise."""
        strategy = strategy or select_strategy(change.severity)
        self._log("INFO", f"Handling config change: {change.file_path} ({change.severity}), strategy {strategy}")
        self.sink.publish(RestartStarted(change=change, strategy=strategy))

        try:
            results = self._execute(strategy, change)
        except Exception as e:
            msg = f"{type(e).__name__}: {e}"
            self._log("ERROR", f"Restart failed for {change.file_path}: {msg}")
            self.sink.publish(RestartFailed(change=change, error=msg))
            raise

        self.sink.publish(RestartCompleted(change=change, results=tuple(results)))
        ok = sum(1 for r in results if r.success)
        self._log("INFO", f"Restart completed: {ok}/{len(results)} services successful")
        return results

    def _execute(self, strategy: str, change: ConfigChange) -> list[RestartResult]:
        if strategy == "full":
            return self.full_restart()
        if strategy == "selective":
            return self.selective_restart(change.affected_services)
        if strategy == "reload":
            return self.reload_only(change.affected_services)
        raise UnknownStrategy(f"Unknown restart strategy: {strategy}")

    def full_restart(self) -> list[RestartResult]:
        self._log("INFO", "Performing full system restart")
        return self.selective_restart(self.graph.services())

    def selective_restart(self, services) -> list[RestartResult]:
        order = self.graph.restart_order(services)
        if order:
            self._log("INFO", f"Restarting services in order: {' -> '.join(order)}")
        results: list[RestartResult] = []

        for service in order:
            t0 = self._clock()
            self.sink.publish(ServiceRestarting(service=service))
            try:
                self._pre_restart_check(service)
                self._restart_gracefully(service)
                duration_ms = (self._clock() - t0) * 1000.0
            except Exception as e:
                duration_ms = (self._clock() - t0) * 1000.0
                msg = f"Failed to restart service {service}: {e}"
                results.append(RestartResult(service=service, success=False, duration_ms=duration_ms, error=msg))
                self.sink.publish(ServiceRestartFailed(service=service, error=msg))
                self._handle_failure(service, e)
                continue

            results.append(RestartResult(service=service, success=True, duration_ms=duration_ms))
            self.sink.publish(ServiceRestarted(service=service, duration_ms=duration_ms))
            self._log("INFO", f"Service restarted in {duration_ms / 1000.0:.1f}s", service_name=service)

        return results

    def reload_only(self, services) -> list[RestartResult]:
        """Send the reload signal to each service; no stop/start, no ordering."""
        services = list(dict.fromkeys(services))
        if services:
            self._log("INFO", f"Reloading configuration for services: {', '.join(services)}")
        results: list[RestartResult] = []
        for service in services:
            t0 = self._clock()
            try:
                self.runtime.signal(self._name(service), self.reload_signal)
            except Exception as e:
                duration_ms = (self._clock() - t0) * 1000.0
                msg = f"Failed to send reload signal to {service}: {e}"
                results.append(RestartResult(service=service, success=False, duration_ms=duration_ms, error=msg))
                self._log("ERROR", msg, service_name=service)
                continue
            duration_ms = (self._clock() - t0) * 1000.0
            results.append(RestartResult(service=service, success=True, duration_ms=duration_ms))
            self._log("INFO", f"Sent {self.reload_signal} ({duration_ms:.0f}ms)", service_name=service)
        return results

    def _name(self, service: str) -> str:
        return container_name(self.project_name, service)

    def _pre_restart_check(self, service: str) -> None:
        # Warn only; the restart is attempted either way.
        try:
            info = self.runtime.inspect(self._name(service))
        except Exception as e:
            self._log("WARN", f"Pre-restart check failed: {e}", service_name=service)
            return
        if not info.running:
            self._log("WARN", "Service is not running, will attempt to start", service_name=service)

    def _restart_gracefully(self, service: str) -> None:
        name = self._name(service)
        info = self.runtime.inspect(name)
        if info.running:
            self._log("INFO", "Stopping service", service_name=service)
            self.runtime.stop(name, self.timings.stop_grace_s)
            self._wait_for_stop(name)

        self._log("INFO", "Starting service", service_name=service)
        self.runtime.start(name)
        self._wait_for_ready(name)

    def _wait_for_stop(self, name: str) -> None:
        t0 = self._clock()
        while self._clock() - t0 < self.timings.stop_timeout_s:
            try:
                if not self.runtime.inspect(name).running:
                    return
            except ContainerNotFound:
                # Removed while stopping: that counts as stopped.
                return
            self._sleep(self.timings.stop_poll_s)
        raise RestartTimeout("Container stop timeout")

    def _wait_for_ready(self, name: str) -> None:
        t0 = self._clock()
        while self._clock() - t0 < self.timings.ready_timeout_s:
            try:
                info = self.runtime.inspect(name)
            except Exception as e:
                self._log("DEBUG", f"Readiness probe of {name} failed: {e}")
                info = None
            if info is not None and info.running:
                if info.health_status == "healthy":
                    return
                if info.health_status is None:
                    # No healthcheck configured: running is ready after a settle delay.
                    self._sleep(self.timings.settle_s)
                    return
            self._sleep(self.timings.ready_poll_s)
        raise RestartTimeout("Container ready timeout")

    def _handle_failure(self, service: str, error: Exception) -> None:
        self._log("ERROR", f"Service restart failed: {type(error).__name__}: {error}", service_name=service)
        if self.on_failure is not None:
            try:
                self.on_failure(service, error)
            except Exception as e:
                self._log("ERROR", f"Restart failure hook raised: {type(e).__name__}: {e}", service_name=service)
