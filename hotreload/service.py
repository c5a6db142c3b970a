from __future__ import annotations

from typing import Callable, Iterable, Mapping

from . import db
from .broadcaster import RealtimeBroadcaster
from .classifier import ChangeClassifier
from .dependencies import DependencyGraph, load_dependencies
from .docker_ops import ContainerRuntime, DockerRuntime
from .events import ConfigChangeDetected, ErrorReported, EventBus, EventRecorder, HealthReported
from .health import HealthMonitor
from .models import ConfigChange, RestartResult
from .restarts import RestartOrchestrator, RestartTimings
from .settings import Settings, settings as default_settings
from .status import StatusAggregator
from .watcher import ConfigWatcher


class HotReloadService:
    """Wires watcher -> classifier -> orchestrator, with every event fanned out
    to the status aggregator, the change history and live clients."""

    def __init__(
        self,
        runtime: ContainerRuntime | None = None,
        cfg: Settings | None = None,
        graph: DependencyGraph | None = None,
        watch_paths: Iterable[str] | None = None,
        health_urls: Mapping[str, str] | None = None,
        record_history: bool = True,
        log: Callable[..., None] = db.log_event,
        **orchestrator_kwargs,
    ):
        cfg = cfg or default_settings
        self.settings = cfg
        self._log = log

        if graph is None:
            deps = load_dependencies(cfg.dependencies_file) if cfg.dependencies_file else None
            graph = DependencyGraph(deps)
        self.graph = graph
        self.runtime = runtime or DockerRuntime()

        self.bus = EventBus(log=log)
        self.broadcaster = RealtimeBroadcaster(status_provider=lambda: self.aggregator.snapshot(), log=log)
        self.aggregator = StatusAggregator(on_update=self.broadcaster.publish_status)
        self.bus.subscribe(self.aggregator)
        self.bus.subscribe(self.broadcaster)
        if record_history:
            self.bus.subscribe(EventRecorder())

        self.classifier = ChangeClassifier(
            primary_service=cfg.primary_service,
            primary_config=cfg.primary_config,
            debounce_ms=cfg.debounce_ms,
            log=log,
        )
        orchestrator_kwargs.setdefault("timings", RestartTimings.from_settings(cfg))
        self.orchestrator = RestartOrchestrator(
            self.runtime,
            graph=self.graph,
            sink=self.bus,
            project_name=cfg.project_name,
            reload_signal=cfg.reload_signal,
            log=log,
            **orchestrator_kwargs,
        )
        paths = cfg.resolved_watch_paths() if watch_paths is None else list(watch_paths)
        self.watcher = ConfigWatcher(paths, self.on_file_event, log=log, stability_ms=cfg.write_stability_ms)
        self.health_monitor = HealthMonitor(
            cfg.health_urls if health_urls is None else health_urls,
            on_health=self.report_health,
            interval_s=cfg.health_interval_s,
            timeout_s=cfg.health_timeout_s,
            log=log,
        )

    def prime_cache(self) -> None:
        for path in self.watcher.existing_files():
            self.classifier.prime(path)

    def start(self) -> None:
        self.prime_cache()
        self.watcher.start()
        self.health_monitor.start()

    def stop(self) -> None:
        self.health_monitor.stop()
        self.watcher.stop()
        self.broadcaster.close()

    def on_file_event(self, path: str, change_type: str) -> None:
        """Watcher callback; never raises, the watch must survive."""
        try:
            change = self.classifier.handle_event(path, change_type)
            if change is None:
                return
            self.submit(change)
        except Exception as e:
            self._log("ERROR", f"Error handling config change in {path}: {type(e).__name__}: {e}")
            self.bus.publish(ErrorReported(message="Config change handling failed", details={"path": path, "error": str(e)}))

    def submit(self, change: ConfigChange) -> list[RestartResult]:
        """Entry point for classified and manual changes alike."""
        self._log("INFO", f"Config change detected: {change.file_path} ({change.severity})")
        self.bus.publish(ConfigChangeDetected(change=change))
        return self.orchestrator.handle_config_change(change)

    def manual_restart(self, service: str, force: bool = False) -> list[RestartResult]:
        return self.submit(self.classifier.manual_change([service], force=force))

    def report_health(self, services: Mapping[str, bool]) -> None:
        self.bus.publish(HealthReported(services=dict(services)))
