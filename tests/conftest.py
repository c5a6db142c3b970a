import os
import tempfile

# Point the sqlite log at a throwaway file before anything imports settings.
os.environ.setdefault("HOTRELOAD_DB_PATH", os.path.join(tempfile.mkdtemp(prefix="hotreload-tests-"), "test.db"))

import pytest

from hotreload import db
from hotreload.dependencies import DependencyGraph
from hotreload.docker_ops import ContainerInfo, ContainerNotFound, container_name
from hotreload.restarts import RestartOrchestrator

PROJECT = "clash-docker"
THREE_NODE_GRAPH = {"clash": ["nginx", "web-ui"], "nginx": ["web-ui"], "web-ui": []}


@pytest.fixture(scope="session", autouse=True)
def _init_db():
    db.init_db()


class FakeClock:
    """Monotonic clock that only moves when someone sleeps."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeRuntime:
    """In-memory container runtime keyed by container name.

    Knobs (all sets of service names):
      missing      - container does not exist
      stuck        - ignores stop, stays running
      never_ready  - after start reports health "starting" forever
      no_health    - has no healthcheck configured
      vanish_once  - the first inspect after stop reports the container gone
      bad_signal   - signal() fails with a runtime error
    """

    def __init__(self, services=(), project: str = PROJECT, running: bool = True) -> None:
        self.project = project
        self.calls: list[tuple] = []
        self.running: dict[str, bool] = {self.name(s): running for s in services}
        self.missing: set[str] = set()
        self.stuck: set[str] = set()
        self.never_ready: set[str] = set()
        self.no_health: set[str] = set()
        self.vanish_once: set[str] = set()
        self.bad_signal: set[str] = set()

    def name(self, service: str) -> str:
        return container_name(self.project, service)

    def _service(self, name: str) -> str:
        return name[len(self.project) + 1 : -2]

    def _check(self, name: str) -> str:
        svc = self._service(name)
        if svc in self.missing or name not in self.running:
            raise ContainerNotFound(name)
        return svc

    def inspect(self, name: str) -> ContainerInfo:
        self.calls.append(("inspect", name))
        svc = self._service(name)
        if svc in self.vanish_once and ("stop", name) in [c[:2] for c in self.calls]:
            self.vanish_once.discard(svc)
            raise ContainerNotFound(name)
        self._check(name)
        running = self.running[name]
        if not running or svc in self.no_health:
            return ContainerInfo(running=running, health_status=None)
        return ContainerInfo(running=True, health_status="starting" if svc in self.never_ready else "healthy")

    def stop(self, name: str, grace_s: int) -> None:
        self.calls.append(("stop", name, grace_s))
        svc = self._check(name)
        if svc not in self.stuck:
            self.running[name] = False

    def start(self, name: str) -> None:
        self.calls.append(("start", name))
        self._check(name)
        self.running[name] = True

    def signal(self, name: str, signal_name: str) -> None:
        self.calls.append(("signal", name, signal_name))
        svc = self._check(name)
        if svc in self.bad_signal:
            raise RuntimeError(f"cannot signal {name}")

    def ops(self, *kinds: str) -> list[tuple]:
        return [c for c in self.calls if c[0] in kinds]


class LogRecorder:
    def __init__(self) -> None:
        self.lines: list[tuple[str, str, str | None]] = []

    def __call__(self, level: str, message: str, service_name: str | None = None) -> None:
        self.lines.append((level.upper(), message, service_name))

    def levels(self, level: str) -> list[str]:
        return [m for lvl, m, _ in self.lines if lvl == level]


class RecordingSink:
    def __init__(self) -> None:
        self.events: list = []

    def publish(self, event) -> None:
        self.events.append(event)

    def kinds(self) -> list[str]:
        return [e.kind for e in self.events]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def logs():
    return LogRecorder()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def runtime():
    return FakeRuntime(THREE_NODE_GRAPH)


@pytest.fixture
def orchestrator(runtime, sink, clock, logs):
    return RestartOrchestrator(
        runtime,
        graph=DependencyGraph(THREE_NODE_GRAPH),
        sink=sink,
        project_name=PROJECT,
        clock=clock,
        sleep=clock.sleep,
        log=logs,
    )
