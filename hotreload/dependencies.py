from __future__ import annotations

from pathlib import Path
from threading import Lock
from typing import Iterable, Mapping

import yaml

DEFAULT_DEPENDENCIES: dict[str, list[str]] = {
    "clash": ["nginx", "web-ui"],
    "nginx": ["web-ui"],
    "web-ui": [],
    "config-watcher": [],
}


class DependencyGraph:
    """service -> services it depends on.

    Read-mostly; `replace` swaps the whole mapping, so a batch that already
    took a `snapshot` keeps planning against the old one.
    """

    def __init__(self, dependencies: Mapping[str, Iterable[str]] | None = None) -> None:
        self._lock = Lock()
        self._deps = _copy(DEFAULT_DEPENDENCIES if dependencies is None else dependencies)

    def snapshot(self) -> dict[str, list[str]]:
        with self._lock:
            return _copy(self._deps)

    def replace(self, dependencies: Mapping[str, Iterable[str]]) -> None:
        new = _copy(dependencies)
        with self._lock:
            self._deps = new

    def services(self) -> list[str]:
        with self._lock:
            return list(self._deps)

    def __contains__(self, service: object) -> bool:
        with self._lock:
            return service in self._deps

    def restart_order(self, requested: Iterable[str]) -> list[str]:
        return restart_order(self.snapshot(), requested)


def restart_order(dependencies: Mapping[str, Iterable[str]], requested: Iterable[str]) -> list[str]:
    """Dependency-first order for the requested services.

    Only dependencies that are themselves requested are pulled in; every
    requested dependency lands before its dependents. Cycles are not rejected:
    the back edge is simply skipped because its target is already visited.
    """
    wanted = list(dict.fromkeys(requested))
    wanted_set = set(wanted)
    order: list[str] = []
    visited: set[str] = set()

    def visit(service: str) -> None:
        if service in visited:
            return
        visited.add(service)
        for dep in dependencies.get(service, ()):
            if dep in wanted_set:
                visit(dep)
        order.append(service)

    for service in wanted:
        visit(service)
    return order


def load_dependencies(path: str | Path) -> dict[str, list[str]]:
    """Load a YAML mapping of service -> list of dependencies."""
    with Path(path).open("r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Dependency file {path} must contain a mapping of service -> list of services.")
    out: dict[str, list[str]] = {}
    for service, deps in data.items():
        if deps is None:
            deps = []
        if not isinstance(deps, list) or not all(isinstance(d, str) for d in deps):
            raise ValueError(f"Dependencies of '{service}' must be a list of service names.")
        out[str(service)] = list(deps)
    return out


def _copy(dependencies: Mapping[str, Iterable[str]]) -> dict[str, list[str]]:
    return {str(k): list(v) for k, v in dependencies.items()}
