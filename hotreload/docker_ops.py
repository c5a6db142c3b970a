from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Protocol

import docker
from docker.errors import DockerException, NotFound

SERVICE_NAME_RE = re.compile(r"^[a-z0-9][a-z0-9_\-]{0,62}$")


class ContainerRuntimeError(RuntimeError):
    pass


class ContainerNotFound(ContainerRuntimeError):
    def __init__(self, name: str):
        super().__init__(f"Container '{name}' not found")
        self.name = name


def validate_service_name(name: str) -> None:
    if not SERVICE_NAME_RE.match(name):
        raise ValueError(
            "Invalid service name. Use lowercase letters/numbers, '-' and '_' (max 63 chars)."
        )


def container_name(project: str, service: str) -> str:
    """Name docker compose gives the first replica of a service."""
    return f"{project}-{service}-1"


@dataclass(frozen=True)
class ContainerInfo:
    running: bool
    health_status: str | None = None  # healthy|unhealthy|starting|None (no healthcheck)


class ContainerRuntime(Protocol):
    def inspect(self, name: str) -> ContainerInfo: ...

    def stop(self, name: str, grace_s: int) -> None: ...

    def start(self, name: str) -> None: ...

    def signal(self, name: str, signal_name: str) -> None: ...


class DockerRuntime:
    """`ContainerRuntime` backed by the local docker daemon."""

    def __init__(self, client: docker.DockerClient | None = None) -> None:
        self._client = client

    def _docker(self) -> docker.DockerClient:
        if self._client is None:
            try:
                self._client = docker.from_env()
            except DockerException as e:
                raise ContainerRuntimeError(f"Docker is not available: {e}") from e
        return self._client

    def _get(self, name: str):
        try:
            return self._docker().containers.get(name)
        except NotFound as e:
            raise ContainerNotFound(name) from e
        except DockerException as e:
            raise ContainerRuntimeError(f"Cannot look up container '{name}': {e}") from e

    def inspect(self, name: str) -> ContainerInfo:
        state = (self._get(name).attrs or {}).get("State") or {}
        health = state.get("Health") or {}
        return ContainerInfo(running=bool(state.get("Running")), health_status=health.get("Status"))

    def stop(self, name: str, grace_s: int) -> None:
        cont = self._get(name)
        try:
            cont.stop(timeout=grace_s)
        except NotFound as e:
            raise ContainerNotFound(name) from e
        except DockerException as e:
            raise ContainerRuntimeError(f"Failed to stop '{name}': {e}") from e

    def start(self, name: str) -> None:
        cont = self._get(name)
        try:
            cont.start()
        except NotFound as e:
            raise ContainerNotFound(name) from e
        except DockerException as e:
            raise ContainerRuntimeError(f"Failed to start '{name}': {e}") from e

    def signal(self, name: str, signal_name: str) -> None:
        cont = self._get(name)
        try:
            cont.kill(signal=signal_name)
        except NotFound as e:
            raise ContainerNotFound(name) from e
        except DockerException as e:
            raise ContainerRuntimeError(f"Failed to send {signal_name} to '{name}': {e}") from e
