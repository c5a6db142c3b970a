from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Literal, Mapping

from .db import utc_now

ChangeType = Literal["added", "changed", "unlinked"]
Severity = Literal["critical", "moderate", "minor"]
SystemState = Literal["stable", "updating", "restarting", "error"]
ServiceRunState = Literal["running", "stopped", "restarting", "error"]
Health = Literal["healthy", "unhealthy", "unknown"]

CHANGE_TYPES = frozenset({"added", "changed", "unlinked"})

MANUAL_TRIGGER_PATH = "manual-trigger"


@dataclass(frozen=True)
class ConfigChange:
    """One classified change, consumed once by the restart orchestrator.

    `affected_services` keeps first-seen order and holds no duplicates.
    Snapshots are only present for key-value (.env) files.
    """

    file_path: str
    change_type: ChangeType
    severity: Severity = "minor"
    affected_services: tuple[str, ...] = ()
    timestamp: str = field(default_factory=utc_now)
    old_snapshot: Mapping[str, str] | None = None
    new_snapshot: Mapping[str, str] | None = None
    changed_keys: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "file_path": self.file_path,
            "change_type": self.change_type,
            "severity": self.severity,
            "affected_services": list(self.affected_services),
            "changed_keys": list(self.changed_keys),
            "has_old_snapshot": self.old_snapshot is not None,
            "has_new_snapshot": self.new_snapshot is not None,
        }


@dataclass(frozen=True)
class RestartResult:
    service: str
    success: bool
    duration_ms: float
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ServiceState:
    status: ServiceRunState = "stopped"
    health: Health = "unknown"
    last_healthy_at: str | None = None


@dataclass
class SystemStatus:
    status: SystemState = "stable"
    services: dict[str, ServiceState] = field(default_factory=dict)
    last_update: str = field(default_factory=utc_now)

    def copy(self) -> "SystemStatus":
        return SystemStatus(
            status=self.status,
            services={name: ServiceState(**asdict(st)) for name, st in self.services.items()},
            last_update=self.last_update,
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
