from __future__ import annotations

import os
from dataclasses import dataclass, field


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_list(name: str, default: str) -> tuple[str, ...]:
    raw = os.getenv(name, default)
    return tuple(p.strip() for p in raw.split(",") if p.strip())


def _env_map(name: str) -> dict[str, str]:
    """Parse `key=value,key=value` pairs. Entries without '=' are ignored."""
    out: dict[str, str] = {}
    for item in _env_list(name, ""):
        key, sep, value = item.partition("=")
        if sep and key.strip() and value.strip():
            out[key.strip()] = value.strip()
    return out


@dataclass(frozen=True)
class Settings:
    # Core
    db_path: str = os.getenv("HOTRELOAD_DB_PATH", "hotreload.db")
    project_name: str = os.getenv("COMPOSE_PROJECT_NAME", "clash-docker")
    primary_service: str = os.getenv("HOTRELOAD_PRIMARY_SERVICE", "clash")
    primary_config: str = os.getenv("HOTRELOAD_PRIMARY_CONFIG", "config.yaml")
    dependencies_file: str | None = os.getenv("HOTRELOAD_DEPENDENCIES_FILE")

    # Watching
    config_base_path: str = os.getenv("HOTRELOAD_CONFIG_BASE_PATH", "/app/config")
    watch_paths: tuple[str, ...] = _env_list("HOTRELOAD_WATCH_PATHS", ".env,config.yaml,rules/,templates/")
    debounce_ms: int = _env_int("HOTRELOAD_DEBOUNCE_MS", 2000)
    write_stability_ms: int = _env_int("HOTRELOAD_WRITE_STABILITY_MS", 1000)

    # Restart timings (seconds)
    stop_grace_s: int = _env_int("HOTRELOAD_STOP_GRACE_S", 10)
    stop_poll_s: float = _env_float("HOTRELOAD_STOP_POLL_S", 1.0)
    stop_timeout_s: float = _env_float("HOTRELOAD_STOP_TIMEOUT_S", 30.0)
    ready_poll_s: float = _env_float("HOTRELOAD_READY_POLL_S", 2.0)
    ready_timeout_s: float = _env_float("HOTRELOAD_READY_TIMEOUT_S", 60.0)
    settle_s: float = _env_float("HOTRELOAD_SETTLE_S", 2.0)
    reload_signal: str = os.getenv("HOTRELOAD_RELOAD_SIGNAL", "SIGHUP")

    # External health probes
    health_urls: dict[str, str] = field(default_factory=lambda: _env_map("HOTRELOAD_HEALTH_URLS"))
    health_interval_s: int = _env_int("HOTRELOAD_HEALTH_INTERVAL_S", 15)
    health_timeout_s: float = _env_float("HOTRELOAD_HEALTH_TIMEOUT_S", 2.0)

    # HTTP surface
    port: int = _env_int("HOTRELOAD_PORT", 8080)
    cors_origin: str = os.getenv("HOTRELOAD_CORS_ORIGIN", "*")

    # Safety knobs
    # Reject manual restarts of services that are not in the dependency graph.
    allow_unknown_services: bool = _env_bool("HOTRELOAD_ALLOW_UNKNOWN_SERVICES", False)

    def resolved_watch_paths(self) -> list[str]:
        return [os.path.normpath(os.path.join(self.config_base_path, p)) for p in self.watch_paths]


settings = Settings()
