from __future__ import annotations

import io
import os
import time
from dataclasses import dataclass
from pathlib import PurePath
from threading import Lock
from types import MappingProxyType
from typing import Callable, Iterable, Mapping

from dotenv import dotenv_values

from .db import log_event
from .models import CHANGE_TYPES, MANUAL_TRIGGER_PATH, ConfigChange, Severity

DEFAULT_SEVERITY_RULES: dict[str, tuple[str, ...]] = {
    "critical": ("CLASH_SECRET", "CLASH_EXTERNAL_CONTROLLER", "COMPOSE_PROJECT_NAME"),
    "moderate": ("JP_HYSTERIA2_SERVER", "SJC_HYSTERIA2_SERVER", "CLASH_HTTP_PORT", "CLASH_SOCKS_PORT"),
    "minor": ("CLASH_LOG_LEVEL", "CLASH_IPV6", "CLASH_ALLOW_LAN"),
}

# Substring of a changed key -> service it affects.
DEFAULT_SERVICE_KEYWORDS: tuple[tuple[str, str], ...] = (
    ("CLASH", "clash"),
    ("NGINX", "nginx"),
    ("HYSTERIA2", "clash"),
    ("SHADOWSOCKS", "clash"),
    ("VMESS", "clash"),
    ("VLESS", "clash"),
)

RULES_DIR = "rules"
TEMPLATES_DIR = "templates"


@dataclass(frozen=True)
class ChangeImpact:
    severity: Severity
    affected_services: tuple[str, ...]
    changed_keys: tuple[str, ...]


def rule_matches(rule: str, key: str) -> bool:
    """Exact key name, or `*SUFFIX` matching any key ending with SUFFIX."""
    if rule.startswith("*"):
        return key.endswith(rule[1:])
    return rule == key


def changed_keys(old: Mapping[str, str], new: Mapping[str, str]) -> list[str]:
    """Keys added, removed or whose value differs."""
    keys = list(dict.fromkeys([*old.keys(), *new.keys()]))
    return [k for k in keys if old.get(k) != new.get(k)]


def parse_env(text: str) -> dict[str, str]:
    values = dotenv_values(stream=io.StringIO(text))
    return {k: ("" if v is None else v) for k, v in values.items()}


def is_env_file(path: str) -> bool:
    return PurePath(path).name.endswith(".env")


class ChangeClassifier:
    """Turns raw file events into `ConfigChange` records.

    Holds two process-wide tables guarded by one lock: the debounce table
    (path -> last accepted event time) and the snapshot cache (path -> last
    parsed key/value contents of .env files).
    """

    def __init__(
        self,
        primary_service: str = "clash",
        primary_config: str = "config.yaml",
        debounce_ms: int = 2000,
        severity_rules: Mapping[str, Iterable[str]] | None = None,
        service_keywords: Iterable[tuple[str, str]] | None = None,
        clock: Callable[[], float] = time.monotonic,
        log: Callable[..., None] = log_event,
    ) -> None:
        self.primary_service = primary_service
        self.primary_config = primary_config
        self.debounce_s = max(0, int(debounce_ms)) / 1000.0
        rules = DEFAULT_SEVERITY_RULES if severity_rules is None else severity_rules
        self.severity_rules = {level: tuple(rules.get(level, ())) for level in ("critical", "moderate", "minor")}
        self.service_keywords = tuple(DEFAULT_SERVICE_KEYWORDS if service_keywords is None else service_keywords)
        self._clock = clock
        self._log = log
        self._lock = Lock()
        self._last_event: dict[str, float] = {}
        self._cache: dict[str, dict[str, str]] = {}

    def handle_event(self, path: str, change_type: str, now: float | None = None) -> ConfigChange | None:
        """Debounce gate + classification. Returns None when the event is suppressed."""
        if change_type not in CHANGE_TYPES:
            raise ValueError(f"Unknown change type: {change_type}")
        if not self._accept(path, self._clock() if now is None else now):
            self._log("DEBUG", f"Debouncing change for {path}")
            return None
        self._log("INFO", f"Detected {change_type} change in {path}")
        return self.classify(path, change_type)

    def _accept(self, path: str, now: float) -> bool:
        with self._lock:
            last = self._last_event.get(path)
            if last is not None and now - last < self.debounce_s:
                return False
            self._last_event[path] = now
            return True

    def classify(self, path: str, change_type: str, content: bytes | None = None) -> ConfigChange:
        """Classify one change. `content` is the file's current bytes; read from disk when omitted."""
        parts = PurePath(path).parts
        if is_env_file(path):
            return self._classify_env(path, change_type, content)
        if RULES_DIR in parts[:-1]:
            return ConfigChange(path, change_type, "moderate", (self.primary_service,))
        if TEMPLATES_DIR in parts[:-1]:
            return ConfigChange(path, change_type, "minor", (self.primary_service,))
        if path.endswith((".yaml", ".yml")):
            severity: Severity = "critical" if PurePath(path).name == self.primary_config else "moderate"
            return ConfigChange(path, change_type, severity, (self.primary_service,))
        return ConfigChange(path, change_type)

    def _classify_env(self, path: str, change_type: str, content: bytes | None) -> ConfigChange:
        with self._lock:
            old = dict(self._cache.get(path, {}))

        if change_type == "unlinked":
            new: dict[str, str] = {}
            with self._lock:
                self._cache.pop(path, None)
        else:
            try:
                raw = content if content is not None else _read_bytes(path)
                new = parse_env(raw.decode("utf-8"))
            except (OSError, UnicodeDecodeError) as e:
                self._log("WARN", f"Failed to read {path}: {type(e).__name__}: {e}")
                return ConfigChange(path, change_type)
            with self._lock:
                self._cache[path] = dict(new)

        impact = self.impact(old, new)
        return ConfigChange(
            path,
            change_type,
            impact.severity,
            impact.affected_services,
            old_snapshot=MappingProxyType(old),
            new_snapshot=MappingProxyType(new),
            changed_keys=impact.changed_keys,
        )

    def impact(self, old: Mapping[str, str], new: Mapping[str, str]) -> ChangeImpact:
        keys = changed_keys(old, new)
        severity: Severity = "minor"
        services: list[str] = []
        for key in keys:
            if any(rule_matches(r, key) for r in self.severity_rules["critical"]):
                severity = "critical"
            elif severity != "critical" and any(rule_matches(r, key) for r in self.severity_rules["moderate"]):
                severity = "moderate"
            for keyword, service in self.service_keywords:
                if keyword in key and service not in services:
                    services.append(service)
        if not services:
            services.append(self.primary_service)
        return ChangeImpact(severity, tuple(services), tuple(keys))

    def prime(self, path: str) -> bool:
        """Load an existing .env file into the snapshot cache without classifying it."""
        if not is_env_file(path):
            return False
        try:
            values = parse_env(_read_bytes(path).decode("utf-8"))
        except (OSError, UnicodeDecodeError) as e:
            self._log("WARN", f"Failed to prime {path}: {type(e).__name__}: {e}")
            return False
        with self._lock:
            self._cache[path] = values
        return True

    def config_cache(self) -> dict[str, dict[str, str]]:
        with self._lock:
            return {p: dict(v) for p, v in self._cache.items()}

    def manual_change(self, services: Iterable[str], force: bool = False) -> ConfigChange:
        """Synthesize a change for an operator-triggered restart."""
        targets = tuple(dict.fromkeys(services))
        return ConfigChange(MANUAL_TRIGGER_PATH, "changed", "critical" if force else "moderate", targets)


def _read_bytes(path: str) -> bytes:
    with open(os.fspath(path), "rb") as fh:
        return fh.read()
