from __future__ import annotations

import json
import os
import sqlite3
from datetime import datetime, timezone
from typing import Any, Iterable

from .settings import settings


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _resolve_db_path() -> str:
    """Return a file path usable by sqlite.

    If a bind-mounted *file* path does not exist, Docker creates a *directory*
    at that location, so a directory path stores the DB file inside it.
    """

    p = os.path.abspath(settings.db_path)

    if os.path.isdir(p):
        p = os.path.join(p, "hotreload.db")

    parent = os.path.dirname(p)
    if parent and not os.path.exists(parent):
        os.makedirs(parent, exist_ok=True)

    return p


def connect() -> sqlite3.Connection:
    conn = sqlite3.connect(_resolve_db_path(), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


def init_db() -> None:
    """Create tables if they do not exist."""
    with connect() as conn:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS events (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              ts TEXT NOT NULL,
              level TEXT NOT NULL,
              service_name TEXT,
              message TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS config_changes (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              ts TEXT NOT NULL,
              file_path TEXT NOT NULL,
              change_type TEXT NOT NULL, -- added|changed|unlinked
              severity TEXT NOT NULL, -- critical|moderate|minor
              affected_services TEXT NOT NULL, -- JSON list
              changed_keys TEXT NOT NULL -- JSON list
            );

            CREATE TABLE IF NOT EXISTS restart_results (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              change_id INTEGER,
              service TEXT NOT NULL,
              success INTEGER NOT NULL,
              duration_ms REAL NOT NULL,
              error TEXT,
              created_at TEXT NOT NULL,
              FOREIGN KEY(change_id) REFERENCES config_changes(id) ON DELETE CASCADE
            );

            CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);
            CREATE INDEX IF NOT EXISTS idx_results_change_id ON restart_results(change_id);
            """
        )


def log_event(level: str, message: str, service_name: str | None = None) -> None:
    with connect() as conn:
        conn.execute(
            "INSERT INTO events (ts, level, service_name, message) VALUES (?, ?, ?, ?)",
            (utc_now(), level.upper(), service_name, message),
        )


def insert_change(
    ts: str,
    file_path: str,
    change_type: str,
    severity: str,
    affected_services: Iterable[str],
    changed_keys: Iterable[str],
) -> int:
    with connect() as conn:
        cur = conn.execute(
            """
            INSERT INTO config_changes (ts, file_path, change_type, severity, affected_services, changed_keys)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (ts, file_path, change_type, severity, json.dumps(list(affected_services)), json.dumps(list(changed_keys))),
        )
        return int(cur.lastrowid)


def insert_result(change_id: int | None, service: str, success: bool, duration_ms: float, error: str | None) -> None:
    with connect() as conn:
        conn.execute(
            """
            INSERT INTO restart_results (change_id, service, success, duration_ms, error, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (change_id, service, 1 if success else 0, float(duration_ms), error, utc_now()),
        )


def latest_events(limit: int = 100) -> list[dict[str, Any]]:
    with connect() as conn:
        rows = conn.execute("SELECT * FROM events ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        return [dict(r) for r in rows]


def latest_changes(limit: int = 20) -> list[dict[str, Any]]:
    """Recent config changes, newest first, each with its restart results."""
    with connect() as conn:
        rows = conn.execute("SELECT * FROM config_changes ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        out: list[dict[str, Any]] = []
        for r in rows:
            item = dict(r)
            item["affected_services"] = json.loads(item["affected_services"])
            item["changed_keys"] = json.loads(item["changed_keys"])
            results = conn.execute(
                "SELECT service, success, duration_ms, error FROM restart_results WHERE change_id=? ORDER BY id",
                (item["id"],),
            ).fetchall()
            item["results"] = [dict(x, success=bool(x["success"])) for x in results]
            out.append(item)
        return out
