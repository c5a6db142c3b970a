"""Filesystem watch adapter: turns watchdog events into (path, change type) calls."""

from __future__ import annotations

import os
import threading
from pathlib import Path
from typing import Callable, Iterable

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .db import log_event


class _Handler(FileSystemEventHandler):
    def __init__(self, watcher: "ConfigWatcher") -> None:
        self.watcher = watcher

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.watcher.notify(event.src_path, "added")

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.watcher.notify(event.src_path, "changed")

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.watcher.notify(event.src_path, "unlinked")

    def on_moved(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self.watcher.notify(event.src_path, "unlinked")
        self.watcher.notify(getattr(event, "dest_path", ""), "added")


class ConfigWatcher:
    """Watches files and directories for changes.

    Directories are watched recursively. A file is watched through its parent
    directory, and only events for that exact file are forwarded. Hidden files
    are skipped unless they were named explicitly (e.g. `.env`).

    Adds and changes are held until the file's size and mtime have not moved
    for `stability_ms`, so half-written files never reach the callback.
    Deletions are forwarded at once and cancel any pending write.
    """

    def __init__(
        self,
        paths: Iterable[str],
        on_change: Callable[[str, str], None],
        log: Callable[..., None] = log_event,
        stability_ms: int = 1000,
    ) -> None:
        self.paths = [os.path.abspath(p) for p in paths]
        self.on_change = on_change
        self._log = log
        self._dirs: list[str] = []
        self._files: set[str] = set()
        for p in self.paths:
            if os.path.isdir(p) or (not os.path.exists(p) and not Path(p).suffix and not Path(p).name.startswith(".")):
                self._dirs.append(p)
            else:
                self._files.add(p)
        self._observer = None
        self.stability_s = max(stability_ms, 0) / 1000.0
        self._pending: dict[str, tuple[str, tuple[int, int] | None, threading.Timer]] = {}
        self._pending_lock = threading.Lock()

    def watched_paths(self) -> list[str]:
        return list(self.paths)

    def existing_files(self) -> list[str]:
        """Every file currently covered by the watch."""
        out = [f for f in sorted(self._files) if os.path.isfile(f)]
        for d in self._dirs:
            for root, dirnames, filenames in os.walk(d):
                dirnames[:] = sorted(x for x in dirnames if not x.startswith("."))
                out.extend(os.path.join(root, f) for f in sorted(filenames) if not f.startswith("."))
        return out

    def covers(self, path: str) -> bool:
        p = os.path.abspath(path)
        if p in self._files:
            return True
        for d in self._dirs:
            if os.path.commonpath([d, p]) == d and p != d:
                rel = os.path.relpath(p, d)
                return not any(part.startswith(".") for part in Path(rel).parts)
        return False

    def notify(self, path: str, change_type: str) -> None:
        """Entry point for raw filesystem events."""
        if not path or not self.covers(path):
            return
        path = os.path.abspath(path)
        if change_type == "unlinked" or self.stability_s <= 0:
            self._cancel(path)
            self.dispatch(path, change_type)
            return
        with self._pending_lock:
            prev = self._pending.get(path)
            if prev is not None:
                prev[2].cancel()
                if prev[0] == "added":
                    change_type = "added"
            self._arm(path, change_type, _stat(path))

    def _arm(self, path: str, change_type: str, sig: tuple[int, int] | None) -> None:
        # caller holds _pending_lock
        t = threading.Timer(self.stability_s, self._settle, args=(path,))
        t.daemon = True
        self._pending[path] = (change_type, sig, t)
        t.start()

    def _settle(self, path: str) -> None:
        with self._pending_lock:
            entry = self._pending.get(path)
            if entry is None or entry[2] is not threading.current_thread():
                return
            change_type, sig, _ = entry
            now = _stat(path)
            if now != sig:
                self._arm(path, change_type, now)
                return
            del self._pending[path]
        if now is None:
            return
        self.dispatch(path, change_type)

    def _cancel(self, path: str) -> None:
        with self._pending_lock:
            entry = self._pending.pop(path, None)
        if entry is not None:
            entry[2].cancel()

    def dispatch(self, path: str, change_type: str) -> None:
        if not path or not self.covers(path):
            return
        try:
            self.on_change(os.path.abspath(path), change_type)
        except Exception as e:
            self._log("ERROR", f"Error handling {change_type} of {path}: {type(e).__name__}: {e}")

    def start(self) -> None:
        if self._observer is not None:
            return
        observer = Observer()
        handler = _Handler(self)
        scheduled: set[str] = set()
        for d in self._dirs:
            if not os.path.isdir(d):
                self._log("WARN", f"Watch directory {d} does not exist; skipping")
                continue
            observer.schedule(handler, d, recursive=True)
            scheduled.add(d)
        for f in sorted(self._files):
            parent = os.path.dirname(f)
            if parent in scheduled:
                continue
            if not os.path.isdir(parent):
                self._log("WARN", f"Parent directory of {f} does not exist; skipping")
                continue
            observer.schedule(handler, parent, recursive=False)
            scheduled.add(parent)
        observer.start()
        self._observer = observer
        self._log("INFO", f"Watching {len(self.paths)} paths for changes")

    def stop(self) -> None:
        if self._observer is None:
            return
        self._log("INFO", "Stopping config file watcher")
        with self._pending_lock:
            timers = [entry[2] for entry in self._pending.values()]
            self._pending.clear()
        for t in timers:
            t.cancel()
        self._observer.stop()
        self._observer.join(timeout=5)
        self._observer = None


def _stat(path: str) -> tuple[int, int] | None:
    try:
        st = os.stat(path)
    except OSError:
        return None
    return st.st_size, st.st_mtime_ns
