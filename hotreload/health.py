from __future__ import annotations

import time
from threading import Event, Thread
from typing import Callable, Mapping

import httpx

from .db import log_event


def check_health(url: str, timeout_s: float = 2.0, transport: httpx.BaseTransport | None = None) -> tuple[bool, str, float | None]:
    """Call a service health endpoint.

    Any 2xx counts as healthy unless the body is JSON carrying a `status`
    other than "healthy".
    Returns (is_healthy, message, latency_ms).
    """
    start = time.time()
    try:
        with httpx.Client(timeout=timeout_s, follow_redirects=False, transport=transport) as client:
            resp = client.get(url)
        latency_ms = round((time.time() - start) * 1000.0, 2)
        if not resp.is_success:
            return False, f"HTTP {resp.status_code}", latency_ms
        try:
            data = resp.json()
        except ValueError:
            return True, "Healthy", latency_ms
        if isinstance(data, dict) and "status" in data and data.get("status") != "healthy":
            return False, f"Unhealthy payload: {data!r}", latency_ms
        return True, "Healthy", latency_ms
    except (httpx.ConnectError, httpx.TimeoutException):
        latency_ms = round((time.time() - start) * 1000.0, 2)
        return False, "No response", latency_ms
    except httpx.HTTPError as e:
        latency_ms = round((time.time() - start) * 1000.0, 2)
        return False, f"Error: {type(e).__name__}: {e}", latency_ms


class HealthMonitor:
    """Periodically probes per-service health URLs and reports the outcome."""

    def __init__(
        self,
        urls: Mapping[str, str],
        on_health: Callable[[dict[str, bool]], None],
        interval_s: float = 15.0,
        timeout_s: float = 2.0,
        probe: Callable[..., tuple[bool, str, float | None]] = check_health,
        log: Callable[..., None] = log_event,
    ):
        self.urls = dict(urls)
        self.on_health = on_health
        self.interval_s = max(1.0, float(interval_s))
        self.timeout_s = timeout_s
        self._probe = probe
        self._log = log
        self._last: dict[str, bool] = {}
        self._stop = Event()
        self._thr: Thread | None = None

    def start(self) -> None:
        if not self.urls:
            return
        if self._thr and self._thr.is_alive():
            return
        self._stop.clear()
        self._thr = Thread(target=self._loop, daemon=True)
        self._thr.start()

    def stop(self) -> None:
        self._stop.set()

    def _loop(self) -> None:
        self._log("INFO", f"Health monitor started for {', '.join(sorted(self.urls))}")
        while not self._stop.is_set():
            try:
                self.tick()
            except Exception as e:
                self._log("ERROR", f"Health tick failed: {type(e).__name__}: {e}")
            self._stop.wait(self.interval_s)

    def tick(self) -> dict[str, bool]:
        report: dict[str, bool] = {}
        for service, url in self.urls.items():
            ok, msg, _latency = self._probe(url, timeout_s=self.timeout_s)
            prev = self._last.get(service)
            if prev and not ok:
                self._log("WARN", f"Service became unhealthy: {msg}", service_name=service)
            elif prev is False and ok:
                self._log("INFO", "Service recovered", service_name=service)
            self._last[service] = ok
            report[service] = ok
        if report:
            self.on_health(report)
        return report
