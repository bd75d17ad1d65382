from __future__ import annotations

import threading
from collections import Counter

from common.utils import now_utc_iso
from fastapi import Request
from pydantic import BaseModel


class MetricsSnapshot(BaseModel):
    generated_at: str
    totals: dict[str, int]
    events: dict[str, int]
    endpoints: dict[str, dict[str, float | int]]


def route_label(request: Request) -> str:
    """Templated route path, so ``/api/jobs/17`` and ``/api/jobs/18`` share a bucket."""
    route = request.scope.get("route")
    template = getattr(route, "path", None)
    return template or request.url.path


class MetricsStore:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._totals = {"requests": 0, "errors": 0}
        self._events: Counter[str] = Counter()
        self._endpoints: dict[str, dict[str, float | int]] = {}

    def observe(self, *, method: str, route: str, status_code: int, duration_ms: float) -> None:
        key = f"{method} {route}"
        bucket = f"{status_code // 100}xx"
        with self._lock:
            self._totals["requests"] += 1
            if status_code >= 400:
                self._totals["errors"] += 1
            endpoint = self._endpoints.setdefault(
                key,
                {"count": 0, "2xx": 0, "4xx": 0, "5xx": 0, "latency_ms_sum": 0.0},
            )
            endpoint["count"] = int(endpoint["count"]) + 1
            if bucket in ("2xx", "4xx", "5xx"):
                endpoint[bucket] = int(endpoint[bucket]) + 1
            endpoint["latency_ms_sum"] = float(endpoint["latency_ms_sum"]) + duration_ms

    def record_event(self, name: str) -> None:
        with self._lock:
            self._events[name] += 1

    def snapshot(self) -> MetricsSnapshot:
        with self._lock:
            endpoints: dict[str, dict[str, float | int]] = {}
            for key, value in self._endpoints.items():
                stats = dict(value)
                stats["latency_ms_avg"] = float(stats["latency_ms_sum"]) / int(stats["count"])
                endpoints[key] = stats
            return MetricsSnapshot(
                generated_at=now_utc_iso(),
                totals=dict(self._totals),
                events=dict(self._events),
                endpoints=endpoints,
            )
