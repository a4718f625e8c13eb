"""In-process metrics rendered in Prometheus text format.

Covers HTTP traffic plus the real-time side: events fanned out, broadcast
failures and connected subscribers. Values live in this process only.
"""

import time
from collections import defaultdict, deque
from typing import Deque, Dict, Iterable, List, Tuple

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

# Durations kept per route for the summary quantiles
DURATION_WINDOW = 1000

RouteKey = Tuple[str, str]


def normalize_path(path: str) -> str:
    """Collapse numeric path segments to ``:id`` so routes group together."""
    return "/".join(":id" if segment.isdigit() else segment for segment in path.split("/"))


def _labels(**labels) -> str:
    inner = ",".join(f'{key}="{value}"' for key, value in labels.items())
    return f"{{{inner}}}" if inner else ""


class MetricsCollector:
    def __init__(self):
        self.requests: Dict[RouteKey, int] = defaultdict(int)
        self.durations: Dict[RouteKey, Deque[float]] = defaultdict(lambda: deque(maxlen=DURATION_WINDOW))
        self.errors: Dict[int, int] = defaultdict(int)
        self.active_requests = 0
        self.events_broadcast: Dict[str, int] = defaultdict(int)
        self.broadcast_failures = 0
        self.ws_active_connections = 0

    def record_request(self, method: str, path: str, status: int, duration: float) -> None:
        key = (method, normalize_path(path))
        self.requests[key] += 1
        self.durations[key].append(duration)
        if status >= 400:
            self.errors[status] += 1

    def record_broadcast(self, event: str) -> None:
        self.events_broadcast[event] += 1

    def record_broadcast_failure(self) -> None:
        self.broadcast_failures += 1

    @staticmethod
    def _block(name: str, kind: str, help_text: str, samples: Iterable[Tuple[str, float]]) -> List[str]:
        lines = [f"# HELP {name} {help_text}", f"# TYPE {name} {kind}"]
        lines.extend(f"{name}{labels} {value}" for labels, value in samples)
        return lines

    def _duration_samples(self) -> Iterable[Tuple[str, str]]:
        for (method, path), window in sorted(self.durations.items()):
            if not window:
                continue
            ordered = sorted(window)
            median = ordered[len(ordered) // 2]
            p99 = ordered[min(len(ordered) - 1, int(len(ordered) * 0.99))]
            yield _labels(method=method, path=path, quantile="0.5"), f"{median:.4f}"
            yield _labels(method=method, path=path, quantile="0.99"), f"{p99:.4f}"

    def get_prometheus_metrics(self) -> str:
        lines: List[str] = []
        lines += self._block(
            "http_requests_total", "counter", "HTTP requests by route",
            ((_labels(method=m, path=p), n) for (m, p), n in sorted(self.requests.items())),
        )
        lines += self._block(
            "http_errors_total", "counter", "HTTP responses with status >= 400",
            ((_labels(status=code), n) for code, n in sorted(self.errors.items())),
        )
        lines += self._block(
            "http_active_requests", "gauge", "Requests in progress", [("", self.active_requests)],
        )
        lines += self._block(
            "http_request_duration_seconds", "summary", "Request latency", self._duration_samples(),
        )
        lines += self._block(
            "ws_events_broadcast_total", "counter", "Events fanned out to subscribers",
            ((_labels(event=e), n) for e, n in sorted(self.events_broadcast.items())),
        )
        lines += self._block(
            "ws_broadcast_failures_total", "counter", "Broadcasts that raised and were dropped",
            [("", self.broadcast_failures)],
        )
        lines += self._block(
            "ws_active_connections", "gauge", "Connected WebSocket subscribers",
            [("", self.ws_active_connections)],
        )
        return "\n".join(lines) + "\n"


metrics = MetricsCollector()


class MetricsMiddleware(BaseHTTPMiddleware):
    """Record count, status and latency for every request except /metrics."""

    async def dispatch(self, request: Request, call_next):
        if request.url.path == "/metrics":
            return await call_next(request)

        metrics.active_requests += 1
        start = time.perf_counter()
        status = 500
        try:
            response = await call_next(request)
            status = response.status_code
            return response
        finally:
            metrics.active_requests -= 1
            metrics.record_request(request.method, request.url.path, status, time.perf_counter() - start)
