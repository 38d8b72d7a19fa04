"""
Performance Monitoring

Two views of the same traffic:
    - Prometheus counters/histograms, scraped from /metrics
    - A bounded in-process history used by the admin performance page

Slow requests (over 2 s) are logged at WARNING and server errors at ERROR.
"""

import logging
import math
import time
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass, field
from threading import Lock
from typing import Iterator, Optional

from fastapi import Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

SLOW_REQUEST_MS = 2000
MAX_METRICS = 10_000


# =============================================================================
# PROMETHEUS
# =============================================================================

http_requests_total = Counter(
    "stallfront_http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
)

http_request_duration_seconds = Histogram(
    "stallfront_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

operation_duration_seconds = Histogram(
    "stallfront_operation_duration_seconds",
    "Duration of timed internal operations",
    ["operation"],
    buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0),
)

orders_placed_total = Counter(
    "stallfront_orders_placed_total",
    "Orders placed",
    ["channel", "payment_method"],
)

order_transitions_total = Counter(
    "stallfront_order_transitions_total",
    "Order status transitions",
    ["to_status"],
)


# =============================================================================
# IN-PROCESS HISTORY
# =============================================================================

@dataclass
class APIMetric:
    endpoint: str
    method: str
    status_code: int
    response_ms: float
    user_id: Optional[str] = None
    timestamp: float = field(default_factory=time.time)


@dataclass
class TimerMetric:
    name: str
    duration_ms: float
    timestamp: float = field(default_factory=time.time)


class PerformanceMonitor:
    """Keeps the most recent ``max_metrics`` API calls and timers."""

    def __init__(self, max_metrics: int = MAX_METRICS) -> None:
        self._api: deque[APIMetric] = deque(maxlen=max_metrics)
        self._timers: deque[TimerMetric] = deque(maxlen=max_metrics)
        self._lock = Lock()

    def record_request(
        self,
        endpoint: str,
        method: str,
        status_code: int,
        response_ms: float,
        user_id: Optional[str] = None,
    ) -> None:
        metric = APIMetric(endpoint, method, status_code, response_ms, user_id)
        with self._lock:
            self._api.append(metric)

        http_requests_total.labels(method=method, endpoint=endpoint, status=status_code).inc()
        http_request_duration_seconds.labels(method=method, endpoint=endpoint).observe(response_ms / 1000)

        if response_ms > SLOW_REQUEST_MS:
            logger.warning(f"Slow request: {method} {endpoint} took {response_ms:.0f}ms")
        if status_code >= 500:
            logger.error(f"Server error: {method} {endpoint} -> {status_code}")

    def record_timer(self, name: str, duration_ms: float) -> None:
        with self._lock:
            self._timers.append(TimerMetric(name, duration_ms))
        operation_duration_seconds.labels(operation=name).observe(duration_ms / 1000)

    @contextmanager
    def timer(self, name: str) -> Iterator[None]:
        start = time.perf_counter()
        try:
            yield
        finally:
            self.record_timer(name, (time.perf_counter() - start) * 1000)

    def summary(self, window_minutes: int = 5) -> dict:
        """Aggregate the requests seen within the last ``window_minutes``."""
        cutoff = time.time() - window_minutes * 60
        with self._lock:
            api = [m for m in self._api if m.timestamp >= cutoff]
            timers = [m for m in self._timers if m.timestamp >= cutoff]

        if not api:
            return {
                "window_minutes": window_minutes,
                "total_requests": 0,
                "avg_response_ms": 0.0,
                "p95_response_ms": 0.0,
                "error_rate": 0.0,
                "slowest_endpoints": [],
                "requests_per_endpoint": {},
                "timers": _timer_summary(timers),
            }

        times = sorted(m.response_ms for m in api)
        p95_index = max(0, math.ceil(len(times) * 0.95) - 1)
        errors = sum(1 for m in api if m.status_code >= 400)

        per_endpoint: dict[str, list[float]] = {}
        for m in api:
            per_endpoint.setdefault(f"{m.method} {m.endpoint}", []).append(m.response_ms)

        slowest = sorted(
            ({"endpoint": key, "avg_response_ms": round(sum(v) / len(v), 2), "count": len(v)}
             for key, v in per_endpoint.items()),
            key=lambda item: item["avg_response_ms"],
            reverse=True,
        )[:5]

        return {
            "window_minutes": window_minutes,
            "total_requests": len(api),
            "avg_response_ms": round(sum(times) / len(times), 2),
            "p95_response_ms": round(times[p95_index], 2),
            "error_rate": round(errors / len(api), 4),
            "slowest_endpoints": slowest,
            "requests_per_endpoint": {key: len(v) for key, v in per_endpoint.items()},
            "timers": _timer_summary(timers),
        }

    def clear(self) -> None:
        with self._lock:
            self._api.clear()
            self._timers.clear()


def _timer_summary(timers: list[TimerMetric]) -> dict:
    grouped: dict[str, list[float]] = {}
    for t in timers:
        grouped.setdefault(t.name, []).append(t.duration_ms)
    return {
        name: {"count": len(v), "avg_ms": round(sum(v) / len(v), 2), "max_ms": round(max(v), 2)}
        for name, v in grouped.items()
    }


performance_monitor = PerformanceMonitor()


# =============================================================================
# FASTAPI INTEGRATION
# =============================================================================

class MonitoringMiddleware(BaseHTTPMiddleware):
    """Times every request and feeds the monitor."""

    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            route = request.scope.get("route")
            endpoint = getattr(route, "path", request.url.path)
            performance_monitor.record_request(
                endpoint=endpoint,
                method=request.method,
                status_code=status_code,
                response_ms=(time.perf_counter() - start) * 1000,
                user_id=getattr(request.state, "user_id", None),
            )


def metrics_response() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
