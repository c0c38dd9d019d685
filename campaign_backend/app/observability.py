from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from threading import Lock

from fastapi import Request

logger = logging.getLogger("campaign_dashboard")

METRIC_PREFIX = "campaign_dashboard"


@dataclass
class MetricsSnapshot:
    requests_total: int
    requests_5xx: int
    total_latency_ms: float
    dependency_failures: int


class MetricsRegistry:
    def __init__(self) -> None:
        self._lock = Lock()
        self._requests_total = 0
        self._requests_5xx = 0
        self._total_latency_ms = 0.0
        self._by_route_status: dict[tuple[str, str, int], int] = {}
        self._dependency_failures: dict[str, int] = {}

    def record(self, *, method: str, route: str, status_code: int, latency_ms: float) -> None:
        with self._lock:
            self._requests_total += 1
            if status_code >= 500:
                self._requests_5xx += 1
            self._total_latency_ms += latency_ms
            key = (method, route, status_code)
            self._by_route_status[key] = self._by_route_status.get(key, 0) + 1

    def record_dependency_failure(self, dependency: str) -> None:
        with self._lock:
            self._dependency_failures[dependency] = (
                self._dependency_failures.get(dependency, 0) + 1
            )

    def snapshot(self) -> MetricsSnapshot:
        with self._lock:
            return MetricsSnapshot(
                requests_total=self._requests_total,
                requests_5xx=self._requests_5xx,
                total_latency_ms=self._total_latency_ms,
                dependency_failures=sum(self._dependency_failures.values()),
            )

    def to_prometheus(self) -> str:
        snap = self.snapshot()
        avg_latency = (
            snap.total_latency_ms / snap.requests_total if snap.requests_total else 0.0
        )
        lines = [
            f"# HELP {METRIC_PREFIX}_requests_total Total HTTP requests",
            f"# TYPE {METRIC_PREFIX}_requests_total counter",
            f"{METRIC_PREFIX}_requests_total {snap.requests_total}",
            f"# HELP {METRIC_PREFIX}_requests_5xx_total Total 5xx HTTP requests",
            f"# TYPE {METRIC_PREFIX}_requests_5xx_total counter",
            f"{METRIC_PREFIX}_requests_5xx_total {snap.requests_5xx}",
            f"# HELP {METRIC_PREFIX}_request_avg_latency_ms Average request latency ms",
            f"# TYPE {METRIC_PREFIX}_request_avg_latency_ms gauge",
            f"{METRIC_PREFIX}_request_avg_latency_ms {avg_latency:.2f}",
            f"# HELP {METRIC_PREFIX}_dependency_failures_total Registry/state store failures",
            f"# TYPE {METRIC_PREFIX}_dependency_failures_total counter",
        ]
        with self._lock:
            for dependency, count in sorted(self._dependency_failures.items()):
                lines.append(
                    f'{METRIC_PREFIX}_dependency_failures_total{{dependency="{dependency}"}} {count}'
                )
            for (method, route, status_code), count in sorted(self._by_route_status.items()):
                lines.append(
                    f"{METRIC_PREFIX}_route_requests_total"
                    f'{{method="{method}",route="{route}",status="{status_code}"}} {count}'
                )
        return "\n".join(lines) + "\n"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def _route_label(request: Request) -> str:
    # Templated path keeps per-driver URLs from exploding the label set.
    route = request.scope.get("route")
    template = getattr(route, "path", None)
    return template or request.url.path


async def observe_request(
    request: Request,
    call_next,
    *,
    metrics: MetricsRegistry,
):
    start = time.perf_counter()
    try:
        response = await call_next(request)
        latency_ms = (time.perf_counter() - start) * 1000.0
        route = _route_label(request)
        metrics.record(
            method=request.method,
            route=route,
            status_code=response.status_code,
            latency_ms=latency_ms,
        )
        logger.info(
            "request_complete method=%s path=%s status=%s latency_ms=%.2f",
            request.method,
            request.url.path,
            response.status_code,
            latency_ms,
        )
        return response
    except Exception:
        latency_ms = (time.perf_counter() - start) * 1000.0
        metrics.record(
            method=request.method,
            route=_route_label(request),
            status_code=500,
            latency_ms=latency_ms,
        )
        logger.exception(
            "request_failed method=%s path=%s latency_ms=%.2f",
            request.method,
            request.url.path,
            latency_ms,
        )
        raise
