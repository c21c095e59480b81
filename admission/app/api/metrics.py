"""Metrics and monitoring endpoints for the admission service.

This module provides Prometheus-compatible metrics for rate limit decisions
(pass, block, degraded) per preset and request latencies per endpoint.
"""

import asyncio
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, Tuple

from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse

from admission.app.core.logging import get_logger
from admission.app.middleware.auth import require_admin

logger = get_logger(__name__)
router = APIRouter()


@dataclass
class RequestMetrics:
    """Metrics for a single endpoint."""

    count: int = 0
    total_duration: float = 0.0
    errors: int = 0


@dataclass
class MetricsCollector:
    """Collects and stores admission metrics.

    One instance per application, created by the app factory and kept on
    ``app.state.metrics``.
    """

    # Request metrics by endpoint
    _requests: Dict[str, RequestMetrics] = field(
        default_factory=lambda: defaultdict(RequestMetrics)
    )

    # Decision counts by (preset, outcome)
    _decisions: Dict[Tuple[str, str], int] = field(default_factory=lambda: defaultdict(int))

    # Async safety
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    # Start time for uptime calculation
    _start_time: float = field(default_factory=time.time)

    async def record_request(
        self, endpoint: str, duration: float, status_code: int
    ) -> None:
        """Record a request metric.

        Args:
            endpoint: The endpoint path
            duration: Request duration in seconds
            status_code: HTTP status code
        """
        async with self._lock:
            metrics = self._requests[endpoint]
            metrics.count += 1
            metrics.total_duration += duration
            if status_code >= 400:
                metrics.errors += 1

    async def record_decision(self, preset: str, outcome: str) -> None:
        """Record a rate limit decision.

        Args:
            preset: Preset name
            outcome: "pass", "block" or "degraded"
        """
        async with self._lock:
            self._decisions[(preset, outcome)] += 1

    async def get_decision_count(self, preset: str, outcome: str) -> int:
        async with self._lock:
            return self._decisions.get((preset, outcome), 0)

    async def get_summary(self) -> Dict[str, Any]:
        """Get a summary of all metrics.

        Returns:
            Dictionary with metrics summary
        """
        async with self._lock:
            total_requests = sum(m.count for m in self._requests.values())
            total_errors = sum(m.errors for m in self._requests.values())

            decisions: Dict[str, Dict[str, int]] = defaultdict(dict)
            for (preset, outcome), count in self._decisions.items():
                decisions[preset][outcome] = count

            endpoints = {
                endpoint: {
                    "count": metrics.count,
                    "avg_duration_ms": round(
                        (metrics.total_duration / metrics.count) * 1000, 2
                    ),
                    "error_count": metrics.errors,
                }
                for endpoint, metrics in self._requests.items()
                if metrics.count > 0
            }

            return {
                "uptime_seconds": round(time.time() - self._start_time, 2),
                "total_requests": total_requests,
                "total_errors": total_errors,
                "endpoints": endpoints,
                "decisions": dict(decisions),
            }

    async def get_prometheus_metrics(self) -> str:
        """Get metrics in Prometheus text format.

        Returns:
            Prometheus-formatted metrics string
        """
        async with self._lock:
            lines = []

            lines.append("# HELP admission_decisions_total Rate limit decisions by preset and outcome")
            lines.append("# TYPE admission_decisions_total counter")
            for (preset, outcome), count in sorted(self._decisions.items()):
                lines.append(
                    f'admission_decisions_total{{preset="{preset}",outcome="{outcome}"}} {count}'
                )

            lines.append("\n# HELP admission_requests_total Total number of requests")
            lines.append("# TYPE admission_requests_total counter")
            for endpoint, metrics in self._requests.items():
                lines.append(
                    f'admission_requests_total{{endpoint="{endpoint}"}} {metrics.count}'
                )

            lines.append(
                "\n# HELP admission_request_duration_seconds Total request duration"
            )
            lines.append("# TYPE admission_request_duration_seconds counter")
            for endpoint, metrics in self._requests.items():
                lines.append(
                    f'admission_request_duration_seconds{{endpoint="{endpoint}"}} {metrics.total_duration}'
                )

            lines.append("\n# HELP admission_uptime_seconds Service uptime in seconds")
            lines.append("# TYPE admission_uptime_seconds gauge")
            lines.append(
                f"admission_uptime_seconds {round(time.time() - self._start_time, 2)}"
            )

            return "\n".join(lines) + "\n"


def get_metrics_collector(request: Request) -> MetricsCollector:
    """Metrics collector owned by the application."""
    return request.app.state.metrics


@router.get("/metrics", response_class=PlainTextResponse)
async def prometheus_metrics(
    admin=Depends(require_admin),
    collector: MetricsCollector = Depends(get_metrics_collector),
) -> PlainTextResponse:
    """Prometheus-compatible metrics endpoint (admin only)."""
    content = await collector.get_prometheus_metrics()
    return PlainTextResponse(
        content=content, media_type="text/plain; version=0.0.4; charset=utf-8"
    )


@router.get("/stats")
async def admission_stats(
    admin=Depends(require_admin),
    collector: MetricsCollector = Depends(get_metrics_collector),
) -> dict[str, Any]:
    """Detailed admission statistics (admin only)."""
    return await collector.get_summary()


class MetricsMiddleware:
    """ASGI middleware to collect request metrics.

    Example:
        app.add_middleware(MetricsMiddleware, collector=collector)
    """

    def __init__(self, app, collector: MetricsCollector):
        self.app = app
        self.collector = collector

    async def __call__(self, scope, receive, send):
        """Process request and collect metrics."""
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        start_time = time.time()
        status_code = 200

        async def wrapped_send(message):
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message.get("status", 200)
            await send(message)

        try:
            await self.app(scope, receive, wrapped_send)
        finally:
            duration = time.time() - start_time
            endpoint = scope.get("path", "unknown")
            await self.collector.record_request(endpoint, duration, status_code)
