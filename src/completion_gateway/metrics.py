from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram, start_http_server

server_requests_total = Counter(
    "gateway_server_requests_total",
    "Total HTTP requests handled by the gateway server",
    labelnames=["path", "status"],
)

server_errors_total = Counter(
    "gateway_server_errors_total",
    "Total errors returned by the gateway server",
    labelnames=["type"],
)

attempts_total = Counter(
    "gateway_attempts_total",
    "Upstream attempts by provider and outcome",
    labelnames=["provider", "outcome"],
)

attempt_latency_seconds = Histogram(
    "gateway_attempt_latency_seconds",
    "Latency of a single upstream attempt",
    buckets=[0.1, 0.3, 0.5, 1, 2, 5, 10, 30, 60],
    labelnames=["provider"],
)

dispatches_total = Counter(
    "gateway_dispatches_total",
    "Dispatch calls by final status",
    labelnames=["status"],
)

fallback_analyses_total = Counter(
    "gateway_fallback_analyses_total",
    "Journal analyses served by the rule-based analyzer",
)

upstream_healthy = Gauge(
    "gateway_upstream_healthy",
    "1 when the upstream service is considered healthy",
)


def maybe_start_metrics(*, enable: bool, bind: str, port: int) -> None:
    if not enable:
        return
    start_http_server(port, addr=bind)
