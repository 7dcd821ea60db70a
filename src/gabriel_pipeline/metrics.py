from __future__ import annotations

from prometheus_client import Counter, Histogram, start_http_server

upstream_requests_total = Counter(
    "gabriel_upstream_requests_total",
    "Upstream HTTP calls made to the generation providers",
    labelnames=["provider", "status"],
)

upstream_request_latency_seconds = Histogram(
    "gabriel_upstream_request_latency_seconds",
    "Upstream HTTP call latency (seconds)",
    buckets=[0.05, 0.1, 0.3, 0.5, 1, 2, 5, 10, 30, 60, 120],
    labelnames=["provider"],
)

upstream_circuit_breaker_events_total = Counter(
    "gabriel_upstream_circuit_breaker_events_total",
    "Circuit breaker events",
    labelnames=["provider", "event"],
)

run_poll_attempts = Histogram(
    "gabriel_run_poll_attempts",
    "Run status retrievals needed before a terminal status",
    buckets=[1, 2, 3, 5, 10, 20, 30, 60, 120],
)

generation_requests_total = Counter(
    "gabriel_generation_requests_total",
    "Generation requests handled by the pipeline",
    labelnames=["handler", "route", "status"],
)

generation_latency_seconds = Histogram(
    "gabriel_generation_latency_seconds",
    "End-to-end generation latency (seconds)",
    buckets=[0.5, 1, 2, 5, 10, 20, 30, 60, 120, 300],
    labelnames=["handler"],
)

cascade_reroutes_total = Counter(
    "gabriel_cascade_reroutes_total",
    "Primary failures transparently rerouted to the secondary provider",
    labelnames=["kind"],
)

error_reports_total = Counter(
    "gabriel_error_reports_total",
    "Classified generation failures",
    labelnames=["kind"],
)

extraction_tiers_total = Counter(
    "gabriel_extraction_tiers_total",
    "Winning extraction tier per document field",
    labelnames=["field", "tier"],
)


def maybe_start_metrics(*, enable: bool, bind: str, port: int) -> None:
    if not enable:
        return
    start_http_server(port, addr=bind)
