"""Prometheus metrics for the provider router."""

from __future__ import annotations

from prometheus_client import Counter, Histogram


# ── HTTP metrics ─────────────────────────────────────────────
HTTP_REQUESTS_TOTAL = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

HTTP_REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# ── Routing metrics ──────────────────────────────────────────
ROUTED_REQUESTS = Counter(
    "ai_router_requests_total",
    "Routed generation requests by final status",
    ["status"],  # success / error code
)

PROVIDER_ATTEMPTS = Counter(
    "ai_router_provider_attempts_total",
    "Provider attempts by outcome",
    ["provider", "outcome"],
)

RESERVATION_REFUSALS = Counter(
    "ai_router_reservation_refusals_total",
    "Reservations refused by the quota store",
    ["provider", "reason"],
)

REPAIRS_TOTAL = Counter(
    "ai_router_repairs_total",
    "Invalid-response repair attempts",
    ["provider", "outcome"],
)

PROVIDER_LATENCY = Histogram(
    "ai_router_provider_latency_seconds",
    "Provider adapter latency, repair included",
    ["provider"],
    buckets=(0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0),
)
