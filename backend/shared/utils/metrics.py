"""
Lightweight metrics collection for the MatchArena feed services.
Wraps prometheus_client with async-safe patterns.
"""
from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import AsyncIterator

from prometheus_client import Counter, Gauge, Histogram, start_http_server

from shared.config import get_settings
from shared.utils.logging import get_logger

logger = get_logger(__name__)

# ── Counters ────────────────────────────────────────────────────────────
PROVIDER_REQUESTS = Counter(
    "ma_provider_requests_total",
    "Total provider HTTP requests",
    ["provider", "method", "status"],
)
PROVIDER_RATE_LIMITED = Counter(
    "ma_provider_rate_limited_total",
    "Requests rejected by the local per-provider rate limiter",
    ["provider", "window"],
)
CACHE_LOOKUPS = Counter(
    "ma_cache_lookups_total",
    "Cache lookups by outcome",
    ["cache_class", "outcome"],
)
CACHE_REVALIDATIONS = Counter(
    "ma_cache_revalidations_total",
    "Background revalidations by result",
    ["cache_class", "result"],
)
NORMALIZATION_DROPS = Counter(
    "ma_normalization_drops_total",
    "Raw records discarded because they could not be normalized",
    ["sport"],
)
UNKNOWN_STATUS_CODES = Counter(
    "ma_unknown_status_codes_total",
    "Raw status codes outside the known vocabulary (mapped to NS)",
    ["sport"],
)
AGGREGATOR_BRANCH_FAILURES = Counter(
    "ma_aggregator_branch_failures_total",
    "Per-sport aggregator branches that failed and were replaced by an empty result",
    ["operation", "sport"],
)
SYNC_PERSISTED = Counter(
    "ma_sync_persisted_total",
    "Matches written to the shared store by the sync scheduler",
    ["bucket"],
)

# ── Histograms ──────────────────────────────────────────────────────────
PROVIDER_LATENCY = Histogram(
    "ma_provider_latency_seconds",
    "Provider request latency in seconds",
    ["provider"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)
SYNC_CYCLE = Histogram(
    "ma_sync_cycle_seconds",
    "Duration of one sync scheduler cycle",
    ["bucket"],
    buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

# ── Gauges ──────────────────────────────────────────────────────────────
CACHE_ENTRIES = Gauge(
    "ma_cache_entries",
    "Entries currently held by the response cache",
)
CACHE_IN_FLIGHT = Gauge(
    "ma_cache_in_flight",
    "Upstream fetches currently in flight",
)
LIVE_MATCHES = Gauge(
    "ma_live_matches",
    "Number of live matches seen in the last sync cycle",
    ["sport"],
)


@asynccontextmanager
async def atrack_latency(histogram: Histogram, **labels: str) -> AsyncIterator[None]:
    """Async context manager to track operation latency."""
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed = time.perf_counter() - start
        histogram.labels(**labels).observe(elapsed)


def start_metrics_server(port: int | None = None) -> None:
    """Start the Prometheus metrics HTTP server."""
    settings = get_settings()
    if not settings.metrics_enabled:
        return
    metrics_port = port or settings.metrics_port
    try:
        start_http_server(metrics_port)
        logger.info("metrics_server_started", port=metrics_port)
    except OSError as exc:
        logger.warning("metrics_server_failed", error=str(exc), port=metrics_port)
