"""Prometheus metrics for crawl, cache and index operations."""

import prometheus_client as _prom

Counter = _prom.Counter
Histogram = _prom.Histogram


API_LATENCY = Histogram(
    "mattermost_api_latency_seconds",
    "Mattermost API latency in seconds by method and status",
    ["method", "status"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, float("inf")),
)
API_CALLS = Counter(
    "mattermost_api_calls_total",
    "Mattermost API call count by method and status",
    ["method", "status"],
)

OP_LATENCY = Histogram(
    "archive_operation_latency_seconds",
    "Total latency of archive operations by operation",
    ["operation"],
    buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, float("inf")),
)
OP_ITEMS = Histogram(
    "archive_operation_items",
    "Total number of items handled by archive operations",
    ["operation"],
    buckets=(0, 1, 5, 10, 20, 50, 100, 200, 500, 1000, 5000, float("inf")),
)

CACHE_HITS = Counter(
    "mirror_cache_hits_total",
    "Resources served from the local mirror",
)
CACHE_MISSES = Counter(
    "mirror_cache_misses_total",
    "Resources fetched from the remote service",
)
