"""Metrics module for Prometheus monitoring."""

from .metrics import API_CALLS, API_LATENCY, CACHE_HITS, CACHE_MISSES, OP_ITEMS, OP_LATENCY

__all__ = [
    "API_CALLS",
    "API_LATENCY",
    "OP_ITEMS",
    "OP_LATENCY",
    "CACHE_HITS",
    "CACHE_MISSES",
]
