# -*- coding: utf-8 -*-
"""
Prometheus Metrics - Impact Engine

Prometheus metrics for factor resolution, allocation and aggregation.

Metrics:
    1.  il_engine_resolutions_total (Counter)
    2.  il_engine_resolution_duration_seconds (Histogram)
    3.  il_engine_cache_hits_total (Counter)
    4.  il_engine_cache_misses_total (Counter)
    5.  il_engine_cache_expirations_total (Counter)
    6.  il_engine_external_fallbacks_total (Counter)
    7.  il_engine_allocations_total (Counter)
    8.  il_engine_aggregations_total (Counter)
    9.  il_engine_aggregation_duration_seconds (Histogram)
    10. il_engine_skipped_production_entries_total (Counter)

Author: ImpactLedger Engine Team
Date: October 2026
Status: Production Ready
"""

from __future__ import annotations

import logging

from prometheus_client import Counter, Histogram

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Metric definitions
# ---------------------------------------------------------------------------

# 1. Resolutions by winning stage ("curated", "cache", "external", "miss")
engine_resolutions_total = Counter(
    "il_engine_resolutions_total",
    "Total factor resolutions by outcome stage",
    labelnames=["stage"],
)

# 2. Resolution duration
engine_resolution_duration_seconds = Histogram(
    "il_engine_resolution_duration_seconds",
    "Factor resolution duration in seconds",
    labelnames=["stage"],
    buckets=(0.0005, 0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# 3. Cache hits
engine_cache_hits_total = Counter(
    "il_engine_cache_hits_total",
    "Total factor cache hits",
)

# 4. Cache misses
engine_cache_misses_total = Counter(
    "il_engine_cache_misses_total",
    "Total factor cache misses",
)

# 5. Expired entries encountered
engine_cache_expirations_total = Counter(
    "il_engine_cache_expirations_total",
    "Total expired factor cache entries evicted on read",
)

# 6. External fallbacks to the mock generator
engine_external_fallbacks_total = Counter(
    "il_engine_external_fallbacks_total",
    "Total external source fallbacks to the mock generator",
    labelnames=["reason"],
)

# 7. Allocations
engine_allocations_total = Counter(
    "il_engine_allocations_total",
    "Total facility impact allocations",
    labelnames=["result"],
)

# 8. Aggregations
engine_aggregations_total = Counter(
    "il_engine_aggregations_total",
    "Total scope aggregations",
    labelnames=["kind"],
)

# 9. Aggregation duration
engine_aggregation_duration_seconds = Histogram(
    "il_engine_aggregation_duration_seconds",
    "Scope aggregation duration in seconds",
    labelnames=["kind"],
    buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0),
)

# 10. Skipped production entries
engine_skipped_production_entries_total = Counter(
    "il_engine_skipped_production_entries_total",
    "Production log entries skipped for missing or zero unit counts",
)


# ---------------------------------------------------------------------------
# Helper functions
# ---------------------------------------------------------------------------


def record_resolution(stage: str, duration_seconds: float) -> None:
    """Record a factor resolution.

    Args:
        stage: Winning stage name, or "miss".
        duration_seconds: Resolution duration in seconds.
    """
    engine_resolutions_total.labels(stage=stage).inc()
    engine_resolution_duration_seconds.labels(stage=stage).observe(duration_seconds)


def record_cache_hit() -> None:
    engine_cache_hits_total.inc()


def record_cache_miss() -> None:
    engine_cache_misses_total.inc()


def record_cache_expiration() -> None:
    engine_cache_expirations_total.inc()


def record_external_fallback(reason: str) -> None:
    """Record a degradation to the mock generator.

    Args:
        reason: "unconfigured", "timeout" or "error".
    """
    engine_external_fallbacks_total.labels(reason=reason).inc()


def record_allocation(result: str) -> None:
    """Record an allocation attempt ("success" or "rejected")."""
    engine_allocations_total.labels(result=result).inc()


def record_aggregation(kind: str, duration_seconds: float) -> None:
    """Record an aggregation run.

    Args:
        kind: "scope3" or "corporate".
        duration_seconds: Run duration in seconds.
    """
    engine_aggregations_total.labels(kind=kind).inc()
    engine_aggregation_duration_seconds.labels(kind=kind).observe(duration_seconds)


def record_skipped_entry() -> None:
    engine_skipped_production_entries_total.inc()


__all__ = [
    # Metric objects
    "engine_resolutions_total",
    "engine_resolution_duration_seconds",
    "engine_cache_hits_total",
    "engine_cache_misses_total",
    "engine_cache_expirations_total",
    "engine_external_fallbacks_total",
    "engine_allocations_total",
    "engine_aggregations_total",
    "engine_aggregation_duration_seconds",
    "engine_skipped_production_entries_total",
    # Helper functions
    "record_resolution",
    "record_cache_hit",
    "record_cache_miss",
    "record_cache_expiration",
    "record_external_fallback",
    "record_allocation",
    "record_aggregation",
    "record_skipped_entry",
]
