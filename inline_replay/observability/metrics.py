"""
Prometheus Metrics for the inline replay harness.

Provides metrics collection for store round-trips, identity resolution,
recorded decisions and loaded replay sets.

The membership predicates (``force_inline``/``should_compile``) are not
instrumented: they are pure in-memory lookups.
"""

from __future__ import annotations

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
)

# =============================================================================
# Core Metrics Definitions
# =============================================================================

# Store round-trips
QUERIES_TOTAL = Counter(
    "inline_replay_queries_total",
    "Total statements executed against the store",
    ["kind", "status"],  # kind: command/tuples, status: ok/error
)

QUERY_LATENCY = Histogram(
    "inline_replay_query_latency_seconds",
    "Store round-trip latency in seconds",
    ["kind"],
    buckets=[0.0005, 0.001, 0.0025, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 1.0],
)

# Identity resolution
IDENTITIES_TOTAL = Counter(
    "inline_replay_identities_total",
    "Identity resolutions by entity and where the answer came from",
    ["entity", "source"],  # source: cache/store
)

# Recorded facts
DECISIONS_TOTAL = Counter(
    "inline_replay_decisions_total",
    "Inline decisions appended",
    ["require_inline"],
)

COMPILE_METHODS_TOTAL = Counter(
    "inline_replay_compile_methods_total",
    "Early compile method facts recorded",
)

# Preloaded replay sets
LOADED_KEYS = Gauge(
    "inline_replay_loaded_keys",
    "Keys held in memory by a preloaded replay set",
    ["set"],  # set: inline/compile
)


# =============================================================================
# Metrics Helpers
# =============================================================================


def track_query(kind: str, latency_seconds: float, success: bool) -> None:
    """Track one store round-trip."""
    status = "ok" if success else "error"
    QUERIES_TOTAL.labels(kind=kind, status=status).inc()
    QUERY_LATENCY.labels(kind=kind).observe(latency_seconds)


def track_identity(entity: str, cached: bool) -> None:
    """Track an identity resolution."""
    IDENTITIES_TOTAL.labels(entity=entity, source="cache" if cached else "store").inc()


def track_decision(require_inline: bool) -> None:
    """Track an appended inline decision."""
    DECISIONS_TOTAL.labels(require_inline=str(require_inline).lower()).inc()


def track_compile_method() -> None:
    """Track a recorded early compile method."""
    COMPILE_METHODS_TOTAL.inc()


def set_loaded_keys(set_name: str, count: int) -> None:
    """Record the size of a preloaded replay set."""
    LOADED_KEYS.labels(set=set_name).set(count)
