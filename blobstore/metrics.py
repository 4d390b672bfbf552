"""
Prometheus metrics for the blobstore client.

Counters cover:
- store outcomes (see STORE_OUTCOMES)
- which path a retrieval resolved through (mempool, log, state) or how it
  failed (not_found, timeout)
- stale-read restarts caused by reorganizations
- nonce probes issued while searching for an available identifier

Typical usage:

    from blobstore.metrics import get_metrics

    METRICS = get_metrics()
    METRICS.retrieve_total.labels(path="log").inc()

Tests pass their own `CollectorRegistry` so counters start at zero:

    metrics = BlobStoreMetrics(registry=CollectorRegistry())
"""

from __future__ import annotations

import threading
from typing import Optional

from prometheus_client import REGISTRY as _DEFAULT_REGISTRY
from prometheus_client import CollectorRegistry, Counter

RETRIEVE_PATHS = ("mempool", "log", "state", "not_found", "timeout")
STORE_OUTCOMES = (
    "ok",
    "nonce_exhausted",
    "estimation_failed",
    "broadcast_failed",
    "not_observed",
    "confirm_failed",
)


class BlobStoreMetrics:
    """Concrete metrics backed by prometheus_client."""

    def __init__(self, registry: Optional[CollectorRegistry] = None) -> None:
        reg = registry if registry is not None else _DEFAULT_REGISTRY
        self.registry = reg

        self.store_total = Counter(
            "blobstore_store_total",
            "Blob store submissions grouped by outcome",
            ["outcome"],
            registry=reg,
        )
        self.retrieve_total = Counter(
            "blobstore_retrieve_total",
            "Blob retrievals grouped by resolution path",
            ["path"],
            registry=reg,
        )
        self.stale_reads_total = Counter(
            "blobstore_stale_reads_total",
            "Retrieval restarts caused by a stale block pointer",
            registry=reg,
        )
        self.nonce_probes_total = Counter(
            "blobstore_nonce_probes_total",
            "Simulated create calls issued while probing for an available id",
            registry=reg,
        )

    # Convenience helpers -------------------------------------------------

    def store(self, outcome: str) -> None:
        if outcome not in STORE_OUTCOMES:
            raise ValueError(f"unknown store outcome: {outcome!r}")
        self.store_total.labels(outcome=outcome).inc()

    def retrieved(self, path: str) -> None:
        if path not in RETRIEVE_PATHS:
            raise ValueError(f"unknown retrieve path: {path!r}")
        self.retrieve_total.labels(path=path).inc()

    def stale_read(self) -> None:
        self.stale_reads_total.inc()

    def nonce_probe(self) -> None:
        self.nonce_probes_total.inc()


# ------------------------------ singleton access ------------------------------

_METRICS_SINGLETON: Optional[BlobStoreMetrics] = None
_LOCK = threading.Lock()


def get_metrics() -> BlobStoreMetrics:
    """Return the process-wide metrics bound to the default registry."""
    global _METRICS_SINGLETON
    if _METRICS_SINGLETON is None:
        with _LOCK:
            if _METRICS_SINGLETON is None:
                _METRICS_SINGLETON = BlobStoreMetrics()
    return _METRICS_SINGLETON


__all__ = ["BlobStoreMetrics", "RETRIEVE_PATHS", "STORE_OUTCOMES", "get_metrics"]
