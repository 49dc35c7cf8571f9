"""Prometheus metrics for the ledger core.

Metrics are registered once per process on the default ``prometheus_client``
registry; use :func:`get_registry` rather than constructing ``MetricsRegistry``.
"""
from __future__ import annotations

from typing import Optional

from prometheus_client import Counter, Gauge


class MetricsRegistry:
    def __init__(self):
        self.transactions = Counter(
            "gledger_transactions_total", "Submitted ledger transactions by outcome", ["operation", "outcome"]
        )
        self.retries = Counter(
            "gledger_transaction_retries_total", "Submission retries by failure kind", ["kind"]
        )
        self.verifications = Counter(
            "gledger_verifications_total", "Verification lookups by outcome", ["outcome"]
        )
        self.queue_depth = Gauge("gledger_submit_queue_depth", "Jobs waiting in the submit queue")

    def observe_transaction(self, operation: str, outcome: str) -> None:
        self.transactions.labels(operation=operation, outcome=outcome).inc()

    def observe_retry(self, kind: str) -> None:
        self.retries.labels(kind=kind).inc()

    def observe_verification(self, outcome: str) -> None:
        self.verifications.labels(outcome=outcome).inc()

    def set_queue_depth(self, depth: int) -> None:
        self.queue_depth.set(depth)


_registry: Optional[MetricsRegistry] = None


def get_registry() -> MetricsRegistry:
    global _registry
    if _registry is None:
        _registry = MetricsRegistry()
    return _registry


__all__ = ["get_registry", "MetricsRegistry"]
