"""
Prometheus Metrics for Cross-Store Correlation

Tracks dual-write outcomes, scanner runs and drift, repair actions and
analytics counter updates. Every SyncMetrics owns its registry so that tests
and multiple processes never collide on metric names.
"""

import logging
from typing import Dict, Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, start_http_server

logger = logging.getLogger(__name__)

NAMESPACE = "library_sync"


class SyncMetrics:
    """Prometheus metrics for the correlation subsystem."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        """
        Initialize metrics.

        Args:
            registry: Registry to register into (a fresh one if omitted)
        """
        self.registry = registry or CollectorRegistry()

        self.dual_writes_total = Counter(
            f"{NAMESPACE}_dual_writes_total",
            "Dual-write attempts by entity and outcome",
            ["entity", "outcome"],
            registry=self.registry
        )

        self.scans_total = Counter(
            f"{NAMESPACE}_scans_total",
            "Consistency scans by status",
            ["status"],
            registry=self.registry
        )

        self.scan_duration_seconds = Histogram(
            f"{NAMESPACE}_scan_duration_seconds",
            "Duration of consistency scans in seconds",
            buckets=[0.1, 0.5, 1, 5, 10, 30, 60, 300, 900],
            registry=self.registry
        )

        # side="relational" counts orphans, side="document" counts ghosts
        self.orphans = Gauge(
            f"{NAMESPACE}_orphans",
            "Uncorrelated records found by the last scan",
            ["entity", "side"],
            registry=self.registry
        )

        self.repair_actions_total = Counter(
            f"{NAMESPACE}_repair_actions_total",
            "Repair actions by entity, type and status",
            ["entity", "action_type", "status"],
            registry=self.registry
        )

        self.counter_updates_total = Counter(
            f"{NAMESPACE}_counter_updates_total",
            "Analytics counter updates by counter and outcome",
            ["counter", "outcome"],
            registry=self.registry
        )

        logger.debug("SyncMetrics initialized")

    def record_dual_write(self, entity: str, outcome: str) -> None:
        """
        Record a dual-write attempt.

        Args:
            entity: "book" or "member"
            outcome: "success", "rejected" or "partial_failure"
        """
        self.dual_writes_total.labels(entity=entity, outcome=outcome).inc()

    def record_scan(
        self,
        status: str,
        duration_seconds: float,
        orphan_counts: Optional[Dict[str, Dict[str, int]]] = None
    ) -> None:
        """
        Record a scan run.

        Args:
            status: "healthy", "drift" or "failure"
            duration_seconds: Wall time of the scan
            orphan_counts: {entity: {"relational": n, "document": m}}
        """
        self.scans_total.labels(status=status).inc()
        self.scan_duration_seconds.observe(duration_seconds)

        for entity, sides in (orphan_counts or {}).items():
            for side, count in sides.items():
                self.orphans.labels(entity=entity, side=side).set(count)

    def record_repair_action(self, entity: str, action_type: str, status: str) -> None:
        self.repair_actions_total.labels(entity=entity, action_type=action_type, status=status).inc()

    def record_counter_update(self, counter: str, outcome: str) -> None:
        self.counter_updates_total.labels(counter=counter, outcome=outcome).inc()

    def start_server(self, port: int) -> None:
        """Expose this registry over HTTP for Prometheus scraping."""
        try:
            start_http_server(port, registry=self.registry)
            logger.info(f"Metrics server started on port {port}")
        except OSError as e:
            if "Address already in use" in str(e):
                logger.warning(f"Metrics server already running on port {port}")
            else:
                raise
