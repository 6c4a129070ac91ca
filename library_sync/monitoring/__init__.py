"""
Monitoring for the correlation subsystem.

- SyncMetrics: Prometheus counters, gauges and histograms
- AlertRuleGenerator: alert rules over those metrics

Usage:
    from library_sync.monitoring import SyncMetrics, AlertRuleGenerator

    metrics = SyncMetrics()
    metrics.record_dual_write(entity="book", outcome="success")

    AlertRuleGenerator().export_to_yaml("alerts.yml")
"""

from library_sync.monitoring.metrics import SyncMetrics
from library_sync.monitoring.alerts import AlertRuleGenerator

__all__ = [
    "SyncMetrics",
    "AlertRuleGenerator",
]
