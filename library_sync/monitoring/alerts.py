"""
Alert Rule Generator

Prometheus alert rules over the library_sync_* metrics. Drift between the two
stores is the failure this subsystem expects to happen, so the rules focus on
noticing orphans early and on scans or repairs that stop working.
"""

import logging
from typing import Any, Dict

import yaml

logger = logging.getLogger(__name__)


class AlertRuleGenerator:
    """Generates Prometheus alert rule groups."""

    def __init__(self, drift_threshold: int = 0, persist_for: str = "1h"):
        """
        Args:
            drift_threshold: Orphan count above which drift alerts fire
            persist_for: How long drift may last before it counts as persisting
        """
        self.drift_threshold = drift_threshold
        self.persist_for = persist_for

    def generate_alert_rules(self) -> Dict[str, Any]:
        """
        Build the full rule configuration.

        Returns:
            Dict with alert rule groups in Prometheus format
        """
        groups = [
            self._generate_drift_alerts(),
            self._generate_dual_write_alerts(),
            self._generate_scanner_alerts(),
        ]
        logger.info(f"Generated {len(groups)} alert rule groups")
        return {"groups": groups}

    def _generate_drift_alerts(self) -> Dict[str, Any]:
        return {
            "name": "library_sync_drift",
            "interval": "1m",
            "rules": [
                {
                    "alert": "CrossStoreDriftDetected",
                    "expr": f"library_sync_orphans > {self.drift_threshold}",
                    "for": "5m",
                    "labels": {"severity": "warning", "component": "reconciliation"},
                    "annotations": {
                        "summary": "Uncorrelated records between stores",
                        "description": "{{ $value }} {{ $labels.entity }} records on the {{ $labels.side }} side have no companion. Run a repair."
                    }
                },
                {
                    "alert": "CrossStoreDriftPersisting",
                    "expr": f"min_over_time(library_sync_orphans[{self.persist_for}]) > {self.drift_threshold}",
                    "for": "5m",
                    "labels": {"severity": "critical", "component": "reconciliation"},
                    "annotations": {
                        "summary": "Cross-store drift not repaired",
                        "description": "{{ $labels.entity }} drift on the {{ $labels.side }} side has lasted longer than " + self.persist_for + "."
                    }
                }
            ]
        }

    def _generate_dual_write_alerts(self) -> Dict[str, Any]:
        return {
            "name": "library_sync_dual_write",
            "interval": "30s",
            "rules": [
                {
                    "alert": "PartialWritesObserved",
                    "expr": "increase(library_sync_dual_writes_total{outcome=\"partial_failure\"}[15m]) > 0",
                    "for": "1m",
                    "labels": {"severity": "warning", "component": "dual_write"},
                    "annotations": {
                        "summary": "Dual-write left an orphan behind",
                        "description": "{{ $value }} {{ $labels.entity }} dual-writes failed after committing their first step."
                    }
                }
            ]
        }

    def _generate_scanner_alerts(self) -> Dict[str, Any]:
        return {
            "name": "library_sync_scanner",
            "interval": "1m",
            "rules": [
                {
                    "alert": "ConsistencyScanFailing",
                    "expr": "increase(library_sync_scans_total{status=\"failure\"}[1h]) > 0",
                    "for": "5m",
                    "labels": {"severity": "warning", "component": "reconciliation"},
                    "annotations": {
                        "summary": "Consistency scans are failing",
                        "description": "Drift cannot be detected while scans fail."
                    }
                },
                {
                    "alert": "RepairActionsFailing",
                    "expr": "increase(library_sync_repair_actions_total{status=\"failed\"}[1h]) > 0",
                    "for": "5m",
                    "labels": {"severity": "warning", "component": "reconciliation"},
                    "annotations": {
                        "summary": "Repair actions are failing",
                        "description": "{{ $labels.action_type }} repairs for {{ $labels.entity }} records are failing."
                    }
                }
            ]
        }

    def export_to_yaml(self, output_file: str) -> None:
        """
        Write the rule configuration to a YAML file.

        Args:
            output_file: Path to output YAML file
        """
        rules = self.generate_alert_rules()

        with open(output_file, "w") as f:
            yaml.dump(rules, f, default_flow_style=False, sort_keys=False)

        logger.info(f"Alert rules exported to {output_file}")

    def get_alert_summary(self) -> Dict[str, int]:
        """Count groups and rules by severity."""
        rules = self.generate_alert_rules()
        summary = {"total_groups": len(rules["groups"]), "total_alerts": 0, "critical": 0, "warning": 0}

        for group in rules["groups"]:
            for rule in group["rules"]:
                summary["total_alerts"] += 1
                severity = rule["labels"].get("severity")
                if severity in summary:
                    summary[severity] += 1

        return summary
