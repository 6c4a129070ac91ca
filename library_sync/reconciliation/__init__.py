"""
Cross-store reconciliation.

- scanner: read-only drift detection over every correlation link
- repairer: corrective document-store writes driven by a drift report

Usage:
    from library_sync.reconciliation import ConsistencyScanner, ReconciliationRepairer

    scanner = ConsistencyScanner(relational, documents, batch_size=1000)
    report = scanner.scan()

    if not report.is_healthy:
        ReconciliationRepairer(documents, scanner=scanner).repair(report)
"""

from library_sync.reconciliation.scanner import ConsistencyScanner, DriftReport
from library_sync.reconciliation.repairer import (
    CREATE_DOCUMENT,
    DELETE_DOCUMENT,
    ReconciliationRepairer,
    RepairAction,
    RepairResult,
)

__all__ = [
    "ConsistencyScanner",
    "DriftReport",
    "ReconciliationRepairer",
    "RepairAction",
    "RepairResult",
    "CREATE_DOCUMENT",
    "DELETE_DOCUMENT",
]
