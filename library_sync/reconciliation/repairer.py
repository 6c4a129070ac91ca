"""
Reconciliation Repairer

Turns a DriftReport into document-store writes that restore the 1:1
correlation between the stores:

- an orphan (relational row without companion) gets a placeholder companion
  carrying the exact correlation key
- a ghost (companion without relational row) is deleted

The policy never pairs an orphan with a ghost, so no content is ever
reassigned to a different record. The relational store is never written.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from library_sync.dual_write import seed_analytics
from library_sync.errors import DuplicateKeyError, StoreError
from library_sync.identity import (
    BOOK_ANALYTICS,
    BOOK_ANALYTICS_COUNTERS,
    BOOK_CONTENT,
    BOOK_LINK,
    MEMBER_LINK,
    MEMBER_PROFILES,
    DocumentBookRecord,
    DocumentMemberProfile,
)
from library_sync.reconciliation.scanner import DriftReport

logger = logging.getLogger(__name__)

CREATE_DOCUMENT = "CREATE_DOCUMENT"
DELETE_DOCUMENT = "DELETE_DOCUMENT"


@dataclass
class RepairAction:
    """
    One corrective write.

    Attributes:
        action_type: CREATE_DOCUMENT or DELETE_DOCUMENT
        entity: "book" or "member"
        key: Correlation key the action restores or removes
        collection: Collection written
        document_id: Companion document id, when known
        status: pending, executed, skipped or failed
        dry_run: Planned only, never executed
        error: Failure message
    """

    action_type: str
    entity: str
    key: Any
    collection: str
    document_id: Optional[str] = None
    status: str = "pending"
    dry_run: bool = False
    error: Optional[str] = None
    executed_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action_type": self.action_type,
            "entity": self.entity,
            "key": self.key,
            "collection": self.collection,
            "document_id": self.document_id,
            "status": self.status,
            "dry_run": self.dry_run,
            "error": self.error,
            "executed_at": self.executed_at,
        }


@dataclass
class RepairResult:
    actions: List[RepairAction] = field(default_factory=list)
    dry_run: bool = False

    @property
    def succeeded(self) -> bool:
        return not any(action.status == "failed" for action in self.actions)

    def summary(self) -> Dict[str, int]:
        counts = {"planned": len(self.actions), "executed": 0, "skipped": 0, "failed": 0}
        for action in self.actions:
            if action.status in counts:
                counts[action.status] += 1
        return counts

    def to_response(self) -> Dict[str, str]:
        """Repair trigger response: success or failure only."""
        if self.succeeded:
            return {"status": "success", "message": "Repair completed."}
        return {"status": "error", "message": "Repair failed."}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "succeeded": self.succeeded,
            "dry_run": self.dry_run,
            "summary": self.summary(),
            "actions": [action.to_dict() for action in self.actions],
        }


class ReconciliationRepairer:
    """Applies the corrective writes for a drift report."""

    def __init__(self, documents, scanner=None, metrics=None):
        """
        Args:
            documents: DocumentStore
            scanner: ConsistencyScanner used when repair() gets no report
            metrics: Optional SyncMetrics
        """
        self.documents = documents
        self.scanner = scanner
        self.metrics = metrics

    def plan(self, report: DriftReport, dry_run: bool = False) -> List[RepairAction]:
        """
        Build the ordered action list: deletes first, then creates.

        Args:
            report: Scanner output
            dry_run: Mark every action as dry-run

        Returns:
            List of pending RepairActions
        """
        actions = []

        for ghost in report.book_ghosts:
            actions.append(RepairAction(
                action_type=DELETE_DOCUMENT,
                entity=BOOK_LINK.entity,
                key=ghost["mysql_book_id"],
                collection=BOOK_CONTENT,
                document_id=ghost.get("_id"),
            ))

        for ghost in report.profile_ghosts:
            actions.append(RepairAction(
                action_type=DELETE_DOCUMENT,
                entity=MEMBER_LINK.entity,
                key=ghost["_id"],
                collection=MEMBER_PROFILES,
                document_id=ghost["_id"],
            ))

        for orphan in report.book_orphans:
            actions.append(RepairAction(
                action_type=CREATE_DOCUMENT,
                entity=BOOK_LINK.entity,
                key=orphan["book_id"],
                collection=BOOK_CONTENT,
            ))

        for orphan in report.member_orphans:
            actions.append(RepairAction(
                action_type=CREATE_DOCUMENT,
                entity=MEMBER_LINK.entity,
                key=orphan["profile_ref"],
                collection=MEMBER_PROFILES,
                document_id=orphan["profile_ref"],
            ))

        for action in actions:
            action.dry_run = dry_run

        deletes = sum(1 for action in actions if action.action_type == DELETE_DOCUMENT)
        logger.info(f"Planned {len(actions)} repair actions: {deletes} deletes, {len(actions) - deletes} creates")
        return actions

    def repair(self, report: Optional[DriftReport] = None, dry_run: bool = False) -> RepairResult:
        """
        Repair drift in one pass.

        Each action runs independently; a failed action is recorded and the
        pass continues. Re-scan afterwards to confirm the effect.

        Args:
            report: Drift report (scanned now when omitted)
            dry_run: Plan without writing

        Returns:
            RepairResult

        Raises:
            ValueError: If no report is given and no scanner is configured
        """
        if report is None:
            if self.scanner is None:
                raise ValueError("A drift report or a scanner is required")
            report = self.scanner.scan()

        actions = self.plan(report, dry_run=dry_run)
        result = RepairResult(actions=actions, dry_run=dry_run)

        if dry_run:
            logger.info("DRY RUN mode - no changes applied")
            return result

        for i, action in enumerate(actions):
            logger.debug(
                f"Executing action {i + 1}/{len(actions)}: {action.action_type} {action.entity} {action.key}",
                extra={"entity": action.entity, "action_type": action.action_type}
            )
            self.execute_action(action)

        summary = result.summary()
        if result.succeeded:
            logger.info(f"Repair completed: {summary}")
        else:
            logger.error(f"Repair completed with failures: {summary}")
        return result

    def execute_action(self, action: RepairAction) -> RepairAction:
        """Run one action, recording its outcome on the action itself."""
        try:
            applied = True
            if action.action_type == CREATE_DOCUMENT and action.entity == BOOK_LINK.entity:
                self._create_book_companion(action)
            elif action.action_type == CREATE_DOCUMENT and action.entity == MEMBER_LINK.entity:
                self._create_profile(action)
            elif action.action_type == DELETE_DOCUMENT and action.entity == BOOK_LINK.entity:
                applied = self._delete_book_ghost(action)
            elif action.action_type == DELETE_DOCUMENT and action.entity == MEMBER_LINK.entity:
                self.documents.delete(MEMBER_PROFILES, "id", uuid.UUID(str(action.key)))
            else:
                raise ValueError(f"Unsupported repair action: {action.action_type} for {action.entity}")
            if applied:
                action.status = "executed"
            else:
                action.status = "skipped"
                logger.info(f"{action.entity} {action.key} changed since the scan; skipping")
        except DuplicateKeyError:
            action.status = "skipped"
            logger.info(f"{action.entity} {action.key} already has a companion; skipping")
        except StoreError as e:
            action.status = "failed"
            action.error = str(e)
            logger.error(f"Failed to execute {action.action_type} for {action.entity} {action.key}: {e}")

        action.executed_at = datetime.now(timezone.utc).isoformat()

        if self.metrics is not None:
            self.metrics.record_repair_action(
                entity=action.entity,
                action_type=action.action_type,
                status=action.status
            )
        return action

    def _create_book_companion(self, action: RepairAction) -> None:
        now = datetime.now(timezone.utc)
        record = DocumentBookRecord.placeholder(action.key, document_id=self.documents.new_document_id())
        record.created_at = now
        record.updated_at = now

        self.documents.create(BOOK_CONTENT, record.to_document(), if_not_exists=True)
        action.document_id = str(record.id)
        seed_analytics(self.documents, record.id, created_at=now)

    def _create_profile(self, action: RepairAction) -> None:
        profile = DocumentMemberProfile(
            id=uuid.UUID(str(action.key)),
            created_at=datetime.now(timezone.utc),
        )
        self.documents.create(MEMBER_PROFILES, profile.to_document(), if_not_exists=True)

    def _delete_book_ghost(self, action: RepairAction) -> bool:
        if not action.document_id:
            return self.documents.delete(BOOK_CONTENT, "mysql_book_id", action.key)

        # Analytics first: a partial failure leaves the ghost visible to the next scan.
        # The content delete only applies while the key still holds the scanned document.
        content_id = uuid.UUID(str(action.document_id))
        self.documents.delete(BOOK_ANALYTICS_COUNTERS, "book_content_id", content_id)
        self.documents.delete(BOOK_ANALYTICS, "book_content_id", content_id)
        return self.documents.delete(BOOK_CONTENT, "mysql_book_id", action.key, if_values={"id": content_id})
