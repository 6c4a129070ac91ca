"""
Consistency Scanner

Read-only comparison of correlation-key sets across the two stores. For every
correlation link it reports:

- orphans: relational rows with no companion document
- ghosts: documents whose correlation key matches no relational row

Keys from both sides are streamed in batches, indexed in hash maps and
diffed. Results are sorted by key, so repeated scans with no intervening
writes produce identical reports.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Tuple

from library_sync.errors import StoreError
from library_sync.identity import BOOK_LINK, MEMBER_LINK, CorrelationLink
from library_sync.stores import sql

logger = logging.getLogger(__name__)


@dataclass
class DriftReport:
    """
    Result of one scan.

    Attributes:
        book_orphans: [{book_id, title}] relational books without content
        book_ghosts: [{_id, mysql_book_id}] content documents without a book
        member_orphans: [{member_id, profile_ref}] members without a profile
        profile_ghosts: [{_id}] profiles without a member
        scanned_at: When the scan finished
    """

    book_orphans: List[Dict[str, Any]] = field(default_factory=list)
    book_ghosts: List[Dict[str, Any]] = field(default_factory=list)
    member_orphans: List[Dict[str, Any]] = field(default_factory=list)
    profile_ghosts: List[Dict[str, Any]] = field(default_factory=list)
    scanned_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_healthy(self) -> bool:
        return not (self.book_orphans or self.book_ghosts or self.member_orphans or self.profile_ghosts)

    def counts(self) -> Dict[str, Dict[str, int]]:
        """Orphan counts as {entity: {"relational": n, "document": m}}."""
        return {
            BOOK_LINK.entity: {"relational": len(self.book_orphans), "document": len(self.book_ghosts)},
            MEMBER_LINK.entity: {"relational": len(self.member_orphans), "document": len(self.profile_ghosts)},
        }

    def to_dict(self) -> Dict[str, Any]:
        """Diagnostics report shape."""
        return {
            "isHealthy": self.is_healthy,
            "mysqlOrphans": [dict(item) for item in self.book_orphans],
            "mongoOrphans": [dict(item) for item in self.book_ghosts],
            "memberOrphans": [dict(item) for item in self.member_orphans],
            "profileGhosts": [dict(item) for item in self.profile_ghosts],
        }


def build_key_index(
    rows: Iterable[Dict[str, Any]],
    key_field: str,
    link: CorrelationLink,
    side: str
) -> Dict[Any, Dict[str, Any]]:
    """
    Index rows by their normalized correlation key.

    Rows with a NULL or malformed key cannot be correlated and are skipped
    with a warning. When a key repeats, the first row wins.

    Args:
        rows: Rows or documents
        key_field: Field holding the correlation key
        link: Correlation link providing key normalization
        side: "relational" or "document", for logging

    Returns:
        Dict mapping key to row
    """
    index: Dict[Any, Dict[str, Any]] = {}
    skipped = 0

    for row in rows:
        raw = row.get(key_field)
        try:
            key = link.normalize(raw)
        except (TypeError, ValueError):
            skipped += 1
            continue
        index.setdefault(key, row)

    if skipped:
        logger.warning(
            f"Skipped {skipped} {link.entity} records on the {side} side with a missing or malformed {key_field}",
            extra={"entity": link.entity, "side": side}
        )

    return index


def diff_keys(
    relational_index: Dict[Any, Dict[str, Any]],
    document_index: Dict[Any, Dict[str, Any]]
) -> Tuple[List[Any], List[Any]]:
    """
    Compute both set differences.

    Returns:
        (orphan keys, ghost keys), each sorted
    """
    orphans = sorted(relational_index.keys() - document_index.keys())
    ghosts = sorted(document_index.keys() - relational_index.keys())
    return orphans, ghosts


class ConsistencyScanner:
    """Detects drift between the relational and document stores. Never writes."""

    def __init__(self, relational, documents, batch_size: int = 1000, metrics=None):
        """
        Args:
            relational: RelationalStore
            documents: DocumentStore
            batch_size: Keys fetched per round trip on either side
            metrics: Optional SyncMetrics
        """
        self.relational = relational
        self.documents = documents
        self.batch_size = batch_size
        self.metrics = metrics

    def scan(self) -> DriftReport:
        """
        Compare every correlation link.

        Returns:
            DriftReport

        Raises:
            StoreError: If either store cannot be read
        """
        start = time.monotonic()
        try:
            book_orphans, book_ghosts = self.scan_books()
            member_orphans, profile_ghosts = self.scan_members()
        except StoreError:
            if self.metrics is not None:
                self.metrics.record_scan("failure", time.monotonic() - start)
            logger.error("Consistency scan failed", exc_info=True)
            raise

        report = DriftReport(
            book_orphans=book_orphans,
            book_ghosts=book_ghosts,
            member_orphans=member_orphans,
            profile_ghosts=profile_ghosts,
        )
        duration = time.monotonic() - start

        if self.metrics is not None:
            self.metrics.record_scan(
                "healthy" if report.is_healthy else "drift",
                duration,
                report.counts()
            )

        if report.is_healthy:
            logger.info(f"Consistency scan healthy in {duration:.2f}s")
        else:
            logger.warning(
                f"Consistency scan found drift in {duration:.2f}s: "
                f"{len(book_orphans)} book orphans, {len(book_ghosts)} content ghosts, "
                f"{len(member_orphans)} member orphans, {len(profile_ghosts)} profile ghosts",
                extra={"orphans": report.counts()}
            )

        return report

    def scan_books(self) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
        """
        Diff books.book_id against book_content.mysql_book_id.

        Returns:
            ([{book_id, title}], [{_id, mysql_book_id}])
        """
        relational_index = build_key_index(
            self.relational.iter_rows(sql.SELECT_BOOK_KEYS, batch_size=self.batch_size),
            BOOK_LINK.relational_key,
            BOOK_LINK,
            "relational"
        )
        document_index = build_key_index(
            self.documents.scan(
                BOOK_LINK.document_collection,
                columns=["id", BOOK_LINK.document_key],
                batch_size=self.batch_size
            ),
            BOOK_LINK.document_key,
            BOOK_LINK,
            "document"
        )

        orphans, ghosts = diff_keys(relational_index, document_index)
        logger.debug(
            f"Books: {len(relational_index)} relational, {len(document_index)} documents, "
            f"{len(orphans)} orphans, {len(ghosts)} ghosts"
        )

        return (
            [{"book_id": key, "title": relational_index[key].get("title")} for key in orphans],
            [{"_id": _as_text(document_index[key].get("id")), "mysql_book_id": key} for key in ghosts],
        )

    def scan_members(self) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
        """
        Diff members.profile_ref against member_profiles.id.

        Returns:
            ([{member_id, profile_ref}], [{_id}])
        """
        relational_index = build_key_index(
            self.relational.iter_rows(sql.SELECT_MEMBER_KEYS, batch_size=self.batch_size),
            MEMBER_LINK.relational_key,
            MEMBER_LINK,
            "relational"
        )
        document_index = build_key_index(
            self.documents.scan(
                MEMBER_LINK.document_collection,
                columns=[MEMBER_LINK.document_key],
                batch_size=self.batch_size
            ),
            MEMBER_LINK.document_key,
            MEMBER_LINK,
            "document"
        )

        orphans, ghosts = diff_keys(relational_index, document_index)
        logger.debug(
            f"Members: {len(relational_index)} relational, {len(document_index)} profiles, "
            f"{len(orphans)} orphans, {len(ghosts)} ghosts"
        )

        return (
            [
                {"member_id": relational_index[key].get(MEMBER_LINK.relational_id), "profile_ref": key}
                for key in orphans
            ],
            [{"_id": key} for key in ghosts],
        )


def _as_text(value: Any):
    return str(value) if value is not None else None
