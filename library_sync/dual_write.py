"""
Dual-Write Coordinator

Creates one logical entity as a correlated pair of records, one per store.
There is no transaction spanning the stores: each protocol is a fixed,
strictly sequential series of independent writes.

- Books are relational-first: PostgreSQL generates ``book_id`` and the
  document borrows it as ``mysql_book_id``.
- Members are document-first: the profile id is generated client-side, stored
  by PostgreSQL as ``profile_ref`` and then reused as the profile's own id.

When a later step fails after an earlier one committed, nothing is rolled
back. The caller gets PartialWriteFailure and the committed row stays behind
as an orphan for the scanner to find and the repairer to fix.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from library_sync.errors import PartialWriteFailure, StoreError, ValidationError
from library_sync.identity import (
    ANONYMOUS_SESSION,
    BOOK_ANALYTICS,
    BOOK_ANALYTICS_COUNTERS,
    BOOK_CONTENT,
    COUNTER_FIELDS,
    MEMBER_PROFILES,
    TELEMETRY_EVENTS,
    BookIngestResult,
    DocumentBookRecord,
    DocumentMemberProfile,
    EventType,
    MemberRegistrationResult,
    TelemetryEventRecord,
    as_copy_count,
)
from library_sync.stores import sql

logger = logging.getLogger(__name__)


def seed_analytics(documents, document_id, created_at: Optional[datetime] = None) -> None:
    """
    Create the analytics companion of a book content document, all counters at zero.

    Shared by book ingestion and by the repairer.
    """
    documents.increment(
        BOOK_ANALYTICS_COUNTERS,
        "book_content_id",
        document_id,
        {name: 0 for name in COUNTER_FIELDS}
    )
    documents.create(
        BOOK_ANALYTICS,
        {
            "book_content_id": document_id,
            "return_durations": [],
            "created_at": created_at or datetime.now(timezone.utc),
        },
        id_field="book_content_id"
    )


class DualWriteCoordinator:
    """Orchestrates the ordered writes that create correlated entity pairs."""

    def __init__(self, relational, documents, metrics=None, telemetry: bool = True):
        """
        Initialize the coordinator.

        Args:
            relational: RelationalStore
            documents: DocumentStore
            metrics: Optional SyncMetrics
            telemetry: Append a UI_CLICK event after each successful dual-write
        """
        self.relational = relational
        self.documents = documents
        self.metrics = metrics
        self.telemetry = telemetry

    def ingest_book(
        self,
        title: str,
        isbn: Optional[str] = None,
        author_id: Optional[int] = None,
        category_id: Optional[int] = None,
        synopsis: Optional[str] = None,
        cover_image_url: Optional[str] = None,
        tags: Optional[Sequence[str]] = None,
        total_copies: Optional[int] = None,
        session_id: Optional[str] = None
    ) -> BookIngestResult:
        """
        Create a book in both stores (relational-first).

        Steps:
            1. Insert the relational row, obtaining ``book_id``
            2. Create the content document with ``mysql_book_id = book_id``
            3. Seed the analytics companion keyed by the document id

        Args:
            title: Book title
            isbn: ISBN
            author_id: Relational author reference
            category_id: Relational category reference
            synopsis: Content; placeholder when omitted
            cover_image_url: Content; default cover when omitted
            tags: Content; empty when omitted
            total_copies: Inventory size; one copy when omitted
            session_id: Telemetry session

        Returns:
            BookIngestResult with book_id and document_id

        Raises:
            ValidationError, DuplicateKeyError: Step 1 rejected; nothing was written
            PartialWriteFailure: Step 2 or 3 failed after step 1 committed
        """
        if total_copies is not None:
            try:
                total_copies = as_copy_count(total_copies)
            except (TypeError, ValueError) as e:
                self._record("book", "rejected")
                raise ValidationError(str(e), store="document") from e

        try:
            inserted = self.relational.execute(sql.INSERT_BOOK, [title, isbn, author_id, category_id])
        except StoreError:
            self._record("book", "rejected")
            raise

        book_id = inserted.insert_id
        if book_id is None:
            self._record("book", "rejected")
            raise StoreError("Book insert did not return a book_id", store="relational")

        logger.debug(
            f"Book step relational_insert committed: book_id={book_id}",
            extra={"entity": "book", "book_id": book_id, "step": "relational_insert"}
        )

        completed = ["relational_insert"]
        committed: Dict[str, Any] = {"book_id": book_id}
        now = datetime.now(timezone.utc)

        record = DocumentBookRecord.placeholder(
            book_id,
            document_id=self.documents.new_document_id(),
            synopsis=synopsis,
            cover_image_url=cover_image_url,
            tags=tags,
            total_copies=total_copies,
        )
        record.created_at = now
        record.updated_at = now

        step = "content_document"
        try:
            self.documents.create(BOOK_CONTENT, record.to_document(), if_not_exists=True)
            completed.append(step)
            committed["document_id"] = record.id
            logger.debug(
                f"Book step {step} committed: document_id={record.id}",
                extra={"entity": "book", "book_id": book_id, "step": step}
            )

            step = "analytics_seed"
            seed_analytics(self.documents, record.id, created_at=now)
            completed.append(step)
        except StoreError as e:
            raise self._partial_failure("book", completed, step, committed, e) from e

        self._record("book", "success")
        self._log_event(EventType.UI_CLICK, session_id, {"action": "Book Ingestion", "book_id": str(book_id)})
        logger.info(f"Ingested book {book_id} with content document {record.id}")
        return BookIngestResult(book_id=book_id, document_id=record.id)

    def register_member(
        self,
        password: str,
        first_name: str,
        last_name: str,
        email: str,
        phone: Optional[str] = None,
        ui_theme: str = "light",
        reading_preferences: Optional[List[str]] = None,
        session_id: Optional[str] = None
    ) -> MemberRegistrationResult:
        """
        Register a member in both stores (document-first).

        Steps:
            1. Generate the profile id client-side
            2. Call ``create_member`` with that id; it validates and returns ``member_id``
            3. Create the profile document whose own id is exactly that id
            4. Append a registration telemetry event (best-effort)

        Returns:
            MemberRegistrationResult with member_id and profile_id

        Raises:
            ValidationError, DuplicateKeyError: The procedure rejected the input
            PartialWriteFailure: The profile write failed after the member row committed
        """
        profile_id = self.documents.new_document_id()

        try:
            created = self.relational.call_procedure(
                sql.CREATE_MEMBER_PROCEDURE,
                [str(profile_id), password, first_name, last_name, email, phone]
            )
        except StoreError:
            self._record("member", "rejected")
            raise

        member_id = created.scalar()
        if member_id is None:
            self._record("member", "rejected")
            raise StoreError("create_member did not return a member_id", store="relational")

        logger.debug(
            f"Member step relational_procedure committed: member_id={member_id}",
            extra={"entity": "member", "member_id": member_id, "step": "relational_procedure"}
        )

        profile = DocumentMemberProfile(
            id=profile_id,
            ui_theme=ui_theme,
            reading_preferences=list(reading_preferences or []),
            created_at=datetime.now(timezone.utc),
        )

        try:
            self.documents.create(MEMBER_PROFILES, profile.to_document(), if_not_exists=True)
        except StoreError as e:
            raise self._partial_failure(
                "member",
                ["relational_procedure"],
                "profile_document",
                {"member_id": member_id, "profile_ref": str(profile_id)},
                e
            ) from e

        self._record("member", "success")
        self._log_event(
            EventType.UI_CLICK,
            session_id,
            {"action": "Account Registration"},
            member_profile_id=profile_id
        )
        logger.info(f"Registered member {member_id} with profile {profile_id}")
        return MemberRegistrationResult(member_id=member_id, profile_id=profile_id)

    def _partial_failure(
        self,
        entity: str,
        completed: List[str],
        failed_step: str,
        committed: Dict[str, Any],
        cause: StoreError
    ) -> PartialWriteFailure:
        self._record(entity, "partial_failure")
        logger.error(
            f"{entity} dual-write failed at {failed_step} after committing {completed}; "
            f"left behind {committed}: {cause}",
            extra={"entity": entity, "step": failed_step}
        )
        return PartialWriteFailure(entity, completed, failed_step, committed, cause)

    def _log_event(
        self,
        event_type: str,
        session_id: Optional[str],
        payload: Dict[str, str],
        member_profile_id=None
    ) -> None:
        """Append telemetry; a failure here never fails the dual-write."""
        if not self.telemetry:
            return

        event = TelemetryEventRecord(
            event_type=event_type,
            session_id=session_id or ANONYMOUS_SESSION,
            payload=payload,
            member_profile_id=member_profile_id,
            occurred_at=datetime.now(timezone.utc),
        )
        try:
            self.documents.create(TELEMETRY_EVENTS, event.to_document(), id_field="event_id")
        except StoreError as e:
            logger.warning(f"Telemetry append failed for {event_type}: {e}")

    def _record(self, entity: str, outcome: str) -> None:
        if self.metrics is not None:
            self.metrics.record_dual_write(entity=entity, outcome=outcome)
