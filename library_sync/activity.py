"""
Book activity counters.

Views, borrows and returns update the analytics companion of a book through
the document store's atomic increment and append primitives; nothing here
reads a counter and writes it back. Borrows and returns also move the
book's available_copies, guarded by a compare-and-set so concurrent
checkouts cannot oversell. A book without a content document is a lookup
miss: the event is dropped and no error is raised.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from library_sync.errors import StoreError, ValidationError
from library_sync.identity import (
    ANONYMOUS_SESSION,
    BOOK_ANALYTICS,
    BOOK_ANALYTICS_COUNTERS,
    BOOK_CONTENT,
    DEFAULT_TOTAL_COPIES,
    TELEMETRY_EVENTS,
    AnalyticsCounterDocument,
    EventType,
    TelemetryEventRecord,
    as_book_key,
)

logger = logging.getLogger(__name__)

INVENTORY_COLUMNS = ["id", "mysql_book_id", "total_copies", "available_copies"]


class BookActivity:
    """Records behavioral events against a book's analytics companion."""

    def __init__(self, documents, metrics=None, inventory_retries: int = 5):
        self.documents = documents
        self.metrics = metrics
        self.inventory_retries = inventory_retries

    def record_view(
        self,
        book_id: Any,
        session_id: Optional[str] = None,
        member_profile_id=None
    ) -> bool:
        """
        Count one view and log a PAGE_VIEW telemetry event.

        Returns:
            False on a lookup miss, True otherwise
        """
        content = self._content(book_id, "total_views")
        if content is None:
            return False

        self._increment(content["id"], "total_views")

        event = TelemetryEventRecord(
            event_type=EventType.PAGE_VIEW,
            session_id=session_id or ANONYMOUS_SESSION,
            payload={"book_id": str(as_book_key(book_id))},
            member_profile_id=member_profile_id,
            occurred_at=datetime.now(timezone.utc),
        )
        try:
            self.documents.create(TELEMETRY_EVENTS, event.to_document(), id_field="event_id")
        except StoreError as e:
            logger.warning(f"PAGE_VIEW telemetry append failed for book {book_id}: {e}")

        return True

    def record_borrow(self, book_id: Any) -> bool:
        """
        Take one copy out of inventory and count one borrow.

        Returns:
            False on a lookup miss, True otherwise

        Raises:
            ValidationError: If no copies are available
            StoreError: If the inventory kept changing under concurrent borrows
        """
        content = self._content(book_id, "total_borrows", INVENTORY_COLUMNS)
        if content is None:
            return False

        try:
            self._adjust_inventory(content, -1)
        except ValidationError:
            self._record("total_borrows", "rejected")
            raise
        self._increment(content["id"], "total_borrows")
        return True

    def record_return(self, book_id: Any, days_kept: int) -> bool:
        """
        Append the loan duration, count one return and put the copy back.

        Args:
            book_id: Relational book id
            days_kept: Whole days between borrow and return

        Raises:
            ValueError: If days_kept is negative
        """
        if int(days_kept) < 0:
            raise ValueError(f"days_kept cannot be negative: {days_kept}")

        content = self._content(book_id, "total_returns", INVENTORY_COLUMNS)
        if content is None:
            return False

        content_id = content["id"]
        self.documents.append(BOOK_ANALYTICS, "book_content_id", content_id, "return_durations", [int(days_kept)])
        self._increment(content_id, "total_returns")
        self._adjust_inventory(content, 1)
        return True

    def get_analytics(self, book_id: Any) -> Optional[AnalyticsCounterDocument]:
        """
        Read a book's counters with derived conversion rate and average return time.

        Returns:
            None when the book has no content document
        """
        content = self.documents.find_one(BOOK_CONTENT, "mysql_book_id", as_book_key(book_id), columns=["id"])
        if content is None:
            return None

        content_id = content["id"]
        counters = self.documents.find_one(BOOK_ANALYTICS_COUNTERS, "book_content_id", content_id)
        sequence = self.documents.find_one(BOOK_ANALYTICS, "book_content_id", content_id)
        return AnalyticsCounterDocument.from_documents(content_id, counters, sequence)

    def _content(self, book_id: Any, counter: str, columns=("id",)) -> Optional[Dict[str, Any]]:
        content = self.documents.find_one(BOOK_CONTENT, "mysql_book_id", as_book_key(book_id), columns=list(columns))
        if content is None:
            logger.debug(f"No content document for book {book_id}; {counter} not updated")
            self._record(counter, "miss")
        return content

    def _adjust_inventory(self, content: Dict[str, Any], delta: int) -> int:
        """
        Move available_copies by delta with compare-and-set, re-reading on contention.

        The count never drops below zero and never rises above total_copies.

        Returns:
            The available count after the adjustment
        """
        key = content["mysql_book_id"]
        current = content

        for attempt in range(1, self.inventory_retries + 1):
            stored = current.get("available_copies")
            total = current.get("total_copies")
            available = stored if stored is not None else (total if total is not None else DEFAULT_TOTAL_COPIES)

            if delta < 0 and available <= 0:
                logger.info(f"Book {key} has no copies available")
                raise ValidationError("No copies available for checkout.", store="document")

            target = available + delta
            if total is not None and target > total:
                logger.warning(f"Book {key} already has all {total} copies on the shelf; inventory unchanged")
                return available

            if self.documents.compare_and_set(BOOK_CONTENT, "mysql_book_id", key, "available_copies", stored, target):
                logger.debug(f"Book {key} available_copies {available} -> {target}")
                return target

            logger.debug(f"Inventory of book {key} changed concurrently (attempt {attempt}/{self.inventory_retries})")
            current = self.documents.find_one(BOOK_CONTENT, "mysql_book_id", key, columns=INVENTORY_COLUMNS)
            if current is None:
                raise StoreError(f"Content document for book {key} disappeared", store="document")

        raise StoreError(
            f"Inventory of book {key} kept changing; gave up after {self.inventory_retries} attempts",
            store="document"
        )

    def _increment(self, content_id, counter: str) -> None:
        try:
            self.documents.increment(BOOK_ANALYTICS_COUNTERS, "book_content_id", content_id, {counter: 1})
        except StoreError:
            self._record(counter, "error")
            raise
        self._record(counter, "success")

    def _record(self, counter: str, outcome: str) -> None:
        if self.metrics is not None:
            self.metrics.record_counter_update(counter=counter, outcome=outcome)
