"""
Catalog Enrichment

Joins relational book rows with their content documents at read time. A
missing document is a lookup miss, resolved with the same placeholders
wherever a book is shown.
"""

import contextvars
import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from library_sync.errors import StoreError
from library_sync.identity import (
    ANONYMOUS_SESSION,
    BOOK_CONTENT,
    DEFAULT_COVER_IMAGE_URL,
    DEFAULT_SYNOPSIS,
    DEFAULT_TOTAL_COPIES,
    TELEMETRY_EVENTS,
    EventType,
    TelemetryEventRecord,
    as_book_key,
)
from library_sync.stores import sql

logger = logging.getLogger(__name__)

CONTENT_COLUMNS = (
    "id",
    "mysql_book_id",
    "synopsis",
    "cover_image_url",
    "tags",
    "total_copies",
    "available_copies",
)

SEARCH_TYPES = ("all", "title", "author", "category", "isbn")
STATUS_FILTERS = ("all", "available", "borrowed")


def _escape_like(keyword: str) -> str:
    return keyword.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def enrich_book(row: Dict[str, Any], document: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Left-join one relational book row with its content document.

    Args:
        row: Relational catalog row
        document: Matching content document, or None

    Returns:
        Composite catalog entry
    """
    listed_available = row.get("status") == "Available"

    if document:
        total = document.get("total_copies")
        if total is None:
            total = DEFAULT_TOTAL_COPIES
        available_copies = document.get("available_copies")
        if available_copies is None:
            available_copies = total
        available = available_copies > 0
    else:
        document = {}
        total = DEFAULT_TOTAL_COPIES
        available_copies = DEFAULT_TOTAL_COPIES if listed_available else 0
        available = listed_available

    content_id = document.get("id")

    return {
        "book_id": row["book_id"],
        "title": row.get("title"),
        "isbn": row.get("isbn"),
        "status": row.get("status"),
        "author_name": row.get("author_name"),
        "category_name": row.get("category_name"),
        "document_id": str(content_id) if content_id is not None else None,
        "synopsis": document.get("synopsis") or DEFAULT_SYNOPSIS,
        "cover_image_url": document.get("cover_image_url") or DEFAULT_COVER_IMAGE_URL,
        "tags": list(document.get("tags") or []),
        "available": available,
        "inventory": {
            "total_copies": total,
            "available_copies": available_copies,
        },
    }


class CatalogEnricher:
    """Read-side join of relational books with their content documents."""

    def __init__(self, relational, documents, max_workers: int = 2, telemetry: bool = True):
        self.relational = relational
        self.documents = documents
        self.max_workers = max_workers
        self.telemetry = telemetry

    def list_books(self) -> List[Dict[str, Any]]:
        """
        Return every book, enriched with content, in title order.

        One relational query, then one batched set-membership lookup for all
        returned ids.
        """
        rows = self.relational.execute(sql.CATALOG_LIST).rows
        by_key = self._documents_by_key(row["book_id"] for row in rows)

        missing = sum(1 for row in rows if as_book_key(row["book_id"]) not in by_key)
        if missing:
            logger.debug(f"{missing} of {len(rows)} catalog rows have no content document")

        return [enrich_book(row, by_key.get(as_book_key(row["book_id"]))) for row in rows]

    def search_books(
        self,
        keyword: str = "",
        search_type: str = "all",
        status: str = "all",
        session_id: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """
        Search the catalog and filter on content-side availability.

        The relational query matches on keyword only. The status filter runs
        after enrichment, because the content document's inventory decides
        availability rather than the relational status column.

        Args:
            keyword: Case-insensitive substring; empty matches every book
            search_type: One of SEARCH_TYPES
            status: "available", "borrowed" or "all"
            session_id: Telemetry session

        Returns:
            Enriched catalog entries in title order

        Raises:
            ValueError: If search_type or status is unknown
        """
        if search_type not in SEARCH_TYPES:
            raise ValueError(f"Unknown search type: {search_type!r}")
        if status not in STATUS_FILTERS:
            raise ValueError(f"Unknown status filter: {status!r}")

        keyword = (keyword or "").strip()
        self._log_search(f"keyword:{keyword}|type:{search_type}|status:{status}", session_id)

        pattern = f"%{_escape_like(keyword)}%"
        rows = self.relational.execute(sql.CATALOG_SEARCH, [search_type, pattern] * 4).rows
        by_key = self._documents_by_key(row["book_id"] for row in rows)
        books = [enrich_book(row, by_key.get(as_book_key(row["book_id"]))) for row in rows]

        if status == "available":
            books = [book for book in books if book["available"]]
        elif status == "borrowed":
            books = [book for book in books if not book["available"]]

        logger.debug(f"Search {search_type}:{keyword!r} matched {len(rows)} books, {len(books)} after {status} filter")
        return books

    def get_book(self, book_id: Any) -> Optional[Dict[str, Any]]:
        """
        Return one enriched book, or None if the relational row does not exist.

        The relational row and the content document are fetched concurrently;
        each worker runs in a copy of the caller's context so log records keep
        the request id.
        """
        key = as_book_key(book_id)

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            row_future = executor.submit(
                contextvars.copy_context().run, self.relational.execute, sql.CATALOG_ITEM, [key]
            )
            doc_future = executor.submit(
                contextvars.copy_context().run,
                self.documents.find_one, BOOK_CONTENT, "mysql_book_id", key, CONTENT_COLUMNS
            )
            rows = row_future.result().rows
            document = doc_future.result()

        if not rows:
            return None
        return enrich_book(rows[0], document)

    def _documents_by_key(self, book_ids: Iterable[Any]) -> Dict[int, Dict[str, Any]]:
        keys = [as_book_key(book_id) for book_id in book_ids]
        if not keys:
            return {}

        documents = self.documents.find_in(BOOK_CONTENT, "mysql_book_id", keys, columns=CONTENT_COLUMNS)
        return {as_book_key(doc["mysql_book_id"]): doc for doc in documents}

    def _log_search(self, query: str, session_id: Optional[str]) -> None:
        if not self.telemetry:
            return

        event = TelemetryEventRecord(
            event_type=EventType.SEARCH_EXECUTED,
            session_id=session_id or ANONYMOUS_SESSION,
            payload={"search_query": query},
            occurred_at=datetime.now(timezone.utc),
        )
        try:
            self.documents.create(TELEMETRY_EVENTS, event.to_document(), id_field="event_id")
        except StoreError as e:
            logger.warning(f"SEARCH_EXECUTED telemetry append failed: {e}")
