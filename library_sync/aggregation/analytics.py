"""
Analytics Aggregation

Merges three independently computed result sets by integer book id:

- telemetry event counts, grouped by the book reference inside each payload
- borrow counts from the relational loans table
- per-book and global average return time from the relational loans table

Rows whose book id no longer resolves to a title are dropped.

The library dashboard ranks books by the document-side counters and groups
SEARCH_EXECUTED telemetry by query.
"""

import contextvars
import logging
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Mapping, Optional

from library_sync.identity import (
    BOOK_ANALYTICS,
    BOOK_ANALYTICS_COUNTERS,
    BOOK_CONTENT,
    TELEMETRY_EVENTS,
    AnalyticsCounterDocument,
    EventType,
)
from library_sync.stores import sql

logger = logging.getLogger(__name__)

# Payload keys holding the book reference, most recent first
BOOK_REFERENCE_KEYS = ("book_id", "bookId")

TOP_BOOKS_LIMIT = 5
TOP_SEARCHES_LIMIT = 10

# A hidden gem is looked at often but rarely borrowed
HIDDEN_GEM_MIN_VIEWS = 5
HIDDEN_GEM_MAX_CONVERSION = 0.1


def decode_book_reference(payload: Optional[Mapping[str, Any]]) -> Optional[int]:
    """
    Resolve the book reference of a telemetry payload.

    The first key of BOOK_REFERENCE_KEYS holding an integer value decides.
    Empty, boolean or non-numeric values fall through to the next key.

    Args:
        payload: Event payload

    Returns:
        The book id, or None when the payload carries no usable reference
    """
    if not payload:
        return None

    for key in BOOK_REFERENCE_KEYS:
        raw = payload.get(key)
        if raw is None or (isinstance(raw, str) and not raw.strip()):
            continue
        if isinstance(raw, bool):
            continue
        try:
            return int(str(raw).strip())
        except ValueError:
            continue

    return None


class AnalyticsAggregator:
    """Builds the merged per-book analytics report."""

    def __init__(self, relational, documents, batch_size: int = 1000, max_workers: int = 4):
        self.relational = relational
        self.documents = documents
        self.batch_size = batch_size
        self.max_workers = max_workers

    def event_counts(self) -> Dict[int, int]:
        """Count telemetry events per book id across both payload key names."""
        counts: Counter = Counter()
        skipped = 0

        for event in self.documents.scan(TELEMETRY_EVENTS, columns=["payload"], batch_size=self.batch_size):
            book_id = decode_book_reference(event.get("payload"))
            if book_id is None:
                skipped += 1
                continue
            counts[book_id] += 1

        logger.debug(f"Counted events for {len(counts)} books; {skipped} events had no book reference")
        return dict(counts)

    def borrow_counts(self) -> Dict[int, int]:
        rows = self.relational.execute(sql.BORROW_COUNTS).rows
        return {int(row["book_id"]): int(row["borrow_count"]) for row in rows}

    def return_times(self) -> Dict[int, float]:
        rows = self.relational.execute(sql.RETURN_TIME_BY_BOOK).rows
        return {
            int(row["book_id"]): round(float(row["avg_return_days"]), 2)
            for row in rows
            if row.get("avg_return_days") is not None
        }

    def global_return_time(self) -> float:
        value = self.relational.execute(sql.GLOBAL_RETURN_TIME).scalar()
        return round(float(value or 0), 2)

    def report(self) -> Dict[str, Any]:
        """
        Build the merged analytics report.

        The four source queries run concurrently; titles are resolved once the
        set of referenced book ids is known.

        Returns:
            {"global_avg_return_days": float,
             "books": [{book_id, title, event_count, borrow_count, avg_return_days}]}
        """
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            events_future = executor.submit(contextvars.copy_context().run, self.event_counts)
            borrows_future = executor.submit(contextvars.copy_context().run, self.borrow_counts)
            returns_future = executor.submit(contextvars.copy_context().run, self.return_times)
            global_future = executor.submit(contextvars.copy_context().run, self.global_return_time)

            events = events_future.result()
            borrows = borrows_future.result()
            returns = returns_future.result()
            global_avg = global_future.result()

        book_ids = set(events) | set(borrows) | set(returns)
        titles = self._titles(book_ids)

        books = []
        dropped = 0
        for book_id in sorted(book_ids):
            title = titles.get(book_id)
            if title is None:
                dropped += 1
                continue
            books.append({
                "book_id": book_id,
                "title": title,
                "event_count": events.get(book_id, 0),
                "borrow_count": borrows.get(book_id, 0),
                "avg_return_days": returns.get(book_id),
            })

        if dropped:
            logger.info(f"Dropped {dropped} analytics rows for books that no longer exist")

        return {"global_avg_return_days": global_avg, "books": books}

    def library_stats(self) -> Dict[str, Any]:
        """
        Build the library dashboard from the document-side analytics.

        Counters are keyed by content document id and mapped back to the
        relational book id through the content collection; counters whose
        book cannot be resolved to a title are left out.

        Returns:
            {"top_viewed": [...], "top_borrowed": [...], "hidden_gems": [...],
             "common_searches": [{"query", "count"}], "global_avg_return_days": float}
        """
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            keys_future = executor.submit(contextvars.copy_context().run, self._content_keys)
            counters_future = executor.submit(contextvars.copy_context().run, self._scan, BOOK_ANALYTICS_COUNTERS)
            durations_future = executor.submit(contextvars.copy_context().run, self._return_durations)
            searches_future = executor.submit(contextvars.copy_context().run, self.search_counts)

            content_keys = keys_future.result()
            counters = counters_future.result()
            durations = durations_future.result()
            searches = searches_future.result()

        entries = []
        for row in counters:
            book_id = content_keys.get(row.get("book_content_id"))
            if book_id is None:
                continue
            analytics = AnalyticsCounterDocument.from_documents(row["book_content_id"], row, None)
            entries.append({
                "book_id": book_id,
                "total_views": analytics.total_views,
                "total_borrows": analytics.total_borrows,
                "conversion_rate": analytics.conversion_rate,
            })

        titles = self._titles({entry["book_id"] for entry in entries})
        unresolved = sum(1 for entry in entries if entry["book_id"] not in titles)
        if unresolved:
            logger.info(f"Left {unresolved} counter rows out of library stats: no matching book")
        entries = [dict(entry, title=titles[entry["book_id"]]) for entry in entries if entry["book_id"] in titles]

        by_views = sorted(entries, key=lambda e: (-e["total_views"], e["book_id"]))
        by_borrows = sorted(entries, key=lambda e: (-e["total_borrows"], e["book_id"]))
        hidden_gems = [
            entry for entry in by_views
            if entry["total_views"] > HIDDEN_GEM_MIN_VIEWS and entry["conversion_rate"] < HIDDEN_GEM_MAX_CONVERSION
        ]

        return {
            "top_viewed": by_views[:TOP_BOOKS_LIMIT],
            "top_borrowed": by_borrows[:TOP_BOOKS_LIMIT],
            "hidden_gems": hidden_gems[:TOP_BOOKS_LIMIT],
            "common_searches": [
                {"query": query, "count": count}
                for query, count in searches.most_common(TOP_SEARCHES_LIMIT)
            ],
            "global_avg_return_days": round(sum(durations) / len(durations), 2) if durations else 0.0,
        }

    def search_counts(self) -> Counter:
        """Count SEARCH_EXECUTED events per search query."""
        counts: Counter = Counter()
        for event in self._scan(TELEMETRY_EVENTS, ["event_type", "payload"]):
            if event.get("event_type") != EventType.SEARCH_EXECUTED:
                continue
            query = (event.get("payload") or {}).get("search_query")
            if query:
                counts[query] += 1
        return counts

    def _content_keys(self) -> Dict[Any, int]:
        return {
            doc["id"]: int(doc["mysql_book_id"])
            for doc in self._scan(BOOK_CONTENT, ["id", "mysql_book_id"])
            if doc.get("id") is not None
        }

    def _return_durations(self) -> List[int]:
        durations = []
        for doc in self._scan(BOOK_ANALYTICS, ["return_durations"]):
            durations.extend(doc.get("return_durations") or [])
        return durations

    def _scan(self, collection: str, columns=None) -> List[Dict[str, Any]]:
        return list(self.documents.scan(collection, columns=columns, batch_size=self.batch_size))

    def _titles(self, book_ids) -> Dict[int, str]:
        if not book_ids:
            return {}
        rows = self.relational.execute(sql.BOOK_TITLES, [sorted(book_ids)]).rows
        return {int(row["book_id"]): row["title"] for row in rows if row.get("title") is not None}
