"""
Read-side aggregation across both stores.

- CatalogEnricher: relational book rows joined with content documents
- AnalyticsAggregator: telemetry, borrow and return-time aggregates merged by book id
"""

from library_sync.aggregation.catalog import CatalogEnricher, enrich_book
from library_sync.aggregation.analytics import AnalyticsAggregator, decode_book_reference

__all__ = [
    "CatalogEnricher",
    "enrich_book",
    "AnalyticsAggregator",
    "decode_book_reference",
]
