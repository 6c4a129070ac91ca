"""
Process wiring.

Store clients are created once per process, handed to every component through
its constructor, and released when the scope closes.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional

from library_sync.activity import BookActivity
from library_sync.aggregation import AnalyticsAggregator, CatalogEnricher
from library_sync.config import Settings
from library_sync.dual_write import DualWriteCoordinator
from library_sync.monitoring import SyncMetrics
from library_sync.reconciliation import ConsistencyScanner, ReconciliationRepairer
from library_sync.stores import DocumentStore, RelationalStore

logger = logging.getLogger(__name__)


@dataclass
class Services:
    relational: RelationalStore
    documents: DocumentStore
    metrics: SyncMetrics
    coordinator: DualWriteCoordinator
    catalog: CatalogEnricher
    analytics: AnalyticsAggregator
    activity: BookActivity
    scanner: ConsistencyScanner
    repairer: ReconciliationRepairer


def build_services(
    settings: Settings,
    relational: RelationalStore,
    documents: DocumentStore,
    metrics: Optional[SyncMetrics] = None
) -> Services:
    """Construct every component around already-open store clients."""
    metrics = metrics or SyncMetrics()
    scanner = ConsistencyScanner(relational, documents, batch_size=settings.scan_batch_size, metrics=metrics)

    return Services(
        relational=relational,
        documents=documents,
        metrics=metrics,
        coordinator=DualWriteCoordinator(relational, documents, metrics=metrics),
        catalog=CatalogEnricher(relational, documents),
        analytics=AnalyticsAggregator(relational, documents, batch_size=settings.scan_batch_size),
        activity=BookActivity(documents, metrics=metrics),
        scanner=scanner,
        repairer=ReconciliationRepairer(documents, scanner=scanner, metrics=metrics),
    )


@contextmanager
def open_services(settings: Settings) -> Iterator[Services]:
    """
    Connect both stores, yield the wired components, then release the stores.

    Raises:
        ConnectivityFailure: If either store is unreachable
    """
    rel = settings.relational
    relational = RelationalStore(
        host=rel.host,
        port=rel.port,
        database=rel.database,
        user=rel.user,
        password=rel.password,
        max_connections=rel.pool_size,
        connect_timeout=rel.connect_timeout,
        statement_timeout_ms=rel.statement_timeout_ms,
        pool_wait_seconds=rel.pool_wait_seconds,
    )

    try:
        doc = settings.document
        documents = DocumentStore.connect(
            hosts=doc.hosts,
            port=doc.port,
            keyspace=doc.keyspace,
            username=doc.user,
            password=doc.password,
            timeout=doc.timeout,
            in_chunk_size=doc.in_chunk_size,
            default_fetch_size=settings.scan_batch_size,
        )
    except BaseException:
        relational.close()
        raise

    try:
        yield build_services(settings, relational, documents)
    finally:
        documents.close()
        relational.close()
        logger.debug("Store clients released")
