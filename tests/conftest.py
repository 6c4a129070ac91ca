"""
Pytest configuration and shared fixtures.

Unit tests run against the in-memory stores in fakes.py. Integration tests
need PostgreSQL and ScyllaDB with schema/ applied; they are skipped when
either store is unreachable.
"""

import pytest

from fakes import FakeDocumentStore, FakeRelationalStore

from library_sync.monitoring import SyncMetrics


@pytest.fixture
def relational():
    """Empty in-memory relational store."""
    return FakeRelationalStore()


@pytest.fixture
def documents():
    """Empty in-memory document store."""
    return FakeDocumentStore()


@pytest.fixture
def metrics():
    """Metrics bound to a private registry."""
    return SyncMetrics()


def sample_value(metrics: SyncMetrics, name: str, labels=None):
    """Read one sample from a SyncMetrics registry (0.0 when never set)."""
    value = metrics.registry.get_sample_value(name, labels or {})
    return value or 0.0


@pytest.fixture
def metric_value():
    return sample_value


def cleanup_postgres_tables(store):
    """Truncate every table the correlation subsystem writes."""
    with store.connection() as conn:
        with conn.cursor() as cursor:
            cursor.execute("TRUNCATE TABLE loans, members, books RESTART IDENTITY CASCADE")


def cleanup_scylla_tables(store):
    """Truncate every document-store table."""
    for table in (
        "book_content",
        "book_analytics_counters",
        "book_analytics",
        "member_profiles",
        "telemetry_events",
    ):
        store.session.execute(f"TRUNCATE {table}")


@pytest.fixture(scope="module")
def live_services():
    """
    Module-scoped services against real stores, with clean tables.

    Skips the module when either store is unreachable.
    """
    from library_sync.config import Settings
    from library_sync.errors import ConnectivityFailure
    from library_sync.runtime import open_services

    settings = Settings.load(use_vault=False)
    settings.relational.connect_timeout = 2
    settings.document.timeout = 2.0

    try:
        scope = open_services(settings)
        services = scope.__enter__()
    except ConnectivityFailure as e:
        pytest.skip(f"Stores unavailable: {e}")

    cleanup_postgres_tables(services.relational)
    cleanup_scylla_tables(services.documents)

    yield services

    scope.__exit__(None, None, None)
