"""
library-sync: cross-store identity correlation and reconciliation.

Books, members and their behavioral data live partly in PostgreSQL and partly
in ScyllaDB. This package creates correlated records in both stores, reads
them back as one view, and detects and repairs drift between the two.

Usage:
    from library_sync.config import Settings
    from library_sync.runtime import open_services

    with open_services(Settings.load()) as services:
        result = services.coordinator.ingest_book(title="Dune", isbn="9780441172719")
        report = services.scanner.scan()
"""

__version__ = "1.0.0"
