"""
Store clients for the two datastores.

- relational: PostgreSQL through a bounded psycopg2 connection pool
- document: ScyllaDB through a cassandra-driver session

Both translate driver exceptions into library_sync.errors.
"""

from library_sync.stores.relational import QueryResult, RelationalStore
from library_sync.stores.document import DocumentStore

__all__ = [
    "QueryResult",
    "RelationalStore",
    "DocumentStore",
]
