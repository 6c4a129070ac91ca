"""
Relational Store Client

PostgreSQL access through one shared, bounded psycopg2 connection pool.
Callers wait for a free connection up to a configured limit, connections
fail fast on connect and on long statements, and every statement runs in its
own transaction.
"""

import logging
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Sequence

import psycopg2
from psycopg2 import pool as pg_pool
from psycopg2.extras import RealDictCursor

from library_sync.errors import ConnectivityFailure, translate_relational_error

logger = logging.getLogger(__name__)


@dataclass
class QueryResult:
    """Result of a relational call."""

    insert_id: Optional[Any] = None
    rows: List[Dict[str, Any]] = field(default_factory=list)
    affected_rows: int = 0

    def scalar(self) -> Optional[Any]:
        """Return the first column of the first row, if any."""
        if not self.rows:
            return None
        return next(iter(self.rows[0].values()), None)


class RelationalStore:
    """
    Synchronous request/response client for PostgreSQL.

    Raises library_sync.errors subclasses only: ValidationError,
    DuplicateKeyError, ConnectivityFailure or StoreError.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 5432,
        database: str = "library",
        user: str = "postgres",
        password: str = "postgres",
        min_connections: int = 1,
        max_connections: int = 10,
        connect_timeout: int = 5,
        statement_timeout_ms: int = 5000,
        pool_wait_seconds: float = 10.0,
        connection_pool: Optional[pg_pool.AbstractConnectionPool] = None
    ):
        """
        Initialize the relational store.

        Args:
            host: PostgreSQL host
            port: PostgreSQL port
            database: Database name
            user: Username
            password: Password
            min_connections: Connections opened eagerly
            max_connections: Upper bound of the shared pool
            connect_timeout: Seconds before a connection attempt fails
            statement_timeout_ms: Server-side statement timeout
            pool_wait_seconds: How long a caller waits for a free connection
            connection_pool: Pre-built pool (skips connecting)

        Raises:
            ConnectivityFailure: If the initial connections cannot be opened
        """
        self.host = host
        self.port = port
        self.database = database
        self.max_connections = max_connections
        self.pool_wait_seconds = pool_wait_seconds
        self._slots = threading.BoundedSemaphore(max_connections)

        if connection_pool is not None:
            self._pool = connection_pool
        else:
            logger.info(f"Connecting to PostgreSQL at {host}:{port}/{database}")
            try:
                self._pool = pg_pool.ThreadedConnectionPool(
                    min_connections,
                    max_connections,
                    host=host,
                    port=port,
                    dbname=database,
                    user=user,
                    password=password,
                    connect_timeout=connect_timeout,
                    options=f"-c statement_timeout={statement_timeout_ms}"
                )
            except (psycopg2.Error, pg_pool.PoolError) as e:
                logger.error(f"PostgreSQL connection failed: {e}")
                raise translate_relational_error(e) from e

        logger.debug(f"RelationalStore ready (max_connections={max_connections})")

    @contextmanager
    def connection(self):
        """
        Borrow a pooled connection for one transaction.

        Commits when the block exits cleanly, rolls back otherwise.

        Raises:
            ConnectivityFailure: If no connection frees up in time
        """
        if not self._slots.acquire(timeout=self.pool_wait_seconds):
            raise ConnectivityFailure(
                f"Relational pool exhausted after waiting {self.pool_wait_seconds}s",
                store="relational"
            )

        try:
            try:
                conn = self._pool.getconn()
            except (psycopg2.Error, pg_pool.PoolError) as e:
                raise translate_relational_error(e) from e

            try:
                yield conn
                conn.commit()
            except BaseException:
                if not conn.closed:
                    conn.rollback()
                raise
            finally:
                self._pool.putconn(conn, close=bool(conn.closed))
        finally:
            self._slots.release()

    def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> QueryResult:
        """
        Run one statement in its own transaction.

        Args:
            sql: Statement with %s placeholders
            params: Positional parameters

        Returns:
            QueryResult; insert_id is set for INSERT ... RETURNING statements
        """
        try:
            with self.connection() as conn:
                with conn.cursor(cursor_factory=RealDictCursor) as cursor:
                    cursor.execute(sql, params)
                    rows = [dict(row) for row in cursor.fetchall()] if cursor.description else []
                    affected = cursor.rowcount
        except psycopg2.Error as e:
            raise translate_relational_error(e) from e

        insert_id = None
        if rows and sql.lstrip().upper().startswith("INSERT"):
            insert_id = next(iter(rows[0].values()))

        return QueryResult(insert_id=insert_id, rows=rows, affected_rows=affected)

    def call_procedure(self, name: str, params: Sequence[Any]) -> QueryResult:
        """
        Invoke a stored function with positional parameters.

        Args:
            name: Function name
            params: Positional parameters

        Returns:
            QueryResult with the rows the function returned
        """
        logger.debug(f"Calling procedure {name} with {len(params)} parameters")
        try:
            with self.connection() as conn:
                with conn.cursor(cursor_factory=RealDictCursor) as cursor:
                    cursor.callproc(name, list(params))
                    rows = [dict(row) for row in cursor.fetchall()] if cursor.description else []
                    affected = cursor.rowcount
        except psycopg2.Error as e:
            raise translate_relational_error(e) from e

        return QueryResult(insert_id=None, rows=rows, affected_rows=affected)

    def iter_rows(
        self,
        sql: str,
        params: Optional[Sequence[Any]] = None,
        batch_size: int = 1000
    ) -> Iterator[Dict[str, Any]]:
        """
        Stream rows through a server-side cursor.

        Args:
            sql: Query
            params: Positional parameters
            batch_size: Rows fetched per round trip

        Yields:
            Row dictionaries
        """
        try:
            with self.connection() as conn:
                cursor_name = f"scan_{uuid.uuid4().hex}"
                with conn.cursor(name=cursor_name, cursor_factory=RealDictCursor) as cursor:
                    cursor.itersize = batch_size
                    cursor.execute(sql, params)
                    for row in cursor:
                        yield dict(row)
        except psycopg2.Error as e:
            raise translate_relational_error(e) from e

    def ping(self) -> bool:
        """Return True when the database answers a trivial query."""
        return self.execute("SELECT 1 AS ok").scalar() == 1

    def close(self) -> None:
        """Close every pooled connection."""
        self._pool.closeall()
        logger.info("PostgreSQL pool closed")
