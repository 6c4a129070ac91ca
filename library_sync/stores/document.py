"""
Document Store Client

ScyllaDB access through a cassandra-driver session. Collections are CQL
tables; documents are rows. Provides client-side identifiers, atomic counter
increments, atomic list appends, conditional (LWT) updates and deletes,
set-membership lookups and paged scans.
"""

import logging
import re
import uuid
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence

from cassandra import ConsistencyLevel, DriverException
from cassandra.query import SimpleStatement, ValueSequence, dict_factory

from library_sync.errors import DuplicateKeyError, translate_document_error
from library_sync.identity import new_document_id

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[a-z_][a-z0-9_]*$")


def _identifier(name: str) -> str:
    """Validate a CQL identifier before it is interpolated into a statement."""
    if not isinstance(name, str) or not _IDENTIFIER.match(name):
        raise ValueError(f"Invalid CQL identifier: {name!r}")
    return name


class DocumentStore:
    """
    Document-store operations on top of a cassandra-driver session.

    Raises library_sync.errors subclasses only.
    """

    def __init__(
        self,
        session,
        cluster=None,
        in_chunk_size: int = 100,
        default_fetch_size: int = 1000
    ):
        """
        Initialize the document store.

        Args:
            session: Connected cassandra-driver Session (keyspace already set)
            cluster: Owning Cluster, shut down by close()
            in_chunk_size: Maximum keys per IN query
            default_fetch_size: Page size for scans
        """
        self.session = session
        self.cluster = cluster
        self.in_chunk_size = in_chunk_size
        self.default_fetch_size = default_fetch_size
        logger.debug("DocumentStore initialized")

    @classmethod
    def connect(
        cls,
        hosts: Sequence[str] = ("localhost",),
        port: int = 9042,
        keyspace: str = "library_content",
        username: Optional[str] = None,
        password: Optional[str] = None,
        timeout: float = 5.0,
        **kwargs
    ) -> "DocumentStore":
        """
        Connect to ScyllaDB and return a ready store.

        Args:
            hosts: Contact points
            port: CQL port
            keyspace: Keyspace holding the collections
            username: Optional username
            password: Optional password
            timeout: Connect and per-request timeout in seconds

        Raises:
            ConnectivityFailure: If no host can be reached
        """
        from cassandra.auth import PlainTextAuthProvider
        from cassandra.cluster import Cluster

        logger.info(f"Connecting to ScyllaDB at {list(hosts)}:{port}/{keyspace}")
        auth_provider = None
        if username:
            auth_provider = PlainTextAuthProvider(username=username, password=password)

        cluster = Cluster(
            list(hosts),
            port=port,
            auth_provider=auth_provider,
            connect_timeout=timeout
        )
        try:
            session = cluster.connect(keyspace)
        except Exception as e:
            cluster.shutdown()
            logger.error(f"ScyllaDB connection failed: {e}")
            raise translate_document_error(e) from e

        session.row_factory = dict_factory
        session.default_timeout = timeout
        session.default_consistency_level = ConsistencyLevel.LOCAL_QUORUM
        return cls(session, cluster=cluster, **kwargs)

    def new_document_id(self) -> uuid.UUID:
        """Generate a document identifier client-side (no network call)."""
        return new_document_id()

    def create(
        self,
        collection: str,
        document: Dict[str, Any],
        document_id: Optional[uuid.UUID] = None,
        id_field: str = "id",
        if_not_exists: bool = False
    ) -> uuid.UUID:
        """
        Insert a document.

        Args:
            collection: Target collection
            document: Field values; None values are not written
            document_id: Preset identifier; generated when omitted and absent
            id_field: Field holding the document identifier
            if_not_exists: Use a lightweight transaction on the primary key

        Returns:
            The document identifier

        Raises:
            DuplicateKeyError: If if_not_exists is set and the key already exists
        """
        table = _identifier(collection)
        values = {k: v for k, v in document.items() if v is not None}

        if document_id is not None:
            values[id_field] = document_id
        elif values.get(id_field) is None:
            values[id_field] = self.new_document_id()

        columns = [_identifier(name) for name in values]
        placeholders = ", ".join(["%s"] * len(columns))
        query = f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})"
        if if_not_exists:
            query += " IF NOT EXISTS"

        result = self._execute(query, [values[name] for name in columns])

        if if_not_exists and not result.was_applied:
            raise DuplicateKeyError(
                f"Document already exists in {collection}",
                store="document"
            )

        logger.debug(f"Created document {values[id_field]} in {collection}")
        return values[id_field]

    def find_one(
        self,
        collection: str,
        field: str,
        value: Any,
        columns: Optional[Sequence[str]] = None
    ) -> Optional[Dict[str, Any]]:
        """
        Fetch the first document whose key field equals value.

        Returns:
            The document, or None on a miss
        """
        query = (
            f"SELECT {self._columns(columns)} FROM {_identifier(collection)} "
            f"WHERE {_identifier(field)} = %s LIMIT 1"
        )
        rows = list(self._execute(query, (value,)))
        return dict(rows[0]) if rows else None

    def find_in(
        self,
        collection: str,
        field: str,
        values: Iterable[Any],
        columns: Optional[Sequence[str]] = None
    ) -> List[Dict[str, Any]]:
        """
        Fetch every document whose key field is in values.

        Keys are deduplicated and queried in chunks of in_chunk_size.
        """
        keys = list(dict.fromkeys(values))
        if not keys:
            return []

        query = (
            f"SELECT {self._columns(columns)} FROM {_identifier(collection)} "
            f"WHERE {_identifier(field)} IN %s"
        )

        documents = []
        for i in range(0, len(keys), self.in_chunk_size):
            chunk = keys[i:i + self.in_chunk_size]
            documents.extend(dict(row) for row in self._execute(query, (ValueSequence(chunk),)))

        logger.debug(f"Matched {len(documents)} of {len(keys)} keys in {collection}")
        return documents

    def scan(
        self,
        collection: str,
        columns: Optional[Sequence[str]] = None,
        batch_size: Optional[int] = None
    ) -> Iterator[Dict[str, Any]]:
        """
        Iterate over a whole collection page by page.

        Args:
            collection: Collection to scan
            columns: Columns to fetch (all when omitted)
            batch_size: Page size (driver fetch_size)

        Yields:
            Documents
        """
        query = f"SELECT {self._columns(columns)} FROM {_identifier(collection)}"
        fetch_size = batch_size or self.default_fetch_size
        result = self._execute(query, None, fetch_size=fetch_size)

        try:
            for row in result:
                yield dict(row)
        except DriverException as e:
            raise translate_document_error(e) from e

    def increment(
        self,
        collection: str,
        field: str,
        value: Any,
        counters: Dict[str, int]
    ) -> None:
        """
        Atomically add deltas to counter columns.

        Creates the counter row when it does not exist yet; a delta of 0
        seeds the counter at zero.
        """
        if not counters:
            return

        names = [_identifier(name) for name in counters]
        assignments = ", ".join(f"{name} = {name} + %s" for name in names)
        query = f"UPDATE {_identifier(collection)} SET {assignments} WHERE {_identifier(field)} = %s"
        self._execute(query, [int(counters[name]) for name in names] + [value])

    def append(
        self,
        collection: str,
        field: str,
        value: Any,
        column: str,
        items: Sequence[Any]
    ) -> None:
        """Atomically append items to a list column."""
        query = (
            f"UPDATE {_identifier(collection)} SET {_identifier(column)} = {column} + %s "
            f"WHERE {_identifier(field)} = %s"
        )
        self._execute(query, (list(items), value))

    def compare_and_set(
        self,
        collection: str,
        field: str,
        value: Any,
        column: str,
        expected: Any,
        new: Any
    ) -> bool:
        """
        Set column to new only while it still holds expected.

        Runs as a lightweight transaction, so concurrent writers serialize on
        the row and at most one of them wins per expected value.

        Returns:
            True when the write was applied
        """
        name = _identifier(column)
        query = (
            f"UPDATE {_identifier(collection)} SET {name} = %s "
            f"WHERE {_identifier(field)} = %s IF {name} = %s"
        )
        result = self._execute(query, (new, value, expected))
        applied = result.was_applied
        if not applied:
            logger.debug(f"Conditional update of {collection}.{column} lost for {field}={value}")
        return applied

    def delete(
        self,
        collection: str,
        field: str,
        value: Any,
        if_values: Optional[Dict[str, Any]] = None
    ) -> bool:
        """
        Delete the document(s) under the given key.

        Args:
            collection: Target collection
            field: Key field
            value: Key value
            if_values: Delete only while these columns hold these values

        Returns:
            False when if_values no longer matched and nothing was deleted
        """
        query = f"DELETE FROM {_identifier(collection)} WHERE {_identifier(field)} = %s"
        params = [value]
        if if_values:
            names = [_identifier(name) for name in if_values]
            query += " IF " + " AND ".join(f"{name} = %s" for name in names)
            params.extend(if_values[name] for name in names)

        result = self._execute(query, params)
        if if_values and not result.was_applied:
            logger.info(f"Conditional delete of {field}={value} from {collection} not applied")
            return False

        logger.debug(f"Deleted {field}={value} from {collection}")
        return True

    def ping(self) -> bool:
        """Return True when the cluster answers a trivial query."""
        return bool(list(self._execute("SELECT release_version FROM system.local", None)))

    def close(self) -> None:
        """Shut down the owning cluster, if any."""
        if self.cluster is not None:
            self.cluster.shutdown()
            logger.info("ScyllaDB cluster connection closed")

    def _columns(self, columns: Optional[Sequence[str]]) -> str:
        if not columns:
            return "*"
        return ", ".join(_identifier(name) for name in columns)

    def _execute(self, query: str, params, fetch_size: Optional[int] = None):
        statement = SimpleStatement(query, fetch_size=fetch_size)
        try:
            return self.session.execute(statement, params)
        except Exception as e:
            raise translate_document_error(e) from e
