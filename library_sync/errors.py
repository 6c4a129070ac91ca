"""
Error Taxonomy for Cross-Store Writes and Reads

Defines the failures the correlation subsystem can surface, translates
driver-specific exceptions (psycopg2, cassandra-driver) into that taxonomy,
and maps each failure to an HTTP-equivalent response.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

import psycopg2
from psycopg2 import pool as pg_pool
from cassandra import (
    CoordinationFailure,
    InvalidRequest,
    OperationTimedOut,
    ReadTimeout,
    Unavailable,
    WriteTimeout,
)

logger = logging.getLogger(__name__)

# PostgreSQL SQLSTATE codes used for classification
UNIQUE_VIOLATION = "23505"
RAISE_EXCEPTION = "P0001"
QUERY_CANCELED = "57014"


class StoreError(Exception):
    """Base class for failures raised by either store."""

    http_status = 500

    def __init__(self, message: str, store: Optional[str] = None, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.store = store
        self.code = code


class ValidationError(StoreError):
    """A collaborator rejected the input before any cross-store write happened."""

    http_status = 400


class DuplicateKeyError(StoreError):
    """A uniqueness constraint was violated in either store."""

    http_status = 409


class ConnectivityFailure(StoreError):
    """A store was unreachable, timed out, or its pool was exhausted."""

    http_status = 503


class PartialWriteFailure(StoreError):
    """
    A dual-write committed at least one step and then failed.

    Nothing is rolled back. The committed side effect stays in place as an
    orphan until the scanner reports it and the repairer fixes it.

    Attributes:
        entity: "book" or "member"
        completed_steps: Names of the steps that committed
        failed_step: Name of the step that raised
        committed: Identifiers produced by the committed steps
        cause: The underlying exception
    """

    http_status = 500

    def __init__(
        self,
        entity: str,
        completed_steps: List[str],
        failed_step: str,
        committed: Dict[str, Any],
        cause: BaseException
    ):
        super().__init__(
            f"{entity} dual-write failed at step '{failed_step}' after "
            f"committing {completed_steps}: {cause}",
            store=getattr(cause, "store", None),
            code=getattr(cause, "code", None)
        )
        self.entity = entity
        self.completed_steps = list(completed_steps)
        self.failed_step = failed_step
        self.committed = dict(committed)
        self.cause = cause


def translate_relational_error(exc: Exception) -> StoreError:
    """
    Classify a psycopg2 exception by its SQLSTATE.

    Args:
        exc: Exception raised by psycopg2 or its pool

    Returns:
        The matching StoreError subclass instance
    """
    if isinstance(exc, StoreError):
        return exc

    if isinstance(exc, pg_pool.PoolError):
        return ConnectivityFailure(f"Relational pool error: {exc}", store="relational")

    code = getattr(exc, "pgcode", None)
    message = _relational_message(exc)

    if code == UNIQUE_VIOLATION:
        return DuplicateKeyError(message, store="relational", code=code)

    if code == RAISE_EXCEPTION or (code and code[:2] in ("22", "23")):
        return ValidationError(message, store="relational", code=code)

    if isinstance(exc, psycopg2.OperationalError) or code == QUERY_CANCELED:
        return ConnectivityFailure(message, store="relational", code=code)

    if isinstance(exc, psycopg2.InterfaceError):
        return ConnectivityFailure(message, store="relational", code=code)

    return StoreError(message, store="relational", code=code)


def translate_document_error(exc: Exception) -> StoreError:
    """
    Classify a cassandra-driver exception.

    Args:
        exc: Exception raised by the driver

    Returns:
        The matching StoreError subclass instance
    """
    if isinstance(exc, StoreError):
        return exc

    if isinstance(exc, (OperationTimedOut, Unavailable, ReadTimeout, WriteTimeout, CoordinationFailure)):
        return ConnectivityFailure(f"Document store unavailable: {exc}", store="document")

    if isinstance(exc, InvalidRequest):
        return ValidationError(f"Document store rejected request: {exc}", store="document")

    # NoHostAvailable lives in cassandra.cluster, which loads the reactor on import
    from cassandra.cluster import NoHostAvailable

    if isinstance(exc, NoHostAvailable):
        return ConnectivityFailure(f"Document store unreachable: {exc}", store="document")

    return StoreError(f"Document store error: {exc}", store="document")


def error_response(exc: Exception) -> Tuple[int, Dict[str, Any]]:
    """
    Map an exception to an HTTP-equivalent (status, body) pair.

    PartialWriteFailure is reported exactly like any other server-side write
    failure: the caller cannot tell whether an orphan was left behind.

    Args:
        exc: Exception raised by the core

    Returns:
        Tuple of status code and JSON-serializable body
    """
    if isinstance(exc, PartialWriteFailure):
        logger.error(
            f"Partial write surfaced as generic failure: entity={exc.entity}, "
            f"committed={exc.committed}"
        )
        return 500, {"status": "error", "message": "Write failed."}

    if isinstance(exc, (ValidationError, DuplicateKeyError)):
        return exc.http_status, {"status": "error", "message": exc.message}

    if isinstance(exc, ConnectivityFailure):
        return 503, {"status": "error", "message": "Database temporarily unavailable."}

    if isinstance(exc, StoreError):
        return 500, {"status": "error", "message": exc.message or "A database error occurred."}

    return 500, {"status": "error", "message": str(exc) or "Internal server error."}


def _relational_message(exc: Exception) -> str:
    """Prefer the server's primary message over the full libpq text."""
    diag = getattr(exc, "diag", None)
    primary = getattr(diag, "message_primary", None) if diag is not None else None
    return primary or str(exc).strip() or exc.__class__.__name__
