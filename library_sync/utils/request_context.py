"""
Request Trace IDs

Scopes a per-request trace id in a context variable so that every log record
emitted while serving one dual-write, read or diagnostics request can be tied
together, across both store clients.
"""

import contextvars
import logging
import uuid
from typing import Optional

logger = logging.getLogger(__name__)

_request_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "request_id",
    default=None
)


def new_request_id() -> str:
    """Generate a fresh trace id."""
    return uuid.uuid4().hex


def get_request_id() -> Optional[str]:
    """Return the trace id bound to the current context, if any."""
    return _request_id.get()


def set_request_id(request_id: str) -> contextvars.Token:
    """
    Bind a trace id to the current context.

    Args:
        request_id: Trace id to bind

    Returns:
        Token that restores the previous value

    Raises:
        ValueError: If request_id is empty or not a string
    """
    if not request_id or not isinstance(request_id, str):
        raise ValueError("Request ID must be a non-empty string")
    return _request_id.set(request_id)


class RequestContext:
    """
    Context manager binding a trace id for the duration of one request.

    Nested contexts restore the outer id on exit.
    """

    def __init__(self, request_id: Optional[str] = None):
        self.request_id = request_id
        self._token: Optional[contextvars.Token] = None

    def __enter__(self) -> str:
        if not self.request_id:
            self.request_id = new_request_id()
        self._token = set_request_id(self.request_id)
        logger.debug(f"Entered request context: {self.request_id}")
        return self.request_id

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._token is not None:
            _request_id.reset(self._token)
            self._token = None


class RequestIdFilter(logging.Filter):
    """Stamp the current trace id onto every record passing through a handler."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = get_request_id() or "-"
        return True
