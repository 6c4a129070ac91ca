"""
Log formatting for the library-sync processes.

Console output is human readable; JSON output (JSON_LOGGING=true) emits one
object per record for log shippers.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Optional

from library_sync.utils.request_context import RequestIdFilter

# Record attributes copied into the JSON payload when a caller passes them via extra=
EXTRA_FIELDS = (
    "entity",
    "book_id",
    "member_id",
    "step",
    "side",
    "action_type",
    "duration",
    "orphans",
)


class StructuredJSONFormatter(logging.Formatter):
    """JSON formatter carrying the request trace id."""

    def format(self, record):
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", "-"),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        for name in EXTRA_FIELDS:
            if hasattr(record, name):
                log_data[name] = getattr(record, name)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def configure_logging(
    level: int = logging.INFO,
    json_output: bool = False,
    logger_name: Optional[str] = "library_sync"
) -> logging.Logger:
    """
    Install one handler on the package logger.

    Args:
        level: Log level
        json_output: Emit StructuredJSONFormatter records instead of console lines
        logger_name: Logger to configure

    Returns:
        The configured logger
    """
    handler = logging.StreamHandler()
    handler.addFilter(RequestIdFilter())

    if json_output:
        handler.setFormatter(StructuredJSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "[%(asctime)s] %(levelname)s [%(request_id)s] %(name)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        ))

    target = logging.getLogger(logger_name)
    for existing in list(target.handlers):
        target.removeHandler(existing)
    target.addHandler(handler)
    target.setLevel(level)
    target.propagate = False
    return target
