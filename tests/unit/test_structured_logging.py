"""
Unit tests for log formatting.
"""

import json
import logging
import sys

from library_sync.utils.request_context import RequestContext, RequestIdFilter
from library_sync.utils.structured_logging import StructuredJSONFormatter, configure_logging


def make_record(msg="Book ingested", exc_info=None, **extra):
    record = logging.LogRecord("library_sync.dual_write", logging.INFO, __file__, 10, msg, None, exc_info)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestStructuredJSONFormatter:

    def test_base_fields(self):
        record = make_record()
        record.request_id = "req-1"

        data = json.loads(StructuredJSONFormatter().format(record))

        assert data["level"] == "INFO"
        assert data["logger"] == "library_sync.dual_write"
        assert data["message"] == "Book ingested"
        assert data["request_id"] == "req-1"
        assert data["line"] == 10
        assert "timestamp" in data

    def test_extra_fields_are_included(self):
        record = make_record(entity="book", book_id=42, step="content_document")

        data = json.loads(StructuredJSONFormatter().format(record))

        assert data["entity"] == "book"
        assert data["book_id"] == 42
        assert data["step"] == "content_document"
        assert "member_id" not in data
        assert data["request_id"] == "-"

    def test_exception_is_formatted(self):
        try:
            raise RuntimeError("store down")
        except RuntimeError:
            record = make_record("failed", exc_info=sys.exc_info())

        data = json.loads(StructuredJSONFormatter().format(record))

        assert "RuntimeError: store down" in data["exception"]

    def test_non_serializable_values_are_stringified(self):
        record = make_record(orphans={1, 2})

        data = json.loads(StructuredJSONFormatter().format(record))

        assert isinstance(data["orphans"], str)


class TestConfigureLogging:

    def test_installs_single_handler(self):
        name = "library_sync.test_configure"

        configure_logging(logging.DEBUG, logger_name=name)
        logger = configure_logging(logging.WARNING, json_output=True, logger_name=name)

        assert len(logger.handlers) == 1
        assert logger.level == logging.WARNING
        assert logger.propagate is False
        assert isinstance(logger.handlers[0].formatter, StructuredJSONFormatter)
        assert any(isinstance(f, RequestIdFilter) for f in logger.handlers[0].filters)

    def test_console_output_carries_request_id(self, capsys):
        logger = configure_logging(logging.INFO, logger_name="library_sync.test_console")

        with RequestContext("trace-7"):
            logger.info("hello")

        assert "[trace-7]" in capsys.readouterr().err
