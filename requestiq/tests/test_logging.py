"""
Unit Tests: Structured Logging
"""

import io
import json
import logging

import pytest

from requestiq.core.errors import WriteError
from requestiq.observability.logging import (
    JsonFormatter,
    LogLevel,
    StructuredLogger,
    setup_logging,
)


@pytest.fixture
def stream():
    root = logging.getLogger()
    saved = (root.level, list(root.handlers))
    buffer = io.StringIO()
    setup_logging(LogLevel.DEBUG, json_output=True, stream=buffer)
    yield buffer
    root.setLevel(saved[0])
    root.handlers[:] = saved[1]


def _lines(stream):
    return [json.loads(line) for line in stream.getvalue().splitlines()]


class TestStructuredLogger:

    def test_json_fields(self, stream):
        StructuredLogger("requestiq.test").warning("write failed", code="WRITE_TIMEOUT", applied=3)

        record, = _lines(stream)
        assert record["level"] == "WARNING"
        assert record["message"] == "write failed"
        assert record["logger"] == "requestiq.test"
        assert record["code"] == "WRITE_TIMEOUT"
        assert record["applied"] == 3

    def test_error_fields_keep_message_apart(self, stream):
        error = WriteError.store_unavailable("record_event", ConnectionError("refused"))

        StructuredLogger("requestiq.test").warning("write failed", **error.log_fields())

        record, = _lines(stream)
        assert record["message"] == "write failed"
        assert record["error_message"] == error.message
        assert record["code"] == "WRITE_STORE_UNAVAILABLE"
        assert record["error_id"] == error.error_id

    def test_reserved_names_are_prefixed(self, stream):
        StructuredLogger("requestiq.test").info("x", name="shadow", module="m")

        record, = _lines(stream)
        assert record["field_name"] == "shadow"
        assert record["field_module"] == "m"

    def test_request_context(self, stream):
        logger = StructuredLogger("requestiq.test")

        with StructuredLogger.context(request_id="r-42", path="/a"):
            logger.info("inside")
        logger.info("outside")

        inside, outside = _lines(stream)
        assert inside["request_id"] == "r-42"
        assert inside["path"] == "/a"
        assert "request_id" not in outside

    def test_with_extra(self, stream):
        StructuredLogger("requestiq.test").with_extra(component="sweeper").info("tick")

        assert _lines(stream)[0]["component"] == "sweeper"

    def test_exception_traceback(self, stream):
        try:
            raise ValueError("bad")
        except ValueError:
            StructuredLogger("requestiq.test").exception("failed")

        record, = _lines(stream)
        assert record["level"] == "ERROR"
        assert "ValueError: bad" in record["exception"]

    def test_level_filtering(self):
        root = logging.getLogger()
        saved = (root.level, list(root.handlers))
        buffer = io.StringIO()
        setup_logging(LogLevel.WARNING, json_output=False, stream=buffer)
        try:
            logger = StructuredLogger("requestiq.test")
            logger.info("hidden")
            logger.error("shown")
        finally:
            root.setLevel(saved[0])
            root.handlers[:] = saved[1]

        assert "hidden" not in buffer.getvalue()
        assert "shown" in buffer.getvalue()


class TestLogLevel:

    def test_parse(self):
        assert LogLevel.parse("debug") is LogLevel.DEBUG

    def test_formatter_is_json(self):
        record = logging.LogRecord("n", logging.INFO, __file__, 1, "hello %s", ("there",), None)

        assert json.loads(JsonFormatter().format(record))["message"] == "hello there"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
