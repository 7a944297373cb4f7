"""
Tests for structured logging.
"""

import io
import json
import logging

from box_configurator.errors import RemoteError
from box_configurator.logging_config import (
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


class TestStructuredLogging:
    """Test JSON log output."""

    def setup_method(self):
        reset_logging()
        self.stream = io.StringIO()
        configure_logging(level=logging.DEBUG, stream=self.stream)

    def teardown_method(self):
        reset_logging()

    def _records(self):
        return [json.loads(line) for line in self.stream.getvalue().splitlines()]

    def test_extra_fields_in_output(self):
        get_logger("services.submission").info(
            "Submitting configuration", extra={"idempotency_key": "abc_v2", "attempt": 1},
        )

        record = self._records()[0]
        assert record["level"] == "INFO"
        assert record["logger"] == "box_configurator.services.submission"
        assert record["message"] == "Submitting configuration"
        assert record["idempotency_key"] == "abc_v2"
        assert record["attempt"] == 1

    def test_exception_details(self):
        try:
            raise RemoteError(503, "Unavailable")
        except RemoteError as e:
            get_logger("test").error("Submission failed", exc_info=e)

        record = self._records()[0]
        assert record["exc_type"] == "RemoteError"
        assert record["exc_status"] == 503
        assert "Traceback" in record["traceback"]

    def test_configure_is_idempotent(self):
        configure_logging(level=logging.DEBUG, stream=self.stream)
        assert len(logging.getLogger("box_configurator").handlers) == 1

    def test_formatter_handles_decimal(self):
        from decimal import Decimal
        record = logging.LogRecord("box_configurator.x", logging.INFO, "", 0, "msg", (), None)
        record.total = Decimal("823.30")
        assert json.loads(StructuredFormatter().format(record))["total"] == "823.30"
