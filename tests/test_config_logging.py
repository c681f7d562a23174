"""
Tests for configuration and structured logging
"""

import json
import logging
import pytest

from microfinance.config import MicrofinanceConfig
from microfinance.logging_config import JSONFormatter, setup_logging, log_action
from microfinance.models import business_zone, to_calendar_date


class TestConfig:
    """Test environment-driven settings"""

    def test_defaults(self):
        config = MicrofinanceConfig()
        assert config.business_timezone == "Asia/Kolkata"
        assert config.currency_code == "INR"
        assert config.max_loans_per_customer == 15
        assert config.api_port == 8090

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("MFI_MAX_LOANS_PER_CUSTOMER", "5")
        monkeypatch.setenv("MFI_LOG_FORMAT", "text")
        config = MicrofinanceConfig()
        assert config.max_loans_per_customer == 5
        assert config.log_format == "text"

    @pytest.mark.parametrize("url,path", [
        ("sqlite:///data/mfi.db", "data/mfi.db"),
        ("sqlite:///", ":memory:"),
        ("postgresql://localhost/mfi", ":memory:"),
    ])
    def test_sqlite_path(self, url, path):
        assert MicrofinanceConfig(database_url=url).sqlite_path == path

    def test_business_zone(self):
        assert str(business_zone()) == "Asia/Kolkata"
        # 19:00 UTC is 00:30 the next day in India
        assert to_calendar_date("2024-03-04T19:00:00Z").isoformat() == "2024-03-05"


class CapturingHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.records = []

    def emit(self, record):
        self.records.append(record)


class TestStructuredLogging:
    """Test JSON log lines and operator action logging"""

    def test_json_formatter(self):
        record = logging.LogRecord("microfinance.loans", logging.INFO, __file__, 1, "Recorded %s", ("EMI",), None)
        record.user_id = "op1"
        entry = json.loads(JSONFormatter().format(record))

        assert entry["level"] == "INFO"
        assert entry["logger"] == "microfinance.loans"
        assert entry["message"] == "Recorded EMI"
        assert entry["user_id"] == "op1"
        assert "action" not in entry

    def test_log_action_sets_fields(self):
        logger = logging.getLogger("test_mfi.actions")
        logger.setLevel(logging.INFO)
        handler = CapturingHandler()
        logger.addHandler(handler)
        try:
            log_action(logger, "info", "Recorded payment", user_id="op1",
                       action="payment_recorded", resource="loan:1")
        finally:
            logger.removeHandler(handler)

        record = handler.records[0]
        assert record.user_id == "op1"
        assert record.action == "payment_recorded"
        assert record.resource == "loan:1"

    def test_log_action_respects_level(self):
        logger = logging.getLogger("test_mfi.quiet")
        logger.setLevel(logging.WARNING)
        handler = CapturingHandler()
        logger.addHandler(handler)
        try:
            log_action(logger, "info", "not shown")
        finally:
            logger.removeHandler(handler)
        assert handler.records == []

    def test_setup_logging_writes_json_file(self, tmp_path):
        log_file = tmp_path / "mfi.log"
        logger = setup_logging(level="DEBUG", logger_name="test_mfi.file", log_file=str(log_file))
        logger.info("Calendar built")
        for handler in logger.handlers:
            handler.flush()
            handler.close()

        entry = json.loads(log_file.read_text().strip())
        assert entry["message"] == "Calendar built"
        assert entry["level"] == "INFO"

    def test_setup_logging_replaces_handlers(self):
        setup_logging(logger_name="test_mfi.once")
        logger = setup_logging(logger_name="test_mfi.once", log_format="text")
        assert len(logger.handlers) == 1
        assert not isinstance(logger.handlers[0].formatter, JSONFormatter)
