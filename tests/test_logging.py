"""Tests for Comrade structured logging."""

import json
import logging

from comrade.logging import ComradeFormatter, configure_logging, get_logger


def _record(name: str = "comrade", level: int = logging.INFO, msg: str = "message") -> logging.LogRecord:
    return logging.LogRecord(
        name=name,
        level=level,
        pathname="test.py",
        lineno=1,
        msg=msg,
        args=(),
        exc_info=None,
    )


class TestComradeFormatter:
    def test_human_readable_format(self):
        formatter = ComradeFormatter(json_output=False)
        output = formatter.format(_record("comrade.tools.manager", msg="Tool call succeeded"))
        assert "comrade.tools.manager" in output
        assert "Tool call succeeded" in output
        assert "INFO" in output

    def test_json_format(self):
        formatter = ComradeFormatter(json_output=True)
        data = json.loads(formatter.format(_record("comrade.bridge", logging.WARNING, "Connection check failed")))
        assert data["logger"] == "comrade.bridge"
        assert data["message"] == "Connection check failed"
        assert data["level"] == "WARNING"
        assert "timestamp" in data

    def test_structured_fields_in_human_format(self):
        formatter = ComradeFormatter(json_output=False)
        record = _record(msg="Tool call approved")
        record.tool_name = "write_file"  # type: ignore[attr-defined]
        record.risk_score = 55  # type: ignore[attr-defined]
        output = formatter.format(record)
        assert "tool_name=write_file" in output
        assert "risk_score=55" in output

    def test_structured_fields_in_json(self):
        formatter = ComradeFormatter(json_output=True)
        record = _record(msg="Provider buffered request answered")
        record.provider = "openai"  # type: ignore[attr-defined]
        record.status_code = 200  # type: ignore[attr-defined]
        data = json.loads(formatter.format(record))
        assert data["provider"] == "openai"
        assert data["status_code"] == 200

    def test_unknown_extras_are_not_emitted(self):
        formatter = ComradeFormatter(json_output=True)
        record = _record()
        record.api_key = "sk-secret"  # type: ignore[attr-defined]
        assert "sk-secret" not in formatter.format(record)

    def test_exception_included(self):
        formatter = ComradeFormatter(json_output=True)
        try:
            raise ValueError("bad")
        except ValueError:
            import sys

            record = logging.LogRecord("comrade", logging.ERROR, "t.py", 1, "failed", (), sys.exc_info())
        data = json.loads(formatter.format(record))
        assert "ValueError: bad" in data["exception"]


class TestGetLogger:
    def test_returns_logger(self):
        logger = get_logger("comrade.test")
        assert isinstance(logger, logging.Logger)
        assert logger.name == "comrade.test"

    def test_default_name(self):
        assert get_logger().name == "comrade"


class TestConfigureLogging:
    def test_configure_level(self):
        configure_logging(level="DEBUG")
        logger = get_logger("comrade")
        assert logger.level == logging.DEBUG
        assert logger.propagate is False
        assert len(logger.handlers) == 1

    def test_reconfigure_replaces_handler(self):
        configure_logging(level="INFO", json_output=True)
        configure_logging(level="WARNING")
        logger = get_logger("comrade")
        assert logger.level == logging.WARNING
        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0].formatter, ComradeFormatter)

    def teardown_method(self):
        logger = logging.getLogger("comrade")
        logger.handlers.clear()
        logger.propagate = True
        logger.setLevel(logging.NOTSET)
