"""
Unit tests for the logging layer.
"""

import json
import logging
import sys

import pytest

from shieldpool.logging import (
    ContextLogger,
    JSONFormatter,
    LogConfig,
    LogContext,
    LogLevel,
    TextFormatter,
    get_logger,
    setup_logging,
    shutdown_logging,
)


def make_record(message="hello", context=None):
    record = logging.LogRecord(
        name="shieldpool.test",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=message,
        args=(),
        exc_info=None,
    )
    if context is not None:
        record.context = context
    return record


class TestLogContext:
    """Test LogContext."""

    def test_to_dict_drops_unset(self):
        context = LogContext(component="builder", build_id="abc")
        assert context.to_dict() == {"component": "builder", "build_id": "abc"}

    def test_merge(self):
        context = LogContext(component="builder")
        merged = context.merge(stage="validate")
        assert merged.stage == "validate"
        assert merged.component == "builder"
        assert context.stage is None


class TestContextLogger:
    """Test ContextLogger."""

    def test_get_logger_fields(self):
        log = get_logger("shieldpool.test", component="builder")
        assert isinstance(log, ContextLogger)
        assert log.context.component == "builder"

    def test_bind(self):
        log = get_logger("shieldpool.test", component="builder")
        bound = log.bind(build_id="b1", stage="collect_inputs")
        assert bound.context.build_id == "b1"
        assert log.context.build_id is None

    def test_records_carry_context(self, caplog):
        log = get_logger("shieldpool.test", component="builder").bind(build_id="b1")
        with caplog.at_level(logging.INFO, logger="shieldpool.test"):
            log.info("selected notes")
        record = caplog.records[-1]
        assert record.context == {"component": "builder", "build_id": "b1"}
        assert record.getMessage() == "selected notes"


class TestFormatters:
    """Test formatters."""

    def test_json_formatter(self):
        output = JSONFormatter().format(make_record(context={"build_id": "b1"}))
        data = json.loads(output)
        assert data["message"] == "hello"
        assert data["level"] == "info"
        assert data["context"] == {"build_id": "b1"}
        assert data["timestamp"].endswith("Z")

    def test_json_formatter_exception(self):
        try:
            raise RuntimeError("bad")
        except RuntimeError:
            record = make_record()
            record.exc_info = sys.exc_info()
        data = json.loads(JSONFormatter().format(record))
        assert data["exception"]["type"] == "RuntimeError"

    def test_text_formatter_appends_context(self):
        output = TextFormatter().format(make_record(context={"stage": "validate"}))
        assert output.endswith("| stage=validate")
        assert "hello" in output

    def test_text_formatter_without_context(self):
        assert "|" not in TextFormatter().format(make_record())


class TestSetup:
    """Test setup_logging."""

    def teardown_method(self):
        shutdown_logging()

    def test_setup_console(self):
        root = setup_logging(LogConfig(name="shieldpool.setup", level=LogLevel.DEBUG))
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        shutdown_logging()
        assert root.handlers == []

    def test_setup_is_repeatable(self):
        setup_logging(LogConfig(name="shieldpool.setup"))
        root = setup_logging(LogConfig(name="shieldpool.setup", format_type="json"))
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, JSONFormatter)

    def test_file_handler(self, tmp_path):
        path = tmp_path / "pool.log"
        root = setup_logging(
            LogConfig(name="shieldpool.file", handlers=["file"], filename=str(path))
        )
        root.info("written")
        shutdown_logging()
        assert "written" in path.read_text()

    def test_file_handler_requires_filename(self):
        with pytest.raises(ValueError):
            setup_logging(LogConfig(handlers=["file"]))

    def test_invalid_format(self):
        with pytest.raises(ValueError):
            LogConfig(format_type="xml")

    def test_level_mapping(self):
        assert LogLevel.WARNING.to_stdlib() == logging.WARNING

    def test_config_to_dict(self):
        assert LogConfig().to_dict()["level"] == "info"
