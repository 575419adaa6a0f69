"""Tests for structured logging helpers."""

import logging

import structlog

from svgwrap.utils.logging import (
    LoggingContext,
    add_correlation_id,
    filter_sensitive_data,
    get_logger,
    setup_logging,
)


class TestFilterSensitiveData:
    def test_payload_keys_are_omitted(self):
        event = {"event": "x", "content": b"\x89PNG", "document": "<svg>...</svg>"}

        filtered = filter_sensitive_data(None, None, event)

        assert filtered["content"] == "***PAYLOAD_OMITTED***"
        assert filtered["document"] == "***PAYLOAD_OMITTED***"
        assert filtered["event"] == "x"

    def test_paths_are_redacted(self):
        event = {"db_path": "./data/history.db", "output_dir": "/home/me/out", "where": "/tmp/x"}

        filtered = filter_sensitive_data(None, None, event)

        assert filtered["output_dir"] == "***PATH_REDACTED***"
        assert filtered["where"] == "***PATH_REDACTED***"
        assert filtered["db_path"] == "./data/history.db"

    def test_nested_values_are_filtered(self):
        event = {"details": {"content": b"abc", "items": ["data:image/png;base64,AAAA", b"xyz"]}}

        filtered = filter_sensitive_data(None, None, event)

        assert filtered["details"]["content"] == "***PAYLOAD_OMITTED***"
        assert filtered["details"]["items"] == ["***PAYLOAD_OMITTED***", "<3 bytes>"]

    def test_long_strings_are_truncated(self):
        filtered = filter_sensitive_data(None, None, {"error": "e" * 2000})

        assert filtered["error"].endswith("...(truncated)")
        assert len(filtered["error"]) < 600


class TestCorrelationId:
    def test_uses_bound_correlation_id(self):
        with LoggingContext(correlation_id="abc123"):
            event = add_correlation_id(None, None, {"event": "x"})

        assert event["correlation_id"] == "abc123"

    def test_generates_correlation_id(self):
        event = add_correlation_id(None, None, {"event": "x"})

        assert len(event["correlation_id"]) == 36


class TestLoggingContext:
    def test_binds_and_restores(self):
        with LoggingContext(batch_id="outer"):
            with LoggingContext(batch_id="inner", task_id="t1"):
                assert structlog.contextvars.get_contextvars() == {
                    "batch_id": "inner",
                    "task_id": "t1",
                }
            assert structlog.contextvars.get_contextvars() == {"batch_id": "outer"}

        assert "batch_id" not in structlog.contextvars.get_contextvars()


class TestSetupLogging:
    def test_file_logging(self, tmp_path):
        log_dir = tmp_path / "logs"

        setup_logging(
            log_level="DEBUG",
            json_logs=True,
            enable_file_logging=True,
            log_dir=str(log_dir),
        )
        get_logger("svgwrap.test").info("hello", content=b"secret")
        for handler in logging.getLogger().handlers:
            handler.flush()

        text = (log_dir / "svgwrap.log").read_text(encoding="utf-8")
        assert '"event": "hello"' in text
        assert "secret" not in text
        assert logging.getLogger().level == logging.DEBUG

        for handler in logging.getLogger().handlers:
            handler.close()
        logging.getLogger().handlers.clear()
