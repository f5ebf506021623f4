"""Tests for structlog configuration."""

import io
import json
import logging

import pytest
import structlog

from streammux.logging import _add_conversation_field, bind_conversation, configure_logging


@pytest.fixture
def log_stream():
    """Capture streammux log output, restoring defaults afterwards."""
    stream = io.StringIO()
    yield stream
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()
    package_logger = logging.getLogger("streammux")
    package_logger.handlers = []
    package_logger.propagate = True
    package_logger.setLevel(logging.NOTSET)


def last_record(stream: io.StringIO) -> dict:
    return json.loads(stream.getvalue().strip().splitlines()[-1])


class TestConfigureLogging:
    """Test handler, renderer and level wiring."""

    def test_json_output(self, log_stream) -> None:
        """JSON format renders one object per line with keyword context."""
        configure_logging(level="INFO", log_format="json", stream=log_stream)

        structlog.get_logger("streammux.test").info("Turn complete", conversation_id="c1")

        record = last_record(log_stream)
        assert record["event"] == "Turn complete"
        assert record["conversation_id"] == "c1"
        assert record["level"] == "info"
        assert record["logger"] == "streammux.test"

    def test_env_settings_used_by_default(self, log_stream, monkeypatch) -> None:
        """Level and format fall back to STREAMMUX_ env vars."""
        monkeypatch.setenv("STREAMMUX_LOG_FORMAT", "json")
        monkeypatch.setenv("STREAMMUX_LOG_LEVEL", "warning")
        configure_logging(stream=log_stream)

        log = structlog.get_logger("streammux.test")
        log.info("hidden")
        log.warning("shown")

        assert "hidden" not in log_stream.getvalue()
        assert last_record(log_stream)["event"] == "shown"

    def test_stdlib_records_are_rendered(self, log_stream) -> None:
        """Plain stdlib logging under streammux goes through the same renderer."""
        configure_logging(level="DEBUG", log_format="json", stream=log_stream)

        logging.getLogger("streammux.plain").warning(
            "legacy message", extra={"conversation_id": "conv-7"}
        )

        record = last_record(log_stream)
        assert record["event"] == "legacy message"
        assert record["conversation_id"] == "conv-7"

    def test_bound_conversation_is_attached(self, log_stream) -> None:
        """bind_conversation tags later log lines of the same context."""
        configure_logging(level="INFO", log_format="json", stream=log_stream)
        bind_conversation("conv-3")

        structlog.get_logger("streammux.test").info("Stream EOF")

        assert last_record(log_stream)["conversation_id"] == "conv-3"


class TestConversationField:
    """Test the stdlib pre-chain processor."""

    def test_copies_extra_from_stdlib_record(self) -> None:
        """A record's conversation_id extra is copied into the event dict."""
        record = logging.LogRecord("x", logging.INFO, __file__, 1, "msg", None, None)
        record.conversation_id = "conv-9"
        event_dict = _add_conversation_field(None, "info", {"_record": record})
        assert event_dict["conversation_id"] == "conv-9"

    def test_keeps_explicit_value(self) -> None:
        """An explicit conversation_id is not overwritten."""
        record = logging.LogRecord("x", logging.INFO, __file__, 1, "msg", None, None)
        record.conversation_id = "conv-9"
        event_dict = _add_conversation_field(
            None, "info", {"_record": record, "conversation_id": "own"}
        )
        assert event_dict["conversation_id"] == "own"

    def test_without_record(self) -> None:
        """Event dicts from structlog itself pass through untouched."""
        assert _add_conversation_field(None, "info", {"event": "x"}) == {"event": "x"}
