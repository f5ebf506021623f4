"""Unit tests for settings module."""

import os

import pytest

from streammux.settings import Settings


@pytest.fixture
def clean_env(monkeypatch):
    """Remove all STREAMMUX_ env vars for clean tests."""
    for key in list(os.environ.keys()):
        if key.startswith("STREAMMUX_"):
            monkeypatch.delenv(key, raising=False)
    return monkeypatch


class TestLoggingSettings:
    """Test logging configuration values."""

    def test_log_level_default(self, clean_env) -> None:
        assert Settings.log_level() == "INFO"

    def test_log_level_uppercased(self, clean_env) -> None:
        clean_env.setenv("STREAMMUX_LOG_LEVEL", "debug")
        assert Settings.log_level() == "DEBUG"

    def test_log_format(self, clean_env) -> None:
        assert Settings.log_format() == "console"
        clean_env.setenv("STREAMMUX_LOG_FORMAT", "JSON")
        assert Settings.log_format() == "json"


class TestStreamSettings:
    """Test stream parsing settings."""

    def test_read_chunk_size_default(self, clean_env) -> None:
        assert Settings.read_chunk_size() == 65536

    def test_read_chunk_size_floor(self, clean_env) -> None:
        """Chunk size never drops below one byte."""
        clean_env.setenv("STREAMMUX_READ_CHUNK_SIZE", "0")
        assert Settings.read_chunk_size() == 1

    def test_read_chunk_size_invalid_returns_default(self, clean_env) -> None:
        clean_env.setenv("STREAMMUX_READ_CHUNK_SIZE", "lots")
        assert Settings.read_chunk_size() == 65536

    def test_hidden_tools_default(self, clean_env) -> None:
        assert Settings.hidden_tools() == frozenset({"AskUserQuestion"})

    def test_hidden_tools_list(self, clean_env) -> None:
        clean_env.setenv("STREAMMUX_HIDDEN_TOOLS", "AskUserQuestion, TodoWrite ,")
        assert Settings.hidden_tools() == frozenset({"AskUserQuestion", "TodoWrite"})

    def test_context_window(self, clean_env) -> None:
        assert Settings.context_window() == 200_000
        clean_env.setenv("STREAMMUX_CONTEXT_WINDOW", "1000000")
        assert Settings.context_window() == 1_000_000


class TestPermissionSettings:
    """Test permission monitoring settings."""

    def test_stuck_seconds(self, clean_env) -> None:
        assert Settings.permission_stuck_seconds() == 10.0
        clean_env.setenv("STREAMMUX_PERMISSION_STUCK_SECONDS", "2.5")
        assert Settings.permission_stuck_seconds() == 2.5

    def test_stuck_seconds_invalid_returns_default(self, clean_env) -> None:
        clean_env.setenv("STREAMMUX_PERMISSION_STUCK_SECONDS", "soon")
        assert Settings.permission_stuck_seconds() == 10.0

    def test_check_interval(self, clean_env) -> None:
        assert Settings.stuck_check_interval_seconds() == 2.0
