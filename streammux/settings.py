"""Centralized environment configuration for streammux.

All environment variables are read through this module using the STREAMMUX_
prefix for consistency.

Usage:
    from streammux.settings import settings

    threshold = settings.permission_stuck_seconds()
"""

from __future__ import annotations

import os


def _get(name: str, default: str = "") -> str:
    """Get an environment variable value."""
    return os.environ.get(name, "").strip() or default


def _get_int(name: str, default: int = 0) -> int:
    """Get an integer environment variable."""
    value = os.environ.get(name, "").strip()
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_float(name: str, default: float = 0.0) -> float:
    """Get a float environment variable."""
    value = os.environ.get(name, "").strip()
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        return default


class Settings:
    """Centralized settings for streammux.

    Environment variables use the STREAMMUX_ prefix.
    """

    # -------------------------------------------------------------------------
    # Logging Settings
    # -------------------------------------------------------------------------

    @staticmethod
    def log_level() -> str:
        """Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).

        Env: STREAMMUX_LOG_LEVEL (default: INFO)
        """
        return _get("STREAMMUX_LOG_LEVEL", default="INFO").upper()

    @staticmethod
    def log_format() -> str:
        """Log format: "console" for dev-friendly, "json" for structured.

        Env: STREAMMUX_LOG_FORMAT (default: console)
        """
        return _get("STREAMMUX_LOG_FORMAT", default="console").lower()

    # -------------------------------------------------------------------------
    # Stream Settings
    # -------------------------------------------------------------------------

    @staticmethod
    def read_chunk_size() -> int:
        """Maximum bytes read from a session's stdout per iteration.

        Env: STREAMMUX_READ_CHUNK_SIZE (default: 65536)
        """
        return max(1, _get_int("STREAMMUX_READ_CHUNK_SIZE", default=65536))

    @staticmethod
    def hidden_tools() -> frozenset[str]:
        """Comma-separated tool names whose tool_use events are not surfaced.

        Their ids are still recorded so tool results resolve to a name.

        Env: STREAMMUX_HIDDEN_TOOLS (default: AskUserQuestion)
        """
        raw = _get("STREAMMUX_HIDDEN_TOOLS", default="AskUserQuestion")
        return frozenset(part.strip() for part in raw.split(",") if part.strip())

    @staticmethod
    def context_window() -> int:
        """Context window assumed when a result does not report one.

        Env: STREAMMUX_CONTEXT_WINDOW (default: 200000)
        """
        return _get_int("STREAMMUX_CONTEXT_WINDOW", default=200_000)

    # -------------------------------------------------------------------------
    # Permission Settings
    # -------------------------------------------------------------------------

    @staticmethod
    def permission_stuck_seconds() -> float:
        """Age after which an unanswered permission request is reported as stuck.

        Diagnostic only: requests are never resolved automatically.

        Env: STREAMMUX_PERMISSION_STUCK_SECONDS (default: 10)
        """
        return _get_float("STREAMMUX_PERMISSION_STUCK_SECONDS", default=10.0)

    @staticmethod
    def stuck_check_interval_seconds() -> float:
        """How often the stuck-request monitor sweeps pending requests.

        Env: STREAMMUX_STUCK_CHECK_INTERVAL_SECONDS (default: 2)
        """
        return _get_float("STREAMMUX_STUCK_CHECK_INTERVAL_SECONDS", default=2.0)


# Singleton instance for convenient imports
settings = Settings()
