"""Outbound channels: writing JSON lines to each conversation's subprocess stdin."""

from __future__ import annotations

import asyncio
from threading import Lock
from typing import Any

import structlog

from streammux.wire import encode_line

logger = structlog.get_logger(__name__)


class StdinChannels:
    """``SessionWriter`` backed by the stdin streams of running subprocesses.

    Channels are registered from the event loop that owns the subprocess.
    Writes may come from any thread (permission decisions usually arrive on a
    UI thread); off-loop writes are handed to the owning loop.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._channels: dict[str | None, tuple[asyncio.StreamWriter, asyncio.AbstractEventLoop]] = {}

    def register(self, conversation_id: str | None, stdin: asyncio.StreamWriter) -> None:
        """Route writes for a conversation to ``stdin``. Must run on the owning loop."""
        loop = asyncio.get_running_loop()
        with self._lock:
            self._channels[conversation_id] = (stdin, loop)
        logger.debug("Registered stdin channel", conversation_id=conversation_id)

    def unregister(self, conversation_id: str | None) -> None:
        with self._lock:
            self._channels.pop(conversation_id, None)

    def __contains__(self, conversation_id: object) -> bool:
        with self._lock:
            return conversation_id in self._channels

    def __call__(self, conversation_id: str | None, payload: dict[str, Any]) -> bool:
        """Write one JSON line. Returns False if there is no live channel."""
        with self._lock:
            channel = self._channels.get(conversation_id)
        if channel is None:
            logger.warning("No stdin channel for conversation", conversation_id=conversation_id)
            return False

        stdin, loop = channel
        if stdin.is_closing() or loop.is_closed():
            logger.warning("Stdin channel is closed", conversation_id=conversation_id)
            return False

        data = encode_line(payload)
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        try:
            if running is loop:
                stdin.write(data)
            else:
                loop.call_soon_threadsafe(stdin.write, data)
        except (OSError, RuntimeError) as e:
            logger.warning(
                "Failed to write to stdin",
                conversation_id=conversation_id,
                error=str(e),
            )
            return False
        return True
