"""Exception types raised by streammux."""

from __future__ import annotations


class StreamMuxError(Exception):
    """Base class for streammux errors."""


class ParseError(StreamMuxError):
    """A stream line could not be decoded into an event.

    Recoverable: the line is logged and discarded, the stream continues.
    """

    def __init__(self, message: str, line: str) -> None:
        super().__init__(message)
        self.line = line
