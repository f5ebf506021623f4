"""Reassembles complete lines from arbitrarily chunked stream data."""

from __future__ import annotations

from streammux.session import ParserSession


class LineAssembler:
    """Splits a session's incoming chunks into newline-terminated lines.

    A chunk may hold a fraction of a line or many lines; the unterminated tail
    is kept in ``session.buffer`` until the rest arrives. Byte chunks go through
    the session's incremental UTF-8 decoder, so a character split across two
    reads is reassembled rather than mangled.
    """

    def feed(self, session: ParserSession, chunk: bytes | str) -> list[str]:
        """Append a chunk and return the lines it completed.

        Empty lines are returned as-is; callers skip them.
        """
        if isinstance(chunk, (bytes, bytearray)):
            chunk = session.decoder.decode(bytes(chunk))
        if not chunk:
            return []

        parts = (session.buffer + chunk).split("\n")
        session.buffer = parts.pop()
        return parts

    def flush(self, session: ParserSession) -> str | None:
        """Return and clear the unterminated tail at end of stream."""
        tail = session.buffer + session.decoder.decode(b"", final=True)
        session.buffer = ""
        return tail or None
