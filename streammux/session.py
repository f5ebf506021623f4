"""Per-conversation parser state and the registry that owns it."""

from __future__ import annotations

import codecs
from dataclasses import dataclass, field

from streammux.turn import TurnTracker


def _utf8_decoder() -> codecs.IncrementalDecoder:
    return codecs.getincrementaldecoder("utf-8")(errors="replace")


@dataclass
class ParserSession:
    """Mutable parsing state for one conversation's stream.

    Only the task reading that conversation's stream touches an instance.
    ``tool_id_to_name`` lives for the whole session; the ``*_this_turn`` flags,
    ``accumulated_text`` and ``streaming_id`` reset when a ``result`` ends the turn.
    """

    conversation_id: str | None
    buffer: str = ""
    accumulated_text: str = ""
    streaming_id: str | None = None
    tool_id_to_name: dict[str, str] = field(default_factory=dict)
    message_sent_this_turn: bool = False
    streamed_this_turn: bool = False
    turn: TurnTracker = field(default_factory=TurnTracker)
    decoder: codecs.IncrementalDecoder = field(default_factory=_utf8_decoder, repr=False)

    def start_new_turn(self) -> None:
        self.accumulated_text = ""
        self.message_sent_this_turn = False
        self.streamed_this_turn = False
        self.streaming_id = None


class SessionRegistry:
    """Parser sessions keyed by conversation id, created on first access.

    Callers that never pass a conversation id share a separate default session
    that has nothing in common with the named ones.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, ParserSession] = {}
        self._default = ParserSession(conversation_id=None)

    def get(self, conversation_id: str | None) -> ParserSession:
        """Get or create the session for a conversation."""
        if conversation_id is None:
            return self._default
        session = self._sessions.get(conversation_id)
        if session is None:
            session = ParserSession(conversation_id=conversation_id)
            self._sessions[conversation_id] = session
        return session

    def peek(self, conversation_id: str | None) -> ParserSession | None:
        """Return the session if it exists, without creating it."""
        if conversation_id is None:
            return self._default
        return self._sessions.get(conversation_id)

    def reset(self, conversation_id: str | None) -> None:
        """Clear one conversation's state; other sessions are untouched."""
        if conversation_id is None:
            self._default = ParserSession(conversation_id=None)
        elif conversation_id in self._sessions:
            self._sessions[conversation_id] = ParserSession(conversation_id=conversation_id)

    def dispose(self, conversation_id: str) -> ParserSession | None:
        """Forget a closed conversation."""
        return self._sessions.pop(conversation_id, None)

    def reset_all(self) -> None:
        """Clear every session, including the default one."""
        self._sessions.clear()
        self._default = ParserSession(conversation_id=None)

    def ids(self) -> list[str]:
        return list(self._sessions)

    def __contains__(self, conversation_id: object) -> bool:
        return conversation_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
