"""Turn lifecycle: deciding when a session has finished responding."""

from __future__ import annotations

from enum import Enum

from streammux.events import Event, Message, Result, TextDelta, ToolUse


class TurnPhase(str, Enum):
    """Where a session is within the current request/response cycle."""

    IDLE = "idle"
    STREAMING = "streaming"
    FINALIZING = "finalizing"


def is_end_of_turn(result: Result) -> bool:
    """Decide whether a ``result`` event ends the turn.

    Precedence:
        1. An explicit ``is_done`` flag is trusted either way.
        2. ``stop_reason == "tool_use"`` means more output follows the tool result.
        3. Anything else ends the turn.

    ``subtype`` and billing figures are deliberately ignored: intermediate and
    final results both carry them.
    """
    if result.is_done is not None:
        return result.is_done
    if result.stop_reason == "tool_use":
        return False
    return True


class TurnTracker:
    """Per-session state machine: IDLE -> STREAMING -> FINALIZING -> IDLE."""

    def __init__(self) -> None:
        self.phase = TurnPhase.IDLE
        self._result: Result | None = None

    def observe(self, event: Event) -> TurnPhase:
        """Advance on a decoded event and return the new phase."""
        if isinstance(event, (TextDelta, ToolUse, Message)):
            if self.phase is TurnPhase.IDLE:
                self.phase = TurnPhase.STREAMING
        elif isinstance(event, Result):
            self.phase = TurnPhase.FINALIZING
            self._result = event
        return self.phase

    def settle(self) -> bool:
        """Leave FINALIZING once the result has been delivered.

        Returns:
            True if the turn ended, False if it continues (or nothing was pending).
        """
        if self.phase is not TurnPhase.FINALIZING or self._result is None:
            return False
        ended = is_end_of_turn(self._result)
        self.phase = TurnPhase.IDLE if ended else TurnPhase.STREAMING
        self._result = None
        return ended
